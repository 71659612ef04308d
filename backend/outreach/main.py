"""
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from outreach.api.v1.dependencies import close_shared_clients
from outreach.api.v1.routes import api_router
from outreach.core.config import get_settings
from outreach.core.tenant_middleware import TenantMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - startup and shutdown events.

    Shutdown closes the shared voice-provider and event-publisher clients.
    """
    settings = get_settings()
    logger.info(
        f"Starting Patient Outreach API (env={settings.environment}, "
        f"storage={settings.storage_backend}, events={settings.event_backend})"
    )

    yield

    logger.info("Shutting down Patient Outreach API...")
    try:
        await close_shared_clients()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")

    logger.info("Patient Outreach API shutdown complete")


app = FastAPI(
    title="Patient Outreach Dialer",
    description="Run execution and call dispatch for healthcare voice campaigns",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# MULTI-TENANT: every non-webhook route needs an organization
app.add_middleware(TenantMiddleware)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    return {"message": "Patient Outreach Dialer API", "status": "running"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "environment": settings.environment,
        "storage_backend": settings.storage_backend,
        "event_backend": settings.event_backend,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
