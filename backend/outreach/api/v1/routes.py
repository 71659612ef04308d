"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter
from outreach.api.v1.endpoints import (
    runs,
    webhooks,
    organizations,
)

api_router = APIRouter()

api_router.include_router(runs.router)
api_router.include_router(webhooks.router)
api_router.include_router(organizations.router)
