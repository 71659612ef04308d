"""
Multi-Tenant Middleware
Extracts the organization context from JWT tokens
"""
from fastapi import Request, HTTPException, status
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Any, Dict, Optional
import logging
import jwt

from outreach.core.config import get_settings
from outreach.domain.models.org_context import OrgContext

logger = logging.getLogger(__name__)

SUPER_ADMIN_ROLES = {"super_admin", "superadmin"}


def _claims_to_context(payload: Dict[str, Any]) -> OrgContext:
    metadata = payload.get("app_metadata") or payload.get("user_metadata") or {}
    org_id = payload.get("org_id") or payload.get("organization_id") or metadata.get("org_id")
    role = payload.get("role") or metadata.get("role")
    is_super_admin = bool(payload.get("is_super_admin") or metadata.get("is_super_admin")) or role in SUPER_ADMIN_ROLES
    return OrgContext(org_id=org_id, user_id=payload.get("sub"), is_super_admin=is_super_admin)


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Middleware to extract org_id, user_id and the super-admin flag from the JWT

    Usage:
    1. Add to main.py: app.add_middleware(TenantMiddleware)
    2. Access via request.state.org_context, or Depends(get_org_context)

    Tokens are verified with JWT_SECRET (HS256) when it is set.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.org_context = None

        # Public and provider-facing endpoints carry their own identity
        public_paths = ["/", "/health", "/docs", "/openapi.json", "/redoc"]
        if request.url.path in public_paths or "/webhooks/" in request.url.path:
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            # Individual endpoints enforce auth via dependencies
            return await call_next(request)

        token = auth_header.split(" ")[1]
        secret = get_settings().jwt_secret

        try:
            if secret:
                payload = jwt.decode(
                    token,
                    secret,
                    algorithms=["HS256"],
                    options={"verify_aud": False}
                )
            else:
                payload = jwt.decode(token, options={"verify_signature": False})
            request.state.org_context = _claims_to_context(payload)
        except jwt.InvalidTokenError as e:
            logger.debug(f"Rejected bearer token: {e}")

        return await call_next(request)


def get_org_context(request: Request) -> OrgContext:
    """
    Dependency returning the caller's OrgContext

    Raises:
        HTTPException: 401 when the request carries no organization
    """
    ctx: Optional[OrgContext] = getattr(request.state, "org_context", None)
    if ctx is None or (not ctx.org_id and not ctx.is_super_admin):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Organization context required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return ctx
