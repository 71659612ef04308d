"""
Organizations API
Office-hours inspection for an organization
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from outreach.api.v1.dependencies import get_repository
from outreach.core.tenant_middleware import get_org_context
from outreach.domain.interfaces.run_repository import RunRepository
from outreach.domain.models.org_context import OrgContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/organizations", tags=["organizations"])


@router.get("/{org_id}/office-hours")
async def get_office_hours_status(
    org_id: str,
    at: Optional[datetime] = Query(default=None, description="Time to evaluate (default: now)"),
    ctx: OrgContext = Depends(get_org_context),
    repository: RunRepository = Depends(get_repository)
):
    """Whether the organization is inside its calling window"""
    if not ctx.can_access(org_id):
        raise HTTPException(status_code=404, detail="Organization not found")

    organization = await repository.get_organization(org_id)
    if organization is None:
        raise HTTPException(status_code=404, detail="Organization not found")

    check = organization.is_within_office_hours(at)
    return {
        "org_id": organization.id,
        "office_hours": organization.office_hours,
        "concurrent_call_limit": organization.effective_call_limit,
        **check.model_dump(),
    }
