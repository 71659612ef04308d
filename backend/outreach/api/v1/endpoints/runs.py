"""
Runs API
Run creation, row hand-off, start/pause/resume/schedule and on-demand dispatch
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from outreach.api.v1.dependencies import get_lifecycle_controller
from outreach.core.tenant_middleware import get_org_context
from outreach.domain.errors import OutreachError
from outreach.domain.models.org_context import OrgContext
from outreach.domain.services.run_lifecycle import RunLifecycleController

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["runs"])


class RunCreateRequest(BaseModel):
    """Request body for creating a run"""
    campaign_id: str
    name: str = Field(..., min_length=1, max_length=200)
    custom_prompt: Optional[str] = None
    custom_voicemail_message: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    calls_per_minute: Optional[int] = Field(default=None, ge=1, le=600)
    batch_size: Optional[int] = Field(default=None, ge=1, le=100)


class RowInput(BaseModel):
    """One parsed patient row"""
    variables: Dict[str, Any]
    priority: int = 0
    patient_id: Optional[str] = None


class RowIngestRequest(BaseModel):
    """Request body for attaching parsed rows to a run"""
    rows: List[RowInput] = Field(..., min_length=1)


class RunScheduleRequest(BaseModel):
    """Request body for scheduling a run"""
    scheduled_at: datetime


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, OutreachError):
        return HTTPException(status_code=e.status_code, detail=e.message)
    logger.error(f"Unexpected error in runs API: {e}", exc_info=True)
    return HTTPException(status_code=500, detail="Internal server error")


async def _dispatch_in_background(lifecycle: RunLifecycleController, ctx: OrgContext, run_id: str) -> None:
    try:
        result = await lifecycle.run_dispatch_cycle(ctx, run_id)
        logger.info(f"Background cycle for run {run_id}: {result.status}")
    except Exception as e:
        logger.error(f"Background dispatch cycle failed for run {run_id}: {e}", exc_info=True)


@router.post("/", status_code=201)
async def create_run(
    body: RunCreateRequest,
    ctx: OrgContext = Depends(get_org_context),
    lifecycle: RunLifecycleController = Depends(get_lifecycle_controller)
):
    """Create a draft (or scheduled) run for a campaign"""
    try:
        run = await lifecycle.create_run(
            ctx,
            campaign_id=body.campaign_id,
            name=body.name,
            custom_prompt=body.custom_prompt,
            custom_voicemail_message=body.custom_voicemail_message,
            scheduled_at=body.scheduled_at,
            calls_per_minute=body.calls_per_minute,
            batch_size=body.batch_size,
        )
        return {"run": run.model_dump(mode="json")}
    except Exception as e:
        raise _http_error(e)


@router.get("/{run_id}")
async def get_run(
    run_id: str,
    ctx: OrgContext = Depends(get_org_context),
    lifecycle: RunLifecycleController = Depends(get_lifecycle_controller)
):
    """Get run details"""
    try:
        run = await lifecycle.get_run(ctx, run_id)
        return {"run": run.model_dump(mode="json")}
    except Exception as e:
        raise _http_error(e)


@router.post("/{run_id}/rows")
async def ingest_rows(
    run_id: str,
    body: RowIngestRequest,
    ctx: OrgContext = Depends(get_org_context),
    lifecycle: RunLifecycleController = Depends(get_lifecycle_controller)
):
    """Attach already-parsed rows; the run becomes ready"""
    try:
        run = await lifecycle.ingest_rows(ctx, run_id, [row.model_dump() for row in body.rows])
        return {"run": run.model_dump(mode="json")}
    except Exception as e:
        raise _http_error(e)


@router.post("/{run_id}/start")
async def start_run(
    run_id: str,
    background_tasks: BackgroundTasks,
    dispatch: bool = Query(default=True, description="Run a dispatch cycle right after starting"),
    ctx: OrgContext = Depends(get_org_context),
    lifecycle: RunLifecycleController = Depends(get_lifecycle_controller)
):
    """
    Start a run.

    Idempotent: starting a running run returns it unchanged. A first
    dispatch cycle is scheduled in the background unless dispatch=false.
    """
    try:
        run = await lifecycle.start_run(ctx, run_id)
    except Exception as e:
        raise _http_error(e)

    if dispatch:
        background_tasks.add_task(_dispatch_in_background, lifecycle, ctx, run.id)
    return {"message": f"Run {run.id} started", "run": run.model_dump(mode="json")}


@router.post("/{run_id}/pause")
async def pause_run(
    run_id: str,
    ctx: OrgContext = Depends(get_org_context),
    lifecycle: RunLifecycleController = Depends(get_lifecycle_controller)
):
    """Pause a run; in-flight calls are not cancelled"""
    try:
        run = await lifecycle.pause_run(ctx, run_id)
        return {"message": f"Run {run.id} paused", "run": run.model_dump(mode="json")}
    except Exception as e:
        raise _http_error(e)


@router.post("/{run_id}/resume")
async def resume_run(
    run_id: str,
    background_tasks: BackgroundTasks,
    dispatch: bool = Query(default=True),
    ctx: OrgContext = Depends(get_org_context),
    lifecycle: RunLifecycleController = Depends(get_lifecycle_controller)
):
    """Resume a paused run"""
    try:
        run = await lifecycle.resume_run(ctx, run_id)
    except Exception as e:
        raise _http_error(e)

    if dispatch:
        background_tasks.add_task(_dispatch_in_background, lifecycle, ctx, run.id)
    return {"message": f"Run {run.id} resumed", "run": run.model_dump(mode="json")}


@router.post("/{run_id}/schedule")
async def schedule_run(
    run_id: str,
    body: RunScheduleRequest,
    ctx: OrgContext = Depends(get_org_context),
    lifecycle: RunLifecycleController = Depends(get_lifecycle_controller)
):
    """Schedule a run to start at a future time"""
    try:
        run = await lifecycle.schedule_run(ctx, run_id, body.scheduled_at)
        return {"message": f"Run {run.id} scheduled", "run": run.model_dump(mode="json")}
    except Exception as e:
        raise _http_error(e)


@router.post("/{run_id}/dispatch")
async def dispatch_run(
    run_id: str,
    ctx: OrgContext = Depends(get_org_context),
    lifecycle: RunLifecycleController = Depends(get_lifecycle_controller)
):
    """Run one dispatch cycle now and return its summary"""
    try:
        result = await lifecycle.run_dispatch_cycle(ctx, run_id)
        return result.model_dump(mode="json")
    except Exception as e:
        raise _http_error(e)


@router.get("/{run_id}/metrics")
async def get_run_metrics(
    run_id: str,
    ctx: OrgContext = Depends(get_org_context),
    lifecycle: RunLifecycleController = Depends(get_lifecycle_controller)
):
    """Run counters plus counts derived from row status"""
    try:
        return await lifecycle.get_run_metrics(ctx, run_id)
    except Exception as e:
        raise _http_error(e)
