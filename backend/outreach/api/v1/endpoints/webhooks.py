"""
Webhooks API Endpoints
Handles incoming webhooks from the voice provider (Retell)

- post-call: call_analyzed results reconciled into call/row/run state
- inbound: synchronous routing decision for inbound calls
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from outreach.api.v1.dependencies import get_inbound_router, get_webhook_reconciler
from outreach.domain.errors import NotFoundError, ValidationError
from outreach.domain.models.org_context import OrgContext
from outreach.domain.services.inbound_router import InboundCallRouter
from outreach.domain.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "error": message})


async def _read_json(request: Request) -> Optional[Dict[str, Any]]:
    try:
        payload = await request.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


async def _handle_post_call(
    org_id: str,
    campaign_id: Optional[str],
    request: Request,
    reconciler: WebhookReconciler
):
    payload = await _read_json(request)
    if payload is None:
        return _error(400, "Invalid JSON body")

    call_id = (payload.get("call") or {}).get("call_id")
    logger.info(f"Post-call webhook: org={org_id}, campaign={campaign_id}, event={payload.get('event')}, call_id={call_id}")

    try:
        result = await reconciler.handle_post_call(OrgContext.system(org_id), payload, campaign_id)
        return JSONResponse(status_code=200, content=result)
    except ValidationError as e:
        return _error(400, e.message)
    except NotFoundError as e:
        logger.warning(f"Post-call webhook for unknown call: {e.message}")
        return _error(404, "Call not found")
    except Exception as e:
        logger.error(f"Error handling post-call webhook for call {call_id}: {e}", exc_info=True)
        return _error(500, str(e) or "Internal server error")


@router.post("/{org_id}/post-call/{campaign_id}")
async def post_call_webhook(
    org_id: str,
    campaign_id: str,
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler)
):
    """
    Handle the provider's post-call (call_analyzed) webhook for a campaign.

    Non call_analyzed / non phone_call events are acknowledged with
    {status: "ignored"}. Redeliveries are safe.
    """
    return await _handle_post_call(org_id, campaign_id, request, reconciler)


@router.post("/{org_id}/post-call")
async def post_call_webhook_without_campaign(
    org_id: str,
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler)
):
    """Post-call webhook for calls not tied to a campaign URL."""
    return await _handle_post_call(org_id, None, request, reconciler)


@router.post("/{org_id}/inbound")
async def inbound_call_webhook(
    org_id: str,
    request: Request,
    inbound_router: InboundCallRouter = Depends(get_inbound_router)
):
    """
    Route an inbound call.

    Always answers 200 with {call_inbound: {...}}; missing fields are
    defaulted and reported in dynamic_variables.
    """
    payload = await _read_json(request) or {}
    return await inbound_router.route(org_id, payload)
