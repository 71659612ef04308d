"""
Webhook Reconciler
Applies voice-provider post-call results to calls, rows and run counters
"""
import logging
from typing import Any, Dict, Optional, Tuple

from outreach.domain.errors import NotFoundError, ValidationError
from outreach.domain.interfaces.event_publisher import EventPublisher, org_channel, run_channel
from outreach.domain.interfaces.run_repository import RunRepository
from outreach.domain.models.call import Call, CallStatus, ResolutionStatus
from outreach.domain.models.org_context import OrgContext
from outreach.domain.models.organization import CallDirection
from outreach.domain.models.row import RowStatus
from outreach.domain.services.call_analysis import (
    build_analysis,
    derive_resolution_status,
    extract_call_insights,
    is_conversion,
    is_patient_reached,
    is_truthy_flag,
    map_call_status,
)
from outreach.domain.services.run_lifecycle import RunLifecycleController
from outreach.utils.time_utils import isoformat, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

CALL_ANALYZED_EVENT = "call_analyzed"
PHONE_CALL_TYPE = "phone_call"


class WebhookReconciler:
    """
    Handles the provider's "call analyzed" webhook.

    Writes go call first, then row, then counters. A delivery for an
    already-terminal call refreshes the call's transcript/recording/analysis
    and retries the row swap, so a provider retry after a partial failure
    still moves the row out of 'calling'. The swap only succeeds once, which
    keeps real redeliveries from touching counters.

    Every attempt carries a resolution status ("open" or "resolved") on the
    call and row analysis. An inbound callback resolves the outbound row it
    was routed against.
    """

    def __init__(
        self,
        repository: RunRepository,
        events: EventPublisher,
        lifecycle: RunLifecycleController
    ):
        self._repository = repository
        self._events = events
        self._lifecycle = lifecycle
        self._metrics = lifecycle.metrics

    @staticmethod
    def is_call_analyzed_event(payload: Dict[str, Any]) -> bool:
        call_data = payload.get("call") or {}
        call_type = call_data.get("call_type") or PHONE_CALL_TYPE
        return payload.get("event") == CALL_ANALYZED_EVENT and call_type == PHONE_CALL_TYPE

    async def _find_call(self, call_data: Dict[str, Any]) -> Optional[Call]:
        call = await self._repository.get_call_by_provider_id(call_data["call_id"])
        if call is not None:
            return call

        # Inbound calls are created before the provider assigns an id
        internal_id = (call_data.get("metadata") or {}).get("callId")
        if internal_id:
            return await self._repository.get_call(internal_id)
        return None

    async def _conversion_field(self, call: Call, campaign_id: Optional[str]) -> Optional[str]:
        campaign_id = call.campaign_id or campaign_id
        if not campaign_id:
            return None
        campaign = await self._repository.get_campaign(campaign_id)
        if campaign is None:
            return None
        return campaign.config.get("conversion_field")

    def _call_fields(self, call_data: Dict[str, Any], analysis: Dict[str, Any]) -> Dict[str, Any]:
        start_time = parse_timestamp(call_data.get("start_timestamp"))
        end_time = parse_timestamp(call_data.get("end_timestamp"))

        duration = None
        if call_data.get("duration_ms") is not None:
            duration = float(call_data["duration_ms"]) / 1000
        elif start_time and end_time:
            duration = (end_time - start_time).total_seconds()

        fields: Dict[str, Any] = {
            "transcript": call_data.get("transcript"),
            "recording_url": call_data.get("recording_url"),
            "analysis": analysis,
            "start_time": start_time,
            "end_time": end_time,
            "duration": duration,
            "updated_at": utc_now(),
        }
        return {key: value for key, value in fields.items() if value is not None}

    async def handle_post_call(
        self,
        ctx: OrgContext,
        payload: Dict[str, Any],
        campaign_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Reconcile one post-call webhook.

        Args:
            ctx: Organization the webhook was addressed to
            payload: Raw webhook body {event, call: {...}}
            campaign_id: Campaign from the webhook URL, if any

        Returns:
            Response body for the provider

        Raises:
            ValidationError: Missing call id
            NotFoundError: Unknown call for this organization
        """
        if not self.is_call_analyzed_event(payload):
            return {"status": "ignored", "message": "Not a call_analyzed event"}

        call_data = payload.get("call") or {}
        provider_call_id = call_data.get("call_id")
        if not provider_call_id:
            raise ValidationError("Call ID not provided")

        call = await self._find_call(call_data)
        if call is None or not ctx.can_access(call.org_id):
            raise NotFoundError(f"Call not found: {provider_call_id}")

        status = map_call_status(call_data)
        analysis = build_analysis(call_data)
        insights = extract_call_insights(analysis, status.value)
        inbound = call.direction == CallDirection.INBOUND.value
        # Patient-initiated contact resolves the attempt regardless of outcome
        resolution = ResolutionStatus.RESOLVED.value if inbound else derive_resolution_status(analysis)
        call_fields = self._call_fields(
            call_data, {**analysis, "insights": insights, "resolution_status": resolution}
        )

        metadata = call.metadata or {}
        run_id = call.run_id or metadata.get("runId")
        row_id = call.row_id or metadata.get("rowId")
        outbound_row = bool(run_id and row_id) and not inbound

        response = {
            "status": "success",
            "callId": call.id,
            "providerCallId": provider_call_id,
            "patientId": call.patient_id,
            "direction": call.direction,
            "callStatus": status.value,
            "resolutionStatus": resolution,
            "insights": insights,
        }

        if call.is_terminal:
            return await self._handle_redelivery(
                call, call_data, call_fields, run_id, row_id, outbound_row, analysis, resolution,
                campaign_id, response
            )

        # 1. Call
        call_fields["status"] = status.value
        if status == CallStatus.FAILED:
            call_fields["error"] = call_data.get("disconnection_reason") or "Call failed"
        if call_data.get("call_id") and not call.provider_call_id:
            call_fields["provider_call_id"] = provider_call_id
        await self._repository.update_call(call.id, call_fields)

        run_completed = False
        if outbound_row:
            # 2. Row, 3. counters, 4. completion
            reconciled, run_completed = await self._reconcile_row(
                run_id, row_id, call, call_data, status, analysis, resolution, campaign_id
            )
            if reconciled:
                await self._emit_call_completed(run_id, row_id, call, status, insights)
        elif inbound and row_id:
            await self._resolve_callback_row(row_id, call, status, analysis)

        await self._events.trigger(org_channel(call.org_id), "call-updated", {
            "callId": call.id,
            "runId": run_id,
            "status": status.value,
            "direction": call.direction,
        })

        logger.info(f"Call {call.id} reconciled as {status.value} (run_completed={run_completed})")
        response.update(message=f"Call processed as {status.value}", runCompleted=run_completed)
        return response

    async def _handle_redelivery(
        self,
        call: Call,
        call_data: Dict[str, Any],
        call_fields: Dict[str, Any],
        run_id: Optional[str],
        row_id: Optional[str],
        outbound_row: bool,
        analysis: Dict[str, Any],
        resolution: str,
        campaign_id: Optional[str],
        response: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Webhook for a call that is already terminal.

        The call data is refreshed. The row is still offered the
        calling -> completed swap with the stored call status, so a delivery
        that failed after the call write is finished by the retry. When the
        row has already left 'calling' this is a no-op for row and counters.
        """
        await self._repository.update_call(call.id, call_fields)
        stored_status = CallStatus(call.status)

        reconciled = False
        run_completed = False
        if outbound_row:
            reconciled, run_completed = await self._reconcile_row(
                run_id, row_id, call, call_data, stored_status, analysis, resolution, campaign_id
            )
            if reconciled:
                await self._emit_call_completed(run_id, row_id, call, stored_status, response["insights"])

        if reconciled:
            logger.warning(f"Retried webhook finished reconciling call {call.id} (row {row_id})")
            response.update(callStatus=call.status, message=f"Call processed as {call.status}",
                            runCompleted=run_completed)
            return response

        logger.info(f"Redelivered webhook for terminal call {call.id} ({call.status}), counters untouched")
        response.update(duplicate=True, callStatus=call.status, message="Call already processed",
                        runCompleted=run_completed)
        return response

    async def _emit_call_completed(
        self,
        run_id: str,
        row_id: str,
        call: Call,
        status: CallStatus,
        insights: Dict[str, Any]
    ) -> None:
        await self._events.trigger(run_channel(run_id), "call-completed", {
            "runId": run_id,
            "rowId": row_id,
            "callId": call.id,
            "status": status.value,
            "insights": insights,
        })

    async def _reconcile_row(
        self,
        run_id: str,
        row_id: str,
        call: Call,
        call_data: Dict[str, Any],
        status: CallStatus,
        analysis: Dict[str, Any],
        resolution: str,
        campaign_id: Optional[str]
    ) -> Tuple[bool, bool]:
        """
        Move the row out of 'calling' and apply the counters.

        Returns:
            (row reconciled by this delivery, run completed by this delivery)
        """
        now = utc_now()
        row_analysis = {**analysis, "call_status": status.value, "resolution_status": resolution}
        if resolution == ResolutionStatus.RESOLVED.value:
            row_analysis["resolved_at"] = isoformat(now)

        row_fields: Dict[str, Any] = {
            "status": RowStatus.COMPLETED.value,
            "analysis": row_analysis,
            "post_call_data": {
                "call_id": call.id,
                "provider_call_id": call_data.get("call_id"),
                "call_status": status.value,
                "disconnection_reason": call_data.get("disconnection_reason"),
                "recording_url": call_data.get("recording_url"),
                "duration_ms": call_data.get("duration_ms"),
            },
            "updated_at": now,
        }
        if status == CallStatus.FAILED:
            row_fields["error"] = call_data.get("disconnection_reason") or "Call failed"

        row = await self._repository.transition_row(row_id, RowStatus.CALLING.value, row_fields)
        if row is None:
            logger.info(f"Row {row_id} is not calling, leaving row and counters unchanged")
            return False, await self._lifecycle.complete_run_if_finished(run_id)

        increments = {"calls.completed": 1, "calls.calling": -1}
        if status == CallStatus.VOICEMAIL:
            increments["calls.voicemail"] = 1
        elif status == CallStatus.FAILED:
            increments["calls.failed"] = 1
        elif is_patient_reached(analysis):
            increments["calls.connected"] = 1
            if is_conversion(analysis, await self._conversion_field(call, campaign_id)):
                increments["calls.converted"] = 1

        await self._metrics.apply(run_id, increments)
        return True, await self._lifecycle.complete_run_if_finished(run_id)

    async def _resolve_callback_row(
        self,
        row_id: str,
        call: Call,
        status: CallStatus,
        analysis: Dict[str, Any]
    ) -> None:
        """Mark the outbound attempt a patient called back about as resolved."""
        row = await self._repository.get_row(row_id)
        if row is None or row.org_id != call.org_id:
            logger.warning(f"Callback {call.id} links to missing row {row_id}")
            return

        previous = dict(row.analysis or {})
        now = isoformat()
        previous.update({
            "resolution_status": ResolutionStatus.RESOLVED.value,
            "resolved_at": now,
            "resolved_by_callback": True,
            "original_resolution_status": (row.analysis or {}).get("resolution_status", ResolutionStatus.OPEN.value),
            "callback_count": int(previous.get("callback_count") or 0) + 1,
            "last_callback_call_id": call.id,
            "last_callback_status": status.value,
            "last_callback_at": now,
            "appointment_confirmed": is_truthy_flag(analysis.get("appointment_confirmed")),
            "issue_resolved": is_truthy_flag(analysis.get("issue_resolved")),
            "medication_confirmed": is_truthy_flag(analysis.get("medication_confirmed")),
        })
        await self._repository.update_row(row.id, {"analysis": previous, "updated_at": utc_now()})
        logger.info(f"Row {row.id} resolved by inbound callback {call.id}")
