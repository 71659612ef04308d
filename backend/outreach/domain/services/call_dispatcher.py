"""
Call Dispatcher
Places one outbound call for a row through the voice provider
"""
import logging
import uuid
from typing import Any, Dict

from outreach.domain.errors import UpstreamProviderError, ValidationError
from outreach.domain.interfaces.event_publisher import EventPublisher, org_channel, run_channel
from outreach.domain.interfaces.run_repository import RunRepository
from outreach.domain.interfaces.voice_provider import VoiceProvider
from outreach.domain.models.call import Call, CallStatus
from outreach.domain.models.dispatch import DispatchOutcome, RowDispatchResult
from outreach.domain.models.organization import CallDirection, Campaign, Organization
from outreach.domain.models.row import Row, RowStatus
from outreach.domain.models.run import Run
from outreach.domain.services.call_analysis import stringify_values
from outreach.domain.services.run_metrics import RunMetricsAggregator
from outreach.utils.time_utils import isoformat, utc_now

logger = logging.getLogger(__name__)

MISSING_PHONE_ERROR = "No phone number found in row variables"
MISSING_CALL_ID_ERROR = "No call ID returned from voice provider"


class CallDispatcher:
    """
    Dispatches a single row.

    Flow:
    1. Acquire the row (pending -> calling, conditional update)
    2. Resolve destination number and build dynamic variables
    3. Create the call with the voice provider
    4. Persist the call record and bump calls.calling

    Failures are recorded on the row and returned, never raised.
    """

    def __init__(
        self,
        repository: RunRepository,
        provider: VoiceProvider,
        metrics: RunMetricsAggregator,
        events: EventPublisher
    ):
        self._repository = repository
        self._provider = provider
        self._metrics = metrics
        self._events = events

    def build_dynamic_variables(
        self,
        row: Row,
        run: Run,
        organization: Organization,
        campaign: Campaign
    ) -> Dict[str, str]:
        """Row variables merged with run/campaign prompt overrides, as strings."""
        variables: Dict[str, Any] = dict(row.variables)
        variables.update({
            "custom_prompt": run.custom_prompt or campaign.base_prompt or "",
            "voicemail_message": run.custom_voicemail_message or campaign.voicemail_message or "",
            "organization_name": organization.name or "",
            "campaign_name": campaign.name or "",
            "retry_count": row.retry_count,
        })
        return stringify_values(variables)

    def build_metadata(self, row: Row, run: Run, organization: Organization) -> Dict[str, Any]:
        """Correlation data echoed back by the provider's webhooks."""
        return {
            "runId": run.id,
            "rowId": row.id,
            "orgId": run.org_id,
            "campaignId": run.campaign_id,
            "patientId": row.patient_id,
            "timezone": organization.timezone,
        }

    async def dispatch(
        self,
        row: Row,
        run: Run,
        organization: Organization,
        campaign: Campaign
    ) -> RowDispatchResult:
        """
        Dispatch one row.

        Args:
            row: Pending row selected for this cycle
            run: Owning run
            organization: Organization supplying the caller ID
            campaign: Campaign supplying the voice agent

        Returns:
            RowDispatchResult (dispatched, failed, or skipped if another cycle took the row)
        """
        acquired = await self._repository.acquire_row(row.id)
        if acquired is None:
            logger.info(f"Row {row.id} already taken by another cycle, skipping")
            return RowDispatchResult(row_id=row.id, outcome=DispatchOutcome.SKIPPED)

        dynamic_variables: Dict[str, str] = {}
        metadata = self.build_metadata(acquired, run, organization)

        try:
            to_number = acquired.phone
            if not to_number:
                raise ValidationError(MISSING_PHONE_ERROR)

            dynamic_variables = self.build_dynamic_variables(acquired, run, organization, campaign)

            response = await self._provider.create_phone_call(
                to_number=to_number,
                from_number=organization.phone,
                agent_id=campaign.agent_id,
                dynamic_variables=dynamic_variables,
                metadata=metadata
            )

            provider_call_id = (response or {}).get("call_id")
            if not provider_call_id:
                raise UpstreamProviderError(MISSING_CALL_ID_ERROR)

        except Exception as e:
            error = getattr(e, "message", None) or str(e) or e.__class__.__name__
            logger.warning(f"Dispatch failed for row {acquired.id} (run {run.id}): {error}")
            await self._record_failure(acquired, run, error)
            return RowDispatchResult(row_id=acquired.id, outcome=DispatchOutcome.FAILED, error=error)

        call = await self._record_success(
            acquired, run, organization, campaign, provider_call_id, to_number, dynamic_variables, metadata
        )

        logger.info(f"Call dispatched: {provider_call_id} for row {acquired.id} (run {run.id})")
        return RowDispatchResult(
            row_id=acquired.id,
            outcome=DispatchOutcome.DISPATCHED,
            provider_call_id=provider_call_id,
            call_id=call.id
        )

    async def _record_success(
        self,
        row: Row,
        run: Run,
        organization: Organization,
        campaign: Campaign,
        provider_call_id: str,
        to_number: str,
        dynamic_variables: Dict[str, str],
        metadata: Dict[str, Any]
    ) -> Call:
        now = utc_now()

        await self._repository.update_row(row.id, {
            "provider_call_id": provider_call_id,
            "processed_variables": dynamic_variables,
            "error": None,
            "updated_at": now,
        })

        call = await self._repository.insert_call(Call(
            id=str(uuid.uuid4()),
            org_id=run.org_id,
            run_id=run.id,
            row_id=row.id,
            campaign_id=run.campaign_id,
            patient_id=row.patient_id,
            agent_id=campaign.agent_id,
            direction=CallDirection.OUTBOUND,
            status=CallStatus.PENDING,
            provider_call_id=provider_call_id,
            to_number=to_number,
            from_number=organization.phone,
            metadata={**metadata, "variables": dynamic_variables, "attempt": row.call_attempts},
            created_at=now,
            updated_at=now,
        ))

        await self._metrics.apply(
            run.id,
            {"calls.calling": 1, "calls.pending": -1, "calls.total": 1},
            run_fields={"lastCallTime": isoformat(now)}
        )

        event = {
            "runId": run.id,
            "rowId": row.id,
            "callId": call.id,
            "providerCallId": provider_call_id,
            "status": RowStatus.CALLING.value,
        }
        await self._events.trigger(run_channel(run.id), "call-started", event)
        await self._events.trigger(org_channel(run.org_id), "call-started", event)
        return call

    async def _record_failure(self, row: Row, run: Run, error: str) -> None:
        await self._repository.update_row(row.id, {
            "status": RowStatus.FAILED.value,
            "error": error,
            "updated_at": utc_now(),
        })
        await self._metrics.apply(run.id, {"calls.failed": 1, "calls.pending": -1})
