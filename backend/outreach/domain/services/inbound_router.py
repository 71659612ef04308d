"""
Inbound Call Router
Chooses the voice agent and context for an inbound call

The provider waits on this decision synchronously, so every path returns a
routing envelope; problems are reported inside dynamic_variables.
"""
import logging
import uuid
from typing import Any, Dict, Optional

from outreach.core.config import DispatchSettings
from outreach.domain.interfaces.event_publisher import EventPublisher, org_channel
from outreach.domain.interfaces.run_repository import RunRepository
from outreach.domain.models.call import Call, CallStatus
from outreach.domain.models.organization import CallDirection
from outreach.domain.services.call_analysis import stringify_values
from outreach.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


def routing_envelope(
    agent_id: str,
    dynamic_variables: Dict[str, Any],
    metadata: Dict[str, Any]
) -> Dict[str, Any]:
    """Provider response body; all variables and metadata are strings."""
    return {
        "call_inbound": {
            "override_agent_id": agent_id,
            "dynamic_variables": stringify_values(dynamic_variables),
            "metadata": stringify_values(metadata),
        }
    }


class InboundCallRouter:
    """Routes inbound calls to an organization's inbound agent."""

    def __init__(
        self,
        repository: RunRepository,
        events: EventPublisher,
        settings: Optional[DispatchSettings] = None
    ):
        self._repository = repository
        self._events = events
        self._settings = settings or DispatchSettings()

    def _error_envelope(self, org_id: str, agent_id: Optional[str], message: str) -> Dict[str, Any]:
        return routing_envelope(
            agent_id or self._settings.default_inbound_agent_id,
            {"error_occurred": True, "error_message": message},
            {"orgId": org_id},
        )

    async def route(self, org_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Build the routing decision for an inbound call.

        Args:
            org_id: Organization from the webhook URL
            payload: {from_number, to_number?, agent_id?} (optionally nested under call_inbound)

        Returns:
            {"call_inbound": {override_agent_id, dynamic_variables, metadata}}
        """
        data = payload.get("call_inbound") or payload
        from_number = data.get("from_number")
        requested_agent = data.get("agent_id")

        if not from_number:
            logger.warning(f"Inbound call for org {org_id} without caller number")
            return self._error_envelope(org_id, requested_agent, "Missing caller phone number")

        try:
            organization = await self._repository.get_organization(org_id)
            if organization is None:
                logger.warning(f"Inbound call for unknown org {org_id}")
                return self._error_envelope(org_id, requested_agent, "Organization not found")

            campaign = await self._repository.find_inbound_campaign(org_id)
            agent_id = (campaign.agent_id if campaign else None) or requested_agent
            if not agent_id:
                agent_id = self._settings.default_inbound_agent_id
                logger.warning(f"No inbound agent for org {org_id}, using {agent_id}")

            row = await self._repository.find_latest_row_by_phone(org_id, from_number)
            patient_id = row.patient_id if row else None

            call = await self._repository.insert_call(Call(
                id=str(uuid.uuid4()),
                org_id=org_id,
                campaign_id=campaign.id if campaign else None,
                patient_id=patient_id,
                agent_id=agent_id,
                direction=CallDirection.INBOUND,
                status=CallStatus.IN_PROGRESS,
                from_number=from_number,
                to_number=data.get("to_number"),
                metadata={"rowId": row.id if row else None},
                start_time=utc_now(),
                created_at=utc_now(),
                updated_at=utc_now(),
            ))

            dynamic_variables: Dict[str, Any] = dict(row.variables) if row else {}
            dynamic_variables.update({
                "organization_name": organization.name or "",
                "caller_phone": from_number,
                "patient_known": row is not None,
                "error_occurred": False,
            })
            metadata = {
                "callId": call.id,
                "orgId": org_id,
                "campaignId": campaign.id if campaign else None,
                "patientId": patient_id,
            }

            await self._events.trigger(org_channel(org_id), "inbound-call", {
                "callId": call.id,
                "fromNumber": from_number,
                "patientId": patient_id,
                "agentId": agent_id,
            })

            logger.info(f"Inbound call {call.id} for org {org_id} routed to agent {agent_id}")
            return routing_envelope(agent_id, dynamic_variables, metadata)

        except Exception as e:
            logger.error(f"Inbound routing failed for org {org_id}: {e}", exc_info=True)
            return self._error_envelope(org_id, requested_agent, str(e))
