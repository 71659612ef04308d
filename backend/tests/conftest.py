"""
Shared test fixtures
In-memory backends, a scripted voice provider and seed data for run tests
"""
import os
import itertools
from typing import Any, Dict, List, Optional

import pytest

# Keep the app on in-memory backends for every test module
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("EVENT_BACKEND", "memory")
os.environ.setdefault("ENVIRONMENT", "test")

from outreach.core.config import DispatchSettings
from outreach.domain.errors import UpstreamProviderError
from outreach.domain.interfaces.voice_provider import VoiceProvider
from outreach.domain.models.org_context import OrgContext
from outreach.domain.models.organization import Campaign, Organization
from outreach.domain.services.run_lifecycle import RunLifecycleController
from outreach.domain.services.webhook_reconciler import WebhookReconciler
from outreach.infrastructure.events.memory_publisher import InMemoryEventPublisher
from outreach.infrastructure.storage.memory_repository import InMemoryRunRepository


ORG_ID = "org-1"
CAMPAIGN_ID = "campaign-1"


class ScriptedVoiceProvider(VoiceProvider):
    """
    Voice provider double.

    Returns call ids call_1, call_2, ... and raises for numbers listed in
    fail_numbers. Every request is recorded in calls.
    """

    def __init__(self, fail_numbers: Optional[List[str]] = None, missing_id_numbers: Optional[List[str]] = None):
        self.fail_numbers = set(fail_numbers or [])
        self.missing_id_numbers = set(missing_id_numbers or [])
        self.calls: List[Dict[str, Any]] = []
        self._ids = itertools.count(1)

    @property
    def name(self) -> str:
        return "scripted"

    async def create_phone_call(self, to_number, from_number, agent_id, dynamic_variables, metadata):
        self.calls.append({
            "to_number": to_number,
            "from_number": from_number,
            "agent_id": agent_id,
            "dynamic_variables": dynamic_variables,
            "metadata": metadata,
        })
        if to_number in self.fail_numbers:
            raise UpstreamProviderError(f"Provider rejected {to_number}")
        if to_number in self.missing_id_numbers:
            return {"call_status": "registered"}
        return {"call_id": f"call_{next(self._ids)}"}

    async def close(self) -> None:
        pass


@pytest.fixture
def settings():
    return DispatchSettings(inter_call_delay_seconds=0, default_batch_size=10)


@pytest.fixture
def organization():
    return Organization(
        id=ORG_ID,
        name="Sunrise Clinic",
        phone="+15550000000",
        timezone="America/New_York",
        office_hours=None,
        concurrent_call_limit=2,
    )


@pytest.fixture
def campaign():
    return Campaign(
        id=CAMPAIGN_ID,
        org_id=ORG_ID,
        name="Annual checkup",
        agent_id="agent-outbound",
        base_prompt="Remind the patient about their annual checkup.",
        voicemail_message="Please call us back.",
    )


@pytest.fixture
def repository(organization, campaign):
    repo = InMemoryRunRepository()
    repo.add_organization(organization)
    repo.add_campaign(campaign)
    return repo


@pytest.fixture
def events():
    return InMemoryEventPublisher()


@pytest.fixture
def provider():
    return ScriptedVoiceProvider()


@pytest.fixture
def lifecycle(repository, provider, events, settings):
    return RunLifecycleController(repository, provider, events, settings)


@pytest.fixture
def reconciler(repository, events, lifecycle):
    return WebhookReconciler(repository, events, lifecycle)


@pytest.fixture
def ctx():
    return OrgContext(org_id=ORG_ID, user_id="user-1")


def patient_rows(count: int, start: int = 1, **extra) -> List[Dict[str, Any]]:
    """Parsed rows with distinct phone numbers."""
    return [
        {"variables": {"firstName": f"Patient {i}", "phone": f"+1555000{i:04d}", **extra}}
        for i in range(start, start + count)
    ]


def call_analyzed_payload(call_id: str, **call_fields) -> Dict[str, Any]:
    """Minimal call_analyzed webhook body."""
    call = {
        "call_id": call_id,
        "call_type": "phone_call",
        "call_status": "ended",
        "transcript": "Agent: Hello. Patient: Hi.",
        "recording_url": f"https://recordings.example.com/{call_id}.wav",
        "start_timestamp": 1700000000000,
        "end_timestamp": 1700000060000,
        "disconnection_reason": "agent_hangup",
        "call_analysis": {"custom_analysis_data": {}},
    }
    call.update(call_fields)
    return {"event": "call_analyzed", "call": call}
