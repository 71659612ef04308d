"""
API Dependencies
Shared backends and service wiring for the run and webhook endpoints
"""
import logging
from typing import Optional

from fastapi import Depends
from dotenv import load_dotenv

from outreach.core.config import DispatchSettings, get_dispatch_settings, get_settings
from outreach.domain.interfaces.event_publisher import EventPublisher
from outreach.domain.interfaces.run_repository import RunRepository
from outreach.domain.interfaces.voice_provider import VoiceProvider
from outreach.domain.services.inbound_router import InboundCallRouter
from outreach.domain.services.run_lifecycle import RunLifecycleController
from outreach.domain.services.webhook_reconciler import WebhookReconciler
from outreach.infrastructure.factory import BackendFactory

load_dotenv()

logger = logging.getLogger(__name__)

_repository: Optional[RunRepository] = None
_event_publisher: Optional[EventPublisher] = None
_voice_provider: Optional[VoiceProvider] = None


def get_repository() -> RunRepository:
    """
    Shared run repository.

    Raises:
        RuntimeError: If the Supabase backend is selected but not configured
    """
    global _repository
    if _repository is None:
        _repository = BackendFactory.create_repository(get_settings())
    return _repository


def get_event_publisher() -> EventPublisher:
    global _event_publisher
    if _event_publisher is None:
        _event_publisher = BackendFactory.create_event_publisher(get_settings())
    return _event_publisher


def get_voice_provider() -> VoiceProvider:
    global _voice_provider
    if _voice_provider is None:
        _voice_provider = BackendFactory.create_voice_provider(get_settings())
    return _voice_provider


def get_lifecycle_controller(
    repository: RunRepository = Depends(get_repository),
    provider: VoiceProvider = Depends(get_voice_provider),
    events: EventPublisher = Depends(get_event_publisher),
    settings: DispatchSettings = Depends(get_dispatch_settings)
) -> RunLifecycleController:
    return RunLifecycleController(repository, provider, events, settings)


def get_webhook_reconciler(
    repository: RunRepository = Depends(get_repository),
    events: EventPublisher = Depends(get_event_publisher),
    lifecycle: RunLifecycleController = Depends(get_lifecycle_controller)
) -> WebhookReconciler:
    return WebhookReconciler(repository, events, lifecycle)


def get_inbound_router(
    repository: RunRepository = Depends(get_repository),
    events: EventPublisher = Depends(get_event_publisher),
    settings: DispatchSettings = Depends(get_dispatch_settings)
) -> InboundCallRouter:
    return InboundCallRouter(repository, events, settings)


async def close_shared_clients() -> None:
    """Close provider/event connections on shutdown."""
    global _event_publisher, _voice_provider
    if _voice_provider is not None:
        await _voice_provider.close()
        _voice_provider = None
    if _event_publisher is not None:
        await _event_publisher.close()
        _event_publisher = None
