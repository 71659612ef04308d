"""
Infrastructure Factory
Builds the storage, event and voice-provider backends selected in Settings
"""
import logging
from typing import Optional

from supabase import create_client

from outreach.core.config import ConfigManager, Settings
from outreach.domain.interfaces.event_publisher import EventPublisher
from outreach.domain.interfaces.run_repository import RunRepository
from outreach.domain.interfaces.voice_provider import VoiceProvider

logger = logging.getLogger(__name__)


class BackendFactory:
    """Creates infrastructure instances by backend name"""

    STORAGE_BACKENDS = ("supabase", "memory")
    EVENT_BACKENDS = ("redis", "memory")

    @classmethod
    def create_repository(cls, settings: Settings) -> RunRepository:
        """
        Create the run repository.

        Raises:
            RuntimeError: Supabase selected without URL/SERVICE_KEY
            ValueError: Unknown backend name
        """
        backend = settings.storage_backend
        if backend == "memory":
            from outreach.infrastructure.storage.memory_repository import InMemoryRunRepository
            return InMemoryRunRepository()

        if backend == "supabase":
            if not settings.supabase_url or not settings.supabase_service_key:
                raise RuntimeError(
                    "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set "
                    "(or set STORAGE_BACKEND=memory)"
                )
            from outreach.infrastructure.storage.supabase_repository import SupabaseRunRepository
            return SupabaseRunRepository(create_client(settings.supabase_url, settings.supabase_service_key))

        raise ValueError(f"Unknown storage backend: {backend}. Available: {', '.join(cls.STORAGE_BACKENDS)}")

    @classmethod
    def create_event_publisher(cls, settings: Settings) -> EventPublisher:
        backend = settings.event_backend
        if backend == "memory":
            from outreach.infrastructure.events.memory_publisher import InMemoryEventPublisher
            return InMemoryEventPublisher()

        if backend == "redis":
            from outreach.infrastructure.events.redis_publisher import RedisEventPublisher
            return RedisEventPublisher(settings.redis_url)

        raise ValueError(f"Unknown event backend: {backend}. Available: {', '.join(cls.EVENT_BACKENDS)}")

    @classmethod
    def create_voice_provider(cls, settings: Settings, config: Optional[ConfigManager] = None) -> VoiceProvider:
        from outreach.infrastructure.telephony.retell_client import RetellClient

        config = config or ConfigManager(settings.environment)
        return RetellClient(
            api_key=settings.retell_api_key,
            base_url=settings.retell_base_url or config.get("retell.base_url", "https://api.retellai.com"),
            timeout=float(config.get("retell.timeout_seconds", 15)),
        )
