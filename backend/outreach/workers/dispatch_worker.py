"""
Dispatch Worker
Background worker driving dispatch cycles for running runs

Run as separate process:
    python -m outreach.workers.dispatch_worker
"""
import asyncio
import logging
import signal
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from outreach.core.config import DispatchSettings, Settings, get_dispatch_settings, get_settings
from outreach.domain.errors import OutreachError
from outreach.domain.interfaces.event_publisher import EventPublisher
from outreach.domain.interfaces.run_repository import RunRepository
from outreach.domain.interfaces.voice_provider import VoiceProvider
from outreach.domain.models.dispatch import CycleStatus
from outreach.domain.models.org_context import OrgContext
from outreach.domain.models.run import RunStatus
from outreach.domain.services.run_lifecycle import RunLifecycleController
from outreach.infrastructure.factory import BackendFactory
from outreach.utils.time_utils import utc_now


logger = logging.getLogger(__name__)

# Configure logging for worker
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


class DispatchWorker:
    """
    Background worker for run dispatch.

    Responsibilities:
    - Start scheduled runs once their start time has passed
    - Run one dispatch cycle per running run on every poll
    - Periodically fail rows stuck in 'calling' past the callback timeout

    Architecture:
    - Runs as separate process from FastAPI
    - Connects to the same storage and event backends
    - Webhooks arriving at the API complete calls and free slots
    """

    MAX_CONSECUTIVE_ERRORS = 10

    def __init__(
        self,
        settings: Optional[Settings] = None,
        dispatch_settings: Optional[DispatchSettings] = None,
        repository: Optional[RunRepository] = None,
        events: Optional[EventPublisher] = None,
        provider: Optional[VoiceProvider] = None
    ):
        self._settings = settings or get_settings()
        self._dispatch_settings = dispatch_settings or get_dispatch_settings()
        self._repository = repository
        self._events = events
        self._provider = provider
        self.lifecycle: Optional[RunLifecycleController] = None

        self.running = False

        # Stats
        self._cycles = 0
        self._cycle_errors = 0
        self._rows_swept = 0
        self._last_sweep: Optional[datetime] = None

    async def initialize(self) -> None:
        """Create backends (unless injected) and the lifecycle controller."""
        logger.info("Initializing Dispatch Worker...")

        if self._repository is None:
            self._repository = BackendFactory.create_repository(self._settings)
        if self._events is None:
            self._events = BackendFactory.create_event_publisher(self._settings)
        if self._provider is None:
            self._provider = BackendFactory.create_voice_provider(self._settings)

        self.lifecycle = RunLifecycleController(
            self._repository, self._provider, self._events, self._dispatch_settings
        )

        logger.info("Dispatch Worker initialized successfully")

    async def tick(self, now: Optional[datetime] = None) -> int:
        """
        One worker pass.

        1. Start due scheduled runs
        2. Dispatch cycle for every running run
        3. Stuck-row sweep (every sweep_interval_seconds)

        Returns:
            Number of calls dispatched in this pass
        """
        now = now or utc_now()
        await self.lifecycle.start_due_scheduled_runs(now)

        dispatched = 0
        for run in await self._repository.list_runs(RunStatus.RUNNING.value):
            try:
                result = await self.lifecycle.run_dispatch_cycle(OrgContext.system(run.org_id), run.id)
            except OutreachError as e:
                # One bad run must not starve the others
                self._cycle_errors += 1
                logger.error(f"Dispatch cycle failed for run {run.id}: {e.message}")
                continue
            except Exception as e:
                self._cycle_errors += 1
                logger.error(f"Unexpected error in dispatch cycle for run {run.id}: {e}", exc_info=True)
                continue

            self._cycles += 1
            dispatched += result.dispatched
            if result.status == CycleStatus.ERROR:
                self._cycle_errors += 1

        if (
            self._last_sweep is None
            or (now - self._last_sweep).total_seconds() >= self._dispatch_settings.sweep_interval_seconds
        ):
            swept = await self.lifecycle.sweep_stuck_rows(now)
            self._rows_swept += swept
            self._last_sweep = now
            if swept > 0:
                logger.warning(f"Swept {swept} stuck rows")

        return dispatched

    async def run(self) -> None:
        """Main worker loop."""
        await self.initialize()

        self.running = True
        consecutive_errors = 0

        logger.info("Dispatch Worker started - polling running runs")

        while self.running:
            try:
                await self.tick()
                consecutive_errors = 0
                await asyncio.sleep(self._dispatch_settings.poll_interval_seconds)

            except asyncio.CancelledError:
                logger.info("Worker received cancellation signal")
                break
            except Exception as e:
                consecutive_errors += 1
                logger.error(f"Worker error ({consecutive_errors}): {e}", exc_info=True)

                if consecutive_errors >= self.MAX_CONSECUTIVE_ERRORS:
                    logger.critical("Too many consecutive errors, stopping worker")
                    break

                await asyncio.sleep(min(5 * consecutive_errors, 60))

        await self.shutdown()

    async def shutdown(self) -> None:
        """Graceful shutdown."""
        logger.info("Shutting down Dispatch Worker...")
        self.running = False

        if self._provider is not None:
            await self._provider.close()
        if self._events is not None:
            await self._events.close()

        logger.info(
            f"Dispatch Worker shutdown complete. "
            f"Cycles: {self._cycles}, Errors: {self._cycle_errors}, Swept: {self._rows_swept}"
        )

    def get_stats(self) -> dict:
        """Get worker statistics."""
        stats = {
            "running": self.running,
            "cycles": self._cycles,
            "cycle_errors": self._cycle_errors,
            "rows_swept": self._rows_swept,
        }
        if self.lifecycle is not None:
            stats.update(self.lifecycle.get_stats())
        return stats


async def main():
    """Entry point for running dispatch worker as separate process."""
    worker = DispatchWorker()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        worker.running = False

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.run()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


def run_worker() -> None:
    """Console-script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run_worker()
