"""
Run Lifecycle Controller
Run state machine and dispatch cycle orchestration

State machine:
    draft -> processing -> ready -> running <-> paused -> completed
    scheduled -> running (at scheduled_at)
    any -> failed (unrecoverable error)
"""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set

from outreach.core.config import DispatchSettings
from outreach.domain.errors import (
    DataIntegrityError,
    InvalidTransitionError,
    NotFoundError,
    OutreachError,
    ValidationError,
)
from outreach.domain.interfaces.event_publisher import EventPublisher, org_channel, run_channel
from outreach.domain.interfaces.run_repository import RunRepository
from outreach.domain.interfaces.voice_provider import VoiceProvider
from outreach.domain.models.call import CallStatus
from outreach.domain.models.dispatch import CycleResult, CycleStatus, DispatchError, DispatchOutcome
from outreach.domain.models.org_context import OrgContext
from outreach.domain.models.organization import Campaign, Organization
from outreach.domain.models.row import OPEN_ROW_STATUSES, Row, RowStatus
from outreach.domain.models.run import (
    STARTABLE_RUN_STATUSES,
    TERMINAL_RUN_STATUSES,
    Run,
    RunStatus,
    default_run_metadata,
)
from outreach.domain.services.call_dispatcher import MISSING_PHONE_ERROR, CallDispatcher
from outreach.domain.services.concurrency_gate import ConcurrencyGate
from outreach.domain.services.row_selector import RowSelector
from outreach.domain.services.run_metrics import RunMetricsAggregator
from outreach.utils.time_utils import isoformat, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

STUCK_ROW_ERROR = "timed out awaiting callback"

# Statuses from which rows may be (re)ingested or a start may be scheduled
INGESTIBLE_RUN_STATUSES = {RunStatus.DRAFT.value, RunStatus.READY.value, RunStatus.SCHEDULED.value}
SCHEDULABLE_RUN_STATUSES = {
    RunStatus.DRAFT.value,
    RunStatus.READY.value,
    RunStatus.PAUSED.value,
    RunStatus.SCHEDULED.value,
}


class RunLifecycleController:
    """
    Owns run status transitions and the dispatch cycle.

    A dispatch cycle:
    1. Re-fetch the run (no-op unless running)
    2. Resolve organization and campaign (missing -> run failed)
    3. Office-hours check
    4. Concurrency slots, capped by the run's batch size
    5. Select pending rows; none left -> completion check
    6. Dispatch rows sequentially with an inter-call delay
    7. Return a CycleResult summary

    Cycles and webhook deliveries may overlap; only pending rows are ever
    touched here and row acquisition is a conditional update.
    """

    def __init__(
        self,
        repository: RunRepository,
        provider: VoiceProvider,
        events: EventPublisher,
        settings: Optional[DispatchSettings] = None,
        metrics: Optional[RunMetricsAggregator] = None
    ):
        self._repository = repository
        self._events = events
        self._settings = settings or DispatchSettings()

        self.metrics = metrics or RunMetricsAggregator(repository, events)
        self.gate = ConcurrencyGate(repository, self._settings)
        self.selector = RowSelector(repository)
        self.dispatcher = CallDispatcher(repository, provider, self.metrics, events)

        # Stats
        self._cycles_run = 0
        self._calls_dispatched = 0
        self._dispatch_failures = 0

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_run(self, ctx: OrgContext, run_id: str) -> Run:
        """Fetch a run visible to the caller."""
        run = await self._repository.get_run(run_id)
        if run is None or not ctx.can_access(run.org_id):
            raise NotFoundError(f"Run not found: {run_id}")
        return run

    async def get_run_metrics(self, ctx: OrgContext, run_id: str) -> Dict[str, Any]:
        """Metadata counters plus the row-status projection."""
        run = await self.get_run(ctx, run_id)
        return {
            "run_id": run.id,
            "status": run.status,
            "metadata": run.metadata,
            "rows": await self.metrics.derive_row_counts(run.id),
        }

    async def _resolve_collaborators(self, run: Run) -> tuple[Organization, Campaign]:
        organization = await self._repository.get_organization(run.org_id)
        if organization is None:
            raise DataIntegrityError(f"Organization {run.org_id} not found for run {run.id}")

        campaign = await self._repository.get_campaign(run.campaign_id)
        if campaign is None or campaign.org_id != run.org_id:
            raise DataIntegrityError(f"Campaign {run.campaign_id} not found for run {run.id}")

        return organization, campaign

    # ------------------------------------------------------------------
    # Creation and ingestion
    # ------------------------------------------------------------------

    async def create_run(
        self,
        ctx: OrgContext,
        campaign_id: str,
        name: str,
        custom_prompt: Optional[str] = None,
        custom_voicemail_message: Optional[str] = None,
        scheduled_at: Optional[datetime] = None,
        calls_per_minute: Optional[int] = None,
        batch_size: Optional[int] = None
    ) -> Run:
        """
        Create a run for one of the organization's campaigns.

        The run starts in draft, or scheduled when scheduled_at is in the future.
        """
        if not name or not name.strip():
            raise ValidationError("Run name is required")

        campaign = await self._repository.get_campaign(campaign_id)
        if campaign is None or not ctx.can_access(campaign.org_id):
            raise NotFoundError(f"Campaign not found: {campaign_id}")

        now = utc_now()
        scheduled_at = parse_timestamp(scheduled_at)
        status = RunStatus.DRAFT
        if scheduled_at is not None and scheduled_at > now:
            status = RunStatus.SCHEDULED

        run = Run(
            id=str(uuid.uuid4()),
            org_id=campaign.org_id,
            campaign_id=campaign.id,
            name=name.strip(),
            custom_prompt=custom_prompt,
            custom_voicemail_message=custom_voicemail_message,
            status=status,
            metadata=default_run_metadata(
                calls_per_minute=calls_per_minute,
                batch_size=batch_size,
                scheduled_time=isoformat(scheduled_at) if scheduled_at else None,
            ),
            scheduled_at=scheduled_at,
            created_at=now,
            updated_at=now,
        )
        run = await self._repository.insert_run(run)
        logger.info(f"Created run {run.id} ({run.status}) for campaign {campaign.id}")
        return run

    async def ingest_rows(self, ctx: OrgContext, run_id: str, rows: List[Dict[str, Any]]) -> Run:
        """
        Attach already-parsed rows to a run.

        Each item is {"variables": {...}, "priority"?: int, "patient_id"?: str}.
        Rows without a phone/primaryPhone variable are stored as skipped and
        counted in rows.invalid. The run ends up ready (or stays scheduled).
        """
        run = await self.get_run(ctx, run_id)
        if run.status not in INGESTIBLE_RUN_STATUSES:
            raise InvalidTransitionError(run.id, run.status, "add rows to")
        if not rows:
            raise ValidationError("No rows provided")

        final_status = RunStatus.SCHEDULED.value if run.status == RunStatus.SCHEDULED.value else RunStatus.READY.value
        await self._repository.update_run(run.id, {"status": RunStatus.PROCESSING.value, "updated_at": utc_now()})

        existing = await self._repository.count_rows_by_status(run.id)
        offset = sum(existing.values())
        now = utc_now()

        new_rows: List[Row] = []
        invalid = 0
        for index, item in enumerate(rows):
            variables = dict(item.get("variables") or {})
            row = Row(
                id=str(uuid.uuid4()),
                run_id=run.id,
                org_id=run.org_id,
                campaign_id=run.campaign_id,
                patient_id=item.get("patient_id") or variables.get("patientId"),
                variables=variables,
                priority=int(item.get("priority") or 0),
                sort_index=offset + index,
                created_at=now,
                updated_at=now,
            )
            if row.phone is None:
                row.status = RowStatus.SKIPPED.value
                row.error = MISSING_PHONE_ERROR
                row.batch_eligible = False
                invalid += 1
            new_rows.append(row)

        await self._repository.insert_rows(new_rows)
        await self.metrics.apply(
            run.id,
            {
                "rows.total": len(new_rows),
                "rows.invalid": invalid,
                "calls.pending": len(new_rows) - invalid,
                "calls.skipped": invalid,
            },
            fields={"status": final_status},
        )

        logger.info(f"Ingested {len(new_rows)} rows into run {run.id} ({invalid} invalid)")
        return await self.get_run(ctx, run.id)

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def start_run(self, ctx: OrgContext, run_id: str) -> Run:
        """
        Start (or resume) a run.

        Allowed from draft, ready, paused and scheduled. Starting a running
        run is a no-op.
        """
        run = await self.get_run(ctx, run_id)
        if run.status == RunStatus.RUNNING.value:
            return run
        if run.status not in STARTABLE_RUN_STATUSES:
            raise InvalidTransitionError(run.id, run.status, "start")

        run_fields: Dict[str, Any] = {"pausedOutsideHours": False}
        if not run.run_info.get("startTime"):
            run_fields["startTime"] = isoformat()

        metadata = await self.metrics.update_run_info(
            run.id, run_fields, fields={"status": RunStatus.RUNNING.value}
        )

        logger.info(f"Run {run.id} started (was {run.status})")
        await self._emit_run_updated(run, RunStatus.RUNNING.value, metadata)
        return await self.get_run(ctx, run.id)

    async def resume_run(self, ctx: OrgContext, run_id: str) -> Run:
        """Resume a paused run."""
        run = await self.get_run(ctx, run_id)
        if run.status not in (RunStatus.PAUSED.value, RunStatus.RUNNING.value):
            raise InvalidTransitionError(run.id, run.status, "resume")
        return await self.start_run(ctx, run_id)

    async def pause_run(self, ctx: OrgContext, run_id: str) -> Run:
        """
        Pause a running run.

        Calls already in flight are not cancelled; only new dispatch stops.
        Pausing a paused run is a no-op.
        """
        run = await self.get_run(ctx, run_id)
        if run.status == RunStatus.PAUSED.value:
            return run
        if run.status != RunStatus.RUNNING.value:
            raise InvalidTransitionError(run.id, run.status, "pause")

        metadata = await self.metrics.update_run_info(
            run.id, {"lastPausedAt": isoformat()}, fields={"status": RunStatus.PAUSED.value}
        )

        logger.info(f"Run {run.id} paused")
        await self._emit_run_updated(run, RunStatus.PAUSED.value, metadata)
        await self._events.trigger(run_channel(run.id), "run-paused", {"runId": run.id})
        return await self.get_run(ctx, run.id)

    async def schedule_run(self, ctx: OrgContext, run_id: str, scheduled_at: datetime) -> Run:
        """Set a future start time; the worker starts the run when it is due."""
        run = await self.get_run(ctx, run_id)
        if run.status not in SCHEDULABLE_RUN_STATUSES:
            raise InvalidTransitionError(run.id, run.status, "schedule")

        scheduled_at = parse_timestamp(scheduled_at)
        if scheduled_at is None or scheduled_at <= utc_now():
            raise ValidationError("scheduled_at must be in the future")

        metadata = await self.metrics.update_run_info(
            run.id,
            {"scheduledTime": isoformat(scheduled_at)},
            fields={"status": RunStatus.SCHEDULED.value, "scheduled_at": scheduled_at},
        )

        logger.info(f"Run {run.id} scheduled for {scheduled_at.isoformat()}")
        await self._emit_run_updated(run, RunStatus.SCHEDULED.value, metadata)
        return await self.get_run(ctx, run.id)

    async def start_due_scheduled_runs(self, now: Optional[datetime] = None) -> List[str]:
        """Start every scheduled run whose start time has passed."""
        now = now or utc_now()
        started: List[str] = []

        for run in await self._repository.list_due_scheduled_runs(now):
            try:
                await self.start_run(OrgContext.system(run.org_id), run.id)
                started.append(run.id)
            except OutreachError as e:
                logger.warning(f"Could not start scheduled run {run.id}: {e.message}")

        if started:
            logger.info(f"Started {len(started)} scheduled runs")
        return started

    async def fail_run(self, ctx: OrgContext, run_id: str, error: str) -> Run:
        """Move a run to failed, recording the error."""
        run = await self.get_run(ctx, run_id)
        if run.status in TERMINAL_RUN_STATUSES:
            return run

        metadata = await self.metrics.update_run_info(
            run.id,
            {"endTime": isoformat(), "error": error},
            fields={"status": RunStatus.FAILED.value},
        )

        logger.error(f"Run {run.id} failed: {error}")
        await self._emit_run_updated(run, RunStatus.FAILED.value, metadata)
        return await self.get_run(ctx, run.id)

    async def complete_run(self, run: Run) -> Optional[Dict[str, Any]]:
        """Mark a run completed, setting endTime and duration (seconds)."""
        now = utc_now()
        run_fields: Dict[str, Any] = {"endTime": isoformat(now)}

        start_time = parse_timestamp(run.run_info.get("startTime"))
        if start_time is not None:
            run_fields["duration"] = int((now - start_time).total_seconds())

        metadata = await self.metrics.update_run_info(
            run.id, run_fields, fields={"status": RunStatus.COMPLETED.value}
        )

        logger.info(f"Run {run.id} completed (duration={run_fields.get('duration')}s)")
        await self._emit_run_updated(run, RunStatus.COMPLETED.value, metadata)
        return metadata

    async def complete_run_if_finished(self, run_id: str) -> bool:
        """
        Complete a running run that has no pending or calling rows left.

        Returns:
            True if the run was completed by this call
        """
        run = await self._repository.get_run(run_id)
        if run is None or run.status != RunStatus.RUNNING.value:
            return False

        remaining = await self._repository.count_rows(run.id, OPEN_ROW_STATUSES)
        if remaining > 0:
            return False

        await self.complete_run(run)
        return True

    async def _emit_run_updated(self, run: Run, status: str, metadata: Optional[Dict[str, Any]]) -> None:
        await self._events.trigger(org_channel(run.org_id), "run-updated", {
            "runId": run.id,
            "status": status,
            "metadata": metadata,
        })

    # ------------------------------------------------------------------
    # Dispatch cycle
    # ------------------------------------------------------------------

    def _inter_call_delay(self, run: Run) -> float:
        delay = self._settings.inter_call_delay_seconds
        calls_per_minute = run.run_info.get("callsPerMinute")
        if calls_per_minute:
            delay = max(delay, 60.0 / float(calls_per_minute))
        return delay

    async def run_dispatch_cycle(
        self,
        ctx: OrgContext,
        run_id: str,
        now: Optional[datetime] = None
    ) -> CycleResult:
        """
        Run one dispatch cycle for a run.

        Args:
            ctx: Caller context (system context for the worker)
            run_id: Run to dispatch
            now: Evaluation time for office hours (default: now)

        Returns:
            CycleResult summary; per-row failures are listed, not raised
        """
        self._cycles_run += 1

        # 1. Re-fetch; a pause may have landed since the run was listed
        run = await self.get_run(ctx, run_id)
        if run.status != RunStatus.RUNNING.value:
            return CycleResult(run_id=run.id, status=CycleStatus.NOT_RUNNING,
                               message=f"Run is {run.status}")

        # 2. Organization and campaign
        try:
            organization, campaign = await self._resolve_collaborators(run)
        except DataIntegrityError as e:
            await self.fail_run(OrgContext.system(run.org_id), run.id, e.message)
            return CycleResult(run_id=run.id, status=CycleStatus.ERROR, message=e.message)

        # 3. Office hours (unconfigured hours never block)
        hours = organization.is_within_office_hours(now)
        if hours.configured and not hours.is_within_hours:
            if not run.run_info.get("pausedOutsideHours"):
                await self.metrics.update_run_info(run.id, {
                    "pausedOutsideHours": True,
                    "lastPausedAt": isoformat(),
                })
                logger.info(f"Run {run.id} outside office hours: {hours.reason}")
            return CycleResult(run_id=run.id, status=CycleStatus.OUTSIDE_HOURS, message=hours.reason)

        if run.run_info.get("pausedOutsideHours"):
            await self.metrics.update_run_info(run.id, {"pausedOutsideHours": False})

        # 4. Concurrency
        slots, reason = await self.gate.available_slots(organization)
        if slots == 0:
            return CycleResult(run_id=run.id, status=CycleStatus.AT_LIMIT,
                               message="At concurrency limit, no calls dispatched")

        batch_size = run.run_info.get("batchSize") or self._settings.default_batch_size
        slots = min(slots, int(batch_size))

        # 5. Rows
        rows = await self.selector.select(run.id, slots)
        if not rows:
            if await self.complete_run_if_finished(run.id):
                return CycleResult(run_id=run.id, status=CycleStatus.COMPLETED,
                                   available_slots=slots, message="Run completed")
            return CycleResult(run_id=run.id, status=CycleStatus.WAITING, available_slots=slots,
                               message="Waiting for in-flight calls")

        # 6. Dispatch sequentially
        result = CycleResult(run_id=run.id, status=CycleStatus.DISPATCHED, available_slots=slots)
        delay = self._inter_call_delay(run)

        for index, row in enumerate(rows):
            if index > 0:
                if delay > 0:
                    await asyncio.sleep(delay)
                current = await self._repository.get_run(run.id)
                if current is None or current.status != RunStatus.RUNNING.value:
                    logger.info(f"Run {run.id} no longer running, stopping batch")
                    break

            try:
                outcome = await self.dispatcher.dispatch(row, run, organization, campaign)
            except Exception as e:
                logger.error(f"Unexpected dispatch error for row {row.id}: {e}", exc_info=True)
                result.failed += 1
                result.errors.append(DispatchError(row_id=row.id, error=str(e)))
                continue

            if outcome.outcome == DispatchOutcome.DISPATCHED.value:
                result.dispatched += 1
            elif outcome.outcome == DispatchOutcome.SKIPPED.value:
                result.skipped += 1
            else:
                result.failed += 1
                result.errors.append(DispatchError(row_id=row.id, error=outcome.error or "Dispatch failed"))

        self._calls_dispatched += result.dispatched
        self._dispatch_failures += result.failed

        # 7. Summary
        result.message = f"Dispatched {result.dispatched}, failed {result.failed}"
        logger.info(f"Run {run.id} cycle: {result.message} (skipped {result.skipped}, {reason})")
        return result

    # ------------------------------------------------------------------
    # Stuck rows
    # ------------------------------------------------------------------

    async def sweep_stuck_rows(self, now: Optional[datetime] = None) -> int:
        """
        Fail rows left 'calling' past the callback timeout.

        Each swept row releases its concurrency slot (calls.calling - 1,
        calls.failed + 1), and its pending call is marked failed so a late
        webhook is handled as a redelivery.

        Returns:
            Number of rows swept
        """
        now = now or utc_now()
        cutoff = now - timedelta(minutes=self._settings.stuck_row_timeout_minutes)
        swept = 0
        touched_runs: Set[str] = set()

        for row in await self._repository.list_stale_calling_rows(cutoff):
            updated = await self._repository.transition_row(row.id, RowStatus.CALLING.value, {
                "status": RowStatus.FAILED.value,
                "error": STUCK_ROW_ERROR,
                "updated_at": now,
            })
            if updated is None:
                continue

            if row.provider_call_id:
                call = await self._repository.get_call_by_provider_id(row.provider_call_id)
                if call is not None and not call.is_terminal:
                    await self._repository.update_call(call.id, {
                        "status": CallStatus.FAILED.value,
                        "error": STUCK_ROW_ERROR,
                        "updated_at": now,
                    })

            await self.metrics.apply(row.run_id, {"calls.calling": -1, "calls.failed": 1})
            touched_runs.add(row.run_id)
            swept += 1
            logger.warning(f"Row {row.id} (run {row.run_id}) {STUCK_ROW_ERROR}")

        for run_id in touched_runs:
            await self.complete_run_if_finished(run_id)

        return swept

    def get_stats(self) -> dict:
        """Controller statistics."""
        return {
            "cycles_run": self._cycles_run,
            "calls_dispatched": self._calls_dispatched,
            "dispatch_failures": self._dispatch_failures,
        }
