"""
Unit Tests for Webhook Reconciler
Post-call results applied to calls, rows and run counters
"""
import pytest

from conftest import CAMPAIGN_ID, ORG_ID, call_analyzed_payload, patient_rows
from outreach.domain.errors import NotFoundError, ValidationError
from outreach.domain.interfaces.event_publisher import org_channel, run_channel
from outreach.domain.models.call import Call, CallStatus
from outreach.domain.models.org_context import OrgContext
from outreach.domain.models.row import RowStatus
from outreach.domain.models.run import RunStatus
from outreach.domain.services.webhook_reconciler import WebhookReconciler


async def dispatched_run(lifecycle, ctx, count=1):
    run = await lifecycle.create_run(ctx, CAMPAIGN_ID, "Reminders")
    await lifecycle.ingest_rows(ctx, run.id, patient_rows(count))
    await lifecycle.start_run(ctx, run.id)
    await lifecycle.run_dispatch_cycle(ctx, run.id)
    return run


def analysis_data(**fields):
    return {"call_analysis": {"custom_analysis_data": fields, "call_summary": "Summary", "user_sentiment": "Positive"}}


class TestCallAnalyzedFilter:
    """Tests for event filtering"""

    @pytest.mark.parametrize("payload,expected", [
        ({"event": "call_analyzed", "call": {"call_type": "phone_call"}}, True),
        ({"event": "call_analyzed", "call": {}}, True),
        ({"event": "call_ended", "call": {"call_type": "phone_call"}}, False),
        ({"event": "call_analyzed", "call": {"call_type": "web_call"}}, False),
        ({}, False),
    ])
    def test_is_call_analyzed_event(self, payload, expected):
        assert WebhookReconciler.is_call_analyzed_event(payload) is expected

    @pytest.mark.asyncio
    async def test_other_events_are_ignored(self, reconciler):
        result = await reconciler.handle_post_call(OrgContext.system(ORG_ID), {"event": "call_started", "call": {}})

        assert result == {"status": "ignored", "message": "Not a call_analyzed event"}


class TestPostCallReconciliation:
    """Tests for handle_post_call"""

    @pytest.mark.asyncio
    async def test_completed_conversion(self, lifecycle, reconciler, repository, events, ctx):
        run = await dispatched_run(lifecycle, ctx)
        payload = call_analyzed_payload("call_1", **analysis_data(patient_reached=True, appointment_confirmed="TRUE"))

        result = await reconciler.handle_post_call(OrgContext.system(ORG_ID), payload, CAMPAIGN_ID)

        assert result["status"] == "success"
        assert result["callStatus"] == "completed"
        assert result["insights"]["patient_reached"] is True
        assert result["runCompleted"] is True

        call = await repository.get_call_by_provider_id("call_1")
        assert call.status == CallStatus.COMPLETED.value
        assert call.transcript.startswith("Agent:")
        assert call.duration == 60.0
        assert call.analysis["insights"]["sentiment"] == "Positive"

        row = next(iter(repository.rows.values()))
        assert row.status == RowStatus.COMPLETED.value
        assert row.analysis["call_status"] == "completed"
        assert row.post_call_data["provider_call_id"] == "call_1"

        stored = await repository.get_run(run.id)
        assert stored.get_counter("calls.completed") == 1
        assert stored.get_counter("calls.calling") == 0
        assert stored.get_counter("calls.connected") == 1
        assert stored.get_counter("calls.converted") == 1
        assert stored.status == RunStatus.COMPLETED.value

        assert events.find("call-completed", run_channel(run.id))
        assert events.find("call-updated", org_channel(ORG_ID))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("flag", [True, "true", "TRUE"])
    async def test_conversion_flag_forms_count_the_same(self, lifecycle, reconciler, repository, ctx, flag):
        run = await dispatched_run(lifecycle, ctx)
        payload = call_analyzed_payload("call_1", **analysis_data(patient_reached=flag, appointmentConfirmed=flag))

        await reconciler.handle_post_call(OrgContext.system(ORG_ID), payload)

        stored = await repository.get_run(run.id)
        assert stored.get_counter("calls.connected") == 1
        assert stored.get_counter("calls.converted") == 1

    @pytest.mark.asyncio
    async def test_campaign_conversion_field(self, lifecycle, reconciler, repository, campaign, ctx):
        campaign.config = {"conversion_field": "refill_requested"}
        repository.add_campaign(campaign)
        run = await dispatched_run(lifecycle, ctx)
        payload = call_analyzed_payload("call_1", **analysis_data(patient_reached="yes", refill_requested="true"))

        await reconciler.handle_post_call(OrgContext.system(ORG_ID), payload)

        assert (await repository.get_run(run.id)).get_counter("calls.converted") == 1

    @pytest.mark.asyncio
    async def test_voicemail(self, lifecycle, reconciler, repository, ctx):
        run = await dispatched_run(lifecycle, ctx)
        payload = call_analyzed_payload("call_1", metrics={"voicemail_detected": True},
                                        **analysis_data(patient_reached=True))

        result = await reconciler.handle_post_call(OrgContext.system(ORG_ID), payload)

        assert result["callStatus"] == "voicemail"
        assert result["insights"]["voicemail_left"] is True
        stored = await repository.get_run(run.id)
        assert stored.get_counter("calls.voicemail") == 1
        assert stored.get_counter("calls.connected") == 0
        assert stored.get_counter("calls.completed") == 1

    @pytest.mark.asyncio
    async def test_failed_call(self, lifecycle, reconciler, repository, ctx):
        run = await dispatched_run(lifecycle, ctx)
        payload = call_analyzed_payload("call_1", call_status="error", disconnection_reason="dial_failed")

        await reconciler.handle_post_call(OrgContext.system(ORG_ID), payload)

        call = await repository.get_call_by_provider_id("call_1")
        assert call.status == CallStatus.FAILED.value
        assert call.error == "dial_failed"
        row = next(iter(repository.rows.values()))
        assert row.status == RowStatus.COMPLETED.value
        assert row.error == "dial_failed"
        stored = await repository.get_run(run.id)
        assert stored.get_counter("calls.failed") == 1
        assert stored.get_counter("calls.completed") == 1

    @pytest.mark.asyncio
    async def test_no_answer_counts_only_completion(self, lifecycle, reconciler, repository, ctx):
        run = await dispatched_run(lifecycle, ctx)
        payload = call_analyzed_payload("call_1", disconnection_reason="dial_no_answer")

        result = await reconciler.handle_post_call(OrgContext.system(ORG_ID), payload)

        assert result["callStatus"] == "no-answer"
        stored = await repository.get_run(run.id)
        assert stored.get_counter("calls.completed") == 1
        for key in ("failed", "voicemail", "connected", "converted"):
            assert stored.get_counter(f"calls.{key}") == 0

    @pytest.mark.asyncio
    async def test_redelivery_is_idempotent(self, lifecycle, reconciler, repository, ctx):
        run = await dispatched_run(lifecycle, ctx)
        payload = call_analyzed_payload("call_1", **analysis_data(patient_reached=True, appointment_confirmed=True))
        await reconciler.handle_post_call(OrgContext.system(ORG_ID), payload)
        first = (await repository.get_run(run.id)).copy_metadata()

        payload["call"]["transcript"] = "Agent: Hello again."
        result = await reconciler.handle_post_call(OrgContext.system(ORG_ID), payload)

        assert result["duplicate"] is True
        assert (await repository.get_run(run.id)).metadata["calls"] == first["calls"]
        assert (await repository.get_call_by_provider_id("call_1")).transcript == "Agent: Hello again."

    @pytest.mark.asyncio
    async def test_retry_after_row_write_failure_completes_row(self, lifecycle, reconciler, repository, ctx):
        """A provider retry after a failed row write finishes the row and the run"""
        run = await dispatched_run(lifecycle, ctx)
        real_transition = repository.transition_row
        attempts = []

        async def flaky_transition(row_id, expected_status, fields):
            attempts.append(row_id)
            if len(attempts) == 1:
                raise RuntimeError("connection reset")
            return await real_transition(row_id, expected_status, fields)

        repository.transition_row = flaky_transition
        payload = call_analyzed_payload("call_1", **analysis_data(patient_reached=True))

        with pytest.raises(RuntimeError):
            await reconciler.handle_post_call(OrgContext.system(ORG_ID), payload)
        assert (await repository.get_call_by_provider_id("call_1")).status == CallStatus.COMPLETED.value
        assert next(iter(repository.rows.values())).status == RowStatus.CALLING.value

        result = await reconciler.handle_post_call(OrgContext.system(ORG_ID), payload)

        assert "duplicate" not in result
        assert result["runCompleted"] is True
        assert next(iter(repository.rows.values())).status == RowStatus.COMPLETED.value
        stored = await repository.get_run(run.id)
        assert stored.status == RunStatus.COMPLETED.value
        assert stored.get_counter("calls.completed") == 1
        assert stored.get_counter("calls.calling") == 0
        assert stored.get_counter("calls.connected") == 1

        again = await reconciler.handle_post_call(OrgContext.system(ORG_ID), payload)

        assert again["duplicate"] is True
        assert (await repository.get_run(run.id)).get_counter("calls.completed") == 1

    @pytest.mark.asyncio
    async def test_run_stays_open_while_rows_remain(self, lifecycle, reconciler, repository, ctx):
        run = await dispatched_run(lifecycle, ctx, count=3)

        result = await reconciler.handle_post_call(OrgContext.system(ORG_ID), call_analyzed_payload("call_1"))

        assert result["runCompleted"] is False
        assert (await repository.get_run(run.id)).status == RunStatus.RUNNING.value

    @pytest.mark.asyncio
    async def test_row_not_calling_leaves_counters(self, lifecycle, reconciler, repository, ctx):
        run = await dispatched_run(lifecycle, ctx, count=2)
        call = await repository.get_call_by_provider_id("call_1")
        await repository.update_row(call.row_id, {"status": RowStatus.FAILED.value})
        before = (await repository.get_run(run.id)).copy_metadata()

        await reconciler.handle_post_call(OrgContext.system(ORG_ID), call_analyzed_payload("call_1"))

        assert (await repository.get_run(run.id)).metadata["calls"] == before["calls"]
        assert (await repository.get_call(call.id)).status == CallStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_missing_call_id(self, reconciler):
        with pytest.raises(ValidationError):
            await reconciler.handle_post_call(OrgContext.system(ORG_ID), {"event": "call_analyzed", "call": {}})

    @pytest.mark.asyncio
    async def test_unknown_call(self, reconciler):
        with pytest.raises(NotFoundError):
            await reconciler.handle_post_call(OrgContext.system(ORG_ID), call_analyzed_payload("nope"))

    @pytest.mark.asyncio
    async def test_call_of_other_org_is_not_found(self, lifecycle, reconciler, ctx):
        await dispatched_run(lifecycle, ctx)

        with pytest.raises(NotFoundError):
            await reconciler.handle_post_call(OrgContext.system("other-org"), call_analyzed_payload("call_1"))

    @pytest.mark.asyncio
    async def test_inbound_call_found_by_metadata(self, reconciler, repository, events):
        await repository.insert_call(Call(
            id="inbound-1", org_id=ORG_ID, direction="inbound", status="in-progress", from_number="+15550009999"
        ))
        payload = call_analyzed_payload("provider-xyz", metadata={"callId": "inbound-1"})

        result = await reconciler.handle_post_call(OrgContext.system(ORG_ID), payload)

        assert result["callId"] == "inbound-1"
        assert result["direction"] == "inbound"
        call = await repository.get_call("inbound-1")
        assert call.status == CallStatus.COMPLETED.value
        assert call.provider_call_id == "provider-xyz"
        assert events.find("call-completed") == []
        assert events.find("call-updated", org_channel(ORG_ID))


class TestResolutionTracking:
    """Tests for outreach attempt resolution"""

    @pytest.mark.asyncio
    async def test_goal_met_resolves_attempt(self, lifecycle, reconciler, repository, ctx):
        await dispatched_run(lifecycle, ctx)
        payload = call_analyzed_payload("call_1", **analysis_data(medication_confirmed=True))

        result = await reconciler.handle_post_call(OrgContext.system(ORG_ID), payload)

        assert result["resolutionStatus"] == "resolved"
        row = next(iter(repository.rows.values()))
        assert row.analysis["resolution_status"] == "resolved"
        assert row.analysis["resolved_at"]
        call = await repository.get_call_by_provider_id("call_1")
        assert call.analysis["resolution_status"] == "resolved"

    @pytest.mark.asyncio
    async def test_unresolved_attempt_stays_open(self, lifecycle, reconciler, repository, ctx):
        await dispatched_run(lifecycle, ctx)
        payload = call_analyzed_payload("call_1", **analysis_data(patient_reached=True, callback_requested=True))

        result = await reconciler.handle_post_call(OrgContext.system(ORG_ID), payload)

        assert result["resolutionStatus"] == "open"
        row = next(iter(repository.rows.values()))
        assert row.analysis["resolution_status"] == "open"
        assert "resolved_at" not in row.analysis

    @pytest.mark.asyncio
    async def test_inbound_callback_resolves_outbound_row(self, lifecycle, reconciler, repository, ctx):
        """Patient calling back resolves the attempt whatever the callback outcome"""
        run = await dispatched_run(lifecycle, ctx)
        await reconciler.handle_post_call(OrgContext.system(ORG_ID), call_analyzed_payload("call_1"))
        row = next(iter(repository.rows.values()))
        assert row.analysis["resolution_status"] == "open"
        counters = (await repository.get_run(run.id)).metadata["calls"]

        await repository.insert_call(Call(
            id="callback-1", org_id=ORG_ID, direction="inbound", status="in-progress",
            from_number=row.phone, metadata={"rowId": row.id},
        ))
        payload = call_analyzed_payload("provider-cb", metadata={"callId": "callback-1"},
                                        **analysis_data(issue_resolved=True))

        result = await reconciler.handle_post_call(OrgContext.system(ORG_ID), payload)

        assert result["resolutionStatus"] == "resolved"
        resolved = await repository.get_row(row.id)
        assert resolved.status == RowStatus.COMPLETED.value
        assert resolved.analysis["resolution_status"] == "resolved"
        assert resolved.analysis["resolved_by_callback"] is True
        assert resolved.analysis["original_resolution_status"] == "open"
        assert resolved.analysis["callback_count"] == 1
        assert resolved.analysis["last_callback_call_id"] == "callback-1"
        assert resolved.analysis["issue_resolved"] is True
        assert (await repository.get_run(run.id)).metadata["calls"] == counters
        assert (await repository.get_call("callback-1")).analysis["resolution_status"] == "resolved"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
