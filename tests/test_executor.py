import asyncio
import sqlite3
import pytest
from datetime import datetime, timedelta

from prunarr.api.notifications import NotificationEvent, NotificationPriority
from prunarr.api.services.history import EMPTY_BATCH_NAME, HistoryRecorder
from prunarr.api.services.lifecycle import LifecycleManager
from prunarr.api.services.pending_store import PendingStore
from prunarr.api.services.rule_evaluator import RuleEvaluator
from prunarr.exceptions import ConflictError
from prunarr.worker.deletion_executor import DeletionExecutor

GB = 1024 ** 3


@pytest.fixture
def executor(test_db, config_service, fake_resolver, mock_nats, mock_notifications):
    return DeletionExecutor(
        config_service,
        resolver=fake_resolver,
        nats_service=mock_nats,
        notification_service=mock_notifications,
    )


@pytest.fixture
def propose(make_media, make_rule):
    """Create media, propose them with one rule and approve every proposal"""
    evaluator = RuleEvaluator()
    lifecycle = LifecycleManager()

    async def _propose(names, rule_name="Old movies", approve=True, **approve_kwargs):
        media = [await make_media(name=name) for name in names]
        rule = await make_rule(name=rule_name)
        result = await evaluator.propose(rule["id"])
        if approve:
            for pending_id in result["pending_ids"]:
                await lifecycle.approve(pending_id, "alice", **approve_kwargs)
        return media, rule, result["pending_ids"]

    return _propose


def statuses(items):
    return sorted(item["status"] for item in items)


class TestExecutionPass:

    @pytest.mark.worker
    async def test_empty_pass_still_writes_history(self, executor):
        summary = await executor.execute()

        assert summary["outcome"] == "empty"
        assert summary["total_items"] == 0

        history = await HistoryRecorder().list()
        assert history["total"] == 1
        entry = history["items"][0]
        assert entry["rule_name"] == EMPTY_BATCH_NAME
        assert entry["rule_id"] is None
        assert entry["items_attempted"] == 0
        assert entry["items_succeeded"] == 0
        assert entry["success"] is True
        assert entry["trigger"] == "manual"

    @pytest.mark.worker
    async def test_pending_items_are_not_executed(self, executor, propose, fake_integration):
        await propose(["A", "B"], approve=False)

        summary = await executor.execute()

        assert summary["outcome"] == "empty"
        assert fake_integration.calls == []
        assert (await PendingStore().summary())["by_status"]["pending"]["count"] == 2

    @pytest.mark.worker
    async def test_successful_pass(self, executor, propose, fake_integration):
        media, rule, pending_ids = await propose(["A", "B"])

        summary = await executor.execute()

        assert summary["outcome"] == "success"
        assert summary["successful"] == 2
        assert summary["bytes_freed"] == 2 * GB
        assert len(fake_integration.calls) == 2
        # the rule's strategy travels with the proposal
        assert fake_integration.calls[0][1]["radarr"] == "file_only"

        item = await PendingStore().get(pending_ids[0])
        assert item["status"] == "completed"
        assert item["completed_at"] is not None
        assert item["claimed_at"] is None
        assert item["execution_results"][0]["success"] is True
        assert item["execution_results"][0]["integration"] == "fake"

        entry = (await HistoryRecorder().list())["items"][0]
        assert entry["rule_id"] == rule["id"]
        assert entry["rule_name"] == "Old movies"
        assert entry["items_succeeded"] == 2
        assert entry["total_size_freed"] == 2 * GB
        assert {m["media_id"] for m in entry["media_deleted"]} == {m["id"] for m in media}

    @pytest.mark.worker
    async def test_failure_is_isolated_to_its_item(self, executor, propose, fake_integration):
        media, _, pending_ids = await propose(["A", "B", "C"])
        fake_integration.fail_for = {media[1]["id"]}

        summary = await executor.execute()

        assert summary["outcome"] == "partial"
        assert summary["successful"] == 2
        assert summary["failed"] == 1

        items = [await PendingStore().get(pid) for pid in pending_ids]
        assert statuses(items) == ["completed", "completed", "failed"]
        failed = next(item for item in items if item["status"] == "failed")
        assert "refused" in failed["error"]
        assert failed["execution_results"][0]["success"] is False
        assert failed["completed_at"] is None

        entry = (await HistoryRecorder().list())["items"][0]
        assert entry["items_attempted"] == 3
        assert entry["items_succeeded"] == 2
        assert entry["success"] is False
        assert "refused" in entry["error"]

    @pytest.mark.worker
    async def test_timeout_marks_item_failed(self, executor, propose, fake_integration, config_service):
        _, _, pending_ids = await propose(["Slow"])
        config_service.config.integration_timeout_sec = 0.05
        fake_integration.delay = 0.5

        summary = await executor.execute()

        assert summary["outcome"] == "failed"
        item = await PendingStore().get(pending_ids[0])
        assert item["status"] == "failed"
        assert "timed out" in item["error"]

    @pytest.mark.worker
    async def test_future_schedule_is_not_eligible(self, executor, propose, fake_integration):
        later = datetime.utcnow() + timedelta(days=1)
        await propose(["Later"], scheduled_date=later)

        summary = await executor.execute()

        assert summary["outcome"] == "empty"
        assert fake_integration.calls == []

    @pytest.mark.worker
    async def test_mixed_rule_batch_history(self, executor, propose):
        await propose(["A"], rule_name="Rule A")
        # Rule B also matches A, which is open only for Rule A
        await propose(["B"], rule_name="Rule B")

        await executor.execute()

        entry = (await HistoryRecorder().list())["items"][0]
        assert entry["rule_id"] is None
        assert entry["rule_name"] == "Rule A, Rule B"
        assert entry["items_attempted"] == 3


class TestUnexpectedErrors:

    @pytest.mark.worker
    async def test_recording_error_does_not_abort_pass(self, executor, propose, monkeypatch):
        media, _, pending_ids = await propose(["A", "B", "C"])
        record = executor.lifecycle.complete

        async def complete(pending_id, claimed_at, result):
            if pending_id == pending_ids[0]:
                raise sqlite3.OperationalError("database is locked")
            await record(pending_id, claimed_at, result)

        monkeypatch.setattr(executor.lifecycle, "complete", complete)

        summary = await executor.execute()

        assert summary["outcome"] == "partial"
        assert summary["successful"] == 2
        assert summary["failed"] == 1
        failed = next(r for r in summary["results"] if r["outcome"] == "failed")
        assert failed["pending_id"] == pending_ids[0]
        assert "database is locked" in failed["error"]

        history = await HistoryRecorder().list()
        assert history["total"] == 1
        assert history["items"][0]["items_succeeded"] == 2

        # the claim is dropped so the item can still be cancelled
        stuck = await PendingStore().get(pending_ids[0])
        assert stuck["status"] == "approved"
        assert stuck["claimed_at"] is None
        await LifecycleManager().cancel(pending_ids[0], "bob")

    @pytest.mark.worker
    async def test_malformed_integration_result(self, executor, propose, fake_integration, monkeypatch):
        _, _, pending_ids = await propose(["A"])

        async def delete(media, strategy):
            return None

        monkeypatch.setattr(fake_integration, "delete", delete)

        summary = await executor.execute()

        assert summary["outcome"] == "failed"
        assert (await HistoryRecorder().list())["total"] == 1
        item = await PendingStore().get(pending_ids[0])
        assert item["claimed_at"] is None


class TestRetries:

    @pytest.mark.worker
    async def test_failed_items_retry_only_when_requested(self, executor, propose, fake_integration):
        media, _, pending_ids = await propose(["Flaky"])
        fake_integration.fail_for = {media[0]["id"]}
        await executor.execute()

        fake_integration.fail_for = set()
        assert (await executor.execute())["outcome"] == "empty"

        summary = await executor.execute(include_failed=True)
        assert summary["outcome"] == "success"

        item = await PendingStore().get(pending_ids[0])
        assert item["status"] == "completed"
        assert item["error"] is None
        assert [r["attempt"] for r in item["execution_results"]] == [1, 2]

    @pytest.mark.worker
    async def test_retry_failed_config(self, executor, propose, fake_integration, config_service):
        media, _, _ = await propose(["Flaky"])
        fake_integration.fail_for = {media[0]["id"]}
        await executor.execute()

        fake_integration.fail_for = set()
        config_service.config.retry_failed = True
        assert (await executor.execute())["successful"] == 1


class TestConcurrency:

    @pytest.mark.worker
    async def test_second_pass_reports_busy(self, executor, propose, fake_integration):
        await propose(["A"])
        fake_integration.delay = 0.2

        first = asyncio.create_task(executor.execute())
        await asyncio.sleep(0.05)

        assert executor.is_running
        busy = await executor.execute(trigger="scheduled")
        assert busy["status"] == "busy"
        assert busy["current_execution"]["total_items"] == 1

        summary = await first
        assert summary["successful"] == 1
        assert not executor.is_running
        assert (await HistoryRecorder().list())["total"] == 1

    @pytest.mark.worker
    async def test_cancel_during_deletion_conflicts(self, executor, propose, fake_integration):
        _, _, pending_ids = await propose(["A"])
        fake_integration.delay = 0.2

        run = asyncio.create_task(executor.execute())
        await asyncio.sleep(0.05)

        with pytest.raises(ConflictError):
            await LifecycleManager().cancel(pending_ids[0], "bob")

        await run
        assert (await PendingStore().get(pending_ids[0]))["status"] == "completed"

    @pytest.mark.worker
    async def test_cancelled_before_pass_is_skipped(self, executor, propose, fake_integration):
        _, _, pending_ids = await propose(["A", "B"])
        await LifecycleManager().cancel(pending_ids[0], "bob")

        summary = await executor.execute()

        assert summary["successful"] == 1
        assert len(fake_integration.calls) == 1
        assert (await PendingStore().get(pending_ids[0]))["status"] == "cancelled"


class TestAnnouncements:

    @pytest.mark.worker
    async def test_events_published_per_item_and_batch(self, executor, propose, fake_integration, mock_nats):
        media, _, _ = await propose(["A", "B"])
        fake_integration.fail_for = {media[0]["id"]}

        await executor.execute()

        events = [call.args[0] for call in mock_nats.publish_event.await_args_list]
        assert sorted(events) == [
            "deletion.batch_completed", "deletion.item_completed", "deletion.item_failed"
        ]

    @pytest.mark.worker
    async def test_executed_notification(self, executor, propose, mock_notifications):
        await propose(["A"])

        await executor.execute()

        event_type, data = mock_notifications.send_event.await_args.args
        assert event_type == NotificationEvent.DELETION_EXECUTED.value
        assert data["count"] == 1
        assert data["size"] == GB

    @pytest.mark.worker
    async def test_failed_notification_is_high_priority(
        self, executor, propose, fake_integration, mock_notifications
    ):
        media, _, _ = await propose(["A"])
        fake_integration.fail_for = {media[0]["id"]}

        await executor.execute()

        call = mock_notifications.send_event.await_args
        assert call.args[0] == NotificationEvent.DELETION_FAILED.value
        assert call.kwargs["priority"] == NotificationPriority.HIGH

    @pytest.mark.worker
    async def test_empty_pass_sends_no_notification(self, executor, mock_notifications):
        await executor.execute()
        mock_notifications.send_event.assert_not_awaited()
