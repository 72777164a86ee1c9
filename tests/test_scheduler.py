import asyncio
import pytest
from unittest.mock import Mock, AsyncMock

from prunarr.api.notifications import NotificationEvent, NotificationPriority
from prunarr.api.services.history import HistoryRecorder
from prunarr.worker.deletion_executor import DeletionExecutor
from prunarr.worker.deletion_scheduler import DeletionScheduler


@pytest.fixture
def executor():
    executor = Mock()
    executor.execute = AsyncMock(return_value={"status": "completed", "outcome": "empty"})
    executor.is_running = False
    executor.current_execution = None
    return executor


@pytest.fixture
async def scheduler(executor, config_service, mock_notifications):
    scheduler = DeletionScheduler(executor, config_service, mock_notifications)
    yield scheduler
    await scheduler.stop()


class TestDeletionScheduler:

    @pytest.mark.worker
    async def test_start_uses_configured_interval(self, scheduler, config_service):
        status = await scheduler.start()

        assert status["scheduled"] is True
        assert status["interval_minutes"] == config_service.config.deletion_executor_interval
        assert status["notice"] is None
        assert status["next_run"] is not None

    @pytest.mark.worker
    async def test_interval_below_minimum_is_clamped(self, scheduler, config_service):
        status = await scheduler.start(interval_minutes=1)

        assert status["interval_minutes"] == config_service.config.min_executor_interval
        assert "below the minimum" in status["notice"]

    @pytest.mark.worker
    async def test_first_pass_runs_immediately(self, scheduler, executor):
        await scheduler.start(interval_minutes=60)
        await asyncio.sleep(0.05)

        executor.execute.assert_awaited_once_with(trigger="scheduled")
        status = scheduler.status()
        assert status["last_outcome"] == "empty"
        assert status["last_run"] is not None
        assert status["last_error"] is None

    @pytest.mark.worker
    async def test_start_twice_keeps_one_timer(self, scheduler, executor):
        await scheduler.start(interval_minutes=60)
        await scheduler.start(interval_minutes=10)
        await asyncio.sleep(0.05)

        assert scheduler.interval_minutes == 60
        assert executor.execute.await_count == 1

    @pytest.mark.worker
    async def test_stop_disarms(self, scheduler):
        await scheduler.start(interval_minutes=60)
        status = await scheduler.stop()

        assert status["scheduled"] is False
        assert status["next_run"] is None

    @pytest.mark.worker
    async def test_pass_error_is_recorded_and_loop_survives(
        self, scheduler, executor, mock_notifications
    ):
        executor.execute.side_effect = RuntimeError("database is locked")

        await scheduler.start(interval_minutes=60)
        await asyncio.sleep(0.05)

        status = scheduler.status()
        assert status["scheduled"] is True
        assert status["last_outcome"] == "error"
        assert status["last_error"] == "database is locked"
        call = mock_notifications.send_event.await_args
        assert call.args[0] == NotificationEvent.SCHEDULER_ERROR.value
        assert call.kwargs["priority"] == NotificationPriority.HIGH

    @pytest.mark.worker
    async def test_stop_waits_for_running_pass(self, scheduler, executor):
        finished = asyncio.Event()

        async def slow_execute(trigger):
            await asyncio.sleep(0.1)
            finished.set()
            return {"outcome": "success"}

        executor.execute = slow_execute
        await scheduler.start(interval_minutes=60)
        await asyncio.sleep(0.02)
        status = await scheduler.stop()

        assert finished.is_set()
        assert status["last_outcome"] == "success"

    @pytest.mark.worker
    async def test_failing_error_notification_keeps_loop_alive(
        self, scheduler, executor, mock_notifications
    ):
        executor.execute.side_effect = RuntimeError("database is locked")
        mock_notifications.send_event.side_effect = RuntimeError("webhook down")

        await scheduler.start(interval_minutes=60)
        await asyncio.sleep(0.05)

        assert not scheduler._task.done()
        status = scheduler.status()
        assert status["scheduled"] is True
        assert status["last_error"] == "database is locked"


class TestSchedulerWithExecutor:

    @pytest.mark.worker
    async def test_scheduled_pass_is_recorded_as_scheduled(
        self, test_db, config_service, fake_resolver
    ):
        executor = DeletionExecutor(config_service, resolver=fake_resolver)
        scheduler = DeletionScheduler(executor, config_service)

        await scheduler.start(interval_minutes=60)
        for _ in range(100):
            if scheduler.last_outcome:
                break
            await asyncio.sleep(0.02)
        await scheduler.stop()

        history = await HistoryRecorder().list()
        assert history["total"] == 1
        assert history["items"][0]["trigger"] == "scheduled"
        assert scheduler.last_outcome == "empty"

    @pytest.mark.worker
    async def test_stop_leaves_no_pass_running(self, test_db, config_service, fake_resolver):
        executor = DeletionExecutor(config_service, resolver=fake_resolver)
        release = executor.lifecycle.release_stale_claims

        async def slow_release():
            await asyncio.sleep(0.2)
            return await release()

        executor.lifecycle.release_stale_claims = slow_release
        scheduler = DeletionScheduler(executor, config_service)

        await scheduler.start(interval_minutes=60)
        await asyncio.sleep(0.05)
        assert executor.is_running

        await scheduler.stop()

        assert not executor.is_running
        assert (await HistoryRecorder().list())["total"] == 1
