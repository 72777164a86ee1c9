"""
Recurring execution of approved deletions.

The scheduler is created once by the application lifespan and kept on
``app.state``. Each tick calls the same ``DeletionExecutor.execute`` entry
point as a manual "run now" request, so the executor's lock keeps scheduled
and manual passes from overlapping.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from prunarr.api.notifications import NotificationEvent, NotificationPriority

logger = logging.getLogger(__name__)


class DeletionScheduler:
    """Timer that runs an execution pass every ``interval_minutes``"""

    def __init__(self, executor, config_service, notification_service=None):
        self.executor = executor
        self.config_service = config_service
        self.notifications = notification_service
        self.running = False
        self._task: Optional[asyncio.Task] = None
        self._pass: Optional[asyncio.Future] = None
        self.interval_minutes: Optional[int] = None
        self.last_run: Optional[datetime] = None
        self.next_run: Optional[datetime] = None
        self.last_outcome: Optional[str] = None
        self.last_error: Optional[str] = None
        self.notice: Optional[str] = None

    async def start(self, interval_minutes: Optional[int] = None) -> Dict[str, Any]:
        """Arm the timer; the first pass runs immediately"""
        if self.running:
            logger.warning("Deletion scheduler already running")
            return self.status()

        config = self.config_service.config
        requested = interval_minutes or config.deletion_executor_interval
        minimum = config.min_executor_interval
        self.notice = None
        if requested < minimum:
            self.notice = f"Requested interval {requested}m is below the minimum; using {minimum}m"
            logger.warning(self.notice)
            requested = minimum

        self.interval_minutes = requested
        self.running = True
        self.next_run = datetime.utcnow()
        self._task = asyncio.create_task(self._run_scheduler())
        logger.info(f"Deletion scheduler started (interval: {self.interval_minutes}m)")
        return self.status()

    async def stop(self) -> Dict[str, Any]:
        """Disarm the timer; a pass already in progress is allowed to finish"""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._pass:
            if not self._pass.done():
                logger.info("Waiting for the running deletion pass to finish")
            try:
                self._record(await self._pass)
            except Exception as e:
                self._record_error(e)
            self._pass = None
        self.next_run = None
        logger.info("Deletion scheduler stopped")
        return self.status()

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.executor.is_running,
            "scheduled": self.running,
            "interval_minutes": self.interval_minutes,
            "last_run": self.last_run,
            "next_run": self.next_run,
            "last_outcome": self.last_outcome,
            "last_error": self.last_error,
            "notice": self.notice,
            "current_execution": self.executor.current_execution,
        }

    async def _run_scheduler(self):
        """Main scheduler loop"""
        while self.running:
            try:
                await self._tick()
                self.next_run = datetime.utcnow() + timedelta(minutes=self.interval_minutes)
                await asyncio.sleep(self.interval_minutes * 60)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Deletion scheduler error: {e}")
                self.next_run = datetime.utcnow() + timedelta(minutes=self.interval_minutes)
                await asyncio.sleep(self.interval_minutes * 60)

    async def _tick(self):
        """One scheduled pass; errors are recorded and never stop the loop"""
        self.last_run = datetime.utcnow()
        # Shielded so that stop() never interrupts a pass mid-deletion; stop() awaits it instead
        self._pass = asyncio.ensure_future(self.executor.execute(trigger="scheduled"))
        try:
            summary = await asyncio.shield(self._pass)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._pass = None
            self._record_error(e)
            if self.notifications:
                await self.notifications.send_event(
                    NotificationEvent.SCHEDULER_ERROR.value,
                    {"error": str(e)},
                    priority=NotificationPriority.HIGH
                )
            return
        self._pass = None
        self._record(summary)

    def _record(self, summary: Dict[str, Any]) -> None:
        self.last_outcome = summary.get("outcome")
        self.last_error = None

    def _record_error(self, error: Exception) -> None:
        logger.error(f"Scheduled deletion pass failed: {error}")
        self.last_outcome = "error"
        self.last_error = str(error)
