"""
Rule scheduler.

Proposes pending deletions for rules whose own schedule is due. It never
executes deletions; proposals still go through approval.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from prunarr.api.services.rule_evaluator import RuleEvaluator
from prunarr.exceptions import PrunarrError

logger = logging.getLogger(__name__)


class RuleScheduler:
    """Checks rule schedules every ``check_interval`` seconds"""

    def __init__(self, evaluator: RuleEvaluator, check_interval: int = 60):
        self.evaluator = evaluator
        self.check_interval = check_interval
        self.running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the scheduler"""
        if self.running:
            logger.warning("Rule scheduler already running")
            return

        self.running = True
        self._task = asyncio.create_task(self._run_scheduler())
        logger.info(f"Rule scheduler started (check interval: {self.check_interval}s)")

    async def stop(self):
        """Stop the scheduler"""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Rule scheduler stopped")

    async def _run_scheduler(self):
        """Main scheduler loop"""
        while self.running:
            try:
                await self.run_due_rules()
                await asyncio.sleep(self.check_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Rule scheduler error: {e}")
                await asyncio.sleep(self.check_interval)

    async def run_due_rules(self, now: Optional[datetime] = None) -> int:
        """Propose deletions for every due rule; returns how many rules ran"""
        now = now or datetime.utcnow()
        due = await self.evaluator.rules.due_rules(now)
        ran = 0
        for rule in due:
            try:
                result = await self.evaluator.propose(rule["id"], now)
                ran += 1
                logger.info(
                    f"Scheduled run of rule '{rule['name']}': {result['created']} new pending deletions"
                )
            except PrunarrError as e:
                logger.error(f"Scheduled run of rule '{rule['name']}' failed: {e}")
                # Move past this slot so a broken rule is not retried every check
                await self.evaluator.rules.mark_run(rule["id"], now)
        return ran
