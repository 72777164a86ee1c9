"""
Deletion executor.

Runs one execution pass over every pending deletion that is approved (and,
when retries are requested, failed) and due. Each item is claimed before its
integration is called, so an operator cancel cannot slip in while the
deletion is in flight. A pass never raises for a single item: failures are
recorded on the item and counted in the summary.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from prunarr.api.integrations import IntegrationResolver
from prunarr.api.notifications import NotificationEvent, NotificationPriority
from prunarr.api.services.history import HistoryRecorder
from prunarr.api.services.lifecycle import LifecycleManager
from prunarr.api.services.pending_store import PendingStore
from prunarr.exceptions import ConflictError, IntegrationError

logger = logging.getLogger(__name__)


class DeletionExecutor:
    """Executes approved pending deletions against their integrations"""

    def __init__(self, config_service, lifecycle: Optional[LifecycleManager] = None,
                 pending: Optional[PendingStore] = None, history: Optional[HistoryRecorder] = None,
                 resolver: Optional[IntegrationResolver] = None,
                 nats_service=None, notification_service=None):
        self.config_service = config_service
        self.pending = pending or PendingStore()
        self.lifecycle = lifecycle or LifecycleManager(self.pending)
        self.history = history or HistoryRecorder()
        self.resolver = resolver or IntegrationResolver(config_service)
        self.nats = nats_service
        self.notifications = notification_service
        self._lock = asyncio.Lock()
        self.current_execution: Optional[Dict[str, Any]] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def execute(self, trigger: str = "manual", include_failed: bool = False) -> Dict[str, Any]:
        """
        Run one execution pass.

        Args:
            trigger: manual or scheduled, recorded in history
            include_failed: also retry failed items (always on when retry_failed is configured)

        Returns:
            Execution summary; status 'busy' when another pass holds the lock
        """
        if self._lock.locked():
            logger.info(f"Execution pass requested ({trigger}) while another is running")
            return {
                "status": "busy",
                "outcome": "busy",
                "trigger": trigger,
                "current_execution": self.current_execution,
            }

        async with self._lock:
            started_at = datetime.utcnow()
            started = time.monotonic()
            config = self.config_service.config
            include_failed = include_failed or config.retry_failed

            try:
                await self.lifecycle.release_stale_claims()
                items = await self.pending.list_eligible(started_at, include_failed)
                self.current_execution = {
                    "trigger": trigger,
                    "started_at": started_at.isoformat(),
                    "total_items": len(items),
                    "processed": 0,
                }
                logger.info(f"Execution pass started ({trigger}): {len(items)} eligible items")

                semaphore = asyncio.Semaphore(config.execution_workers)
                gathered = await asyncio.gather(*(
                    self._process(item, semaphore, config.integration_timeout_sec)
                    for item in items
                ), return_exceptions=True)
                results = [
                    self._unexpected_failure(item, r) if isinstance(r, BaseException) else r
                    for item, r in zip(items, gathered)
                ]
                summary = await self._finish_batch(trigger, items, results, started_at)
            finally:
                self.current_execution = None

            summary["duration_sec"] = round(time.monotonic() - started, 3)
            logger.info(
                f"Execution pass finished ({trigger}): {summary['successful']} completed, "
                f"{summary['failed']} failed, {summary['skipped']} skipped, "
                f"{summary['bytes_freed']} bytes freed"
            )
            return summary

    async def _process(self, item: Dict[str, Any], semaphore: asyncio.Semaphore,
                       timeout: int) -> Dict[str, Any]:
        claim: Dict[str, str] = {}
        try:
            return await self._process_item(item, claim, semaphore, timeout)
        except Exception as e:
            logger.exception(f"Execution of pending deletion {item['id']} failed unexpectedly")
            if claim.get("claimed_at"):
                await self._release(item["id"], claim["claimed_at"])
            return self._unexpected_failure(item, e)

    async def _release(self, pending_id: str, claimed_at: str) -> None:
        # Anything left claimed here is cleared at the start of the next pass
        try:
            await self.lifecycle.release_claim(pending_id, claimed_at)
        except Exception as e:
            logger.error(f"Could not release execution claim on {pending_id}: {e}")

    @staticmethod
    def _summary_entry(item: Dict[str, Any]) -> Dict[str, Any]:
        media = item.get("media_snapshot") or {}
        return {
            "pending_id": item["id"],
            "media_id": item["media_id"],
            "title": media.get("title") or media.get("filename") or media.get("path") or item["media_id"],
        }

    def _unexpected_failure(self, item: Dict[str, Any], error: BaseException) -> Dict[str, Any]:
        return {**self._summary_entry(item), "outcome": "failed", "error": f"Unexpected error: {error!r}"}

    async def _process_item(self, item: Dict[str, Any], claim: Dict[str, str],
                            semaphore: asyncio.Semaphore, timeout: int) -> Dict[str, Any]:
        media = item.get("media_snapshot") or {}
        outcome = self._summary_entry(item)

        async with semaphore:
            claimed_at = await self.lifecycle.claim(item["id"], item["status"])
            if claimed_at is None:
                logger.info(f"Pending deletion {item['id']} changed state before execution, skipping")
                return {**outcome, "outcome": "skipped", "message": "State changed before execution"}
            claim["claimed_at"] = claimed_at

            strategy = (item.get("rule_snapshot") or {}).get("deletion_strategy") or {}
            integration = self.resolver.resolve(media)
            result = {
                "attempt": len(item.get("execution_results") or []) + 1,
                "attempted_at": datetime.utcnow().isoformat(),
                "integration": integration.name,
            }

            error = None
            try:
                deletion = await asyncio.wait_for(integration.delete(media, strategy), timeout)
            except asyncio.TimeoutError:
                error = f"{integration.name}: timed out after {timeout}s"
            except IntegrationError as e:
                error = str(e)
            except Exception as e:
                logger.exception(f"Unexpected error deleting {item['id']}")
                error = f"Unexpected error: {e}"

            try:
                if error is None:
                    result.update(
                        success=True,
                        action=deletion.action,
                        message=deletion.message,
                        bytes_freed=deletion.bytes_freed,
                    )
                    await self.lifecycle.complete(item["id"], claimed_at, result)
                    outcome.update(
                        outcome="completed",
                        integration=integration.name,
                        action=deletion.action,
                        message=deletion.message,
                        bytes_freed=deletion.bytes_freed,
                    )
                else:
                    logger.warning(f"Deletion of {item['id']} failed: {error}")
                    result.update(success=False, bytes_freed=0, error=error)
                    await self.lifecycle.fail(item["id"], claimed_at, result, error)
                    outcome.update(outcome="failed", integration=integration.name, error=error)
            except ConflictError as e:
                logger.error(f"Could not record execution result for {item['id']}: {e}")
                return {**outcome, "outcome": "skipped", "error": str(e)}
            claim.clear()

        if self.current_execution is not None:
            self.current_execution["processed"] += 1

        if self.nats:
            event = "deletion.item_completed" if error is None else "deletion.item_failed"
            await self.nats.publish_event(event, {**outcome, "rule_id": item["rule_id"]})
        return outcome

    async def _finish_batch(self, trigger: str, items: List[Dict[str, Any]],
                            results: List[Dict[str, Any]], started_at: datetime) -> Dict[str, Any]:
        by_id = {item["id"]: item for item in items}
        attempted = [by_id[r["pending_id"]] for r in results if r["outcome"] != "skipped"]
        completed = [r for r in results if r["outcome"] == "completed"]
        failed = [r for r in results if r["outcome"] == "failed"]
        skipped = len(results) - len(completed) - len(failed)
        bytes_freed = sum(r.get("bytes_freed", 0) for r in completed)

        media_deleted = []
        for r in completed:
            media = by_id[r["pending_id"]].get("media_snapshot") or {}
            media_deleted.append({
                "pending_id": r["pending_id"],
                "media_id": r["media_id"],
                "title": media.get("title"),
                "path": media.get("path"),
                "filename": media.get("filename"),
                "size": media.get("size") or 0,
                "type": media.get("type"),
            })

        history_id = await self.history.record_batch(
            trigger=trigger,
            items=attempted,
            media_deleted=media_deleted,
            items_succeeded=len(completed),
            total_size_freed=bytes_freed,
            error=failed[0]["error"] if failed else None,
        )

        if not attempted:
            outcome = "empty"
        elif not failed:
            outcome = "success"
        elif not completed:
            outcome = "failed"
        else:
            outcome = "partial"

        summary = {
            "status": "completed",
            "outcome": outcome,
            "trigger": trigger,
            "total_items": len(items),
            "successful": len(completed),
            "failed": len(failed),
            "skipped": skipped,
            "bytes_freed": bytes_freed,
            "started_at": started_at.isoformat(),
            "history_id": history_id,
            "results": results,
        }
        await self._announce(summary)
        return summary

    async def _announce(self, summary: Dict[str, Any]) -> None:
        if self.nats:
            await self.nats.publish_event("deletion.batch_completed", {
                k: v for k, v in summary.items() if k != "results"
            })
        if not self.notifications:
            return
        if summary["successful"]:
            await self.notifications.send_event(NotificationEvent.DELETION_EXECUTED.value, {
                "count": summary["successful"],
                "size": summary["bytes_freed"],
                "failed": summary["failed"],
                "history_id": summary["history_id"],
            })
        elif summary["failed"]:
            first_error = next(r.get("error") for r in summary["results"] if r["outcome"] == "failed")
            await self.notifications.send_event(NotificationEvent.DELETION_FAILED.value, {
                "failed": summary["failed"],
                "error": first_error,
                "history_id": summary["history_id"],
            }, priority=NotificationPriority.HIGH)
