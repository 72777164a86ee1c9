"""
Pending deletion state machine.

pending -> approved | cancelled
approved -> cancelled | completed | failed
failed -> completed | failed (retries)

Every transition is a conditional UPDATE on the expected status, so a
transition that loses a race affects no rows and is reported as a conflict
instead of overwriting the winner.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from prunarr.api.db.database import get_db, dumps
from prunarr.api.schemas.pending_deletions import PendingStatus, OPEN_STATUSES
from prunarr.api.services.pending_store import PendingStore
from prunarr.exceptions import ConflictError, PrunarrError
from prunarr.worker.rules.models import parse_timestamp

logger = logging.getLogger(__name__)


class LifecycleManager:
    """Enforces legal transitions and records who did what, when and why"""

    def __init__(self, store: Optional[PendingStore] = None):
        self.store = store or PendingStore()

    async def approve(self, pending_id: str, approved_by: str = "system",
                      scheduled_date: Optional[datetime] = None,
                      reason: Optional[str] = None) -> Dict[str, Any]:
        item = await self.store.get(pending_id)
        if item["status"] != PendingStatus.pending.value:
            raise ConflictError(
                f"Cannot approve pending deletion {pending_id} in status '{item['status']}'",
                current_status=item["status"]
            )

        db = await get_db()
        now = datetime.utcnow()
        scheduled = parse_timestamp(scheduled_date) or now
        cursor = await db.execute("""
            UPDATE pr_pending_deletions
            SET status = 'approved', approved_by = ?, approved_at = ?,
                approval_reason = ?, scheduled_date = ?, updated_at = ?
            WHERE id = ? AND status = 'pending'
        """, (approved_by or "system", now.isoformat(), reason,
              scheduled.isoformat(), now.isoformat(), pending_id))
        await db.commit()

        if cursor.rowcount == 0:
            await self._raise_concurrent(pending_id, "approve")

        logger.info(f"Pending deletion {pending_id} approved by {approved_by}")
        return await self.store.get(pending_id)

    async def cancel(self, pending_id: str, cancelled_by: str = "system",
                     reason: Optional[str] = None) -> Dict[str, Any]:
        item = await self.store.get(pending_id)
        status = item["status"]
        if status not in OPEN_STATUSES:
            raise ConflictError(
                f"Cannot cancel pending deletion {pending_id} in status '{status}'",
                current_status=status
            )
        if item.get("claimed_at"):
            raise ConflictError(
                f"Pending deletion {pending_id} is being executed and can no longer be cancelled",
                current_status=status
            )

        db = await get_db()
        now = datetime.utcnow().isoformat()
        cursor = await db.execute("""
            UPDATE pr_pending_deletions
            SET status = 'cancelled', cancelled_by = ?, cancelled_at = ?,
                cancellation_reason = ?, updated_at = ?
            WHERE id = ? AND status = ? AND claimed_at IS NULL
        """, (cancelled_by or "system", now, reason, now, pending_id, status))
        await db.commit()

        if cursor.rowcount == 0:
            await self._raise_concurrent(pending_id, "cancel")

        logger.info(f"Pending deletion {pending_id} cancelled by {cancelled_by}")
        return await self.store.get(pending_id)

    async def bulk_approve(self, ids: List[str], approved_by: str = "system",
                           scheduled_date: Optional[datetime] = None,
                           reason: Optional[str] = None) -> Dict[str, Any]:
        results = []
        for pending_id in ids:
            try:
                item = await self.approve(pending_id, approved_by, scheduled_date, reason)
                results.append({"id": pending_id, "success": True, "status": item["status"]})
            except PrunarrError as e:
                results.append(self._failure(pending_id, e))
        return self._bulk_response(results)

    async def bulk_cancel(self, ids: List[str], cancelled_by: str = "system",
                          reason: Optional[str] = None) -> Dict[str, Any]:
        results = []
        for pending_id in ids:
            try:
                item = await self.cancel(pending_id, cancelled_by, reason)
                results.append({"id": pending_id, "success": True, "status": item["status"]})
            except PrunarrError as e:
                results.append(self._failure(pending_id, e))
        return self._bulk_response(results)

    # Execution transitions, used only by the deletion executor

    async def claim(self, pending_id: str, expected_status: str) -> Optional[str]:
        """Mark an item as in flight; returns the claim token or None if it moved on"""
        db = await get_db()
        claimed_at = datetime.utcnow().isoformat()
        cursor = await db.execute("""
            UPDATE pr_pending_deletions
            SET claimed_at = ?, updated_at = ?
            WHERE id = ? AND status = ? AND claimed_at IS NULL
        """, (claimed_at, claimed_at, pending_id, expected_status))
        await db.commit()
        return claimed_at if cursor.rowcount else None

    async def release_stale_claims(self) -> int:
        """Clear claims left behind by an execution pass that never finished"""
        db = await get_db()
        cursor = await db.execute("""
            UPDATE pr_pending_deletions SET claimed_at = NULL, updated_at = ?
            WHERE claimed_at IS NOT NULL
        """, (datetime.utcnow().isoformat(),))
        await db.commit()
        if cursor.rowcount:
            logger.warning(f"Released {cursor.rowcount} stale execution claims")
        return cursor.rowcount

    async def release_claim(self, pending_id: str, claimed_at: str) -> bool:
        """Drop one claim without recording a result, leaving the item in its current state"""
        db = await get_db()
        cursor = await db.execute("""
            UPDATE pr_pending_deletions SET claimed_at = NULL, updated_at = ?
            WHERE id = ? AND claimed_at = ?
        """, (datetime.utcnow().isoformat(), pending_id, claimed_at))
        await db.commit()
        return cursor.rowcount > 0

    async def complete(self, pending_id: str, claimed_at: str, result: Dict[str, Any]) -> None:
        await self._finish(pending_id, claimed_at, result, PendingStatus.completed.value, None)

    async def fail(self, pending_id: str, claimed_at: str, result: Dict[str, Any], error: str) -> None:
        await self._finish(pending_id, claimed_at, result, PendingStatus.failed.value, error)

    async def _finish(self, pending_id: str, claimed_at: str, result: Dict[str, Any],
                      status: str, error: Optional[str]) -> None:
        item = await self.store.get(pending_id)
        results = list(item.get("execution_results") or [])
        results.append(result)

        db = await get_db()
        now = datetime.utcnow().isoformat()
        cursor = await db.execute("""
            UPDATE pr_pending_deletions
            SET status = ?, execution_results_json = ?, error = ?,
                completed_at = CASE WHEN ? = 'completed' THEN ? ELSE completed_at END,
                claimed_at = NULL, updated_at = ?
            WHERE id = ? AND claimed_at = ?
        """, (status, dumps(results), error, status, now, now, pending_id, claimed_at))
        await db.commit()

        if cursor.rowcount == 0:
            raise ConflictError(f"Lost execution claim on pending deletion {pending_id}")
        logger.debug(f"Pending deletion {pending_id} -> {status}")

    async def _raise_concurrent(self, pending_id: str, action: str) -> None:
        item = await self.store.get(pending_id)
        raise ConflictError(
            f"Cannot {action} pending deletion {pending_id}: state changed concurrently "
            f"(now '{item['status']}')",
            current_status=item["status"]
        )

    @staticmethod
    def _failure(pending_id: str, error: PrunarrError) -> Dict[str, Any]:
        return {
            "id": pending_id,
            "success": False,
            "status": getattr(error, "current_status", None),
            "error": str(error),
            "error_type": type(error).__name__,
        }

    @staticmethod
    def _bulk_response(results: List[Dict[str, Any]]) -> Dict[str, Any]:
        succeeded = sum(1 for r in results if r["success"])
        return {
            "total": len(results),
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
            "results": results,
        }
