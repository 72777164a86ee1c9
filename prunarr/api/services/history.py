import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ulid import ULID

from prunarr.api.db.database import get_db, dumps, loads

logger = logging.getLogger(__name__)

EMPTY_BATCH_NAME = "(no eligible items)"


def row_to_history(row) -> Dict[str, Any]:
    data = dict(row)
    data["media_deleted"] = loads(data.pop("media_deleted_json"), [])
    data["success"] = bool(data["success"])
    return data


class HistoryRecorder:
    """Sole writer of the append-only deletion history"""

    async def record_batch(
        self,
        trigger: str,
        items: List[Dict[str, Any]],
        media_deleted: List[Dict[str, Any]],
        items_succeeded: int,
        total_size_freed: int,
        error: Optional[str] = None,
    ) -> str:
        """
        Append one entry for an execution batch.

        Args:
            trigger: manual or scheduled
            items: Pending deletions attempted in the batch (may be empty)
            media_deleted: Summaries of media removed successfully
            items_succeeded: Number of items completed
            total_size_freed: Bytes freed across the batch
            error: First error encountered, if any

        Returns:
            The history entry id
        """
        db = await get_db()
        history_id = str(ULID())

        rules: Dict[str, str] = {}
        for item in items:
            snapshot = item.get("rule_snapshot") or {}
            rules.setdefault(item["rule_id"], snapshot.get("name") or item["rule_id"])

        if not rules:
            rule_id, rule_name = None, EMPTY_BATCH_NAME
        elif len(rules) == 1:
            rule_id, rule_name = next(iter(rules.items()))
        else:
            rule_id, rule_name = None, ", ".join(sorted(set(rules.values())))

        await db.execute("""
            INSERT INTO pr_deletion_history (
                id, rule_id, rule_name, trigger, media_deleted_json,
                items_attempted, items_succeeded, total_size_freed,
                success, error, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            history_id,
            rule_id,
            rule_name,
            trigger,
            dumps(media_deleted),
            len(items),
            items_succeeded,
            total_size_freed,
            1 if items_succeeded == len(items) else 0,
            error,
            datetime.utcnow().isoformat(),
        ))
        await db.commit()

        logger.info(
            f"Recorded deletion history {history_id}: {items_succeeded}/{len(items)} "
            f"succeeded, {total_size_freed} bytes freed"
        )
        return history_id

    async def get(self, history_id: str) -> Optional[Dict[str, Any]]:
        db = await get_db()
        cursor = await db.execute("SELECT * FROM pr_deletion_history WHERE id = ?", (history_id,))
        row = await cursor.fetchone()
        return row_to_history(row) if row else None

    async def list(self, page: int = 1, per_page: int = 50,
                   rule_id: Optional[str] = None) -> Dict[str, Any]:
        """Newest first, optionally limited to one rule"""
        db = await get_db()
        where, params = (" WHERE rule_id = ?", [rule_id]) if rule_id else ("", [])

        cursor = await db.execute(f"SELECT COUNT(*) FROM pr_deletion_history{where}", params)
        total = (await cursor.fetchone())[0]

        cursor = await db.execute(
            f"SELECT * FROM pr_deletion_history{where} "
            f"ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            params + [per_page, (page - 1) * per_page]
        )
        rows = await cursor.fetchall()
        return {
            "items": [row_to_history(row) for row in rows],
            "total": total,
            "page": page,
            "per_page": per_page,
        }
