import logging
import math
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Set

from ulid import ULID

from prunarr.api.db.database import get_db, dumps, loads
from prunarr.api.schemas.pending_deletions import PendingStatus, EXECUTABLE_STATUSES, OPEN_STATUSES
from prunarr.exceptions import NotFoundError, ValidationError
from prunarr.worker.rules.models import BYTES_PER_GB, MediaSnapshot

logger = logging.getLogger(__name__)

SORT_COLUMNS = ("created_at", "scheduled_date", "size")


def rule_snapshot(rule: Mapping[str, Any], taken_at: datetime) -> Dict[str, Any]:
    """The parts of a rule an execution needs, frozen at proposal time"""
    return {
        "id": rule.get("id"),
        "name": rule.get("name"),
        "conditions": rule.get("conditions") or {},
        "filters_enabled": rule.get("filters_enabled") or {},
        "media_types": rule.get("media_types") or [],
        "deletion_strategy": rule.get("deletion_strategy") or {},
        "executed_at": taken_at.isoformat(),
    }


def row_to_pending(row) -> Dict[str, Any]:
    data = dict(row)
    data["media_snapshot"] = loads(data.pop("media_snapshot_json"), {})
    data["rule_snapshot"] = loads(data.pop("rule_snapshot_json"), {})
    data["execution_results"] = loads(data.pop("execution_results_json"), [])
    return data


class PendingStore:
    """Creation and queries for pending deletions; transitions live in LifecycleManager"""

    async def create_from_match(self, media: MediaSnapshot, rule: Mapping[str, Any],
                                now: Optional[datetime] = None) -> Optional[str]:
        """
        Persist one proposal for a matched media item.

        Returns the new id, or None when the (media, rule) pair already has an
        open proposal.
        """
        db = await get_db()
        now = now or datetime.utcnow()
        pending_id = str(ULID())
        try:
            await db.execute("""
                INSERT INTO pr_pending_deletions (
                    id, media_id, rule_id, status, media_snapshot_json,
                    rule_snapshot_json, execution_results_json, size,
                    created_at, updated_at
                ) VALUES (?, ?, ?, 'pending', ?, ?, '[]', ?, ?, ?)
            """, (
                pending_id,
                media.id,
                rule["id"],
                dumps(media.to_dict()),
                dumps(rule_snapshot(rule, now)),
                media.size,
                now.isoformat(),
                now.isoformat(),
            ))
        except sqlite3.IntegrityError:
            logger.debug(f"Media {media.id} already pending for rule {rule['id']}")
            return None
        return pending_id

    async def commit(self) -> None:
        db = await get_db()
        await db.commit()

    async def rollback(self) -> None:
        db = await get_db()
        await db.rollback()

    async def open_media_ids(self, rule_id: str) -> Set[str]:
        """Media ids with a pending or approved proposal for the rule"""
        db = await get_db()
        cursor = await db.execute(
            f"SELECT media_id FROM pr_pending_deletions WHERE rule_id = ? "
            f"AND status IN ({', '.join('?' for _ in OPEN_STATUSES)})",
            (rule_id, *OPEN_STATUSES)
        )
        return {row[0] for row in await cursor.fetchall()}

    async def get(self, pending_id: str) -> Dict[str, Any]:
        db = await get_db()
        cursor = await db.execute("SELECT * FROM pr_pending_deletions WHERE id = ?", (pending_id,))
        row = await cursor.fetchone()
        if not row:
            raise NotFoundError(f"Pending deletion {pending_id} not found")
        return row_to_pending(row)

    async def list(
        self,
        page: int = 1,
        limit: int = 50,
        status: Optional[str] = PendingStatus.pending.value,
        rule_id: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        """Paginated listing; status 'all' (or None) lists every state"""
        if sort_by not in SORT_COLUMNS:
            raise ValidationError(f"sort_by must be one of: {', '.join(SORT_COLUMNS)}")
        if sort_order.lower() not in ("asc", "desc"):
            raise ValidationError("sort_order must be asc or desc")

        db = await get_db()
        where = " WHERE 1=1"
        params: List[Any] = []

        if status and status != "all":
            if status not in [s.value for s in PendingStatus]:
                raise ValidationError(f"Unknown status: {status}")
            where += " AND status = ?"
            params.append(status)
        if rule_id:
            where += " AND rule_id = ?"
            params.append(rule_id)

        cursor = await db.execute(f"SELECT COUNT(*) FROM pr_pending_deletions{where}", params)
        total = (await cursor.fetchone())[0]

        cursor = await db.execute(
            f"SELECT * FROM pr_pending_deletions{where} "
            f"ORDER BY {sort_by} {sort_order.upper()}, id ASC LIMIT ? OFFSET ?",
            params + [limit, (page - 1) * limit]
        )
        rows = await cursor.fetchall()

        return {
            "items": [row_to_pending(row) for row in rows],
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit) if limit else 0,
        }

    async def summary(self) -> Dict[str, Any]:
        db = await get_db()
        by_status = {s.value: {"count": 0, "total_size": 0} for s in PendingStatus}
        cursor = await db.execute("""
            SELECT status, COUNT(*), COALESCE(SUM(size), 0)
            FROM pr_pending_deletions GROUP BY status
        """)
        for status, count, total_size in await cursor.fetchall():
            by_status[status] = {"count": count, "total_size": total_size}
        return {
            "by_status": by_status,
            "total": sum(s["count"] for s in by_status.values()),
        }

    async def list_eligible(self, now: Optional[datetime] = None,
                            include_failed: bool = False) -> List[Dict[str, Any]]:
        """Unclaimed items ready for execution, earliest scheduled first"""
        db = await get_db()
        now = now or datetime.utcnow()
        statuses = EXECUTABLE_STATUSES if include_failed else (PendingStatus.approved.value,)
        cursor = await db.execute(
            f"""SELECT * FROM pr_pending_deletions
                WHERE status IN ({', '.join('?' for _ in statuses)})
                  AND claimed_at IS NULL
                  AND (scheduled_date IS NULL OR scheduled_date <= ?)
                ORDER BY scheduled_date ASC, created_at ASC""",
            (*statuses, now.isoformat())
        )
        return [row_to_pending(row) for row in await cursor.fetchall()]

    async def stats(self, rule_id: Optional[str] = None) -> Dict[str, Any]:
        """Deletion statistics for one rule, or for all rules"""
        db = await get_db()
        where, params = ("WHERE rule_id = ?", (rule_id,)) if rule_id else ("", ())
        cursor = await db.execute(f"""
            SELECT
                COALESCE(SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END), 0),
                COALESCE(SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END), 0),
                COALESCE(SUM(CASE WHEN status = 'completed' THEN size ELSE 0 END), 0),
                COALESCE(SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END), 0),
                COALESCE(SUM(CASE WHEN status = 'approved' THEN 1 ELSE 0 END), 0)
            FROM pr_pending_deletions {where}
        """, params)
        completed, failed, size_freed, pending, approved = await cursor.fetchone()
        return {
            "rule_id": rule_id,
            "total_executions": completed + failed,
            "total_media_deleted": completed,
            "total_failed": failed,
            "total_size_freed": size_freed,
            "total_size_freed_gb": round(size_freed / BYTES_PER_GB, 2),
            "pending_count": pending,
            "approved_count": approved,
        }
