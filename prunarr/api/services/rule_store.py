import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ulid import ULID

from prunarr.api.db.database import get_db, dumps, loads
from prunarr.exceptions import NotFoundError
from prunarr.worker.rules.models import parse_timestamp

logger = logging.getLogger(__name__)

UNIT_DELTAS = {
    "hours": timedelta(hours=1),
    "days": timedelta(days=1),
    "weeks": timedelta(weeks=1),
}


def compute_next_run(schedule: Optional[Mapping[str, Any]], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Next time a rule schedule is due.

    Daily, weekly and monthly schedules fire at ``time`` (HH:MM, UTC); weekly
    is the first slot at least six days out, monthly the first day of the
    next month. Custom schedules repeat every ``interval`` ``unit`` from now.
    Manual or disabled schedules never fire.
    """
    if not schedule or not schedule.get("enabled"):
        return None
    frequency = schedule.get("frequency", "manual")
    if frequency == "manual":
        return None

    now = now or datetime.utcnow()
    if frequency == "custom":
        interval = max(int(schedule.get("interval") or 1), 1)
        return now + UNIT_DELTAS.get(schedule.get("unit", "days"), UNIT_DELTAS["days"]) * interval

    hours, minutes = (int(part) for part in (schedule.get("time") or "02:00").split(":"))

    if frequency == "monthly":
        year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
        return datetime(year, month, 1, hours, minutes)

    floor = now + timedelta(days=6) if frequency == "weekly" else now
    candidate = floor.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    if candidate <= floor:
        candidate += timedelta(days=1)
    return candidate


def row_to_rule(row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "description": row["description"],
        "media_types": loads(row["media_types_json"], []),
        "conditions": loads(row["conditions_json"], {}),
        "filters_enabled": loads(row["filters_enabled_json"], {}),
        "deletion_strategy": loads(row["deletion_strategy_json"], {}),
        "schedule": loads(row["schedule_json"], {}),
        "enabled": bool(row["enabled"]),
        "last_run": row["last_run"],
        "next_run": row["next_run"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


class RuleStore:
    """Persistence for deletion rules"""

    async def create(self, rule: Dict[str, Any]) -> Dict[str, Any]:
        db = await get_db()
        rule_id = str(ULID())
        now = datetime.utcnow()
        next_run = compute_next_run(rule.get("schedule"), now)

        await db.execute("""
            INSERT INTO pr_rules (
                id, name, description, media_types_json, conditions_json,
                filters_enabled_json, deletion_strategy_json, schedule_json,
                enabled, next_run, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            rule_id,
            rule["name"],
            rule.get("description"),
            dumps(rule.get("media_types", [])),
            dumps(rule.get("conditions", {})),
            dumps(rule.get("filters_enabled", {})),
            dumps(rule.get("deletion_strategy", {})),
            dumps(rule.get("schedule", {})),
            1 if rule.get("enabled", True) else 0,
            next_run.isoformat() if next_run else None,
            now.isoformat(),
            now.isoformat(),
        ))
        await db.commit()

        logger.info(f"Created rule {rule_id}: {rule['name']}")
        return await self.get(rule_id)

    async def get(self, rule_id: str) -> Dict[str, Any]:
        db = await get_db()
        cursor = await db.execute("SELECT * FROM pr_rules WHERE id = ?", (rule_id,))
        row = await cursor.fetchone()
        if not row:
            raise NotFoundError(f"Rule {rule_id} not found")
        return row_to_rule(row)

    async def list(self, page: int = 1, per_page: int = 50,
                   enabled: Optional[bool] = None) -> Tuple[List[Dict[str, Any]], int]:
        db = await get_db()
        where = " WHERE 1=1"
        params: List[Any] = []
        if enabled is not None:
            where += " AND enabled = ?"
            params.append(1 if enabled else 0)

        cursor = await db.execute(f"SELECT COUNT(*) FROM pr_rules{where}", params)
        total = (await cursor.fetchone())[0]

        cursor = await db.execute(
            f"SELECT * FROM pr_rules{where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            params + [per_page, (page - 1) * per_page]
        )
        rows = await cursor.fetchall()
        return [row_to_rule(row) for row in rows], total

    async def update(self, rule_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a partial update; None values are left untouched"""
        db = await get_db()
        await self.get(rule_id)

        json_fields = {
            "media_types": "media_types_json",
            "conditions": "conditions_json",
            "filters_enabled": "filters_enabled_json",
            "deletion_strategy": "deletion_strategy_json",
            "schedule": "schedule_json",
        }
        assignments = []
        params: List[Any] = []

        for key, value in updates.items():
            if value is None:
                continue
            if key in json_fields:
                assignments.append(f"{json_fields[key]} = ?")
                params.append(dumps(value))
            elif key == "enabled":
                assignments.append("enabled = ?")
                params.append(1 if value else 0)
            elif key in ("name", "description"):
                assignments.append(f"{key} = ?")
                params.append(value)

        if updates.get("schedule") is not None:
            next_run = compute_next_run(updates["schedule"])
            assignments.append("next_run = ?")
            params.append(next_run.isoformat() if next_run else None)

        if assignments:
            assignments.append("updated_at = ?")
            params.append(datetime.utcnow().isoformat())
            await db.execute(
                f"UPDATE pr_rules SET {', '.join(assignments)} WHERE id = ?",
                params + [rule_id]
            )
            await db.commit()
            logger.info(f"Updated rule {rule_id}")

        return await self.get(rule_id)

    async def delete(self, rule_id: str) -> None:
        """Delete a rule; its pending deletions keep their rule snapshot"""
        db = await get_db()
        cursor = await db.execute("DELETE FROM pr_rules WHERE id = ?", (rule_id,))
        await db.commit()
        if cursor.rowcount == 0:
            raise NotFoundError(f"Rule {rule_id} not found")
        logger.info(f"Deleted rule {rule_id}")

    async def duplicate(self, rule_id: str) -> Dict[str, Any]:
        """Copy a rule; the copy starts disabled"""
        original = await self.get(rule_id)
        copy = {k: original[k] for k in (
            "description", "media_types", "conditions", "filters_enabled",
            "deletion_strategy", "schedule",
        )}
        copy["name"] = f"{original['name']} (Copy)"
        copy["enabled"] = False
        return await self.create(copy)

    async def set_enabled(self, rule_id: str, enabled: bool) -> Dict[str, Any]:
        db = await get_db()
        cursor = await db.execute(
            "UPDATE pr_rules SET enabled = ?, updated_at = ? WHERE id = ?",
            (1 if enabled else 0, datetime.utcnow().isoformat(), rule_id)
        )
        await db.commit()
        if cursor.rowcount == 0:
            raise NotFoundError(f"Rule {rule_id} not found")
        logger.info(f"Rule {rule_id} {'enabled' if enabled else 'disabled'}")
        return await self.get(rule_id)

    async def mark_run(self, rule_id: str, ran_at: Optional[datetime] = None) -> None:
        """Record a proposal run and move next_run forward"""
        db = await get_db()
        ran_at = ran_at or datetime.utcnow()
        rule = await self.get(rule_id)
        next_run = compute_next_run(rule["schedule"], ran_at)
        await db.execute(
            "UPDATE pr_rules SET last_run = ?, next_run = ?, updated_at = ? WHERE id = ?",
            (ran_at.isoformat(), next_run.isoformat() if next_run else None,
             ran_at.isoformat(), rule_id)
        )
        await db.commit()

    async def due_rules(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Enabled rules with an active schedule whose next_run has passed (or was never set)"""
        db = await get_db()
        now = now or datetime.utcnow()
        cursor = await db.execute("SELECT * FROM pr_rules WHERE enabled = 1 ORDER BY created_at ASC")
        rows = await cursor.fetchall()

        due = []
        for row in rows:
            rule = row_to_rule(row)
            schedule = rule["schedule"] or {}
            if not schedule.get("enabled") or schedule.get("frequency", "manual") == "manual":
                continue
            next_run = parse_timestamp(rule["next_run"])
            if next_run is None or next_run <= now:
                due.append(rule)
        return due
