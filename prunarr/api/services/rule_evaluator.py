import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from prunarr.api.notifications import NotificationEvent
from prunarr.api.services.media_catalog import MediaCatalog
from prunarr.api.services.pending_store import PendingStore
from prunarr.api.services.rule_store import RuleStore
from prunarr.exceptions import ValidationError
from prunarr.worker.rules.engine import RuleMatcher, RulesEngine
from prunarr.worker.rules.models import EvaluationResult

logger = logging.getLogger(__name__)


def preview_payload(rule_id: Optional[str], matcher: RuleMatcher,
                    result: EvaluationResult) -> Dict[str, Any]:
    return {
        "rule_id": rule_id,
        "count": result.count,
        "total_size": result.total_size,
        "affected_media": [
            {
                "id": media.id,
                "title": media.display_title,
                "path": media.path,
                "type": media.type,
                "size": media.size,
                "added_at": media.added_at,
                "watch_status": media.watch_status,
                "quality_name": media.quality_name,
                "resolution": media.resolution,
                "rating": media.rating_value,
            }
            for media in result.matches
        ],
        "stats": {
            "by_type": result.by_type,
            "by_watch_status": result.by_watch_status,
            "total_processed": result.total_processed,
            "excluded_by_filter": result.excluded_by_filter,
        },
        "default_allow": matcher.default_allow,
    }


class RuleEvaluator:
    """
    Applies a stored rule to the media catalog.

    ``preview`` only reports what would match; ``propose`` persists one
    pending deletion per match that is not already awaiting a decision for
    the same rule.
    """

    def __init__(self, catalog: Optional[MediaCatalog] = None, rules: Optional[RuleStore] = None,
                 pending: Optional[PendingStore] = None, engine: Optional[RulesEngine] = None,
                 nats_service=None, notification_service=None):
        self.catalog = catalog or MediaCatalog()
        self.rules = rules or RuleStore()
        self.pending = pending or PendingStore()
        self.engine = engine or RulesEngine()
        self.nats = nats_service
        self.notifications = notification_service

    async def _evaluate(self, rule: Mapping[str, Any], now: Optional[datetime] = None):
        matcher = RuleMatcher.from_rule(rule)
        media = await self.catalog.list_candidates(matcher.media_types)
        return matcher, self.engine.evaluate(matcher, media, now)

    async def preview(self, rule_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        rule = await self.rules.get(rule_id)
        matcher, result = await self._evaluate(rule, now)
        return preview_payload(rule_id, matcher, result)

    async def preview_rule(self, rule: Mapping[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        """Preview an unsaved rule definition"""
        matcher, result = await self._evaluate(rule, now)
        return preview_payload(None, matcher, result)

    async def propose(self, rule_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        rule = await self.rules.get(rule_id)
        if not rule["enabled"]:
            raise ValidationError(f"Rule '{rule['name']}' is disabled")

        now = now or datetime.utcnow()
        _, result = await self._evaluate(rule, now)
        already_open = await self.pending.open_media_ids(rule_id)

        created: List[str] = []
        created_size = 0
        skipped = 0
        try:
            for media in result.matches:
                if media.id in already_open:
                    skipped += 1
                    continue
                pending_id = await self.pending.create_from_match(media, rule, now)
                if pending_id is None:
                    skipped += 1
                    continue
                created.append(pending_id)
                created_size += media.size
            await self.pending.commit()
        except BaseException:
            # A half-written proposal batch must not be persisted by the next unrelated commit
            await self.pending.rollback()
            raise
        await self.rules.mark_run(rule_id, now)

        logger.info(
            f"Rule '{rule['name']}' proposed {len(created)} deletions "
            f"({skipped} already pending, {result.count} matched)"
        )

        if created:
            await self._announce(rule, created, created_size)

        return {
            "rule_id": rule_id,
            "matched": result.count,
            "created": len(created),
            "skipped_existing": skipped,
            "total_size": created_size,
            "pending_ids": created,
        }

    async def _announce(self, rule: Mapping[str, Any], created: List[str], size: int) -> None:
        data = {
            "rule_id": rule["id"],
            "rule_name": rule["name"],
            "count": len(created),
            "size": size,
            "pending_ids": created,
        }
        if self.nats:
            await self.nats.publish_event("deletion.proposed", data)
        if self.notifications:
            await self.notifications.send_event(NotificationEvent.DELETION_PROPOSED.value, data)
