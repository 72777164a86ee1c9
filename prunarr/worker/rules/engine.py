"""
Deletion rule engine - pure evaluation of rules over media snapshots
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .conditions import CONDITION_GROUPS, compile_conditions, evaluate_condition
from .models import Condition, EvaluationResult, MediaSnapshot

logger = logging.getLogger(__name__)

MEDIA_TYPES = ("movie", "show", "music", "photo", "other")
WATCH_STATUSES = ("watched", "unwatched", "in-progress")


class RuleMatcher:
    """Compiled form of one deletion rule"""

    def __init__(self, conditions: Mapping[str, Any], filters_enabled: Mapping[str, bool],
                 media_types: Optional[Iterable[str]] = None, name: str = ""):
        self.name = name
        self.filters_enabled = {g: bool((filters_enabled or {}).get(g)) for g in CONDITION_GROUPS}
        self.conditions: List[Condition] = compile_conditions(conditions, filters_enabled)
        self.media_types = {t for t in (media_types or []) if t}

    @classmethod
    def from_rule(cls, rule: Mapping[str, Any]) -> "RuleMatcher":
        """Build from a rule dict or a stored rule snapshot"""
        return cls(
            conditions=rule.get("conditions") or {},
            filters_enabled=rule.get("filters_enabled") or {},
            media_types=rule.get("media_types") or [],
            name=rule.get("name", ""),
        )

    @property
    def default_allow(self) -> bool:
        """True when nothing restricts the rule beyond media type and protection"""
        return not self.conditions

    def targets(self, media_type: str) -> bool:
        if not self.media_types:
            return True
        return media_type in self.media_types

    def first_failure(self, media: MediaSnapshot, now: datetime) -> Optional[str]:
        """Return why the media is excluded (group name), or None when it matches"""
        if media.protected:
            return "protected"
        if not self.targets(media.type):
            return "media_type"
        for condition in self.conditions:
            if not evaluate_condition(media, condition, now):
                return condition.group
        return None

    def matches(self, media: MediaSnapshot, now: Optional[datetime] = None) -> bool:
        return self.first_failure(media, now or datetime.utcnow()) is None


class RulesEngine:
    """Applies deletion rules to media sets and keeps evaluation statistics"""

    def __init__(self):
        self.stats = {
            'total_evaluations': 0,
            'media_evaluated': 0,
            'media_matched': 0,
            'default_allow_evaluations': 0,
        }

    def evaluate(self, rule: Mapping[str, Any], media_items: Iterable[MediaSnapshot],
                 now: Optional[datetime] = None) -> EvaluationResult:
        """
        Evaluate one rule against a media set.

        Args:
            rule: Rule dict (conditions, filters_enabled, media_types, name)
            media_items: Candidate media snapshots
            now: Reference time for age-based conditions (defaults to utcnow)

        Returns:
            EvaluationResult with matches sorted by size, largest first
        """
        matcher = rule if isinstance(rule, RuleMatcher) else RuleMatcher.from_rule(rule)
        now = now or datetime.utcnow()
        self.stats['total_evaluations'] += 1

        if matcher.default_allow:
            self.stats['default_allow_evaluations'] += 1
            logger.warning(
                f"Rule '{matcher.name}' has no active conditions and matches every "
                f"unprotected item of its media types"
            )

        result = EvaluationResult(
            by_type={t: 0 for t in MEDIA_TYPES},
            by_watch_status={s: 0 for s in WATCH_STATUSES},
            excluded_by_filter={g: 0 for g in ("protected", "media_type") + CONDITION_GROUPS},
        )

        for media in media_items:
            result.total_processed += 1
            reason = matcher.first_failure(media, now)
            if reason is not None:
                result.excluded_by_filter[reason] = result.excluded_by_filter.get(reason, 0) + 1
                continue

            result.matches.append(media)
            result.total_size += media.size
            result.by_type[media.type] = result.by_type.get(media.type, 0) + 1
            result.by_watch_status[media.watch_status] = result.by_watch_status.get(media.watch_status, 0) + 1

        result.matches.sort(key=lambda m: m.size, reverse=True)

        self.stats['media_evaluated'] += result.total_processed
        self.stats['media_matched'] += result.count

        logger.info(
            f"Rule '{matcher.name}' evaluated: {result.count}/{result.total_processed} matched, "
            f"{result.total_size} bytes"
        )
        logger.debug(f"Exclusions for rule '{matcher.name}': {result.excluded_by_filter}")
        return result

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics"""
        return dict(self.stats)
