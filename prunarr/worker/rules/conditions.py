"""
Condition registry for deletion rules.

Rule conditions are stored as a flat mapping (``{"min_age": 30, ...}``).
``compile_conditions`` turns the keys that belong to enabled groups into
``Condition`` variants, and each variant is evaluated by the function
registered for its ``kind``. Evaluators are pure: they only read the media
snapshot and the supplied ``now``.

Missing media data never fails a sub-check on its own (no rating, no quality
information, unknown added date, never played); equality filters such as
network or series status still require the value to be present.
"""
import logging
import operator
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from prunarr.exceptions import ValidationError
from .models import Condition, MediaSnapshot

logger = logging.getLogger(__name__)

Evaluator = Callable[[MediaSnapshot, Condition, datetime], bool]

CONDITION_GROUPS = (
    "age",
    "quality",
    "enhanced_quality",
    "size",
    "status",
    "title",
    "media_specific",
    "arr_integration",
    "tautulli",
)

# condition key -> (group, kind, operator)
CONDITION_KEYS: Dict[str, Tuple[str, str, str]] = {
    "min_age": ("age", "age_days", "gte"),
    "min_rating": ("quality", "rating", "gte"),
    "max_rating": ("quality", "rating", "lte"),
    "min_quality": ("quality", "quality_tier", "gte"),
    "max_quality": ("quality", "quality_tier", "lte"),
    "resolution": ("enhanced_quality", "resolution", "contains"),
    "quality_profile": ("enhanced_quality", "quality_profile", "contains"),
    "min_size": ("size", "size_gb", "gte"),
    "max_size": ("size", "size_gb", "lte"),
    "watch_status": ("status", "watch_status", "eq"),
    "title_contains": ("title", "title", "contains"),
    "title_exact": ("title", "title", "eq"),
    "series_status": ("media_specific", "series_status", "eq"),
    "network": ("media_specific", "network", "eq"),
    "monitoring_status": ("arr_integration", "monitoring", "eq"),
    "download_status": ("arr_integration", "download_status", "eq"),
    "tags": ("arr_integration", "tags", "any_of"),
    "max_view_count": ("tautulli", "view_count", "lte"),
    "min_view_count": ("tautulli", "view_count", "gte"),
    "days_since_last_watched": ("tautulli", "days_since_played", "gte"),
    "min_watch_percentage": ("tautulli", "watch_percentage", "gte"),
}

NUMERIC_KINDS = {"age_days", "rating", "size_gb", "view_count", "days_since_played", "watch_percentage"}

OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "gte": operator.ge,
    "lte": operator.le,
    "eq": operator.eq,
}

# Ordered from best to worst so "2160p" is not mistaken for "1080p" etc.
QUALITY_TIERS = [
    (("2160p", "4k", "uhd"), 5),
    (("1080p",), 4),
    (("720p", "hd"), 3),
    (("480p",), 2),
    (("sd", "dvd"), 1),
]

EVALUATORS: Dict[str, Evaluator] = {}


def register(kind: str):
    """Register an evaluator function for a condition kind"""
    def decorator(func: Evaluator) -> Evaluator:
        EVALUATORS[kind] = func
        return func
    return decorator


def quality_order(quality: Optional[str]) -> int:
    """Map a quality/resolution label to a tier, 0 when unknown"""
    if not quality:
        return 0
    label = str(quality).lower()
    for aliases, tier in QUALITY_TIERS:
        if any(alias == label for alias in aliases):
            return tier
    for aliases, tier in QUALITY_TIERS:
        if any(alias in label for alias in aliases):
            return tier
    return 0


def is_unset(value: Any) -> bool:
    """Values that switch a single sub-check off even inside an enabled group"""
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        return value.strip() == "" or value.strip().lower() == "any"
    if isinstance(value, (int, float)):
        return value == 0
    if isinstance(value, (list, tuple, set)):
        return len(value) == 0
    return False


def _normalize(key: str, kind: str, value: Any) -> Any:
    if kind in NUMERIC_KINDS:
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Condition '{key}' must be numeric, got {value!r}")
        if number < 0:
            raise ValidationError(f"Condition '{key}' must not be negative")
        return number

    if kind == "quality_tier":
        tier = quality_order(value)
        if tier == 0:
            raise ValidationError(f"Unknown quality '{value}' for condition '{key}'")
        return tier

    if kind == "tags":
        if isinstance(value, str):
            tags = [t.strip() for t in value.split(",")]
        else:
            tags = [str(t).strip() for t in value]
        return [t for t in tags if t]

    if kind == "monitoring":
        state = str(value).strip().lower()
        if state not in ("monitored", "unmonitored"):
            raise ValidationError("monitoring_status must be 'monitored', 'unmonitored' or 'any'")
        return state

    return str(value).strip()


def compile_conditions(conditions: Mapping[str, Any],
                       filters_enabled: Mapping[str, bool]) -> List[Condition]:
    """
    Compile a rule's stored conditions into evaluable variants.

    Only keys whose group is enabled are compiled; unset values are dropped.
    Raises ValidationError for unknown keys or groups and malformed values.
    """
    unknown_groups = set(filters_enabled or {}) - set(CONDITION_GROUPS)
    if unknown_groups:
        raise ValidationError(f"Unknown condition group(s): {sorted(unknown_groups)}")

    compiled = []
    for key, value in (conditions or {}).items():
        if key not in CONDITION_KEYS:
            raise ValidationError(f"Unknown condition: {key}")
        group, kind, op = CONDITION_KEYS[key]
        if not (filters_enabled or {}).get(group):
            continue
        if is_unset(value):
            continue
        compiled.append(Condition(
            group=group,
            key=key,
            kind=kind,
            operator=op,
            value=_normalize(key, kind, value),
        ))
    return compiled


def evaluate_condition(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    evaluator = EVALUATORS.get(condition.kind)
    if evaluator is None:
        raise ValidationError(f"No evaluator registered for condition kind '{condition.kind}'")
    return evaluator(media, condition, now)


def _compare(actual: Any, op: str, expected: Any) -> bool:
    # Absent data does not participate
    if actual is None:
        return True
    return OPERATORS[op](actual, expected)


def _text_matches(candidates: List[Optional[str]], op: str, expected: str) -> bool:
    needle = expected.lower()
    for candidate in candidates:
        haystack = (candidate or "").lower()
        if op == "contains" and needle in haystack:
            return True
        if op == "eq" and needle == haystack:
            return True
    return False


@register("age_days")
def _age_days(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    return _compare(media.age_days(now), condition.operator, condition.value)


@register("rating")
def _rating(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    return _compare(media.rating_value, condition.operator, condition.value)


@register("quality_tier")
def _quality_tier(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    tier = quality_order(media.quality_name or media.resolution)
    return _compare(tier or None, condition.operator, condition.value)


@register("resolution")
def _resolution(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    if condition.value.lower() == "other":
        return True
    if not (media.resolution or media.quality_name or media.quality_profile):
        return True
    return _text_matches(
        [media.resolution, media.quality_name, media.quality_profile, media.codec],
        "contains", condition.value
    )


@register("quality_profile")
def _quality_profile(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    if not (media.quality_profile or media.quality_name):
        return True
    return _text_matches([media.quality_profile, media.quality_name], "contains", condition.value)


@register("size_gb")
def _size_gb(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    return _compare(media.size_gb, condition.operator, condition.value)


@register("watch_status")
def _watch_status(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    return media.watch_status == condition.value.lower()


@register("title")
def _title(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    return _text_matches([media.title or media.filename], condition.operator, condition.value)


@register("series_status")
def _series_status(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    return _text_matches([media.series_status], "eq", condition.value)


@register("network")
def _network(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    return _text_matches([media.network], "eq", condition.value)


@register("monitoring")
def _monitoring(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    return media.monitored == (condition.value == "monitored")


@register("download_status")
def _download_status(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    return _text_matches([media.download_status], "eq", condition.value)


@register("tags")
def _tags(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    media_tags = {str(t) for t in (media.tags or [])}
    return any(tag in media_tags for tag in condition.value)


@register("view_count")
def _view_count(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    return _compare(media.tautulli_view_count or 0, condition.operator, condition.value)


@register("days_since_played")
def _days_since_played(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    return _compare(media.days_since_played(now), condition.operator, condition.value)


@register("watch_percentage")
def _watch_percentage(media: MediaSnapshot, condition: Condition, now: datetime) -> bool:
    duration = media.tautulli_duration or 0
    if duration <= 0:
        return True
    percentage = (media.tautulli_watch_time or 0) / duration * 100
    return _compare(percentage, condition.operator, condition.value)
