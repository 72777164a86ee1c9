"""
Core models for the deletion rule engine.
"""
import json
import os
from dataclasses import dataclass, field, asdict, fields
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Mapping

BYTES_PER_GB = 1024 ** 3


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime) into a naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


@dataclass
class MediaSnapshot:
    """A media record as seen by the rule engine."""
    id: str
    path: str
    size: int = 0
    type: str = "other"
    filename: Optional[str] = None
    title: Optional[str] = None
    year: Optional[int] = None
    added_at: Optional[str] = None
    last_accessed: Optional[str] = None
    watched: bool = False
    protected: bool = False
    rating: Optional[float] = None
    quality_profile: Optional[str] = None
    quality_name: Optional[str] = None
    resolution: Optional[str] = None
    codec: Optional[str] = None
    series_status: Optional[str] = None
    network: Optional[str] = None
    download_status: Optional[str] = None
    monitored: bool = True
    plex_view_count: int = 0
    last_watched_at: Optional[str] = None
    tautulli_view_count: int = 0
    tautulli_last_played: Optional[str] = None
    tautulli_duration: int = 0
    tautulli_watch_time: int = 0
    sonarr_id: Optional[int] = None
    sonarr_episode_file_id: Optional[int] = None
    radarr_id: Optional[int] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.size = int(self.size or 0)
        self.watched = bool(self.watched)
        self.protected = bool(self.protected)
        self.monitored = True if self.monitored is None else bool(self.monitored)
        if self.filename is None and self.path:
            self.filename = os.path.basename(self.path)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MediaSnapshot":
        """Build from a database row or a stored snapshot, ignoring unknown keys."""
        data = dict(data)
        if "tags_json" in data:
            data["tags"] = json.loads(data.pop("tags_json") or "[]")
        if "metadata_json" in data:
            data["metadata"] = json.loads(data.pop("metadata_json") or "{}")
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known and v is not None}
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def display_title(self) -> str:
        return self.title or self.filename or self.path

    @property
    def size_gb(self) -> float:
        return self.size / BYTES_PER_GB

    @property
    def rating_value(self) -> Optional[float]:
        """Direct rating, falling back to metadata.rating; None when neither is set."""
        for candidate in (self.rating, (self.metadata or {}).get("rating")):
            if candidate is None or candidate == "":
                continue
            try:
                return float(candidate)
            except (TypeError, ValueError):
                continue
        return None

    @property
    def watch_status(self) -> str:
        if self.watched or (self.plex_view_count or 0) > 0:
            return "watched"
        if (self.tautulli_watch_time or 0) > 0:
            return "in-progress"
        return "unwatched"

    def age_days(self, now: datetime) -> Optional[int]:
        added = parse_timestamp(self.added_at)
        if added is None:
            return None
        return (now - added).days

    def days_since_played(self, now: datetime) -> Optional[int]:
        played = parse_timestamp(self.tautulli_last_played)
        if played is None:
            return None
        return (now - played).days


@dataclass
class Condition:
    """One compiled sub-condition of a rule: a tagged {kind, operator, value} variant."""
    group: str
    key: str
    kind: str
    operator: str
    value: Any


@dataclass
class EvaluationResult:
    """Outcome of applying one rule to a media set."""
    matches: List[MediaSnapshot] = field(default_factory=list)
    total_size: int = 0
    total_processed: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    by_watch_status: Dict[str, int] = field(default_factory=dict)
    excluded_by_filter: Dict[str, int] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.matches)
