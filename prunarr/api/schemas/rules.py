from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum
import re


class MediaType(str, Enum):
    """Media types a rule can target"""
    movie = "movie"
    show = "show"
    music = "music"
    photo = "photo"
    other = "other"


class WatchStatus(str, Enum):
    """Watch status values accepted by the status filter"""
    any = "any"
    watched = "watched"
    unwatched = "unwatched"
    in_progress = "in-progress"


class SonarrAction(str, Enum):
    """What to do in Sonarr when a show item is deleted"""
    file_only = "file_only"
    unmonitor = "unmonitor"
    remove_series = "remove_series"


class RadarrAction(str, Enum):
    """What to do in Radarr when a movie is deleted"""
    file_only = "file_only"
    remove_movie = "remove_movie"


class ScheduleFrequency(str, Enum):
    manual = "manual"
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    custom = "custom"


class RuleConditions(BaseModel):
    """Condition values; 0, empty string and 'any' switch a sub-check off"""
    min_age: int = Field(0, ge=0, description="Minimum days since the item was added")
    min_rating: float = Field(0, ge=0, le=10)
    max_rating: float = Field(0, ge=0, le=10)
    min_quality: str = ""
    max_quality: str = ""
    resolution: str = "any"
    quality_profile: str = "any"
    min_size: float = Field(0, ge=0, description="Minimum size in GB")
    max_size: float = Field(0, ge=0, description="Maximum size in GB")
    watch_status: WatchStatus = WatchStatus.any
    title_contains: str = ""
    title_exact: str = ""
    series_status: str = "any"
    network: str = "any"
    monitoring_status: str = "any"
    download_status: str = "any"
    tags: str = Field("", description="Comma-separated tags, any of which must be present")
    max_view_count: int = Field(0, ge=0)
    min_view_count: int = Field(0, ge=0)
    days_since_last_watched: int = Field(0, ge=0)
    min_watch_percentage: float = Field(0, ge=0, le=100)

    @validator('monitoring_status')
    def validate_monitoring_status(cls, v):
        if v not in ("any", "monitored", "unmonitored"):
            raise ValueError("monitoring_status must be one of: any, monitored, unmonitored")
        return v

    @validator('max_rating')
    def validate_rating_range(cls, v, values):
        min_rating = values.get('min_rating') or 0
        if v and min_rating and v < min_rating:
            raise ValueError("max_rating must be greater than or equal to min_rating")
        return v

    @validator('max_size')
    def validate_size_range(cls, v, values):
        min_size = values.get('min_size') or 0
        if v and min_size and v < min_size:
            raise ValueError("max_size must be greater than or equal to min_size")
        return v


class FiltersEnabled(BaseModel):
    """Which condition groups participate in matching"""
    age: bool = False
    quality: bool = False
    enhanced_quality: bool = False
    size: bool = False
    status: bool = False
    title: bool = False
    media_specific: bool = False
    arr_integration: bool = False
    tautulli: bool = False


class DeletionStrategy(BaseModel):
    """Per-integration action plan"""
    sonarr: SonarrAction = SonarrAction.file_only
    radarr: RadarrAction = RadarrAction.file_only
    delete_files: bool = True
    add_import_exclusion: bool = False


class RuleSchedule(BaseModel):
    """Recurring proposal schedule for a rule"""
    enabled: bool = False
    frequency: ScheduleFrequency = ScheduleFrequency.manual
    interval: int = Field(1, ge=1)
    unit: str = "days"
    time: str = "02:00"

    @validator('time')
    def validate_time_format(cls, v):
        if not re.match(r'^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$', v):
            raise ValueError('Time must be in HH:MM format')
        return v

    @validator('unit')
    def validate_unit(cls, v):
        if v not in ("hours", "days", "weeks"):
            raise ValueError("unit must be one of: hours, days, weeks")
        return v


class RuleCreate(BaseModel):
    """Create rule request"""
    name: str = Field(..., min_length=1, description="Rule name")
    description: Optional[str] = Field(None, description="Rule description")
    media_types: List[MediaType] = Field(default_factory=lambda: [MediaType.movie, MediaType.show])
    conditions: RuleConditions = Field(default_factory=RuleConditions)
    filters_enabled: FiltersEnabled = Field(default_factory=FiltersEnabled)
    deletion_strategy: DeletionStrategy = Field(default_factory=DeletionStrategy)
    schedule: RuleSchedule = Field(default_factory=RuleSchedule)
    enabled: bool = Field(True, description="Whether rule is enabled")


class RuleUpdate(BaseModel):
    """Update rule request"""
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    media_types: Optional[List[MediaType]] = None
    conditions: Optional[RuleConditions] = None
    filters_enabled: Optional[FiltersEnabled] = None
    deletion_strategy: Optional[DeletionStrategy] = None
    schedule: Optional[RuleSchedule] = None
    enabled: Optional[bool] = None


class RuleResponse(BaseModel):
    """Rule response"""
    id: str
    name: str
    description: Optional[str] = None
    media_types: List[str]
    conditions: RuleConditions
    filters_enabled: FiltersEnabled
    deletion_strategy: DeletionStrategy
    schedule: RuleSchedule
    enabled: bool
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RuleListResponse(BaseModel):
    """Rule list response"""
    rules: List[RuleResponse]
    total: int
    page: int
    per_page: int


class PreviewMatch(BaseModel):
    """One media item matched by a preview"""
    id: str
    title: str
    path: str
    type: str
    size: int
    added_at: Optional[str] = None
    watch_status: str
    quality_name: Optional[str] = None
    resolution: Optional[str] = None
    rating: Optional[float] = None


class PreviewStats(BaseModel):
    by_type: Dict[str, int]
    by_watch_status: Dict[str, int]
    total_processed: int
    excluded_by_filter: Dict[str, int]


class PreviewResponse(BaseModel):
    """Rule preview (no persistence)"""
    rule_id: Optional[str] = None
    count: int
    total_size: int
    affected_media: List[PreviewMatch]
    stats: PreviewStats
    default_allow: bool = False


class ProposeResponse(BaseModel):
    """Result of proposing pending deletions for a rule"""
    rule_id: str
    matched: int
    created: int
    skipped_existing: int
    total_size: int
    pending_ids: List[str]


class RuleStats(BaseModel):
    """Deletion statistics for one rule, or all rules when rule_id is None"""
    rule_id: Optional[str] = None
    rule_name: Optional[str] = None
    total_executions: int = 0
    total_media_deleted: int = 0
    total_failed: int = 0
    total_size_freed: int = 0
    total_size_freed_gb: float = 0.0
    pending_count: int = 0
    approved_count: int = 0
    last_run: Optional[datetime] = None
