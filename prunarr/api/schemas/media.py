from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from prunarr.api.schemas.rules import MediaType


class MediaUpsert(BaseModel):
    """Media record pushed by the sync process"""
    id: Optional[str] = Field(None, description="Existing id; a new one is generated when omitted")
    path: str = Field(..., min_length=1)
    filename: Optional[str] = None
    size: int = Field(0, ge=0)
    type: MediaType = MediaType.other
    added_at: Optional[datetime] = None
    last_accessed: Optional[datetime] = None
    watched: bool = False
    protected: bool = False
    title: Optional[str] = None
    year: Optional[int] = None
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
    last_watched_at: Optional[datetime] = None
    tautulli_view_count: int = 0
    tautulli_last_played: Optional[datetime] = None
    tautulli_duration: int = 0
    tautulli_watch_time: int = 0
    sonarr_id: Optional[int] = None
    sonarr_episode_file_id: Optional[int] = None
    radarr_id: Optional[int] = None
    tags: List[str] = []
    metadata: Dict[str, Any] = {}


class MediaResponse(MediaUpsert):
    id: str
    watch_status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MediaListResponse(BaseModel):
    items: List[MediaResponse]
    total: int
    page: int
    per_page: int
