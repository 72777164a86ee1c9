from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime


class DeletedMediaSummary(BaseModel):
    """Media item removed in an execution batch"""
    pending_id: str
    media_id: str
    title: Optional[str] = None
    path: Optional[str] = None
    filename: Optional[str] = None
    size: int = 0
    type: Optional[str] = None


class HistoryResponse(BaseModel):
    """Deletion history entry"""
    id: str
    rule_id: Optional[str] = None
    rule_name: Optional[str] = None
    trigger: str
    media_deleted: List[DeletedMediaSummary]
    items_attempted: int
    items_succeeded: int
    total_size_freed: int
    success: bool
    error: Optional[str] = None
    created_at: datetime


class HistoryListResponse(BaseModel):
    items: List[HistoryResponse]
    total: int
    page: int
    per_page: int
