from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class PendingStatus(str, Enum):
    """Pending deletion lifecycle states"""
    pending = "pending"
    approved = "approved"
    cancelled = "cancelled"
    completed = "completed"
    failed = "failed"


OPEN_STATUSES = (PendingStatus.pending.value, PendingStatus.approved.value)
EXECUTABLE_STATUSES = (PendingStatus.approved.value, PendingStatus.failed.value)


class ExecutionResult(BaseModel):
    """One execution attempt recorded on a pending deletion"""
    attempt: int
    attempted_at: datetime
    success: bool
    integration: Optional[str] = None
    action: Optional[str] = None
    message: Optional[str] = None
    bytes_freed: int = 0
    error: Optional[str] = None


class PendingDeletionResponse(BaseModel):
    """Pending deletion response"""
    id: str
    media_id: str
    rule_id: str
    status: PendingStatus
    scheduled_date: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    media_snapshot: Dict[str, Any]
    rule_snapshot: Dict[str, Any]
    execution_results: List[ExecutionResult] = []
    error: Optional[str] = None
    size: int = 0
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PendingDeletionListResponse(BaseModel):
    items: List[PendingDeletionResponse]
    total: int
    page: int
    limit: int
    pages: int


class ApproveRequest(BaseModel):
    approved_by: str = Field("system", min_length=1)
    scheduled_date: Optional[datetime] = Field(None, description="Earliest execution time, defaults to now")
    reason: Optional[str] = None


class CancelRequest(BaseModel):
    cancelled_by: str = Field("system", min_length=1)
    reason: Optional[str] = None


class BulkApproveRequest(ApproveRequest):
    ids: List[str] = Field(..., min_length=1)


class BulkCancelRequest(CancelRequest):
    ids: List[str] = Field(..., min_length=1)


class BulkItemOutcome(BaseModel):
    """Per-item result of a bulk transition"""
    id: str
    success: bool
    status: Optional[PendingStatus] = None
    error: Optional[str] = None
    error_type: Optional[str] = None


class BulkResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: List[BulkItemOutcome]


class StatusSummary(BaseModel):
    count: int = 0
    total_size: int = 0


class SummaryResponse(BaseModel):
    """Counts and total snapshot size per status"""
    by_status: Dict[str, StatusSummary]
    total: int


class ItemOutcome(BaseModel):
    """Per-item result of an execution pass"""
    pending_id: str
    media_id: str
    title: str
    outcome: str  # completed, failed, skipped
    integration: Optional[str] = None
    action: Optional[str] = None
    bytes_freed: int = 0
    message: Optional[str] = None
    error: Optional[str] = None


class ExecutionSummary(BaseModel):
    """Result of one execution pass"""
    status: str  # completed, busy
    outcome: str  # empty, success, partial, failed, busy
    trigger: str = "manual"
    total_items: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    bytes_freed: int = 0
    duration_sec: float = 0.0
    started_at: Optional[datetime] = None
    history_id: Optional[str] = None
    results: List[ItemOutcome] = []


class ExecutionStatus(BaseModel):
    running: bool
    scheduled: bool
    interval_minutes: Optional[int] = None
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    last_outcome: Optional[str] = None
    last_error: Optional[str] = None
    notice: Optional[str] = Field(None, description="Set when the requested interval was clamped")
    current_execution: Optional[Dict[str, Any]] = None


class ScheduleStartRequest(BaseModel):
    interval_minutes: Optional[int] = Field(None, ge=1, description="Defaults to the configured interval")


class ExecuteRequest(BaseModel):
    include_failed: bool = Field(False, description="Also retry items in the failed state")
