from fastapi import APIRouter, HTTPException, Query, Request
from typing import Optional
import logging

from prunarr.api.schemas.pending_deletions import (
    PendingDeletionResponse, PendingDeletionListResponse, SummaryResponse,
    ApproveRequest, CancelRequest, BulkApproveRequest, BulkCancelRequest, BulkResponse,
    ExecuteRequest, ExecutionSummary, ExecutionStatus, ScheduleStartRequest
)
from prunarr.exceptions import PrunarrError

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/", response_model=PendingDeletionListResponse)
async def list_pending_deletions(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=500, description="Items per page"),
    status: str = Query("pending", description="Status filter, or 'all'"),
    rule_id: Optional[str] = Query(None, description="Filter by rule"),
    sort_by: str = Query("created_at", description="created_at, scheduled_date or size"),
    sort_order: str = Query("desc", description="asc or desc"),
) -> PendingDeletionListResponse:
    """List pending deletions with pagination"""
    try:
        result = await request.app.state.pending_store.list(
            page=page, limit=limit, status=status, rule_id=rule_id,
            sort_by=sort_by, sort_order=sort_order
        )
        return PendingDeletionListResponse(**result)
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to list pending deletions: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/summary", response_model=SummaryResponse)
async def get_summary(request: Request) -> SummaryResponse:
    """Count and total size per status"""
    try:
        return SummaryResponse(**await request.app.state.pending_store.summary())
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to summarize pending deletions: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/execution/status", response_model=ExecutionStatus)
async def get_execution_status(request: Request) -> ExecutionStatus:
    """Scheduler state and the execution pass in progress, if any"""
    return ExecutionStatus(**request.app.state.deletion_scheduler.status())

@router.post("/execute", response_model=ExecutionSummary)
async def execute_now(request: Request, body: Optional[ExecuteRequest] = None) -> ExecutionSummary:
    """Run an execution pass now; returns status 'busy' if one is already running"""
    body = body or ExecuteRequest()
    try:
        summary = await request.app.state.deletion_executor.execute(
            trigger="manual", include_failed=body.include_failed
        )
        return ExecutionSummary(**summary)
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Execution pass failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/schedule/start", response_model=ExecutionStatus)
async def start_schedule(request: Request, body: Optional[ScheduleStartRequest] = None) -> ExecutionStatus:
    """Arm the recurring execution timer"""
    body = body or ScheduleStartRequest()
    status = await request.app.state.deletion_scheduler.start(body.interval_minutes)
    return ExecutionStatus(**status)

@router.post("/schedule/stop", response_model=ExecutionStatus)
async def stop_schedule(request: Request) -> ExecutionStatus:
    """Disarm the recurring execution timer"""
    return ExecutionStatus(**await request.app.state.deletion_scheduler.stop())

@router.post("/bulk/approve", response_model=BulkResponse)
async def bulk_approve(body: BulkApproveRequest, request: Request) -> BulkResponse:
    """Approve several items; each one succeeds or fails on its own"""
    try:
        result = await request.app.state.lifecycle.bulk_approve(
            body.ids, body.approved_by, body.scheduled_date, body.reason
        )
        return BulkResponse(**result)
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Bulk approve failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/bulk/cancel", response_model=BulkResponse)
async def bulk_cancel(body: BulkCancelRequest, request: Request) -> BulkResponse:
    """Cancel several items; each one succeeds or fails on its own"""
    try:
        result = await request.app.state.lifecycle.bulk_cancel(
            body.ids, body.cancelled_by, body.reason
        )
        return BulkResponse(**result)
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Bulk cancel failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/{pending_id}", response_model=PendingDeletionResponse)
async def get_pending_deletion(pending_id: str, request: Request) -> PendingDeletionResponse:
    """Get a pending deletion by ID"""
    try:
        return PendingDeletionResponse(**await request.app.state.pending_store.get(pending_id))
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to get pending deletion {pending_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{pending_id}/approve", response_model=PendingDeletionResponse)
async def approve_pending_deletion(
    pending_id: str,
    request: Request,
    body: Optional[ApproveRequest] = None
) -> PendingDeletionResponse:
    """Approve a pending item for execution"""
    body = body or ApproveRequest()
    try:
        item = await request.app.state.lifecycle.approve(
            pending_id, body.approved_by, body.scheduled_date, body.reason
        )
        return PendingDeletionResponse(**item)
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to approve {pending_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{pending_id}/cancel", response_model=PendingDeletionResponse)
async def cancel_pending_deletion(
    pending_id: str,
    request: Request,
    body: Optional[CancelRequest] = None
) -> PendingDeletionResponse:
    """Cancel a pending or approved item"""
    body = body or CancelRequest()
    try:
        item = await request.app.state.lifecycle.cancel(pending_id, body.cancelled_by, body.reason)
        return PendingDeletionResponse(**item)
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to cancel {pending_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
