from fastapi import APIRouter, HTTPException, Query, Request
from typing import Optional
import logging

from prunarr.api.schemas.history import HistoryListResponse
from prunarr.exceptions import PrunarrError

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/", response_model=HistoryListResponse)
async def list_history(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(50, ge=1, le=200, description="Items per page"),
    rule_id: Optional[str] = Query(None, description="Filter by rule"),
) -> HistoryListResponse:
    """Deletion history, newest first"""
    try:
        return HistoryListResponse(**await request.app.state.history.list(page, per_page, rule_id))
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to list deletion history: {e}")
        raise HTTPException(status_code=500, detail=str(e))
