from fastapi import APIRouter, HTTPException, Query, Request
from typing import Optional
import logging

from prunarr.api.schemas.media import MediaUpsert, MediaResponse, MediaListResponse
from prunarr.api.schemas.rules import MediaType
from prunarr.exceptions import PrunarrError

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/", response_model=MediaListResponse)
async def list_media(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(50, ge=1, le=500, description="Items per page"),
    type: Optional[MediaType] = Query(None, description="Filter by media type"),
    protected: Optional[bool] = Query(None, description="Filter by protection"),
    search: Optional[str] = Query(None, description="Search in title and filename"),
) -> MediaListResponse:
    """List mirrored media with pagination"""
    try:
        items, total = await request.app.state.media_catalog.list(
            page=page,
            per_page=per_page,
            media_type=type.value if type else None,
            protected=protected,
            search=search,
        )
        return MediaListResponse(
            items=[MediaResponse(**item) for item in items],
            total=total,
            page=page,
            per_page=per_page
        )
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to list media: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/", response_model=MediaResponse)
async def upsert_media(media: MediaUpsert, request: Request) -> MediaResponse:
    """Insert or update a media record (used by the sync process)"""
    try:
        item = await request.app.state.media_catalog.upsert(media.model_dump(mode="json"))
        return MediaResponse(**item)
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to upsert media {media.path}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/{media_id}", response_model=MediaResponse)
async def get_media(media_id: str, request: Request) -> MediaResponse:
    """Get a media record by ID"""
    try:
        return MediaResponse(**await request.app.state.media_catalog.get_dict(media_id))
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to get media {media_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{media_id}/protect", response_model=MediaResponse)
async def protect_media(media_id: str, request: Request) -> MediaResponse:
    """Exclude a media item from every deletion rule"""
    try:
        return MediaResponse(**await request.app.state.media_catalog.set_protected(media_id, True))
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to protect media {media_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{media_id}/unprotect", response_model=MediaResponse)
async def unprotect_media(media_id: str, request: Request) -> MediaResponse:
    """Make a media item eligible for deletion rules again"""
    try:
        return MediaResponse(**await request.app.state.media_catalog.set_protected(media_id, False))
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to unprotect media {media_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
