from fastapi import APIRouter, HTTPException, Body, Request
from typing import Dict, Any
import logging
from pydantic import ValidationError as PydanticValidationError

from prunarr.exceptions import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/")
async def get_config(request: Request) -> Dict[str, Any]:
    """Current configuration with credentials masked"""
    return request.app.state.config.get_public()

@router.put("/")
async def update_config(
    request: Request,
    updates: Dict[str, Any] = Body(...)
) -> Dict[str, Any]:
    """Update configuration with partial data"""
    config_service = request.app.state.config
    try:
        config = await config_service.update_config(updates)

        if "notifications" in updates:
            await request.app.state.notifications.initialize(config.notifications)
            logger.info("Notification settings reloaded")

        return config_service.get_public()
    except PydanticValidationError as e:
        raise ValidationError(str(e))
    except Exception as e:
        logger.error(f"Failed to update config: {e}")
        raise HTTPException(status_code=500, detail=str(e))
