from fastapi import APIRouter, Request
from typing import Dict, Any
import psutil
import os
import logging
from datetime import datetime

from prunarr import __version__
from prunarr.api.db.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/")
async def health_check() -> Dict[str, Any]:
    """Basic health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "service": "Prunarr API",
        "version": __version__
    }

@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Kubernetes liveness probe endpoint"""
    return {"status": "alive"}

@router.get("/ready")
async def readiness_check(request: Request) -> Dict[str, Any]:
    """Readiness: database reachable and deletion scheduler constructed"""
    checks = {
        "database": False,
        "scheduler": False,
        "nats": None,
    }

    try:
        db = await get_db()
        async with db.execute("SELECT 1") as cursor:
            await cursor.fetchone()
        checks["database"] = True
    except Exception as e:
        logger.warning(f"Readiness database check failed: {e}")

    checks["scheduler"] = getattr(request.app.state, "deletion_scheduler", None) is not None

    # NATS is optional; only reported when configured
    nats = getattr(request.app.state, "nats", None)
    if nats is not None and nats.enabled:
        checks["nats"] = nats.is_connected

    all_ready = all(v for v in checks.values() if v is not None)

    return {
        "ready": all_ready,
        "checks": checks,
        "timestamp": datetime.utcnow().isoformat()
    }

@router.get("/stats")
async def get_disk_stats(request: Request) -> Dict[str, Any]:
    """Disk usage of the media root and the database volume"""
    config_service = getattr(request.app.state, "config", None)
    paths = {
        "media": config_service.config.media_root if config_service else "/media",
        "database": os.path.dirname(os.getenv("DB_PATH", "/data/db/prunarr.db")),
    }

    disks = {}
    for name, path in paths.items():
        try:
            usage = psutil.disk_usage(path)
            disks[name] = {
                "path": path,
                "total": usage.total,
                "used": usage.used,
                "free": usage.free,
                "percent": usage.percent,
            }
        except OSError as e:
            disks[name] = {"path": path, "error": str(e)}

    return {
        "disks": disks,
        "timestamp": datetime.utcnow().isoformat()
    }
