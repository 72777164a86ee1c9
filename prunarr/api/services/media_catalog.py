import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ulid import ULID

from prunarr.api.db.database import get_db, dumps
from prunarr.exceptions import NotFoundError
from prunarr.worker.rules.models import MediaSnapshot, parse_timestamp

logger = logging.getLogger(__name__)

MEDIA_COLUMNS = [
    "path", "filename", "size", "type", "added_at", "last_accessed", "watched",
    "protected", "title", "year", "rating", "quality_profile", "quality_name",
    "resolution", "codec", "series_status", "network", "download_status",
    "monitored", "plex_view_count", "last_watched_at", "tautulli_view_count",
    "tautulli_last_played", "tautulli_duration", "tautulli_watch_time",
    "sonarr_id", "sonarr_episode_file_id", "radarr_id", "tags_json", "metadata_json",
]

TIMESTAMP_COLUMNS = {"added_at", "last_accessed", "last_watched_at", "tautulli_last_played"}
BOOL_COLUMNS = {"watched", "protected", "monitored"}


def _column_value(column: str, value: Any) -> Any:
    if column in TIMESTAMP_COLUMNS:
        ts = parse_timestamp(value)
        return ts.isoformat() if ts else None
    if column in BOOL_COLUMNS:
        return 1 if value else 0
    if hasattr(value, "value"):  # enums
        return value.value
    return value


def row_to_dict(row) -> Dict[str, Any]:
    """Media row as an API-facing dict with derived watch status"""
    snapshot = MediaSnapshot.from_dict(dict(row))
    data = snapshot.to_dict()
    data["watch_status"] = snapshot.watch_status
    data["created_at"] = row["created_at"]
    data["updated_at"] = row["updated_at"]
    return data


class MediaCatalog:
    """Read access to mirrored media, plus the upsert surface used by the sync process"""

    async def upsert(self, media: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or update a media record, matching on id and then path"""
        db = await get_db()
        data = dict(media)
        data["tags_json"] = dumps(data.pop("tags", None) or [])
        data["metadata_json"] = dumps(data.pop("metadata", None) or {})

        media_id = data.get("id")
        existing = None
        if media_id:
            cursor = await db.execute("SELECT id FROM pr_media WHERE id = ?", (media_id,))
            existing = await cursor.fetchone()
        if existing is None:
            cursor = await db.execute("SELECT id FROM pr_media WHERE path = ?", (data["path"],))
            existing = await cursor.fetchone()
            if existing is not None:
                media_id = existing["id"]

        columns = [c for c in MEDIA_COLUMNS if c in data]
        values = [_column_value(c, data[c]) for c in columns]
        now = datetime.utcnow().isoformat()

        if existing is not None:
            assignments = ", ".join(f"{c} = ?" for c in columns)
            await db.execute(
                f"UPDATE pr_media SET {assignments}, updated_at = ? WHERE id = ?",
                values + [now, media_id]
            )
            logger.debug(f"Updated media {media_id}")
        else:
            media_id = media_id or str(ULID())
            placeholders = ", ".join("?" for _ in columns)
            await db.execute(
                f"INSERT INTO pr_media (id, {', '.join(columns)}, created_at, updated_at) "
                f"VALUES (?, {placeholders}, ?, ?)",
                [media_id] + values + [now, now]
            )
            logger.debug(f"Inserted media {media_id}")

        await db.commit()
        return await self.get_dict(media_id)

    async def get(self, media_id: str) -> Optional[MediaSnapshot]:
        db = await get_db()
        cursor = await db.execute("SELECT * FROM pr_media WHERE id = ?", (media_id,))
        row = await cursor.fetchone()
        return MediaSnapshot.from_dict(dict(row)) if row else None

    async def get_dict(self, media_id: str) -> Dict[str, Any]:
        db = await get_db()
        cursor = await db.execute("SELECT * FROM pr_media WHERE id = ?", (media_id,))
        row = await cursor.fetchone()
        if not row:
            raise NotFoundError(f"Media {media_id} not found")
        return row_to_dict(row)

    async def list(
        self,
        page: int = 1,
        per_page: int = 50,
        media_type: Optional[str] = None,
        protected: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Paginated catalog listing, newest first"""
        db = await get_db()
        where = " WHERE 1=1"
        params: List[Any] = []

        if media_type:
            where += " AND type = ?"
            params.append(media_type)
        if protected is not None:
            where += " AND protected = ?"
            params.append(1 if protected else 0)
        if search:
            where += " AND (title LIKE ? OR filename LIKE ?)"
            params.extend([f"%{search}%", f"%{search}%"])

        cursor = await db.execute(f"SELECT COUNT(*) FROM pr_media{where}", params)
        total = (await cursor.fetchone())[0]

        cursor = await db.execute(
            f"SELECT * FROM pr_media{where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            params + [per_page, (page - 1) * per_page]
        )
        rows = await cursor.fetchall()
        return [row_to_dict(row) for row in rows], total

    async def list_candidates(self, media_types: Optional[Iterable[str]] = None) -> List[MediaSnapshot]:
        """All media of the given types (every type when empty), protected items included"""
        db = await get_db()
        types = [t for t in (media_types or []) if t]
        if types:
            placeholders = ", ".join("?" for _ in types)
            cursor = await db.execute(f"SELECT * FROM pr_media WHERE type IN ({placeholders})", types)
        else:
            cursor = await db.execute("SELECT * FROM pr_media")
        rows = await cursor.fetchall()
        return [MediaSnapshot.from_dict(dict(row)) for row in rows]

    async def set_protected(self, media_id: str, protected: bool) -> Dict[str, Any]:
        db = await get_db()
        cursor = await db.execute(
            "UPDATE pr_media SET protected = ?, updated_at = ? WHERE id = ?",
            (1 if protected else 0, datetime.utcnow().isoformat(), media_id)
        )
        await db.commit()
        if cursor.rowcount == 0:
            raise NotFoundError(f"Media {media_id} not found")
        logger.info(f"Media {media_id} {'protected' if protected else 'unprotected'}")
        return await self.get_dict(media_id)
