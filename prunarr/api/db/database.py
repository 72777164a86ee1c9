import os
import json
import logging
from pathlib import Path
from typing import Any, Optional
import aiosqlite

logger = logging.getLogger(__name__)

# Global database connection
_db: Optional[aiosqlite.Connection] = None

async def get_db() -> aiosqlite.Connection:
    """Get database connection"""
    global _db
    if _db is None:
        await init_db()
    return _db

async def init_db() -> None:
    """Initialize database with schema"""
    global _db

    db_path = Path(os.getenv("DB_PATH", "/data/db/prunarr.db"))
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        _db = await aiosqlite.connect(
            str(db_path),
            timeout=30.0,
        )
        _db.row_factory = aiosqlite.Row

        await _db.execute("PRAGMA foreign_keys = ON")
        await _db.execute("PRAGMA journal_mode = WAL")

        await create_tables()

        logger.info(f"Database initialized at {db_path}")

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

async def close_db() -> None:
    """Close database connection"""
    global _db
    if _db:
        await _db.close()
        _db = None
        logger.info("Database connection closed")

async def create_tables() -> None:
    """Create all database tables"""

    # Media catalog mirrored by the sync process
    await _db.execute("""
        CREATE TABLE IF NOT EXISTS pr_media (
            id TEXT PRIMARY KEY,
            path TEXT UNIQUE NOT NULL,
            filename TEXT,
            size INTEGER DEFAULT 0,
            type TEXT NOT NULL DEFAULT 'other'
                CHECK (type IN ('movie', 'show', 'music', 'photo', 'other')),
            added_at TIMESTAMP,
            last_accessed TIMESTAMP,
            watched INTEGER DEFAULT 0,
            protected INTEGER DEFAULT 0,
            title TEXT,
            year INTEGER,
            rating REAL,
            quality_profile TEXT,
            quality_name TEXT,
            resolution TEXT,
            codec TEXT,
            series_status TEXT,
            network TEXT,
            download_status TEXT,
            monitored INTEGER DEFAULT 1,
            plex_view_count INTEGER DEFAULT 0,
            last_watched_at TIMESTAMP,
            tautulli_view_count INTEGER DEFAULT 0,
            tautulli_last_played TIMESTAMP,
            tautulli_duration INTEGER DEFAULT 0,
            tautulli_watch_time INTEGER DEFAULT 0,
            sonarr_id INTEGER,
            sonarr_episode_file_id INTEGER,
            radarr_id INTEGER,
            tags_json TEXT,
            metadata_json TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    # Deletion rules
    await _db.execute("""
        CREATE TABLE IF NOT EXISTS pr_rules (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            media_types_json TEXT,
            conditions_json TEXT,
            filters_enabled_json TEXT,
            deletion_strategy_json TEXT,
            schedule_json TEXT,
            enabled INTEGER DEFAULT 1,
            last_run TIMESTAMP,
            next_run TIMESTAMP,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    # Pending deletions. No foreign keys: snapshots keep the item readable
    # after the rule or media row is gone.
    await _db.execute("""
        CREATE TABLE IF NOT EXISTS pr_pending_deletions (
            id TEXT PRIMARY KEY,
            media_id TEXT NOT NULL,
            rule_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'approved', 'cancelled', 'completed', 'failed')),
            scheduled_date TIMESTAMP,
            approved_by TEXT,
            approved_at TIMESTAMP,
            approval_reason TEXT,
            cancelled_by TEXT,
            cancelled_at TIMESTAMP,
            cancellation_reason TEXT,
            completed_at TIMESTAMP,
            claimed_at TIMESTAMP,
            media_snapshot_json TEXT NOT NULL,
            rule_snapshot_json TEXT NOT NULL,
            execution_results_json TEXT,
            error TEXT,
            size INTEGER DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    # Deletion history (append-only)
    await _db.execute("""
        CREATE TABLE IF NOT EXISTS pr_deletion_history (
            id TEXT PRIMARY KEY,
            rule_id TEXT,
            rule_name TEXT,
            trigger TEXT DEFAULT 'manual',
            media_deleted_json TEXT,
            items_attempted INTEGER DEFAULT 0,
            items_succeeded INTEGER DEFAULT 0,
            total_size_freed INTEGER DEFAULT 0,
            success INTEGER DEFAULT 1,
            error TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    # Create indexes
    indexes = [
        "CREATE INDEX IF NOT EXISTS idx_media_type ON pr_media(type)",
        "CREATE INDEX IF NOT EXISTS idx_media_protected ON pr_media(protected)",
        "CREATE INDEX IF NOT EXISTS idx_rules_enabled ON pr_rules(enabled)",
        "CREATE INDEX IF NOT EXISTS idx_pending_status ON pr_pending_deletions(status)",
        "CREATE INDEX IF NOT EXISTS idx_pending_rule ON pr_pending_deletions(rule_id)",
        "CREATE INDEX IF NOT EXISTS idx_pending_scheduled ON pr_pending_deletions(status, scheduled_date)",
        # One unresolved proposal per (media, rule)
        """CREATE UNIQUE INDEX IF NOT EXISTS idx_pending_open_unique
           ON pr_pending_deletions(media_id, rule_id)
           WHERE status IN ('pending', 'approved')""",
        "CREATE INDEX IF NOT EXISTS idx_history_rule ON pr_deletion_history(rule_id)",
        "CREATE INDEX IF NOT EXISTS idx_history_created ON pr_deletion_history(created_at)",
    ]

    for index in indexes:
        await _db.execute(index)

    await _db.commit()
    logger.info("Database tables created/verified")


def dumps(value: Any) -> Optional[str]:
    """Serialize a value for a *_json column"""
    if value is None:
        return None
    return json.dumps(value, default=str)


def loads(value: Optional[str], default: Any = None) -> Any:
    """Deserialize a *_json column, tolerating NULL and bad data"""
    if not value:
        return default
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Could not decode JSON column value: {value[:80]}")
        return default
