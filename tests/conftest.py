import asyncio
import os
import shutil
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import Mock, AsyncMock

import pytest

# Keep config, salt and logs out of /data for the whole test session
_SESSION_DIR = tempfile.mkdtemp(prefix="prunarr-tests-")
os.environ["CONFIG_PATH"] = str(Path(_SESSION_DIR) / "config" / "config.json")
os.environ["DB_PATH"] = str(Path(_SESSION_DIR) / "db" / "prunarr.db")
os.environ["LOG_DIR"] = str(Path(_SESSION_DIR) / "logs")
for _var in ("NATS_URL", "SONARR_URL", "SONARR_API_KEY", "RADARR_URL", "RADARR_API_KEY",
             "AUTO_START_EXECUTOR", "RETRY_FAILED"):
    os.environ.pop(_var, None)

from prunarr.api.db.database import init_db, close_db, get_db
from prunarr.api.integrations import BaseIntegration, DeletionOutcome
from prunarr.api.notifications import NotificationService
from prunarr.api.services.config_service import ConfigService
from prunarr.api.services.media_catalog import MediaCatalog
from prunarr.api.services.nats_service import NATSService
from prunarr.api.services.rule_store import RuleStore
from prunarr.exceptions import IntegrationError

GB = 1024 ** 3


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(_SESSION_DIR, ignore_errors=True)


@pytest.fixture
async def test_db(tmp_path):
    """Create a test database."""
    os.environ["DB_PATH"] = str(tmp_path / "test.db")

    await init_db()
    db = await get_db()

    yield db

    await close_db()


@pytest.fixture
def mock_nats():
    """Create a mock NATS service."""
    nats = Mock(spec=NATSService)
    nats.connect = AsyncMock()
    nats.disconnect = AsyncMock()
    nats.publish_event = AsyncMock()
    nats.is_connected = True
    nats.enabled = True

    return nats


@pytest.fixture
def mock_notifications():
    """Create a mock notification service."""
    notifications = Mock(spec=NotificationService)
    notifications.initialize = AsyncMock()
    notifications.send_event = AsyncMock(return_value=[])

    return notifications


@pytest.fixture
def config_service(tmp_path):
    """A configuration service with defaults, backed by a temporary file."""
    return ConfigService(config_path=tmp_path / "config.json")


@pytest.fixture
def make_media(test_db):
    """Factory inserting media into the catalog; returns the stored record."""
    catalog = MediaCatalog()
    counter = {"n": 0}

    async def _make(**overrides):
        counter["n"] += 1
        name = overrides.pop("name", f"Media {counter['n']}")
        data = {
            "path": f"/media/movies/{name}/{name}.mkv",
            "title": name,
            "type": "movie",
            "size": GB,
            "added_at": (datetime.utcnow() - timedelta(days=100)).isoformat(),
        }
        data.update(overrides)
        return await catalog.upsert(data)

    return _make


@pytest.fixture
def make_rule(test_db):
    """Factory creating rules; by default an enabled age rule for movies."""
    store = RuleStore()

    async def _make(**overrides):
        data = {
            "name": "Old movies",
            "media_types": ["movie"],
            "conditions": {"min_age": 30},
            "filters_enabled": {"age": True},
            "deletion_strategy": {"radarr": "file_only", "delete_files": True},
            "schedule": {"enabled": False, "frequency": "manual"},
            "enabled": True,
        }
        data.update(overrides)
        return await store.create(data)

    return _make


class FakeIntegration(BaseIntegration):
    """In-memory integration recording every deletion request."""

    name = "fake"

    def __init__(self, fail_for=None, delay=0.0):
        self.fail_for = set(fail_for or [])
        self.delay = delay
        self.calls = []

    async def delete(self, media, strategy):
        self.calls.append((media.get("id"), dict(strategy)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if media.get("id") in self.fail_for:
            raise IntegrationError(self.name, f"refused {media.get('id')}")
        return DeletionOutcome(self.name, "delete_file", f"Deleted {media.get('filename')}", media.get("size") or 0)


class FakeResolver:
    def __init__(self, integration):
        self.integration = integration

    def resolve(self, media):
        return self.integration


@pytest.fixture
def fake_integration():
    return FakeIntegration()


@pytest.fixture
def fake_resolver(fake_integration):
    return FakeResolver(fake_integration)
