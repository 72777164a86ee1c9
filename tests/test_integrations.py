import hashlib
import hmac
import json
import pytest
from unittest.mock import AsyncMock, patch

from prunarr.api.integrations import (
    FilesystemIntegration, IntegrationResolver, RadarrIntegration, SonarrIntegration
)
from prunarr.api.integrations.base import ArrClient
from prunarr.api.notifications import NotificationEvent, NotificationService
from prunarr.api.notifications.providers.base import (
    NotificationChannel, NotificationMessage, SendResult
)
from prunarr.api.notifications.providers.webhook import WebhookProvider
from prunarr.exceptions import IntegrationError

GB = 1024 ** 3


def show_media(**overrides):
    media = {
        "id": "m1",
        "type": "show",
        "title": "Old Show",
        "path": "/tv/Old Show/Season 01/e01.mkv",
        "filename": "e01.mkv",
        "size": 2 * GB,
    }
    media.update(overrides)
    return media


def movie_media(**overrides):
    media = {
        "id": "m2",
        "type": "movie",
        "title": "Old Movie",
        "path": "/movies/Old Movie (1999)/Old Movie.mkv",
        "filename": "Old Movie.mkv",
        "size": 4 * GB,
    }
    media.update(overrides)
    return media


class TestFindEntry:

    @pytest.mark.unit
    def test_known_id_wins(self):
        entries = [{"id": 1, "title": "Old Show"}, {"id": 7, "title": "Other"}]
        assert ArrClient.find_entry(entries, show_media(), known_id=7)["id"] == 7

    @pytest.mark.unit
    def test_folder_then_title(self):
        entries = [
            {"id": 1, "title": "Something", "path": "/tv/Old Show/Season 01"},
            {"id": 2, "title": "old show", "path": "/elsewhere"},
        ]
        assert ArrClient.find_entry(entries, show_media())["id"] == 1
        assert ArrClient.find_entry(entries, show_media(path="/x/y.mkv"))["id"] == 2

    @pytest.mark.unit
    def test_no_match(self):
        assert ArrClient.find_entry([{"id": 1, "title": "Else"}], show_media(path="")) is None


class TestSonarr:

    @pytest.fixture
    def sonarr(self):
        sonarr = SonarrIntegration("http://sonarr:8989/", "key")
        sonarr._request = AsyncMock()
        return sonarr

    @pytest.mark.integration
    async def test_file_only_with_known_episode_file(self, sonarr):
        sonarr._request.side_effect = [[{"id": 5, "title": "Old Show"}], None]

        outcome = await sonarr.delete(show_media(sonarr_episode_file_id=42), {"sonarr": "file_only"})

        assert outcome.action == "file_only"
        assert outcome.bytes_freed == 2 * GB
        sonarr._request.assert_awaited_with("DELETE", "/episodefile/42")

    @pytest.mark.integration
    async def test_file_only_looks_up_episode_file(self, sonarr):
        media = show_media()
        sonarr._request.side_effect = [
            [{"id": 5, "title": "Old Show"}],
            [{"id": 9, "path": "/other.mkv"}, {"id": 10, "path": media["path"]}],
            None,
        ]

        await sonarr.delete(media, {"sonarr": "file_only"})

        sonarr._request.assert_awaited_with("DELETE", "/episodefile/10")

    @pytest.mark.integration
    async def test_unmonitor_without_deleting_files(self, sonarr):
        series = {"id": 5, "title": "Old Show", "monitored": True}
        sonarr._request.side_effect = [[series], series]

        outcome = await sonarr.delete(show_media(), {"sonarr": "unmonitor", "delete_files": False})

        assert outcome.bytes_freed == 0
        method, path = sonarr._request.await_args.args
        assert (method, path) == ("PUT", "/series/5")
        assert sonarr._request.await_args.kwargs["json"]["monitored"] is False

    @pytest.mark.integration
    async def test_remove_series(self, sonarr):
        sonarr._request.side_effect = [[{"id": 5, "title": "Old Show"}], None]

        outcome = await sonarr.delete(
            show_media(), {"sonarr": "remove_series", "delete_files": True, "add_import_exclusion": True}
        )

        assert outcome.action == "remove_series"
        sonarr._request.assert_awaited_with(
            "DELETE", "/series/5", params={"deleteFiles": True, "addImportExclusion": True}
        )

    @pytest.mark.integration
    async def test_series_not_found(self, sonarr):
        sonarr._request.side_effect = [[]]
        with pytest.raises(IntegrationError) as exc_info:
            await sonarr.delete(show_media(), {"sonarr": "file_only"})
        assert exc_info.value.integration == "sonarr"


class TestRadarr:

    @pytest.fixture
    def radarr(self):
        radarr = RadarrIntegration("http://radarr:7878", "key")
        radarr._request = AsyncMock()
        return radarr

    @pytest.mark.integration
    async def test_file_only(self, radarr):
        radarr._request.side_effect = [
            [{"id": 3, "title": "Old Movie", "movieFile": {"id": 11}}],
            None,
        ]

        outcome = await radarr.delete(movie_media(), {"radarr": "file_only"})

        assert outcome.bytes_freed == 4 * GB
        radarr._request.assert_awaited_with("DELETE", "/moviefile/11")

    @pytest.mark.integration
    async def test_file_only_without_file_fails(self, radarr):
        radarr._request.side_effect = [[{"id": 3, "title": "Old Movie"}]]
        with pytest.raises(IntegrationError):
            await radarr.delete(movie_media(), {"radarr": "file_only"})

    @pytest.mark.integration
    async def test_remove_movie_keeping_files(self, radarr):
        radarr._request.side_effect = [[{"id": 3, "title": "Old Movie"}], None]

        outcome = await radarr.delete(movie_media(), {"radarr": "remove_movie", "delete_files": False})

        assert outcome.bytes_freed == 0
        radarr._request.assert_awaited_with(
            "DELETE", "/movie/3", params={"deleteFiles": False, "addImportExclusion": False}
        )

    @pytest.mark.integration
    async def test_unknown_strategy(self, radarr):
        radarr._request.side_effect = [[{"id": 3, "title": "Old Movie"}]]
        with pytest.raises(IntegrationError):
            await radarr.delete(movie_media(), {"radarr": "shred"})


class TestFilesystem:

    @pytest.mark.integration
    async def test_deletes_file(self, tmp_path):
        target = tmp_path / "movie.mkv"
        target.write_bytes(b"x" * 2048)

        outcome = await FilesystemIntegration().delete({"path": str(target)}, {})

        assert not target.exists()
        assert outcome.bytes_freed == 2048

    @pytest.mark.integration
    async def test_missing_file_counts_as_removed(self, tmp_path):
        outcome = await FilesystemIntegration().delete({"path": str(tmp_path / "gone.mkv")}, {})
        assert outcome.message == "File already removed"
        assert outcome.bytes_freed == 0

    @pytest.mark.integration
    async def test_refuses_directories(self, tmp_path):
        with pytest.raises(IntegrationError):
            await FilesystemIntegration().delete({"path": str(tmp_path)}, {})
        assert tmp_path.exists()

    @pytest.mark.integration
    async def test_requires_path(self):
        with pytest.raises(IntegrationError):
            await FilesystemIntegration().delete({}, {})


class TestResolver:

    @pytest.mark.unit
    def test_falls_back_to_filesystem(self, config_service):
        resolver = IntegrationResolver(config_service)
        assert isinstance(resolver.resolve(show_media()), FilesystemIntegration)
        assert isinstance(resolver.resolve(movie_media()), FilesystemIntegration)

    @pytest.mark.unit
    def test_routes_by_media_type(self, config_service):
        config = config_service.config
        config.sonarr_url, config.sonarr_api_key = "http://sonarr:8989", "s-key"
        config.radarr_url, config.radarr_api_key = "http://radarr:7878", "r-key"
        resolver = IntegrationResolver(config_service)

        assert isinstance(resolver.resolve(show_media()), SonarrIntegration)
        assert isinstance(resolver.resolve(movie_media()), RadarrIntegration)
        assert isinstance(resolver.resolve({"type": "music", "path": "/a.flac"}), FilesystemIntegration)


class TestWebhook:

    @pytest.mark.unit
    def test_validate_config(self):
        assert WebhookProvider({"enabled": True, "endpoints": []}).validate_config()[0] is False
        assert WebhookProvider({"endpoints": [{"url": "ftp://x"}]}).validate_config()[0] is False
        assert WebhookProvider({"endpoints": [{"url": "https://hooks.local/x"}]}).validate_config() == (True, None)
        bad_events = {"endpoints": [{"url": "https://hooks.local/x", "events": ["job.started"]}]}
        assert WebhookProvider(bad_events).validate_config()[0] is False

    @pytest.mark.unit
    async def test_unsubscribed_endpoint_is_skipped(self):
        provider = WebhookProvider({
            "enabled": True,
            "endpoints": [{"url": "https://hooks.local/x", "events": ["deletion.failed"]}],
        })
        with patch.object(WebhookProvider, "_send_to_endpoint", AsyncMock()) as send_to_endpoint:
            result = await provider.send(NotificationMessage(event_type="deletion.proposed", content="1 pending"))

        send_to_endpoint.assert_not_awaited()
        assert result.success is False

    @pytest.mark.unit
    def test_signature_matches_payload(self):
        provider = WebhookProvider({"enabled": True, "endpoints": []})
        payload = {"event": "deletion.executed", "data": {"count": 2}}

        signature = provider._generate_signature(payload, "s3cret")

        body = json.dumps(payload, separators=(',', ':'), sort_keys=True)
        expected = hmac.new(b"s3cret", body.encode(), hashlib.sha256).hexdigest()
        assert signature == f"sha256={expected}"

    @pytest.mark.unit
    def test_payload_carries_idempotency_key(self):
        provider = WebhookProvider({"enabled": True, "endpoints": []})
        message = NotificationMessage(event_type="deletion.proposed", content="3 pending", metadata={"count": 3})

        payload = provider.format_message(message)

        assert payload["event"] == "deletion.proposed"
        assert payload["idempotency_key"] == message.get_idempotency_key()
        assert payload["data"]["metadata"] == {"count": 3}


class TestNotificationService:

    @pytest.fixture
    async def service(self):
        service = NotificationService()
        await service.initialize({
            "enabled": True,
            "webhook": {"enabled": True, "endpoints": [{"url": "https://hooks.local/prunarr"}]},
        })
        return service

    @pytest.mark.unit
    async def test_disabled_service_sends_nothing(self):
        service = NotificationService()
        await service.initialize({"enabled": False})
        assert await service.send_event(NotificationEvent.DELETION_EXECUTED.value, {"count": 1}) == []

    @pytest.mark.unit
    async def test_duplicate_events_are_suppressed(self, service):
        ok = SendResult(success=True, channel=NotificationChannel.WEBHOOK)
        with patch.object(WebhookProvider, "send", AsyncMock(return_value=ok)) as send:
            data = {"count": 2, "size": 3 * GB, "rule_name": "Old movies"}
            first = await service.send_event(NotificationEvent.DELETION_PROPOSED.value, data)
            second = await service.send_event(NotificationEvent.DELETION_PROPOSED.value, data)

        assert len(first) == 1
        assert second == []
        message = send.await_args.args[0]
        assert message.title == "2 Deletions Pending"
        assert "3.00 GB" in message.content
        assert "Old movies" in message.content

    @pytest.mark.unit
    async def test_rules_restrict_channels(self):
        service = NotificationService()
        await service.initialize({
            "enabled": True,
            "webhook": {"enabled": True, "endpoints": [{"url": "https://hooks.local/prunarr"}]},
            "rules": {"deletion.proposed": {"channels": []}},
        })
        with patch.object(WebhookProvider, "send", AsyncMock()) as send:
            assert await service.send_event("deletion.proposed", {"count": 1}) == []
        send.assert_not_awaited()
