import pytest
from datetime import datetime, timedelta

from prunarr.exceptions import ValidationError
from prunarr.worker.rules.conditions import (
    CONDITION_KEYS, EVALUATORS, compile_conditions, evaluate_condition,
    is_unset, quality_order
)
from prunarr.worker.rules.models import Condition, MediaSnapshot

NOW = datetime(2024, 6, 1, 12, 0, 0)
GB = 1024 ** 3


def media(**fields):
    fields.setdefault("id", "m1")
    fields.setdefault("path", "/media/movies/Example/Example.mkv")
    return MediaSnapshot(**fields)


def check(item, key, value, group=None):
    """Compile a single condition key with its group enabled and evaluate it"""
    group = group or CONDITION_KEYS[key][0]
    compiled = compile_conditions({key: value}, {group: True})
    assert len(compiled) == 1
    return evaluate_condition(item, compiled[0], NOW)


class TestCompile:

    @pytest.mark.unit
    def test_every_kind_has_an_evaluator(self):
        kinds = {kind for _, kind, _ in CONDITION_KEYS.values()}
        assert kinds <= set(EVALUATORS)

    @pytest.mark.unit
    def test_disabled_groups_are_skipped(self):
        compiled = compile_conditions(
            {"min_age": 30, "min_size": 5},
            {"age": True, "size": False}
        )
        assert [c.key for c in compiled] == ["min_age"]

    @pytest.mark.unit
    @pytest.mark.parametrize("value", [0, None, "", "any", "ANY", []])
    def test_unset_values_switch_the_sub_check_off(self, value):
        assert is_unset(value)
        assert compile_conditions({"resolution": value}, {"enhanced_quality": True}) == []

    @pytest.mark.unit
    def test_unknown_condition_key_is_rejected(self):
        with pytest.raises(ValidationError):
            compile_conditions({"min_bitrate": 5}, {"quality": True})

    @pytest.mark.unit
    def test_unknown_group_is_rejected(self):
        with pytest.raises(ValidationError):
            compile_conditions({}, {"bitrate": True})

    @pytest.mark.unit
    def test_negative_and_non_numeric_values_are_rejected(self):
        with pytest.raises(ValidationError):
            compile_conditions({"min_age": -1}, {"age": True})
        with pytest.raises(ValidationError):
            compile_conditions({"min_size": "big"}, {"size": True})

    @pytest.mark.unit
    def test_unknown_quality_is_rejected(self):
        with pytest.raises(ValidationError):
            compile_conditions({"min_quality": "potato"}, {"quality": True})

    @pytest.mark.unit
    def test_tags_are_split_on_commas(self):
        compiled = compile_conditions({"tags": "kids, old ,,"}, {"arr_integration": True})
        assert compiled[0].value == ["kids", "old"]

    @pytest.mark.unit
    def test_quality_order(self):
        assert quality_order("2160p") == 5
        assert quality_order("Bluray-1080p") == 4
        assert quality_order("HDTV-720p") == 3
        assert quality_order("DVD") == 1
        assert quality_order(None) == 0


class TestAgeAndRating:

    @pytest.mark.rules
    def test_age_boundary_is_inclusive(self):
        added = (NOW - timedelta(days=30)).isoformat()
        assert check(media(added_at=added), "min_age", 30) is True

    @pytest.mark.rules
    def test_age_uses_whole_days(self):
        added = (NOW - timedelta(days=29, hours=23)).isoformat()
        assert check(media(added_at=added), "min_age", 30) is False

    @pytest.mark.rules
    def test_missing_added_date_does_not_fail(self):
        assert check(media(), "min_age", 30) is True

    @pytest.mark.rules
    def test_timezone_aware_added_date(self):
        assert check(media(added_at="2024-05-01T12:00:00Z"), "min_age", 31) is True

    @pytest.mark.rules
    def test_rating_falls_back_to_metadata(self):
        item = media(metadata={"rating": 7.5})
        assert check(item, "min_rating", 7) is True
        assert check(item, "max_rating", 7) is False

    @pytest.mark.rules
    def test_direct_rating_wins_over_metadata(self):
        item = media(rating=5.0, metadata={"rating": 9})
        assert check(item, "min_rating", 7) is False

    @pytest.mark.rules
    def test_missing_rating_does_not_fail(self):
        assert check(media(), "min_rating", 7) is True
        assert check(media(metadata={"rating": ""}), "max_rating", 3) is True


class TestQuality:

    @pytest.mark.rules
    def test_quality_tier_range(self):
        item = media(quality_name="Bluray-1080p")
        assert check(item, "max_quality", "1080p") is True
        assert check(item, "max_quality", "720p") is False
        assert check(item, "min_quality", "4k") is False

    @pytest.mark.rules
    def test_unknown_media_quality_does_not_fail(self):
        assert check(media(quality_name="Unknown"), "min_quality", "1080p") is True

    @pytest.mark.rules
    def test_resolution_matches_any_quality_field(self):
        item = media(resolution="1080p", codec="x265")
        assert check(item, "resolution", "x265") is True
        assert check(item, "resolution", "2160p") is False

    @pytest.mark.rules
    def test_resolution_other_always_passes(self):
        assert check(media(resolution="480p"), "resolution", "other") is True

    @pytest.mark.rules
    def test_quality_profile_is_case_insensitive(self):
        assert check(media(quality_profile="HD-1080p"), "quality_profile", "hd-1080") is True


class TestSizeStatusTitle:

    @pytest.mark.rules
    def test_size_bounds_are_inclusive(self):
        item = media(size=5 * GB)
        assert check(item, "min_size", 5) is True
        assert check(item, "max_size", 5) is True
        assert check(item, "max_size", 4.9) is False

    @pytest.mark.rules
    def test_watch_status_derivation(self):
        assert check(media(plex_view_count=2), "watch_status", "watched") is True
        assert check(media(tautulli_watch_time=600), "watch_status", "in-progress") is True
        assert check(media(), "watch_status", "unwatched") is True
        assert check(media(watched=True), "watch_status", "unwatched") is False

    @pytest.mark.rules
    def test_title_contains_and_exact(self):
        item = media(title="The Long Goodbye")
        assert check(item, "title_contains", "long") is True
        assert check(item, "title_exact", "the long goodbye") is True
        assert check(item, "title_exact", "long goodbye") is False

    @pytest.mark.rules
    def test_title_falls_back_to_filename(self):
        item = media(path="/media/movies/untitled_cut.mkv")
        assert check(item, "title_contains", "UNTITLED") is True


class TestIntegrationFields:

    @pytest.mark.rules
    def test_series_status_and_network_need_a_value(self):
        assert check(media(series_status="Ended"), "series_status", "ended") is True
        assert check(media(), "series_status", "ended") is False
        assert check(media(network="HBO"), "network", "hbo") is True

    @pytest.mark.rules
    def test_monitoring_status(self):
        assert check(media(monitored=False), "monitoring_status", "unmonitored") is True
        assert check(media(monitored=True), "monitoring_status", "unmonitored") is False

    @pytest.mark.rules
    def test_tags_any_of(self):
        item = media(tags=["kids", "4k"])
        assert check(item, "tags", "old,kids") is True
        assert check(item, "tags", "old") is False

    @pytest.mark.rules
    def test_view_counts(self):
        item = media(tautulli_view_count=3)
        assert check(item, "max_view_count", 3) is True
        assert check(item, "min_view_count", 4) is False

    @pytest.mark.rules
    def test_days_since_played(self):
        played = (NOW - timedelta(days=90)).isoformat()
        assert check(media(tautulli_last_played=played), "days_since_last_watched", 60) is True
        assert check(media(tautulli_last_played=played), "days_since_last_watched", 120) is False

    @pytest.mark.rules
    def test_never_played_passes_days_since_played(self):
        assert check(media(), "days_since_last_watched", 60) is True

    @pytest.mark.rules
    def test_watch_percentage(self):
        item = media(tautulli_duration=1000, tautulli_watch_time=900)
        assert check(item, "min_watch_percentage", 90) is True
        assert check(item, "min_watch_percentage", 95) is False

    @pytest.mark.rules
    def test_unknown_duration_passes_watch_percentage(self):
        assert check(media(tautulli_watch_time=100), "min_watch_percentage", 50) is True

    @pytest.mark.rules
    def test_condition_variant_can_be_built_directly(self):
        condition = Condition(group="size", key="min_size", kind="size_gb", operator="gte", value=1.0)
        assert evaluate_condition(media(size=2 * GB), condition, NOW) is True
