"""Unit tests for TemporalNormalizer.

Test Strategy:
1. INSTANT: offsets honoured, naive read as UTC with lower confidence
2. LOCAL_TIME: DST-correct conversion from the market zone
3. DISPLAY_DATE: league start time or caller hint
4. INSTANT_MIDNIGHT_DEFECT: 00:00Z is repaired only when the listed day shows truncation
5. Unparseable input raises PermanentProviderError
"""
from datetime import date, datetime, time, timezone

import pytest

from slatesync.core.exceptions import PermanentProviderError
from slatesync.services.sync.temporal_normalizer import (
    CONFIDENCE_DISPLAY_DATE,
    CONFIDENCE_DISPLAY_DATE_WITH_TIME,
    CONFIDENCE_INSTANT,
    CONFIDENCE_LOCAL_TIME,
    CONFIDENCE_MIDNIGHT_REPAIRED,
    CONFIDENCE_NAIVE_INSTANT,
    SourceConvention,
    TemporalNormalizer,
    parse_time_hint,
    parse_timestamp,
)

UTC = timezone.utc


@pytest.fixture
def normalizer():
    return TemporalNormalizer(midnight_defect_sources=set())


class TestInstant:
    """INSTANT sources."""

    def test_z_suffix(self, normalizer):
        result = normalizer.normalize("2025-11-06T00:30Z", SourceConvention.INSTANT, "nba")
        assert result.instant == datetime(2025, 11, 6, 0, 30, tzinfo=UTC)
        assert result.confidence == CONFIDENCE_INSTANT

    def test_explicit_offset_converted_to_utc(self, normalizer):
        result = normalizer.normalize("2025-11-05T19:30:00-05:00", SourceConvention.INSTANT, "nba")
        assert result.instant == datetime(2025, 11, 6, 0, 30, tzinfo=UTC)
        assert result.instant.tzinfo == UTC

    def test_naive_read_as_utc(self, normalizer):
        result = normalizer.normalize("2025-11-06T00:30:00", SourceConvention.INSTANT, "nba")
        assert result.instant == datetime(2025, 11, 6, 0, 30, tzinfo=UTC)
        assert result.confidence == CONFIDENCE_NAIVE_INSTANT

    def test_epoch_seconds_and_millis(self, normalizer):
        expected = datetime(2025, 11, 6, 0, 30, tzinfo=UTC)
        seconds = int(expected.timestamp())
        assert normalizer.normalize(seconds, SourceConvention.INSTANT, "nba").instant == expected
        assert normalizer.normalize(seconds * 1000, SourceConvention.INSTANT, "nba").instant == expected

    def test_real_midnight_game_untouched_without_defect_flag(self, normalizer):
        # 7:00 PM EST is exactly 00:00Z
        result = normalizer.normalize("2025-12-02T00:00:00Z", SourceConvention.INSTANT, "nba")
        assert result.instant == datetime(2025, 12, 2, 0, 0, tzinfo=UTC)
        assert result.confidence == CONFIDENCE_INSTANT


class TestLocalTime:
    """LOCAL_TIME sources and cross-midnight behaviour."""

    def test_late_eastern_start_crosses_utc_midnight(self, normalizer):
        result = normalizer.normalize("2025-11-05T22:00:00", SourceConvention.LOCAL_TIME, "nba")
        assert result.instant == datetime(2025, 11, 6, 3, 0, tzinfo=UTC)
        assert result.confidence == CONFIDENCE_LOCAL_TIME

    def test_local_date_is_market_day(self, normalizer):
        instant = datetime(2025, 11, 6, 3, 0, tzinfo=UTC)
        assert normalizer.local_date(instant, "nba") == date(2025, 11, 5)

    def test_daylight_saving_offset_from_game_date(self, normalizer):
        # EDT (UTC-4) in October, EST (UTC-5) in December
        october = normalizer.normalize("2025-10-22T19:30:00", SourceConvention.LOCAL_TIME, "nba")
        december = normalizer.normalize("2025-12-22T19:30:00", SourceConvention.LOCAL_TIME, "nba")
        assert october.instant == datetime(2025, 10, 22, 23, 30, tzinfo=UTC)
        assert december.instant == datetime(2025, 12, 23, 0, 30, tzinfo=UTC)

    def test_aware_value_wins_over_convention(self, normalizer):
        result = normalizer.normalize("2025-11-06T03:00:00+00:00", SourceConvention.LOCAL_TIME, "nba")
        assert result.instant == datetime(2025, 11, 6, 3, 0, tzinfo=UTC)
        assert result.confidence == CONFIDENCE_INSTANT


class TestDisplayDate:
    """DISPLAY_DATE sources."""

    @pytest.mark.parametrize("sport,expected", [
        ("nba", datetime(2025, 11, 6, 0, 0, tzinfo=UTC)),
        ("nhl", datetime(2025, 11, 6, 0, 0, tzinfo=UTC)),
        ("mlb", datetime(2025, 11, 6, 0, 5, tzinfo=UTC)),
        ("nfl", datetime(2025, 11, 5, 18, 0, tzinfo=UTC)),
    ])
    def test_league_typical_start(self, normalizer, sport, expected):
        result = normalizer.normalize("2025-11-05", SourceConvention.DISPLAY_DATE, sport)
        assert result.instant == expected
        assert result.confidence == CONFIDENCE_DISPLAY_DATE

    def test_time_hint_used(self, normalizer):
        result = normalizer.normalize("20251105", SourceConvention.DISPLAY_DATE, "nba", time_hint="10:00 PM")
        assert result.instant == datetime(2025, 11, 6, 3, 0, tzinfo=UTC)
        assert result.confidence == CONFIDENCE_DISPLAY_DATE_WITH_TIME

    def test_bare_date_under_instant_convention_treated_as_display_date(self, normalizer):
        result = normalizer.normalize(date(2025, 11, 5), SourceConvention.INSTANT, "nba")
        assert result.confidence == CONFIDENCE_DISPLAY_DATE


class TestMidnightDefect:
    """INSTANT_MIDNIGHT_DEFECT sources."""

    def test_convention_upgraded_for_configured_source(self):
        normalizer = TemporalNormalizer(midnight_defect_sources={"espn:nhl"})
        assert normalizer.convention_for("espn", "nhl", SourceConvention.INSTANT) == \
            SourceConvention.INSTANT_MIDNIGHT_DEFECT
        assert normalizer.convention_for("espn", "nba", SourceConvention.INSTANT) == SourceConvention.INSTANT
        assert normalizer.convention_for("espn", "nhl", SourceConvention.LOCAL_TIME) == \
            SourceConvention.LOCAL_TIME

    def test_evening_start_on_listed_day_kept(self, normalizer):
        # 7 PM Eastern on Nov 16 is exactly midnight UTC on Nov 17
        result = normalizer.normalize(
            "2025-11-17T00:00:00Z", SourceConvention.INSTANT_MIDNIGHT_DEFECT, "nhl", listed_date=date(2025, 11, 16)
        )
        assert result.instant == datetime(2025, 11, 17, 0, 0, tzinfo=UTC)
        assert result.confidence == CONFIDENCE_INSTANT
        assert normalizer.local_date(result.instant, "nhl") == date(2025, 11, 16)

    def test_summer_evening_start_kept(self, normalizer):
        result = normalizer.normalize(
            "2025-07-01T00:00:00Z", SourceConvention.INSTANT_MIDNIGHT_DEFECT, "mlb", listed_date=date(2025, 6, 30)
        )
        assert result.instant == datetime(2025, 7, 1, 0, 0, tzinfo=UTC)
        assert result.confidence == CONFIDENCE_INSTANT

    def test_truncated_value_rebuilt_on_listed_day(self, normalizer):
        result = normalizer.normalize(
            "2025-11-17T00:00:00Z", SourceConvention.INSTANT_MIDNIGHT_DEFECT, "nhl", listed_date=date(2025, 11, 17)
        )
        assert result.instant == datetime(2025, 11, 18, 0, 0, tzinfo=UTC)
        assert result.confidence == CONFIDENCE_MIDNIGHT_REPAIRED
        assert normalizer.local_date(result.instant, "nhl") == date(2025, 11, 17)

    @pytest.mark.parametrize("listed", [None, date(2025, 11, 10)])
    def test_unverifiable_midnight_kept_at_low_confidence(self, normalizer, listed):
        result = normalizer.normalize(
            "2025-11-17T00:00:00Z", SourceConvention.INSTANT_MIDNIGHT_DEFECT, "nhl", listed_date=listed
        )
        assert result.instant == datetime(2025, 11, 17, 0, 0, tzinfo=UTC)
        assert result.confidence == CONFIDENCE_DISPLAY_DATE

    def test_non_midnight_value_kept(self, normalizer):
        result = normalizer.normalize(
            "2025-11-06T00:30:00Z", SourceConvention.INSTANT_MIDNIGHT_DEFECT, "nhl"
        )
        assert result.instant == datetime(2025, 11, 6, 0, 30, tzinfo=UTC)
        assert result.confidence == CONFIDENCE_INSTANT


class TestParsing:
    """parse_timestamp() and parse_time_hint()."""

    @pytest.mark.parametrize("raw", ["", "   ", "not a date", "2025-13-45", None, True])
    def test_unparseable_raises_permanent_error(self, raw):
        with pytest.raises(PermanentProviderError):
            parse_timestamp(raw)

    def test_normalize_propagates_parse_error(self, normalizer):
        with pytest.raises(PermanentProviderError):
            normalizer.normalize("garbage", SourceConvention.INSTANT, "nba")

    def test_compact_date(self):
        assert parse_timestamp("20251105") == date(2025, 11, 5)

    @pytest.mark.parametrize("hint,expected", [
        ("7:30 PM", time(19, 30)),
        ("7:30pm", time(19, 30)),
        ("19:30", time(19, 30)),
        ("8 PM", time(20, 0)),
        ("TBD", None),
        (None, None),
    ])
    def test_time_hints(self, hint, expected):
        assert parse_time_hint(hint) == expected
