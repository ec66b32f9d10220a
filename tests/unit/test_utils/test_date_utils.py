# tests/unit/test_utils/test_date_utils.py

"""Tests for date_utils: canonical UTC text, lenient parsing and the zero-date rule."""

from datetime import datetime, timedelta, timezone

import pytest

from achievement_cache.utils.date_utils import (
    EPOCH_UTC,
    normalize_stored_iso,
    normalize_unlock_time,
    parse_utc,
    to_iso,
)

NOON = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ==================================================================
# to_iso
# ==================================================================


class TestToIso:
    """Tests for formatting datetimes as stored text."""

    def test_fixed_width_format(self):
        assert to_iso(NOON) == "2024-03-01T12:00:00.000000Z"

    def test_naive_is_treated_as_utc(self):
        assert to_iso(datetime(2024, 3, 1, 12, 0, 0)) == "2024-03-01T12:00:00.000000Z"

    def test_offset_is_converted(self):
        plus_two = timezone(timedelta(hours=2))
        assert to_iso(datetime(2024, 3, 1, 14, 0, 0, tzinfo=plus_two)) == "2024-03-01T12:00:00.000000Z"


# ==================================================================
# parse_utc
# ==================================================================


class TestParseUtc:
    """Tests for reading stored and legacy timestamp text."""

    @pytest.mark.parametrize(
        "text",
        [
            "2024-03-01T12:00:00.000000Z",
            "2024-03-01T12:00:00Z",
            "2024-03-01T12:00:00.0000000Z",
            "2024-03-01T14:00:00+02:00",
            "  2024-03-01T12:00:00  ",
        ],
    )
    def test_accepted_variants(self, text):
        assert parse_utc(text) == NOON

    @pytest.mark.parametrize("text", [None, "", "   ", "yesterday"])
    def test_unparsable_returns_none(self, text):
        assert parse_utc(text) is None

    def test_seven_digit_fraction_is_truncated(self):
        assert parse_utc("2024-03-01T12:00:00.1234567Z").microsecond == 123456


# ==================================================================
# Zero-date rule
# ==================================================================


class TestNormalizeUnlockTime:
    """Tests for the locked-sentinel handling of unlock times."""

    @pytest.mark.parametrize("value", [None, datetime.min, EPOCH_UTC, datetime(1969, 12, 31)])
    def test_sentinels_mean_locked(self, value):
        assert normalize_unlock_time(value) is None

    def test_real_time_is_kept_as_utc(self):
        result = normalize_unlock_time(datetime(2024, 3, 1, 12, 0, 0))
        assert result == NOON
        assert result.tzinfo is not None


class TestNormalizeStoredIso:
    """Tests for canonicalizing stored text before comparisons."""

    def test_reformats_parsable_text(self):
        assert normalize_stored_iso("2024-03-01T12:00:00Z") == "2024-03-01T12:00:00.000000Z"

    def test_blank_is_none(self):
        assert normalize_stored_iso("  ") is None
        assert normalize_stored_iso(None) is None

    def test_garbage_is_kept_trimmed(self):
        assert normalize_stored_iso(" not a date ") == "not a date"
