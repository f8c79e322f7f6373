"""
Tests for datetime_utils module.
"""
import pytest
from datetime import datetime, timezone, timedelta
from legalnexus.utils.datetime_utils import (
    add_days,
    add_minutes,
    epoch_ms,
    format_hebrew_date,
    is_past,
    parse_db_timestamp,
    to_db_timestamp,
    utc_now,
)


class TestUtcNow:
    """Test utc_now() function."""

    def test_returns_timezone_aware(self):
        """utc_now() returns timezone-aware datetime."""
        now = utc_now()
        assert now.tzinfo is not None
        assert now.tzinfo == timezone.utc

    def test_returns_utc(self):
        """utc_now() returns UTC time."""
        diff = abs((utc_now() - datetime.now(timezone.utc)).total_seconds())
        assert diff < 1


class TestParseDbTimestamp:
    """Test parse_db_timestamp() function."""

    def test_none_returns_none(self):
        assert parse_db_timestamp(None) is None

    def test_empty_string_returns_none(self):
        assert parse_db_timestamp("") is None

    def test_iso_with_z_suffix(self):
        """Parses ISO format with Z suffix."""
        result = parse_db_timestamp("2026-10-18T09:00:00Z")
        assert result == datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)

    def test_iso_with_offset(self):
        """Parses offsets and keeps the instant."""
        result = parse_db_timestamp("2026-10-18T12:00:00+03:00")
        assert result == datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)

    def test_naive_datetime_becomes_utc(self):
        """Naive datetime input is assumed UTC."""
        result = parse_db_timestamp(datetime(2026, 10, 18, 9, 0))
        assert result.tzinfo == timezone.utc

    def test_invalid_values_return_none(self):
        assert parse_db_timestamp("not-a-date") is None
        assert parse_db_timestamp(12345) is None


class TestIsPast:
    """Test is_past() function."""

    def test_future_deadline(self, now):
        assert is_past(now + timedelta(seconds=1), now) is False

    def test_deadline_reached(self, now):
        """The deadline instant itself counts as passed."""
        assert is_past(now, now) is True

    def test_string_deadline(self, now):
        assert is_past("2026-10-17T09:00:00Z", now) is True
        assert is_past("2026-10-19T09:00:00Z", now) is False

    def test_missing_deadline_counts_as_passed(self, now):
        assert is_past(None, now) is True
        assert is_past("garbage", now) is True


class TestSerialization:

    def test_to_db_timestamp_roundtrip(self, now):
        assert parse_db_timestamp(to_db_timestamp(now)) == now

    def test_to_db_timestamp_converts_to_utc(self):
        local = datetime(2026, 10, 18, 12, 0, tzinfo=timezone(timedelta(hours=3)))
        assert to_db_timestamp(local) == "2026-10-18T09:00:00+00:00"

    def test_epoch_ms(self):
        assert epoch_ms(datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)) == 1000

    def test_add_helpers(self, now):
        assert add_days(now, 30) == datetime(2026, 11, 17, 9, 0, tzinfo=timezone.utc)
        assert add_minutes(now, 30) == datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)


class TestFormatHebrewDate:
    """Test format_hebrew_date() function."""

    def test_long_date(self):
        assert format_hebrew_date("2026-10-18T09:00:00Z") == "18 באוקטובר 2026"

    def test_uses_israel_time(self):
        """Late UTC evening is already the next day in Jerusalem."""
        assert format_hebrew_date("2026-10-18T22:30:00Z") == "19 באוקטובר 2026"

    @pytest.mark.parametrize("value", [None, "", "soon"])
    def test_unparseable(self, value):
        assert format_hebrew_date(value) == ""
