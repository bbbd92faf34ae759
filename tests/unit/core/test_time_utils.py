"""
Unit tests for timestamp helpers used by every provider.
"""
from datetime import datetime, timedelta, timezone

from app.core.time_utils import (
    days_ago,
    ensure_utc,
    from_epoch_seconds,
    parse_datetime,
    serialize_datetime,
)


class TestParseDatetime:

    def test_iso8601_with_z_suffix(self):
        assert parse_datetime("2024-03-01T10:15:00Z") == datetime(2024, 3, 1, 10, 15, tzinfo=timezone.utc)

    def test_rfc2822_with_offset_is_normalized_to_utc(self):
        parsed = parse_datetime("Mon, 01 Jan 2024 10:00:00 -0800")
        assert parsed == datetime(2024, 1, 1, 18, 0, tzinfo=timezone.utc)

    def test_epoch_seconds(self):
        assert parse_datetime(1700000000) == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_naive_values_are_treated_as_utc(self):
        assert parse_datetime("2024-01-15") == datetime(2024, 1, 15, tzinfo=timezone.utc)
        assert parse_datetime(datetime(2024, 1, 15)).tzinfo == timezone.utc

    def test_empty_and_garbage(self):
        assert parse_datetime(None) is None
        assert parse_datetime("") is None
        assert parse_datetime("not a date") is None


class TestSerializeDatetime:

    def test_z_suffix(self):
        assert serialize_datetime(datetime(2024, 1, 1, 12, tzinfo=timezone.utc)) == "2024-01-01T12:00:00Z"

    def test_none(self):
        assert serialize_datetime(None) is None

    def test_offset_converted(self):
        dt = datetime(2024, 1, 1, 12, tzinfo=timezone(timedelta(hours=2)))
        assert serialize_datetime(dt) == "2024-01-01T10:00:00Z"


class TestWindowHelpers:

    def test_days_ago(self):
        now = datetime(2024, 1, 31, tzinfo=timezone.utc)
        assert days_ago(30, now) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_from_epoch_seconds_accepts_fractions(self):
        assert from_epoch_seconds(1700000000.5).microsecond == 500000

    def test_ensure_utc_keeps_aware_instant(self):
        dt = datetime(2024, 1, 1, 12, tzinfo=timezone(timedelta(hours=-5)))
        assert ensure_utc(dt) == dt
        assert ensure_utc(dt).utcoffset() == timedelta(0)
