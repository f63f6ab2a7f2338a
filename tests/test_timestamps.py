"""Tests for timestamp normalization."""

import math

import pytest

from utils.errors import UnparseableTimestamp
from utils.timestamps import MAX_TIMESTAMP_MS, MIN_TIMESTAMP_MS, parse_datetime, parse_timestamp_ms


class TestParseTimestampMs:
    def test_integer_passthrough(self):
        assert parse_timestamp_ms(1_700_000_000_000) == 1_700_000_000_000

    def test_float_truncated(self):
        assert parse_timestamp_ms(1_700_000_000_000.75) == 1_700_000_000_000

    def test_digit_string_is_epoch_ms(self):
        assert parse_timestamp_ms("1700000000000") == 1_700_000_000_000

    def test_iso_with_z(self):
        assert parse_timestamp_ms("2024-01-01T00:00:00Z") == 1_704_067_200_000

    def test_iso_with_millis_and_offset(self):
        assert parse_timestamp_ms("2024-01-01T02:00:00.123+02:00") == 1_704_067_200_123

    def test_naive_iso_is_utc(self):
        assert parse_timestamp_ms("2024-01-01T00:00:00") == 1_704_067_200_000

    def test_rfc2822(self):
        assert parse_timestamp_ms("Mon, 01 Jan 2024 00:00:00 GMT") == 1_704_067_200_000

    def test_space_separated_with_zone_name(self):
        assert parse_timestamp_ms("2024-01-15 10:30:00 UTC") == 1_705_314_600_000

    def test_slash_separated_date_is_utc(self):
        assert parse_timestamp_ms("2024/01/15 10:30:00") == 1_705_314_600_000

    @pytest.mark.parametrize("value", ["99999999999999999", 10**17, -(10**17), 1e300])
    def test_out_of_range(self, value):
        with pytest.raises(UnparseableTimestamp):
            parse_timestamp_ms(value)

    def test_range_bounds_accepted(self):
        assert parse_timestamp_ms(MAX_TIMESTAMP_MS) == MAX_TIMESTAMP_MS
        assert parse_timestamp_ms(str(MAX_TIMESTAMP_MS)) == MAX_TIMESTAMP_MS
        assert parse_timestamp_ms(MIN_TIMESTAMP_MS) == MIN_TIMESTAMP_MS

    @pytest.mark.parametrize(
        "value",
        [None, True, math.inf, math.nan, "", "yesterday", "12abc", {"ts": 1}, [1]],
    )
    def test_unparseable(self, value):
        with pytest.raises(UnparseableTimestamp):
            parse_timestamp_ms(value)

    def test_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_timestamp_ms("not a date")


class TestParseDatetime:
    def test_blank_is_none(self):
        assert parse_datetime("   ") is None

    def test_result_is_aware(self):
        parsed = parse_datetime("2024-06-01 12:30:00")
        assert parsed is not None
        assert parsed.tzinfo is not None
