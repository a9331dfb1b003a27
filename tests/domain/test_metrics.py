"""Tests for the pure analytics policies (inventory_kernel/domain/metrics.py)."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from inventory_kernel.domain.metrics import (
    BucketInterval,
    CoverStatus,
    SalesDirection,
    average_daily,
    bucket_start,
    classify_cover,
    iter_buckets,
    next_bucket,
    observed_days,
    parse_unit_price,
    resolve_direction,
    safe_percentage,
)

NOW = datetime(2025, 1, 8, 12, 0, tzinfo=timezone.utc)


class TestObservedDays:
    def test_partial_day_rounds_up(self):
        assert observed_days(NOW, NOW - timedelta(hours=3), 7) == 1
        assert observed_days(NOW, NOW - timedelta(days=2, hours=1), 7) == 3

    def test_clamped_to_range(self):
        assert observed_days(NOW, NOW - timedelta(days=30), 7) == 7

    def test_same_instant_counts_as_one_day(self):
        assert observed_days(NOW, NOW, 7) == 1


class TestAverageDaily:
    def test_average(self):
        assert average_daily(Decimal(21), 7) == Decimal(3)

    def test_thin_sample_has_no_average(self):
        assert average_daily(Decimal(10), 2) is None
        assert average_daily(Decimal(10), 2, min_observed_days=2) == Decimal(5)

    def test_no_sales_has_no_average(self):
        assert average_daily(Decimal(0), 7) is None


class TestClassifyCover:
    def test_risk_at_threshold(self):
        assert classify_cover(Decimal(9), Decimal(3)) == (CoverStatus.RISK, Decimal("3.0"))

    def test_ok_above_threshold(self):
        status, cover = classify_cover(Decimal(20), Decimal(3))
        assert status is CoverStatus.OK
        assert cover == Decimal("6.7")

    def test_custom_threshold(self):
        status, _ = classify_cover(Decimal(20), Decimal(3), risk_threshold_days=7)
        assert status is CoverStatus.RISK

    @pytest.mark.parametrize("average", [None, Decimal(0), Decimal(-1)])
    def test_insufficient_data(self, average):
        assert classify_cover(Decimal(5), average) == (CoverStatus.INSUFFICIENT_DATA, None)

    def test_empty_shelf_is_risk(self):
        assert classify_cover(Decimal(0), Decimal(2)) == (CoverStatus.RISK, Decimal("0.0"))


class TestDeltas:
    def test_percentage(self):
        assert safe_percentage(Decimal(10), Decimal(5)) == Decimal("100.00")
        assert safe_percentage(Decimal(2), Decimal(3)) == Decimal("-33.33")

    def test_no_prior_means_no_percentage(self):
        assert safe_percentage(Decimal(10), Decimal(0)) is None

    @pytest.mark.parametrize(
        "absolute, percentage, expected",
        [
            (Decimal(5), Decimal(100), SalesDirection.UP),
            (Decimal(-5), Decimal(-50), SalesDirection.DOWN),
            (Decimal(0), Decimal(0), SalesDirection.FLAT),
            (Decimal(5), None, SalesDirection.NA),
        ],
    )
    def test_direction(self, absolute, percentage, expected):
        assert resolve_direction(absolute, percentage) is expected


class TestParseUnitPrice:
    @pytest.mark.parametrize(
        "metadata, expected",
        [
            ({"price": "129.00"}, Decimal("129.00")),
            ({"price": 12}, Decimal(12)),
            ({"price": 0.1}, Decimal("0.1")),
            ({"price": " 4.5 "}, Decimal("4.5")),
            ({"price": "cheap"}, Decimal(0)),
            ({"price": True}, Decimal(0)),
            ({"price": "NaN"}, Decimal(0)),
            ({}, Decimal(0)),
            (None, Decimal(0)),
            ("not a dict", Decimal(0)),
        ],
    )
    def test_parse(self, metadata, expected):
        assert parse_unit_price(metadata) == expected


class TestBuckets:
    def test_day_bucket(self):
        assert bucket_start(NOW, "day") == datetime(2025, 1, 8, tzinfo=timezone.utc)

    def test_week_bucket_starts_monday(self):
        assert bucket_start(NOW, BucketInterval.WEEK) == datetime(2025, 1, 6, tzinfo=timezone.utc)

    def test_month_bucket_and_year_rollover(self):
        december = datetime(2024, 12, 15, tzinfo=timezone.utc)
        start = bucket_start(december, BucketInterval.MONTH)
        assert start == datetime(2024, 12, 1, tzinfo=timezone.utc)
        assert next_bucket(start, BucketInterval.MONTH) == datetime(2025, 1, 1, tzinfo=timezone.utc)

    def test_iter_buckets_inclusive_of_end_bucket(self):
        buckets = list(iter_buckets(NOW - timedelta(days=2), NOW, BucketInterval.DAY))
        assert [b.day for b in buckets] == [6, 7, 8]

    def test_unknown_interval(self):
        with pytest.raises(ValueError):
            bucket_start(NOW, "fortnight")
