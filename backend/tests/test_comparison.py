"""
Tests for metrics/comparison.py
================================
Covers:
  - comparison_window / resolve_date_range
  - comparison_availability (stock vs flow)
  - backfill trigger predicates and keys
  - build_calculation_lines
"""

import sys
import os
from datetime import date

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from metrics.comparison import (
    COMPARISON_HIDDEN_LINE,
    CalculationInfo,
    DateRangePreset,
    backfill_key,
    build_calculation_lines,
    comparison_availability,
    comparison_window,
    resolve_date_range,
    should_backfill_compare,
    should_start_backfill,
    should_start_range_backfill,
)

TODAY = date(2026, 5, 20)


class TestComparisonWindow:
    def test_previous_window_has_same_length(self):
        window = comparison_window("2026-02-01", "2026-02-07")
        assert (window.prev_from, window.prev_to) == ("2026-01-25", "2026-01-31")
        assert window.day_count == 7

    def test_single_day(self):
        window = comparison_window("2026-03-01", "2026-03-01")
        assert (window.prev_from, window.prev_to) == ("2026-02-28", "2026-02-28")


class TestResolveDateRange:
    @pytest.mark.parametrize("preset,expected_from", [
        (DateRangePreset.TODAY, "2026-05-20"),
        (DateRangePreset.LAST_7_DAYS, "2026-05-14"),
        (DateRangePreset.LAST_4_WEEKS, "2026-04-23"),
        (DateRangePreset.LAST_30_DAYS, "2026-04-21"),
        (DateRangePreset.MONTH_TO_DATE, "2026-05-01"),
        (DateRangePreset.QUARTER_TO_DATE, "2026-04-01"),
        (DateRangePreset.YEAR_TO_DATE, "2026-01-01"),
    ])
    def test_presets(self, preset, expected_from):
        assert resolve_date_range(preset, TODAY) == (expected_from, "2026-05-20")

    def test_all_time_is_open(self):
        assert resolve_date_range(DateRangePreset.ALL_TIME, TODAY) == (None, None)

    def test_custom_cannot_be_resolved(self):
        with pytest.raises(ValueError):
            resolve_date_range(DateRangePreset.CUSTOM, TODAY)


class TestComparisonAvailability:
    def test_disabled_is_all_false(self):
        result = comparison_availability({"revenue": 3}, {"mrr": 2}, 2, compare_enabled=False)
        assert result == {"revenue": False, "mrr": False}

    def test_flow_always_available(self):
        result = comparison_availability({"revenue": 3}, {}, 2, compare_enabled=True)
        assert result == {"revenue": True}

    def test_stock_needs_full_coverage_in_both_windows(self):
        result = comparison_availability(
            {"mrr": 2, "active_subscriptions": 2},
            {"mrr": 2, "active_subscriptions": 1},
            2,
            compare_enabled=True,
        )
        assert result == {"mrr": True, "active_subscriptions": False}

    def test_stock_with_no_expected_accounts(self):
        assert comparison_availability({"mrr": 1}, {"mrr": 1}, 0, True) == {"mrr": False}


class TestBackfillTriggers:
    def test_should_backfill_compare(self):
        keys = ["revenue", "sales_count", "new_customers"]
        assert should_backfill_compare({"revenue": 0, "sales_count": 5, "new_customers": 2}, keys) is True
        assert should_backfill_compare({"revenue": 10, "sales_count": 1, "new_customers": 3}, keys) is False
        assert should_backfill_compare({"revenue": 10}, keys) is True

    def test_start_backfill_requires_compare(self):
        assert not should_start_backfill(False, "2026-01-01", "2026-01-30", ["acc-1"], {"revenue": 0}, ["revenue"])

    def test_start_backfill_requires_previous_range(self):
        assert not should_start_backfill(True, None, None, ["acc-1"], {"revenue": 0}, ["revenue"])

    def test_start_backfill_requires_accounts(self):
        assert not should_start_backfill(True, "2026-01-01", "2026-01-30", [], {"revenue": 0}, ["revenue"])

    def test_start_backfill_when_flow_missing(self):
        assert should_start_backfill(True, "2026-01-01", "2026-01-30", ["acc-1"], {"revenue": 0}, ["revenue"])

    def test_range_backfill(self):
        assert not should_start_range_backfill(None, None, ["acc-1"], {"revenue": 0}, ["revenue"])
        assert should_start_range_backfill("2026-02-01", "2026-02-07", ["acc-1"], {"revenue": 0}, ["revenue"])
        assert not should_start_range_backfill("2026-02-01", "2026-02-07", ["acc-1"], {"revenue": 5}, ["revenue"])

    def test_backfill_key(self):
        assert backfill_key("prev", "2026-01-01", "2026-01-30", ["a", "b"]) == "prev:2026-01-01:2026-01-30:a,b"


class TestCalculationLines:
    def test_flow_with_compare(self):
        info = CalculationInfo(
            metric_key="revenue", is_stock=False, current_value=10.0,
            compare_enabled=True, compare_available=True,
            from_date="2026-02-01", to_date="2026-02-07",
            prev_from="2026-01-25", prev_to="2026-01-31",
        )
        assert build_calculation_lines(info) == [
            "Current = sum of daily values from 2026-02-01 to 2026-02-07.",
            "Previous = sum of daily values from 2026-01-25 to 2026-01-31.",
        ]

    def test_stock_unavailable_comparison(self):
        info = CalculationInfo(
            metric_key="mrr", is_stock=True, current_value=10.0,
            compare_enabled=True, compare_available=False, to_date="2026-02-07",
        )
        assert build_calculation_lines(info) == [
            "Current = latest snapshot on or before 2026-02-07.",
            "Previous = latest snapshot in prior range.",
            COMPARISON_HIDDEN_LINE,
        ]

    def test_open_range_without_compare(self):
        info = CalculationInfo(
            metric_key="revenue", is_stock=False, current_value=0.0,
            compare_enabled=False, compare_available=False,
        )
        assert build_calculation_lines(info) == ["Current = sum of daily values in the selected range."]
