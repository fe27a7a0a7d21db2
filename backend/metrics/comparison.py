"""
Comparison Availability
=======================
Date windows for the selected range and its comparison period, the rules
that decide whether a previous-period value is trustworthy enough to show,
and the predicates that decide when missing history should be backfilled.

Flow metrics (sums) are always comparable: a window with no rows is a
genuine zero, and a missing window triggers a backfill instead. Stock
metrics (snapshots) are only comparable when every selected account has a
snapshot in both windows; otherwise the previous value would silently
under-count.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Mapping, Optional, Sequence

from .metric_keys import is_stock_metric

COMPARISON_HIDDEN_LINE = "Comparison hidden: insufficient historical coverage."


# ---------------------------------------------------------------------------
# Date windows
# ---------------------------------------------------------------------------

class DateRangePreset:
    TODAY = "today"
    LAST_7_DAYS = "last_7_days"
    LAST_4_WEEKS = "last_4_weeks"
    LAST_30_DAYS = "last_30_days"
    MONTH_TO_DATE = "month_to_date"
    QUARTER_TO_DATE = "quarter_to_date"
    YEAR_TO_DATE = "year_to_date"
    ALL_TIME = "all_time"
    CUSTOM = "custom"

    ALL = frozenset({
        TODAY, LAST_7_DAYS, LAST_4_WEEKS, LAST_30_DAYS, MONTH_TO_DATE,
        QUARTER_TO_DATE, YEAR_TO_DATE, ALL_TIME, CUSTOM,
    })

    LABELS = {
        TODAY: "Today",
        LAST_7_DAYS: "Last 7 days",
        LAST_4_WEEKS: "Last 4 weeks",
        LAST_30_DAYS: "Last 30 days",
        MONTH_TO_DATE: "Month to date",
        QUARTER_TO_DATE: "Quarter to date",
        YEAR_TO_DATE: "Year to date",
        ALL_TIME: "All time",
        CUSTOM: "Custom range",
    }

    @classmethod
    def is_valid(cls, preset: str) -> bool:
        return preset in cls.ALL


@dataclass(frozen=True)
class ComparisonWindow:
    from_date: str
    to_date: str
    prev_from: str
    prev_to: str

    @property
    def day_count(self) -> int:
        return (date.fromisoformat(self.to_date) - date.fromisoformat(self.from_date)).days + 1


def comparison_window(from_date: str, to_date: str) -> ComparisonWindow:
    """The previous window has the same number of days and ends the day before from_date."""
    start = date.fromisoformat(from_date)
    end = date.fromisoformat(to_date)
    day_count = (end - start).days + 1
    return ComparisonWindow(
        from_date=from_date,
        to_date=to_date,
        prev_from=(start - timedelta(days=day_count)).isoformat(),
        prev_to=(start - timedelta(days=1)).isoformat(),
    )


def resolve_date_range(preset: str, today: date) -> tuple[Optional[str], Optional[str]]:
    """(from, to) as ISO dates for a preset; all_time is an open range."""
    end = today.isoformat()
    if preset == DateRangePreset.TODAY:
        return end, end
    if preset == DateRangePreset.LAST_7_DAYS:
        return (today - timedelta(days=6)).isoformat(), end
    if preset == DateRangePreset.LAST_4_WEEKS:
        return (today - timedelta(days=27)).isoformat(), end
    if preset == DateRangePreset.LAST_30_DAYS:
        return (today - timedelta(days=29)).isoformat(), end
    if preset == DateRangePreset.MONTH_TO_DATE:
        return today.replace(day=1).isoformat(), end
    if preset == DateRangePreset.QUARTER_TO_DATE:
        quarter_month = (today.month - 1) // 3 * 3 + 1
        return today.replace(month=quarter_month, day=1).isoformat(), end
    if preset == DateRangePreset.YEAR_TO_DATE:
        return today.replace(month=1, day=1).isoformat(), end
    if preset == DateRangePreset.ALL_TIME:
        return None, None
    raise ValueError(f"Cannot resolve date range preset: {preset}")


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------

def comparison_availability(
    current_counts: Mapping[str, int],
    previous_counts: Mapping[str, int],
    expected_accounts: int,
    compare_enabled: bool,
) -> dict[str, bool]:
    availability: dict[str, bool] = {}
    for key in {**current_counts, **previous_counts}:
        if not compare_enabled:
            availability[key] = False
        elif is_stock_metric(key):
            availability[key] = (
                expected_accounts > 0
                and current_counts.get(key, 0) >= expected_accounts
                and previous_counts.get(key, 0) >= expected_accounts
            )
        else:
            availability[key] = True
    return availability


# ---------------------------------------------------------------------------
# Backfill triggers
# ---------------------------------------------------------------------------

def should_backfill_compare(counts: Mapping[str, int], flow_keys: Sequence[str]) -> bool:
    """True when any flow metric has no rows in the window."""
    return any(counts.get(key, 0) == 0 for key in flow_keys)


def should_start_range_backfill(
    from_date: Optional[str],
    to_date: Optional[str],
    account_ids: Sequence[str],
    counts: Mapping[str, int],
    flow_keys: Sequence[str],
) -> bool:
    if not from_date or not to_date:
        return False
    if not account_ids:
        return False
    return should_backfill_compare(counts, flow_keys)


def should_start_backfill(
    compare_enabled: bool,
    prev_from: Optional[str],
    prev_to: Optional[str],
    account_ids: Sequence[str],
    prev_counts: Mapping[str, int],
    flow_keys: Sequence[str],
) -> bool:
    if not compare_enabled:
        return False
    if not prev_from or not prev_to:
        return False
    if not account_ids:
        return False
    return should_backfill_compare(prev_counts, flow_keys)


CURRENT_SCOPE = "current"
PREV_SCOPE = "prev"


def backfill_key(scope: str, from_date: str, to_date: str, account_ids: Sequence[str]) -> str:
    """'current:<from>:<to>:<a,b>' or 'prev:<from>:<to>:<a,b>'."""
    return f"{scope}:{from_date}:{to_date}:{','.join(account_ids)}"


# ---------------------------------------------------------------------------
# Calculation explainer
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CalculationInfo:
    metric_key: str
    is_stock: bool
    current_value: float
    compare_enabled: bool
    compare_available: bool
    from_date: Optional[str] = None
    to_date: Optional[str] = None
    prev_from: Optional[str] = None
    prev_to: Optional[str] = None
    previous_value: Optional[float] = None


def build_calculation_lines(info: CalculationInfo) -> list[str]:
    """Plain-language explanation of how a card's current and previous values were derived."""
    lines: list[str] = []

    if info.is_stock:
        if info.to_date:
            lines.append(f"Current = latest snapshot on or before {info.to_date}.")
        else:
            lines.append("Current = latest available snapshot.")
        if info.compare_enabled:
            if info.prev_to:
                lines.append(f"Previous = latest snapshot on or before {info.prev_to}.")
            else:
                lines.append("Previous = latest snapshot in prior range.")
    else:
        if info.from_date and info.to_date:
            lines.append(f"Current = sum of daily values from {info.from_date} to {info.to_date}.")
        else:
            lines.append("Current = sum of daily values in the selected range.")
        if info.compare_enabled and info.prev_from and info.prev_to:
            lines.append(f"Previous = sum of daily values from {info.prev_from} to {info.prev_to}.")

    if info.compare_enabled and not info.compare_available:
        lines.append(COMPARISON_HIDDEN_LINE)

    return lines
