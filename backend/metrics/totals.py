"""
Totals Extractor
================
Turns the aggregation query (or a window of daily rows) into a typed
DashboardTotals snapshot.

Stock fields (mrr, active_subscriptions) always come from the aggregated
total. Flow fields are re-summed from the current window's daily rows when
those rows carry the metric type: a backfill may just have landed rows the
server-side aggregate does not reflect yet. net_revenue is derived last and
never stored on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable, Optional

from .metric_keys import NET_REVENUE, is_stock_metric
from .models import AggregatedTotals, DailyTotals, MetricRow
from .source_ids import build_source_id

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "USD"

# DashboardTotals field -> metric type, for the flow fields re-summed from daily rows
FLOW_TOTAL_FIELDS: dict[str, str] = {
    "revenue": "revenue",
    "new_customers": "new_customers",
    "subscription_revenue": "subscription_revenue",
    "one_time_revenue": "one_time_revenue",
    "sales_count": "sales_count",
    "platform_fees": "platform_fees",
}


@dataclass(frozen=True)
class DashboardTotals:
    revenue: float = 0.0
    mrr: float = 0.0
    net_revenue: float = 0.0
    active_subscriptions: float = 0.0
    new_customers: float = 0.0
    subscription_revenue: float = 0.0
    one_time_revenue: float = 0.0
    sales_count: float = 0.0
    platform_fees: float = 0.0
    currency: str = DEFAULT_CURRENCY


def empty_totals() -> DashboardTotals:
    return DashboardTotals()


def _build(values: dict[str, float], currency: Optional[str]) -> DashboardTotals:
    get = lambda key: values.get(key) or 0.0  # noqa: E731
    revenue = get("revenue")
    platform_fees = get("platform_fees")
    return DashboardTotals(
        revenue=revenue,
        mrr=get("mrr"),
        net_revenue=revenue - platform_fees,
        active_subscriptions=get("active_subscriptions"),
        new_customers=get("new_customers"),
        subscription_revenue=get("subscription_revenue"),
        one_time_revenue=get("one_time_revenue"),
        sales_count=get("sales_count"),
        platform_fees=platform_fees,
        currency=currency or DEFAULT_CURRENCY,
    )


def _fold_daily_rows(rows: Iterable[MetricRow]) -> dict[str, float]:
    """Per metric type: sum for flow metrics, latest snapshot per source (summed) for stock."""
    flow: dict[str, float] = {}
    latest: dict[str, dict[str, MetricRow]] = {}
    for row in rows:
        if is_stock_metric(row.metric_type):
            by_source = latest.setdefault(row.metric_type, {})
            sid = build_source_id(row.account_id, row.project_id)
            existing = by_source.get(sid)
            if existing is None or existing.date < row.date:
                by_source[sid] = row
        else:
            flow[row.metric_type] = flow.get(row.metric_type, 0.0) + row.value

    folded = dict(flow)
    for metric_type, by_source in latest.items():
        folded[metric_type] = sum(r.value for r in by_source.values())
    return folded


def extract_totals(totals: Optional[AggregatedTotals | DailyTotals]) -> DashboardTotals:
    """Build a DashboardTotals from either variant of the totals union."""
    if totals is None:
        return empty_totals()

    if totals.kind == "aggregated":
        values: dict[str, float] = {}
        currency: Optional[str] = None
        for row in totals.rows:
            # First row per metric type wins, as the query returns one row per currency
            if row.metric_type in values:
                continue
            values[row.metric_type] = row.total
            if row.metric_type == "revenue":
                currency = row.currency
        return _build(values, currency)

    if totals.kind == "daily":
        currency = next(
            (r.currency for r in totals.rows if r.metric_type == "revenue" and r.currency),
            None,
        )
        return _build(_fold_daily_rows(totals.rows), currency)

    logger.warning(f"Unknown totals kind: {totals.kind!r}")
    return empty_totals()


def extract_counts(totals: Optional[AggregatedTotals | DailyTotals]) -> dict[str, int]:
    """metric_type -> number of underlying rows folded into the window."""
    counts: dict[str, int] = {}
    if totals is None:
        return counts
    if totals.kind == "aggregated":
        for row in totals.rows:
            counts[row.metric_type] = counts.get(row.metric_type, 0) + (row.count or 0)
    else:
        for row in totals.rows:
            counts[row.metric_type] = counts.get(row.metric_type, 0) + 1
    return counts


def sum_daily_metrics(rows: Iterable[MetricRow]) -> dict[str, float]:
    sums: dict[str, float] = {}
    for row in rows:
        sums[row.metric_type] = sums.get(row.metric_type, 0.0) + row.value
    return sums


def compute_current_totals(
    aggregated: Optional[AggregatedTotals],
    daily_rows: Optional[list[MetricRow]] = None,
) -> DashboardTotals:
    """Aggregate for stock fields, daily re-sum for flow fields present in the window."""
    base = extract_totals(aggregated)
    if not daily_rows:
        return base

    daily_sums = sum_daily_metrics(daily_rows)
    overrides = {
        field_name: daily_sums[metric_type]
        for field_name, metric_type in FLOW_TOTAL_FIELDS.items()
        if metric_type in daily_sums
    }
    merged = replace(base, **overrides)
    return replace(merged, net_revenue=merged.revenue - merged.platform_fees)


def new_mrr(today: DashboardTotals, yesterday: DashboardTotals) -> float:
    return today.mrr - yesterday.mrr


def metrics_by_day(rows: Iterable[MetricRow]) -> dict[str, list[tuple[str, float]]]:
    """
    Daily series per metric type, sorted by date, plus a derived net_revenue
    series (revenue minus platform fees for every date either one reports).
    """
    by_type: dict[str, dict[str, float]] = {}
    for row in rows:
        by_date = by_type.setdefault(row.metric_type, {})
        by_date[row.date] = by_date.get(row.date, 0.0) + row.value

    revenue = by_type.get("revenue", {})
    fees = by_type.get("platform_fees", {})
    net = {
        d: revenue.get(d, 0.0) - fees.get(d, 0.0)
        for d in set(revenue) | set(fees)
    }
    if net:
        by_type[NET_REVENUE] = net

    return {
        metric_type: sorted(by_date.items())
        for metric_type, by_date in by_type.items()
    }
