"""
Daily Breakdown Builder
=======================
metric_type -> date -> top-N contributing sources, for chart tooltips.

For each day an account contributes its product rows when it reported any
for that metric type on that day, and its account-level row otherwise, so a
day's entries never double count. Group merging is applied per day after
the top-N cut, and a derived net_revenue breakdown is appended whenever
revenue or platform-fee breakdowns exist.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Optional

from .group_merge import GroupLookup, merge_breakdown_entries
from .metric_keys import NET_REVENUE
from .models import BreakdownEntry, MetricRow, ProductMetricsResponse
from .ranking import account_label, product_label
from .source_ids import build_source_id

DEFAULT_TOP_N = 5

# metric_type -> date -> source_id -> True
PendingSourceMap = dict[str, dict[str, dict[str, bool]]]
Breakdowns = dict[str, dict[str, list[BreakdownEntry]]]


@dataclass
class _DaySource:
    label: str
    value: float
    integration_name: Optional[str]
    source_id: str


def _disambiguate_day(entries: list[BreakdownEntry]) -> list[BreakdownEntry]:
    counts: dict[str, int] = {}
    for entry in entries:
        counts[entry.label] = counts.get(entry.label, 0) + 1
    return [
        replace(e, label=f"{e.label} ({e.integration_name})")
        if counts[e.label] > 1 and e.integration_name else e
        for e in entries
    ]


def _top(entries: Iterable[BreakdownEntry], top_n: int) -> list[BreakdownEntry]:
    return sorted(entries, key=lambda e: e.value, reverse=True)[:top_n]


def build_breakdown_by_metric_and_day(
    product_data: Optional[ProductMetricsResponse],
    enabled_project_ids: Optional[set[str]],
    daily_rows: list[MetricRow],
    account_labels: dict[str, str],
    account_integration_map: dict[str, str],
    group_lookup: GroupLookup,
    pending_source_ids: Optional[PendingSourceMap] = None,
    top_n: int = DEFAULT_TOP_N,
) -> Breakdowns:
    pending_source_ids = pending_source_ids or {}
    restrict = bool(enabled_project_ids)

    # metric_type -> date -> source_id -> _DaySource
    by_type_date: dict[str, dict[str, dict[str, _DaySource]]] = {}
    # metric_type -> date -> accounts that reported product rows that day
    with_products: dict[str, dict[str, set[str]]] = {}

    def _add(row: MetricRow, sid: str, make) -> None:
        day = by_type_date.setdefault(row.metric_type, {}).setdefault(row.date, {})
        existing = day.get(sid)
        if existing is None:
            day[sid] = make()
        else:
            existing.value += row.value

    for row in (product_data.rows if product_data else []):
        if not row.project_id:
            continue
        if restrict and row.project_id not in enabled_project_ids:
            continue
        with_products.setdefault(row.metric_type, {}).setdefault(row.date, set()).add(row.account_id)
        sid = build_source_id(row.account_id, row.project_id)
        _add(row, sid, lambda: _DaySource(
            label=product_label(row.project_id, product_data),
            value=row.value,
            integration_name=account_integration_map.get(row.account_id),
            source_id=sid,
        ))

    for row in daily_rows:
        if row.account_id in with_products.get(row.metric_type, {}).get(row.date, ()):
            continue
        sid = build_source_id(row.account_id)
        _add(row, sid, lambda: _DaySource(
            label=account_label(row.account_id, account_labels),
            value=row.value,
            integration_name=account_integration_map.get(row.account_id),
            source_id=sid,
        ))

    projects = product_data.projects if product_data else None
    result: Breakdowns = {}
    for metric_type, dates in by_type_date.items():
        date_result: dict[str, list[BreakdownEntry]] = {}
        for date, sources in dates.items():
            pending = pending_source_ids.get(metric_type, {}).get(date, {})
            entries = [
                BreakdownEntry(
                    label=s.label,
                    value=s.value,
                    integration_name=s.integration_name,
                    source_id=s.source_id,
                    pending=pending.get(s.source_id, False),
                )
                for s in sources.values()
            ]
            top = _top(_disambiguate_day(entries), top_n)
            if not top:
                continue
            date_result[date] = merge_breakdown_entries(top, group_lookup, projects, account_labels)
        result[metric_type] = date_result

    net = net_revenue_breakdown(result.get("revenue", {}), result.get("platform_fees", {}), top_n)
    if net:
        result[NET_REVENUE] = net
    return result


def net_revenue_breakdown(
    revenue: dict[str, list[BreakdownEntry]],
    fees: dict[str, list[BreakdownEntry]],
    top_n: int = DEFAULT_TOP_N,
) -> dict[str, list[BreakdownEntry]]:
    """Per date: revenue entries minus fee entries matched by label, zero rows dropped."""
    net_by_date: dict[str, list[BreakdownEntry]] = {}
    for date in sorted(set(revenue) | set(fees)):
        merged: dict[str, BreakdownEntry] = {}
        for sign, entries in ((1, revenue.get(date, [])), (-1, fees.get(date, []))):
            for entry in entries:
                existing = merged.get(entry.label)
                if existing is None:
                    merged[entry.label] = replace(entry, value=sign * entry.value)
                    continue
                merged[entry.label] = replace(
                    existing,
                    value=existing.value + sign * entry.value,
                    integration_name=existing.integration_name or entry.integration_name,
                    integration_names=existing.integration_names or entry.integration_names,
                    pending=existing.pending or entry.pending,
                )
        top = _top((e for e in merged.values() if e.value != 0), top_n)
        if top:
            net_by_date[date] = top
    return net_by_date
