"""
Pending-Data Tracker.

A source may report today's figures before its day is settled; it marks
those rows with {"pending": "true"} in their metadata. A flow metric is also
treated as pending today when it has no rows yet but did yesterday (the sync
for today simply hasn't run).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from .models import MetricRow
from .source_ids import build_source_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingFlags:
    today_by_metric: dict[str, bool] = field(default_factory=dict)
    range_by_metric: dict[str, bool] = field(default_factory=dict)
    by_metric_and_day: dict[str, dict[str, bool]] = field(default_factory=dict)
    source_ids_by_metric_and_day: dict[str, dict[str, dict[str, bool]]] = field(default_factory=dict)


def has_pending_metadata(metadata: Optional[str]) -> bool:
    """True when metadata is a JSON object whose "pending" is "true" (or true). Never raises."""
    if not metadata:
        return False
    try:
        parsed = json.loads(metadata)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring unparsable row metadata: {str(metadata)[:80]!r}")
        return False
    if not isinstance(parsed, dict):
        return False
    return parsed.get("pending") in ("true", True)


def _types(rows: Iterable[MetricRow], date: Optional[str] = None, pending_only: bool = False) -> set[str]:
    return {
        r.metric_type
        for r in rows
        if (date is None or r.date == date)
        and (not pending_only or has_pending_metadata(r.metadata))
    }


def _flags(
    flow_metric_keys: Sequence[str],
    present: set[str],
    pending: set[str],
    previous: set[str],
) -> dict[str, bool]:
    return {
        key: key in pending or (key not in present and key in previous)
        for key in flow_metric_keys
    }


def compute_pending_flags(
    daily_rows: list[MetricRow],
    product_rows: Optional[list[MetricRow]],
    today_daily: list[MetricRow],
    today_product: Optional[list[MetricRow]],
    yesterday_daily: list[MetricRow],
    yesterday_product: Optional[list[MetricRow]],
    today_date: str,
    yesterday_date: str,
    range_to: Optional[str],
    flow_metric_keys: Sequence[str],
) -> PendingFlags:
    product_rows = product_rows or []
    today_all = list(today_daily) + list(today_product or [])
    yesterday_all = list(yesterday_daily) + list(yesterday_product or [])

    today_by_metric = _flags(
        flow_metric_keys,
        present=_types(today_all),
        pending=_types(today_all, pending_only=True),
        previous=_types(yesterday_all),
    )

    range_by_metric: dict[str, bool] = {}
    if range_to == today_date:
        range_by_metric = _flags(
            flow_metric_keys,
            present=_types(daily_rows, today_date),
            pending=_types(daily_rows, today_date, pending_only=True),
            previous=_types(daily_rows, yesterday_date),
        )

    by_metric_and_day: dict[str, dict[str, bool]] = {}
    source_ids: dict[str, dict[str, dict[str, bool]]] = {}
    all_rows = (
        list(daily_rows) + product_rows + today_all + yesterday_all
    )
    for row in all_rows:
        if not has_pending_metadata(row.metadata):
            continue
        by_metric_and_day.setdefault(row.metric_type, {})[row.date] = True
        sid = build_source_id(row.account_id, row.project_id)
        source_ids.setdefault(row.metric_type, {}).setdefault(row.date, {})[sid] = True

    return PendingFlags(
        today_by_metric=today_by_metric,
        range_by_metric=range_by_metric,
        by_metric_and_day=by_metric_and_day,
        source_ids_by_metric_and_day=source_ids,
    )
