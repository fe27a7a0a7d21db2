"""
Dashboard Service.
Owns the filter state (accounts, products, date range, compare toggle),
issues every fetch for a render together, keeps the last good snapshot of
each one, and runs the blending pipeline into an immutable DashboardView.

Fetch failures never reach the caller: the slot keeps its previous value and
the view is computed from whatever is available.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import Callable, Optional, Sequence

from backfill_engine import BackfillOrchestrator, format_backfill_error_details
from backfill_status import BackfillStatus
from dashboard_client import DashboardAPIClient
from dashboard_config import (
    BREAKDOWN_TOP_N,
    DEFAULT_COMPARE_ENABLED,
    DEFAULT_DATE_RANGE_PRESET,
)
from metrics.breakdowns import Breakdowns, build_breakdown_by_metric_and_day
from metrics.comparison import (
    CURRENT_SCOPE,
    PREV_SCOPE,
    DateRangePreset,
    backfill_key,
    comparison_availability,
    comparison_window,
    resolve_date_range,
    should_start_backfill,
    should_start_range_backfill,
)
from metrics.group_merge import apply_project_group_merging, build_group_lookup
from metrics.metric_keys import FLOW_METRIC_KEYS
from metrics.models import (
    AggregatedTotals,
    Integration,
    MetricsResponse,
    ProductMetricsResponse,
    ProjectGroup,
    RankingEntry,
    account_integration_map,
)
from metrics.mrr_delta import compute_mrr_delta_entries
from metrics.pending import PendingFlags, compute_pending_flags
from metrics.ranking import compute_blended_rankings, with_derived_rankings
from metrics.totals import (
    DashboardTotals,
    compute_current_totals,
    empty_totals,
    extract_counts,
    extract_totals,
    metrics_by_day,
    new_mrr,
)

logger = logging.getLogger(__name__)

# Snapshot slots, one per fetch
METRICS = "metrics"
TOTALS = "totals"
PREV_TOTALS = "prev_totals"
PRODUCT_METRICS = "product_metrics"
PROJECT_GROUPS = "project_groups"
INTEGRATIONS = "integrations"
TODAY_METRICS = "today_metrics"
TODAY_TOTALS = "today_totals"
TODAY_PRODUCT_METRICS = "today_product_metrics"
YESTERDAY_METRICS = "yesterday_metrics"
YESTERDAY_TOTALS = "yesterday_totals"
YESTERDAY_PRODUCT_METRICS = "yesterday_product_metrics"


@dataclass(frozen=True)
class DashboardFilter:
    account_ids: tuple[str, ...] = ()
    project_ids: frozenset[str] = frozenset()
    preset: str = DEFAULT_DATE_RANGE_PRESET
    custom_from: Optional[str] = None
    custom_to: Optional[str] = None
    compare_enabled: bool = DEFAULT_COMPARE_ENABLED


@dataclass(frozen=True)
class DashboardView:
    from_date: Optional[str]
    to_date: Optional[str]
    prev_from: Optional[str]
    prev_to: Optional[str]
    account_ids: tuple[str, ...]
    totals: DashboardTotals
    previous_totals: DashboardTotals
    today_totals: DashboardTotals
    yesterday_totals: DashboardTotals
    new_mrr: float
    compare_enabled: bool
    comparison_availability: dict[str, bool]
    account_rankings: dict[str, list[RankingEntry]]
    rankings: dict[str, list[RankingEntry]]
    today_rankings: dict[str, list[RankingEntry]]
    mrr_delta_entries: list[RankingEntry]
    series: dict[str, list[tuple[str, float]]]
    breakdowns: Breakdowns
    pending: PendingFlags
    backfill_status: str = BackfillStatus.IDLE
    backfill_error: Optional[str] = None
    backfill_error_details: list[str] = field(default_factory=list)


class DashboardService:
    """The consumer-facing surface: callbacks change filter state, refresh() returns a view."""

    def __init__(
        self,
        client: DashboardAPIClient,
        today: Callable[[], date] = date.today,
        top_n: int = BREAKDOWN_TOP_N,
        orchestrator: Optional[BackfillOrchestrator] = None,
    ):
        self.client = client
        self._today = today
        self._top_n = top_n
        self.filter = DashboardFilter(
            compare_enabled=DEFAULT_COMPARE_ENABLED and DEFAULT_DATE_RANGE_PRESET != DateRangePreset.ALL_TIME,
        )
        self._snapshots: dict[str, object] = {}
        self.view: Optional[DashboardView] = None
        self.orchestrator = orchestrator or BackfillOrchestrator(
            trigger_sync=self.client.trigger_sync,
            refetch=self.refresh,
        )

    # -----------------------------------------------------------------
    # Filter callbacks
    # -----------------------------------------------------------------

    def set_filter(self, account_ids: Sequence[str], project_ids: Sequence[str] = ()) -> None:
        self.filter = replace(
            self.filter,
            account_ids=tuple(account_ids),
            project_ids=frozenset(project_ids),
        )

    def set_date_range(self, preset: str) -> None:
        if not DateRangePreset.is_valid(preset):
            raise ValueError(f"Unknown date range preset: {preset}")
        compare = self.filter.compare_enabled
        if preset == DateRangePreset.ALL_TIME:
            compare = False
        self.filter = replace(self.filter, preset=preset, compare_enabled=compare)

    def set_custom_range(self, from_date: str, to_date: str) -> None:
        if date.fromisoformat(from_date) > date.fromisoformat(to_date):
            raise ValueError(f"Custom range starts after it ends: {from_date} > {to_date}")
        self.filter = replace(
            self.filter,
            preset=DateRangePreset.CUSTOM,
            custom_from=from_date,
            custom_to=to_date,
        )

    def set_compare(self, enabled: bool) -> None:
        if enabled and self.filter.preset == DateRangePreset.ALL_TIME:
            logger.info("Comparison is not available for all_time; ignoring")
            enabled = False
        self.filter = replace(self.filter, compare_enabled=enabled)

    def handle_sync_complete(self) -> None:
        self.orchestrator.notify_sync_complete()

    def request_resync(self) -> Optional[asyncio.Task]:
        """Re-trigger a sync for the selected window even if it was attempted already."""
        from_date, to_date = self.date_range()
        account_ids = self._account_ids()
        if not account_ids:
            return None
        self.orchestrator.release(CURRENT_SCOPE)
        key = backfill_key(CURRENT_SCOPE, from_date or "", to_date or "", account_ids)
        return self.orchestrator.start_backfill(key, from_date, account_ids)

    # -----------------------------------------------------------------
    # Fetching
    # -----------------------------------------------------------------

    def date_range(self) -> tuple[Optional[str], Optional[str]]:
        if self.filter.preset == DateRangePreset.CUSTOM:
            return self.filter.custom_from, self.filter.custom_to
        return resolve_date_range(self.filter.preset, self._today())

    def _account_ids(self) -> list[str]:
        if self.filter.account_ids:
            return list(self.filter.account_ids)
        integrations: list[Integration] = self._snapshots.get(INTEGRATIONS) or []
        return [a.id for i in integrations for a in i.accounts if a.is_active]

    async def _fetch_all(self) -> None:
        from_date, to_date = self.date_range()
        today = self._today()
        today_iso = today.isoformat()
        yesterday_iso = (today - timedelta(days=1)).isoformat()
        ids = list(self.filter.account_ids) or None

        fetches = {
            METRICS: self.client.fetch_metrics(from_date, to_date, ids),
            TOTALS: self.client.fetch_totals(from_date, to_date, ids),
            PRODUCT_METRICS: self.client.fetch_product_metrics(from_date, to_date, ids),
            PROJECT_GROUPS: self.client.fetch_project_groups(),
            INTEGRATIONS: self.client.fetch_integrations(),
            TODAY_METRICS: self.client.fetch_metrics(today_iso, today_iso, ids),
            TODAY_TOTALS: self.client.fetch_totals(today_iso, today_iso, ids),
            TODAY_PRODUCT_METRICS: self.client.fetch_product_metrics(today_iso, today_iso, ids),
            YESTERDAY_METRICS: self.client.fetch_metrics(yesterday_iso, yesterday_iso, ids),
            YESTERDAY_TOTALS: self.client.fetch_totals(yesterday_iso, yesterday_iso, ids),
            YESTERDAY_PRODUCT_METRICS: self.client.fetch_product_metrics(yesterday_iso, yesterday_iso, ids),
        }
        if self.filter.compare_enabled and from_date and to_date:
            window = comparison_window(from_date, to_date)
            fetches[PREV_TOTALS] = self.client.fetch_totals(window.prev_from, window.prev_to, ids)
        else:
            self._snapshots.pop(PREV_TOTALS, None)

        results = await asyncio.gather(*fetches.values(), return_exceptions=True)
        for slot, result in zip(fetches, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.warning(f"Fetch {slot} failed, keeping last good snapshot: {result}")
                continue
            self._snapshots[slot] = result

    # -----------------------------------------------------------------
    # Render
    # -----------------------------------------------------------------

    async def refresh(self) -> DashboardView:
        """Fetch everything for the current filter, recompute the view and evaluate backfill triggers."""
        await self._fetch_all()
        view = self.compute_view()
        self._evaluate_backfill(view)
        self.view = self._with_backfill_state(view)
        return self.view

    def _with_backfill_state(self, view: DashboardView) -> DashboardView:
        status = self.orchestrator.status
        error = self.orchestrator.error
        return replace(
            view,
            backfill_status=status,
            backfill_error=error,
            backfill_error_details=format_backfill_error_details(error) if status == BackfillStatus.ERROR else [],
        )

    def compute_view(self) -> DashboardView:
        snap = self._snapshots
        from_date, to_date = self.date_range()
        today = self._today()
        today_iso = today.isoformat()
        yesterday_iso = (today - timedelta(days=1)).isoformat()
        compare_enabled = self.filter.compare_enabled and bool(from_date and to_date)
        window = comparison_window(from_date, to_date) if from_date and to_date else None
        account_ids = self._account_ids()

        metrics: MetricsResponse = snap.get(METRICS) or MetricsResponse()
        product: Optional[ProductMetricsResponse] = snap.get(PRODUCT_METRICS)
        today_metrics: MetricsResponse = snap.get(TODAY_METRICS) or MetricsResponse()
        today_product: Optional[ProductMetricsResponse] = snap.get(TODAY_PRODUCT_METRICS)
        yesterday_metrics: MetricsResponse = snap.get(YESTERDAY_METRICS) or MetricsResponse()
        yesterday_product: Optional[ProductMetricsResponse] = snap.get(YESTERDAY_PRODUCT_METRICS)
        totals: Optional[AggregatedTotals] = snap.get(TOTALS)
        prev_totals: Optional[AggregatedTotals] = snap.get(PREV_TOTALS) if compare_enabled else None
        groups: list[ProjectGroup] = snap.get(PROJECT_GROUPS) or []
        integration_map = account_integration_map(snap.get(INTEGRATIONS) or [])

        account_labels = {**yesterday_metrics.labels, **today_metrics.labels, **metrics.labels}
        projects = product.projects if product else None
        lookup = build_group_lookup(groups, integration_map)

        # Totals
        current_totals = compute_current_totals(totals, metrics.rows)
        previous_totals = extract_totals(prev_totals) if compare_enabled else empty_totals()
        today_totals = compute_current_totals(snap.get(TODAY_TOTALS), today_metrics.rows)
        yesterday_totals = extract_totals(snap.get(YESTERDAY_TOTALS))

        availability = comparison_availability(
            extract_counts(totals),
            extract_counts(prev_totals),
            len(account_ids),
            compare_enabled,
        )

        # Rankings
        ranked = compute_blended_rankings(metrics.rows, account_labels, integration_map, product)
        rankings = with_derived_rankings(
            apply_project_group_merging(ranked.blended_rankings, lookup, projects, account_labels),
            current_totals.currency,
        )

        today_rankings = self._grouped_rankings(today_metrics, today_product, account_labels, integration_map, lookup)
        yesterday_rankings = self._grouped_rankings(
            yesterday_metrics, yesterday_product, account_labels, integration_map, lookup,
        )
        mrr_delta = compute_mrr_delta_entries(today_rankings.get("mrr", []), yesterday_rankings.get("mrr", []))

        # Pending + breakdowns
        pending = compute_pending_flags(
            metrics.rows,
            product.rows if product else None,
            today_metrics.rows,
            today_product.rows if today_product else None,
            yesterday_metrics.rows,
            yesterday_product.rows if yesterday_product else None,
            today_iso,
            yesterday_iso,
            to_date,
            FLOW_METRIC_KEYS,
        )
        breakdowns = build_breakdown_by_metric_and_day(
            product,
            set(self.filter.project_ids),
            metrics.rows,
            account_labels,
            integration_map,
            lookup,
            pending.source_ids_by_metric_and_day,
            self._top_n,
        )

        view = DashboardView(
            from_date=from_date,
            to_date=to_date,
            prev_from=window.prev_from if window and compare_enabled else None,
            prev_to=window.prev_to if window and compare_enabled else None,
            account_ids=tuple(account_ids),
            totals=current_totals,
            previous_totals=previous_totals,
            today_totals=today_totals,
            yesterday_totals=yesterday_totals,
            new_mrr=new_mrr(today_totals, yesterday_totals),
            compare_enabled=compare_enabled,
            comparison_availability=availability,
            account_rankings=ranked.account_rankings,
            rankings=rankings,
            today_rankings=today_rankings,
            mrr_delta_entries=mrr_delta,
            series=metrics_by_day(metrics.rows),
            breakdowns=breakdowns,
            pending=pending,
        )
        return self._with_backfill_state(view)

    @staticmethod
    def _grouped_rankings(metrics, product, account_labels, integration_map, lookup):
        ranked = compute_blended_rankings(metrics.rows, account_labels, integration_map, product)
        projects = product.projects if product else None
        return apply_project_group_merging(ranked.blended_rankings, lookup, projects, account_labels)

    def _evaluate_backfill(self, view: DashboardView) -> None:
        account_ids = list(view.account_ids)
        current_counts = extract_counts(self._snapshots.get(TOTALS))
        if should_start_range_backfill(view.from_date, view.to_date, account_ids, current_counts, FLOW_METRIC_KEYS):
            key = backfill_key(CURRENT_SCOPE, view.from_date, view.to_date, account_ids)
            self.orchestrator.start_backfill(key, view.from_date, account_ids)

        prev_counts = extract_counts(self._snapshots.get(PREV_TOTALS))
        if should_start_backfill(
            view.compare_enabled, view.prev_from, view.prev_to, account_ids, prev_counts, FLOW_METRIC_KEYS,
        ):
            key = backfill_key(PREV_SCOPE, view.prev_from, view.prev_to, account_ids)
            self.orchestrator.start_backfill(key, view.prev_from, account_ids)
