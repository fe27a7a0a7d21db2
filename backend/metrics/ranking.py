"""
Blended Ranking Engine
======================
Builds per-metric leaderboards of sources without double counting.

  account rankings: one entry per account (latest snapshot for stock
                    metrics, sum for flow metrics)
  blended rankings: product entries for every account that reports at
                    product granularity for that metric type, plus
                    account entries only for accounts that do not

Example for active_subscriptions with Stripe (account-level) + Gumroad (per-product):
  - "Drawings Alive" (Stripe): 161     <- account-level
  - "CSS Pro (Stripe)": 7              <- account-level, label disambiguated
  - "CSS Pro (Gumroad)": 6             <- product-level

The blended total always equals the account-level total for the metric type.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Optional

from .metric_keys import NET_REVENUE, is_stock_metric
from .models import MetricRow, ProductMetricsResponse, RankingEntry
from .source_ids import build_source_id

UNKNOWN_INTEGRATION = "Unknown"

_CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥"}


@dataclass
class _Accumulator:
    value: float
    date: str


@dataclass(frozen=True)
class RankingResult:
    account_rankings: dict[str, list[RankingEntry]]
    blended_rankings: dict[str, list[RankingEntry]]


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def account_label(account_id: str, account_labels: dict[str, str]) -> str:
    return account_labels.get(account_id) or account_id[:8]


def product_label(project_id: str, product_data: Optional[ProductMetricsResponse]) -> str:
    info = product_data.projects.get(project_id) if product_data else None
    return info.label if info and info.label else project_id[:12]


def disambiguate(label: str, integration_name: str, label_integrations: dict[str, set[str]]) -> str:
    """Append ' (Integration)' when more than one integration claims the same label."""
    names = label_integrations.get(label)
    if names and len(names) > 1:
        return f"{label} ({integration_name})"
    return label


def with_percentages(entries: Iterable[RankingEntry]) -> list[RankingEntry]:
    """Sort descending by value and recompute percentages over the list total."""
    ordered = sorted(entries, key=lambda e: e.value, reverse=True)
    total = sum(e.value for e in ordered)
    return [
        replace(e, percentage=(e.value / total * 100) if total > 0 else 0.0)
        for e in ordered
    ]


def _fold(acc_map: dict[str, _Accumulator], key: str, row: MetricRow) -> None:
    existing = acc_map.get(key)
    if is_stock_metric(row.metric_type):
        if existing is None or existing.date < row.date:
            acc_map[key] = _Accumulator(row.value, row.date)
    elif existing is None:
        acc_map[key] = _Accumulator(row.value, row.date)
    else:
        existing.value += row.value
        existing.date = max(existing.date, row.date)


def _product_rows(product_data: Optional[ProductMetricsResponse]) -> list[MetricRow]:
    if not product_data:
        return []
    return [r for r in product_data.rows if r.project_id]


def build_label_integrations(
    account_labels: dict[str, str],
    account_integration_map: dict[str, str],
    product_data: Optional[ProductMetricsResponse] = None,
    extra_account_ids: Iterable[str] = (),
) -> dict[str, set[str]]:
    """label -> set of integration names that display a source under that label."""
    label_integrations: dict[str, set[str]] = {}

    account_ids = list(account_integration_map)
    account_ids += [a for a in extra_account_ids if a not in account_integration_map]
    for account_id in account_ids:
        label = account_label(account_id, account_labels)
        integration = account_integration_map.get(account_id, UNKNOWN_INTEGRATION)
        label_integrations.setdefault(label, set()).add(integration)

    seen_projects: set[str] = set()
    for row in _product_rows(product_data):
        if row.project_id in seen_projects:
            continue
        seen_projects.add(row.project_id)
        label = product_label(row.project_id, product_data)
        integration = account_integration_map.get(row.account_id, UNKNOWN_INTEGRATION)
        label_integrations.setdefault(label, set()).add(integration)

    return label_integrations


# ---------------------------------------------------------------------------
# Rankings
# ---------------------------------------------------------------------------

def compute_blended_rankings(
    daily_rows: list[MetricRow],
    account_labels: dict[str, str],
    account_integration_map: dict[str, str],
    product_data: Optional[ProductMetricsResponse] = None,
) -> RankingResult:
    """Return account-level rankings and blended (product-preferring) rankings per metric type."""
    label_integrations = build_label_integrations(
        account_labels,
        account_integration_map,
        product_data,
        extra_account_ids=(r.account_id for r in daily_rows),
    )

    def _account_entry(account_id: str, value: float) -> RankingEntry:
        integration = account_integration_map.get(account_id, UNKNOWN_INTEGRATION)
        return RankingEntry(
            label=disambiguate(account_label(account_id, account_labels), integration, label_integrations),
            integration_name=integration,
            value=value,
            source_id=build_source_id(account_id),
        )

    # 1. Account-level map
    by_type_account: dict[str, dict[str, _Accumulator]] = {}
    for row in daily_rows:
        _fold(by_type_account.setdefault(row.metric_type, {}), row.account_id, row)

    account_rankings = {
        metric_type: with_percentages(
            _account_entry(account_id, acc.value) for account_id, acc in acc_map.items()
        )
        for metric_type, acc_map in by_type_account.items()
    }

    # 2. Product-level map, tracking which accounts have product data per metric type
    accounts_with_products: dict[str, set[str]] = {}
    by_type_product: dict[str, dict[str, _Accumulator]] = {}
    product_owner: dict[str, tuple[str, str]] = {}
    for row in _product_rows(product_data):
        accounts_with_products.setdefault(row.metric_type, set()).add(row.account_id)
        sid = build_source_id(row.account_id, row.project_id)
        product_owner[sid] = (row.account_id, row.project_id)
        _fold(by_type_product.setdefault(row.metric_type, {}), sid, row)

    # 3. Blend
    blended_rankings: dict[str, list[RankingEntry]] = {}
    for metric_type in {**by_type_account, **by_type_product}:
        with_products = accounts_with_products.get(metric_type, set())
        if not with_products:
            blended_rankings[metric_type] = account_rankings.get(metric_type, [])
            continue

        entries: list[RankingEntry] = []
        for sid, acc in by_type_product.get(metric_type, {}).items():
            account_id, project_id = product_owner[sid]
            integration = account_integration_map.get(account_id, UNKNOWN_INTEGRATION)
            entries.append(RankingEntry(
                label=disambiguate(product_label(project_id, product_data), integration, label_integrations),
                integration_name=integration,
                value=acc.value,
                source_id=sid,
            ))
        for account_id, acc in by_type_account.get(metric_type, {}).items():
            if account_id not in with_products:
                entries.append(_account_entry(account_id, acc.value))

        blended_rankings[metric_type] = with_percentages(entries)

    return RankingResult(account_rankings=account_rankings, blended_rankings=blended_rankings)


# ---------------------------------------------------------------------------
# Platform fees / net revenue
# ---------------------------------------------------------------------------

def format_currency(value: float, currency: str = "USD") -> str:
    symbol = _CURRENCY_SYMBOLS.get(currency.upper()) if currency else None
    amount = f"{abs(value):,.2f}"
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{amount}" if symbol else f"{sign}{amount} {currency}"


def _fee_subtitle(fee: float, revenue: Optional[float], currency: str) -> Optional[str]:
    if not revenue or revenue <= 0:
        return None
    return f"{fee / revenue * 100:.1f}% of revenue ({format_currency(revenue, currency)})"


def annotate_platform_fees(
    rankings: dict[str, list[RankingEntry]],
    currency: str = "USD",
) -> dict[str, list[RankingEntry]]:
    """
    Attach "X.X% of revenue ($N)" subtitles to platform_fees entries.
    Top-level entries match revenue by label; group children match by source id.
    """
    fee_entries = rankings.get("platform_fees")
    revenue_entries = rankings.get("revenue")
    if not fee_entries or not revenue_entries:
        return rankings

    revenue_by_label = {e.label: e.value for e in revenue_entries}
    revenue_by_source = {
        child.source_id: child.value
        for e in revenue_entries
        for child in (e.children or [])
        if child.source_id
    }

    annotated: list[RankingEntry] = []
    for entry in fee_entries:
        children = None
        if entry.children is not None:
            children = []
            for child in entry.children:
                subtitle = _fee_subtitle(child.value, revenue_by_source.get(child.source_id), currency)
                children.append(replace(child, subtitle=subtitle) if subtitle else child)
        subtitle = _fee_subtitle(entry.value, revenue_by_label.get(entry.label), currency)
        annotated.append(replace(entry, subtitle=subtitle or entry.subtitle, children=children))

    return {**rankings, "platform_fees": annotated}


def derive_net_revenue_ranking(rankings: dict[str, list[RankingEntry]]) -> list[RankingEntry]:
    """Revenue minus platform fees per label; fee-only labels flow through negated."""
    revenue_entries = rankings.get("revenue") or []
    fee_entries = rankings.get("platform_fees") or []

    fee_by_label = {e.label: e for e in fee_entries}
    fee_by_source = {
        child.source_id: child
        for e in fee_entries
        for child in (e.children or [])
        if child.source_id
    }

    net: list[RankingEntry] = []
    seen: set[str] = set()
    for entry in revenue_entries:
        fee = fee_by_label.get(entry.label)
        children = None
        if entry.children is not None:
            children = [
                replace(c, value=c.value - (fee_by_source[c.source_id].value
                                            if c.source_id in fee_by_source else 0.0),
                        subtitle=None)
                for c in entry.children
            ]
        net.append(replace(entry, value=entry.value - (fee.value if fee else 0.0),
                           children=children, subtitle=None))
        seen.add(entry.label)

    for entry in fee_entries:
        if entry.label in seen:
            continue
        children = None
        if entry.children is not None:
            children = [replace(c, value=-c.value, subtitle=None) for c in entry.children]
        net.append(replace(entry, value=-entry.value, children=children, subtitle=None))

    net_total = sum(e.value for e in net)
    ordered = sorted((e for e in net if e.value != 0), key=lambda e: e.value, reverse=True)
    return [
        replace(e, percentage=(e.value / net_total * 100) if net_total != 0 else 0.0)
        for e in ordered
    ]


def with_derived_rankings(
    rankings: dict[str, list[RankingEntry]],
    currency: str = "USD",
) -> dict[str, list[RankingEntry]]:
    """Fee subtitles plus the derived net_revenue ranking, when both sides exist."""
    if not rankings.get("platform_fees") or not rankings.get("revenue"):
        return rankings
    result = annotate_platform_fees(rankings, currency)
    result[NET_REVENUE] = derive_net_revenue_ranking(result)
    return result
