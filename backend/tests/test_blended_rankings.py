"""
Tests for metrics/ranking.py
=============================
Covers:
  - account-level folding (latest snapshot for stock, sum for flow)
  - product/account disjointness in blended rankings
  - label disambiguation and fallbacks
  - percentage closure
  - platform fee subtitles and the derived net revenue ranking
"""

import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from metrics.models import MetricRow, ProductMetricsResponse, ProjectInfo, RankingEntry
from metrics.ranking import (
    annotate_platform_fees,
    compute_blended_rankings,
    derive_net_revenue_ranking,
    format_currency,
    with_derived_rankings,
)
from metrics.source_ids import build_source_id

LABELS = {"stripe-1": "Drawings Alive", "stripe-2": "CSS Pro", "gumroad-1": "CSS Pro"}
INTEGRATIONS = {"stripe-1": "Stripe", "stripe-2": "Stripe", "gumroad-1": "Gumroad"}


def _row(metric_type, account_id, value, date="2026-01-10", project_id=None):
    return MetricRow(
        metric_type=metric_type, account_id=account_id, project_id=project_id,
        date=date, value=value,
    )


def _products(rows, projects):
    return ProductMetricsResponse(
        rows=rows,
        projects={pid: ProjectInfo(label=label, account_id=acc) for pid, (label, acc) in projects.items()},
    )


class TestAccountRankings:
    def test_stock_latest_date_wins(self):
        rows = [
            _row("mrr", "stripe-1", 100.0, date="2026-01-01"),
            _row("mrr", "stripe-1", 150.0, date="2026-01-05"),
            _row("mrr", "stripe-1", 120.0, date="2026-01-03"),
        ]
        result = compute_blended_rankings(rows, LABELS, INTEGRATIONS)
        assert [e.value for e in result.account_rankings["mrr"]] == [150.0]

    def test_flow_sums(self):
        rows = [
            _row("revenue", "stripe-1", 10.0, date="2026-01-01"),
            _row("revenue", "stripe-1", 15.0, date="2026-01-02"),
        ]
        result = compute_blended_rankings(rows, LABELS, INTEGRATIONS)
        assert result.account_rankings["revenue"][0].value == 25.0

    def test_no_products_blended_equals_accounts(self):
        rows = [_row("revenue", "stripe-1", 10.0), _row("revenue", "gumroad-1", 30.0)]
        result = compute_blended_rankings(rows, LABELS, INTEGRATIONS, None)
        assert result.blended_rankings["revenue"] == result.account_rankings["revenue"]

    def test_entries_carry_source_ids(self):
        result = compute_blended_rankings([_row("revenue", "stripe-1", 10.0)], LABELS, INTEGRATIONS)
        assert result.account_rankings["revenue"][0].source_id == build_source_id("stripe-1")


class TestLabels:
    def test_duplicate_label_across_integrations_is_suffixed(self):
        rows = [_row("revenue", "stripe-2", 10.0), _row("revenue", "gumroad-1", 20.0)]
        result = compute_blended_rankings(rows, LABELS, INTEGRATIONS)
        labels = {e.label for e in result.account_rankings["revenue"]}
        assert labels == {"CSS Pro (Stripe)", "CSS Pro (Gumroad)"}

    def test_unique_label_left_alone(self):
        result = compute_blended_rankings([_row("revenue", "stripe-1", 10.0)], LABELS, INTEGRATIONS)
        assert result.account_rankings["revenue"][0].label == "Drawings Alive"

    def test_fallbacks(self):
        rows = [
            _row("revenue", "abcdefghijkl", 10.0),
            _row("revenue", "stripe-1", 5.0, project_id="prod_0123456789abcdef"),
        ]
        product = ProductMetricsResponse(rows=[rows[1]])
        result = compute_blended_rankings([rows[0]], {}, {}, product)
        account = result.account_rankings["revenue"][0]
        assert account.label == "abcdefgh"
        assert account.integration_name == "Unknown"
        blended_labels = {e.label for e in result.blended_rankings["revenue"]}
        assert "prod_0123456" in blended_labels


class TestBlending:
    def test_products_replace_their_account(self):
        daily = [
            _row("active_subscriptions", "stripe-1", 161),
            _row("active_subscriptions", "gumroad-1", 6),
        ]
        product = _products(
            [_row("active_subscriptions", "gumroad-1", 4, project_id="g-p1"),
             _row("active_subscriptions", "gumroad-1", 2, project_id="g-p2")],
            {"g-p1": ("Course A", "gumroad-1"), "g-p2": ("Course B", "gumroad-1")},
        )
        result = compute_blended_rankings(daily, LABELS, INTEGRATIONS, product)
        blended = result.blended_rankings["active_subscriptions"]
        source_ids = {e.source_id for e in blended}
        assert source_ids == {
            build_source_id("stripe-1"),
            build_source_id("gumroad-1", "g-p1"),
            build_source_id("gumroad-1", "g-p2"),
        }
        # disjointness: the gumroad account row is not also present
        assert build_source_id("gumroad-1") not in source_ids
        assert sum(e.value for e in blended) == 167

    def test_product_data_is_per_metric_type(self):
        daily = [_row("revenue", "gumroad-1", 30.0), _row("mrr", "gumroad-1", 9.0)]
        product = _products(
            [_row("revenue", "gumroad-1", 30.0, project_id="g-p1")],
            {"g-p1": ("Course A", "gumroad-1")},
        )
        result = compute_blended_rankings(daily, LABELS, INTEGRATIONS, product)
        assert result.blended_rankings["revenue"][0].label == "Course A"
        assert result.blended_rankings["mrr"][0].source_id == build_source_id("gumroad-1")

    def test_percentages_close_to_100(self):
        daily = [
            _row("revenue", "stripe-1", 33.0),
            _row("revenue", "stripe-2", 33.0),
            _row("revenue", "gumroad-1", 34.0),
        ]
        result = compute_blended_rankings(daily, LABELS, INTEGRATIONS)
        entries = result.blended_rankings["revenue"]
        assert sum(e.percentage for e in entries) == pytest.approx(100.0)
        assert [e.value for e in entries] == sorted((e.value for e in entries), reverse=True)

    def test_zero_total_has_zero_percentages(self):
        result = compute_blended_rankings([_row("revenue", "stripe-1", 0.0)], LABELS, INTEGRATIONS)
        assert result.blended_rankings["revenue"][0].percentage == 0.0


class TestPlatformFees:
    def _rankings(self):
        return {
            "revenue": [
                RankingEntry(label="Shop", integration_name="Stripe", value=1000.0, percentage=80.0),
                RankingEntry(label="Blog", integration_name="Gumroad", value=250.0, percentage=20.0),
            ],
            "platform_fees": [
                RankingEntry(label="Shop", integration_name="Stripe", value=29.0, percentage=70.0),
                RankingEntry(label="Legacy", integration_name="Stripe", value=12.5, percentage=30.0),
            ],
        }

    def test_subtitle_matched_by_label(self):
        annotated = annotate_platform_fees(self._rankings(), "USD")
        fees = {e.label: e for e in annotated["platform_fees"]}
        assert fees["Shop"].subtitle == "2.9% of revenue ($1,000.00)"
        assert fees["Legacy"].subtitle is None

    def test_net_revenue_ranking(self):
        net = derive_net_revenue_ranking(self._rankings())
        by_label = {e.label: e.value for e in net}
        assert by_label == {"Shop": 971.0, "Blog": 250.0, "Legacy": -12.5}
        assert net[0].label == "Shop"
        assert sum(e.percentage for e in net) == pytest.approx(100.0)

    def test_with_derived_rankings_skips_without_fees(self):
        rankings = {"revenue": self._rankings()["revenue"]}
        assert with_derived_rankings(rankings) is rankings

    def test_format_currency(self):
        assert format_currency(1234.5, "USD") == "$1,234.50"
        assert format_currency(-3, "EUR") == "-€3.00"
        assert format_currency(10, "CHF") == "10.00 CHF"
