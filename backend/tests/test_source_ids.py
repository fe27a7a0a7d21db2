"""
Tests for metrics/source_ids.py and metrics/metric_keys.py
"""

import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from metrics.metric_keys import (
    FLOW_METRIC_KEYS,
    METRIC_KEYS,
    STOCK_METRIC_TYPES,
    get_metric_key_definition,
    is_stock_metric,
)
from metrics.source_ids import build_source_id, member_key, parse_source_id


class TestSourceIds:
    @pytest.mark.parametrize("project_id", [None, "x", "prod_123"])
    def test_round_trip(self, project_id):
        assert parse_source_id(build_source_id("acc-1", project_id)) == ("acc-1", project_id)

    def test_account_only_format(self):
        assert build_source_id("acc-1") == "acc-1::"

    def test_product_format(self):
        assert build_source_id("acc-1", "p1") == "acc-1::p1"

    def test_empty_project_parses_to_none(self):
        assert parse_source_id("acc-1::") == ("acc-1", None)

    def test_member_key_uses_single_colon(self):
        assert member_key("acc-1", "p1") == "acc-1:p1"
        assert member_key("acc-1") == "acc-1:"


class TestMetricKeys:
    def test_stock_types(self):
        assert STOCK_METRIC_TYPES == {
            "mrr", "active_subscriptions", "active_trials", "active_users", "products_count",
        }

    def test_flow_keys_are_not_stock(self):
        for key in FLOW_METRIC_KEYS:
            assert not is_stock_metric(key)

    def test_mrr_is_stock(self):
        assert is_stock_metric("mrr")

    def test_every_key_has_definition(self):
        for key in FLOW_METRIC_KEYS + tuple(STOCK_METRIC_TYPES):
            assert key in METRIC_KEYS

    def test_unknown_key(self):
        assert get_metric_key_definition("nope") is None
        assert get_metric_key_definition("mrr").format == "currency"
