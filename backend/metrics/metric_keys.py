"""
Metric Keys: canonical metric types shared by every source
==========================================================
Every source reports its daily facts under one of these keys. The engine
only needs to know one thing about a key beyond its name: whether it is a
stock (point-in-time snapshot, latest value wins) or a flow (period sum).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class MetricKeyDefinition:
    """Display metadata for one canonical metric key."""
    key: str
    label: str
    format: str              # "currency" | "number" | "percentage"
    description: str


METRIC_KEYS: dict[str, MetricKeyDefinition] = {
    d.key: d
    for d in (
        # Revenue
        MetricKeyDefinition("revenue", "Revenue", "currency", "Total revenue from all sources"),
        MetricKeyDefinition("subscription_revenue", "Subscription Revenue", "currency",
                            "Revenue from recurring subscriptions"),
        MetricKeyDefinition("one_time_revenue", "One-Time Revenue", "currency",
                            "Revenue from one-time purchases"),
        MetricKeyDefinition("mrr", "MRR", "currency", "Monthly Recurring Revenue"),
        MetricKeyDefinition("refunds", "Refunds", "currency", "Total refund amount"),
        MetricKeyDefinition("platform_fees", "Platform Fees", "currency",
                            "Fees retained by the payment platform"),
        # Counts
        MetricKeyDefinition("active_subscriptions", "Active Subscriptions", "number",
                            "Number of active subscriptions or subscribers"),
        MetricKeyDefinition("active_trials", "Active Trials", "number", "Number of active trials"),
        MetricKeyDefinition("active_users", "Active Users", "number", "Number of active users"),
        MetricKeyDefinition("new_customers", "New Customers", "number", "Number of new customers"),
        MetricKeyDefinition("sales_count", "Sales", "number", "Number of completed sales"),
        MetricKeyDefinition("charges_count", "Charges", "number", "Number of successful charges"),
        MetricKeyDefinition("products_count", "Products", "number", "Number of published products"),
    )
}

# Snapshot metrics: combining rows for one source means "latest date wins".
STOCK_METRIC_TYPES: frozenset[str] = frozenset({
    "mrr",
    "active_subscriptions",
    "active_trials",
    "active_users",
    "products_count",
})

# Flow metrics whose absence in a window is treated as a coverage gap.
FLOW_METRIC_KEYS: tuple[str, ...] = (
    "revenue",
    "subscription_revenue",
    "one_time_revenue",
    "sales_count",
    "new_customers",
    "platform_fees",
)

# Derived key, never reported by a source
NET_REVENUE = "net_revenue"


def is_stock_metric(metric_type: str) -> bool:
    return metric_type in STOCK_METRIC_TYPES


def get_metric_key_definition(key: str) -> Optional[MetricKeyDefinition]:
    return METRIC_KEYS.get(key)
