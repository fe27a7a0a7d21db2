"""
Shared models for the metrics engine.

Wire payloads coming from the metric query interface are pydantic models
(camelCase aliases accepted, snake_case attributes exposed). Everything the
engine derives from them is a frozen dataclass: a new snapshot is produced
on every recompute, nothing is mutated in place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


# ---------------------------------------------------------------------------
# Wire payloads
# ---------------------------------------------------------------------------

class MetricRow(_WireModel):
    """One observed daily fact, as produced by the ingestion layer."""
    metric_type: str = Field(alias="metricType")
    account_id: str = Field(alias="accountId")
    project_id: Optional[str] = Field(default=None, alias="projectId")
    date: str                                # ISO "YYYY-MM-DD"
    value: float = 0.0
    currency: Optional[str] = None
    metadata: Optional[str] = None           # JSON; may carry {"pending": "true"}


class AggregatedTotal(_WireModel):
    """One row of the aggregation=total query: a (metric type, currency) bucket."""
    metric_type: str = Field(alias="metricType")
    total: float = 0.0
    currency: Optional[str] = None
    count: int = 0                           # snapshots/sums folded in; judges coverage


class ProjectInfo(_WireModel):
    label: str
    account_id: str = Field(alias="accountId")


class MetricsResponse(_WireModel):
    rows: list[MetricRow] = Field(default_factory=list, alias="metrics")
    labels: dict[str, str] = Field(default_factory=dict, alias="accounts")


class ProductMetricsResponse(_WireModel):
    rows: list[MetricRow] = Field(default_factory=list, alias="metrics")
    projects: dict[str, ProjectInfo] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict, alias="accounts")


class AggregatedTotals(_WireModel):
    kind: Literal["aggregated"] = "aggregated"
    rows: list[AggregatedTotal] = Field(default_factory=list)


class DailyTotals(_WireModel):
    kind: Literal["daily"] = "daily"
    rows: list[MetricRow] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)


# Consumers switch on .kind instead of probing for fields.
Totals = Annotated[Union[AggregatedTotals, DailyTotals], Field(discriminator="kind")]


class ProjectGroupMember(_WireModel):
    account_id: str = Field(alias="accountId")
    project_id: Optional[str] = Field(default=None, alias="projectId")


class ProjectGroup(_WireModel):
    """User-defined merge directive. Does not change the underlying rows."""
    id: str
    name: str
    members: list[ProjectGroupMember] = Field(default_factory=list)


class ProductSummary(_WireModel):
    id: str
    label: str


class IntegrationAccount(_WireModel):
    id: str
    label: str
    is_active: bool = Field(default=True, alias="isActive")
    products: list[ProductSummary] = Field(default_factory=list)


class Integration(_WireModel):
    id: str
    name: str
    accounts: list[IntegrationAccount] = Field(default_factory=list)


def account_integration_map(integrations: list[Integration]) -> dict[str, str]:
    """account_id -> integration display name."""
    return {
        account.id: integration.name
        for integration in integrations
        for account in integration.accounts
    }


# ---------------------------------------------------------------------------
# Derived entries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RankingEntry:
    """One row of a leaderboard. Children (if any) sum to the parent value."""
    label: str
    integration_name: str
    value: float
    percentage: float = 0.0
    integration_names: Optional[list[str]] = None
    source_id: Optional[str] = None
    children: Optional[list[RankingEntry]] = None
    subtitle: Optional[str] = None


@dataclass(frozen=True)
class BreakdownEntry:
    """One source's contribution to a single day, for chart tooltips."""
    label: str
    value: float
    integration_name: Optional[str] = None
    integration_names: Optional[list[str]] = None
    source_id: Optional[str] = None
    pending: bool = False
