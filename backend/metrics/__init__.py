# Metrics blending package
# Pure reconciliation of per-source daily facts into one dashboard view.

from .source_ids import build_source_id, parse_source_id  # noqa: F401
from .models import MetricRow, RankingEntry, BreakdownEntry  # noqa: F401
from .totals import DashboardTotals, extract_totals, compute_current_totals  # noqa: F401
from .ranking import compute_blended_rankings  # noqa: F401
from .group_merge import GroupLookup, build_group_lookup, apply_project_group_merging  # noqa: F401
