"""
Project Group Merger
====================
Post-processes rankings and daily breakdowns so that sources belonging to a
user-defined project group collapse into one entry named after the group.

Groups are a presentation concern: the underlying rows are never touched,
the value of a metric is conserved across the merge, and entries that do not
belong to any group pass through unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Optional

from .label_match import build_label_index, match_source_by_label
from .models import BreakdownEntry, ProjectGroup, ProjectInfo, RankingEntry
from .ranking import UNKNOWN_INTEGRATION, with_percentages
from .source_ids import member_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupInfo:
    name: str
    integration_names: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class GroupLookup:
    member_to_group: dict[str, str] = field(default_factory=dict)   # "acc:proj" -> group id
    group_info: dict[str, GroupInfo] = field(default_factory=dict)


@dataclass
class _Bucket:
    value: float = 0.0
    integration_names: list[str] = field(default_factory=list)
    members: list = field(default_factory=list)
    pending: bool = False

    def add_names(self, names) -> None:
        for name in names:
            if name not in self.integration_names:
                self.integration_names.append(name)


def build_group_lookup(
    groups: list[ProjectGroup],
    account_integration_map: dict[str, str],
) -> GroupLookup:
    member_to_group: dict[str, str] = {}
    group_info: dict[str, GroupInfo] = {}

    for group in groups:
        names: list[str] = []
        for member in group.members:
            member_to_group[member_key(member.account_id, member.project_id)] = group.id
            integration = account_integration_map.get(member.account_id)
            if integration and integration not in names:
                names.append(integration)
        group_info[group.id] = GroupInfo(name=group.name, integration_names=names)

    return GroupLookup(member_to_group=member_to_group, group_info=group_info)


# ---------------------------------------------------------------------------
# Rankings
# ---------------------------------------------------------------------------

def _group_ranking_entry(info: GroupInfo, bucket: _Bucket) -> RankingEntry:
    children = [
        replace(m, percentage=(m.value / bucket.value * 100) if bucket.value > 0 else 0.0)
        for m in sorted(bucket.members, key=lambda e: e.value, reverse=True)
    ]
    names = list(bucket.integration_names)
    return RankingEntry(
        label=info.name,
        integration_name=names[0] if names else UNKNOWN_INTEGRATION,
        integration_names=names,
        value=bucket.value,
        source_id=children[0].source_id if len(children) == 1 else None,
        children=children if len(children) > 1 else None,
    )


def apply_project_group_merging(
    rankings: dict[str, list[RankingEntry]],
    lookup: GroupLookup,
    projects: Optional[dict[str, ProjectInfo]] = None,
    account_labels: Optional[dict[str, str]] = None,
) -> dict[str, list[RankingEntry]]:
    """
    Collapse grouped entries into one entry per group, per metric type.

    Group entries carry the summed value, the union of member integration
    names (for stacked logos) and, when they have two or more members, the
    members as children with percentages relative to the group. Top-level
    percentages are recomputed after the merge.
    """
    if not lookup.member_to_group:
        return rankings

    index = build_label_index(projects, account_labels)
    result: dict[str, list[RankingEntry]] = {}

    for metric_type, entries in rankings.items():
        buckets: dict[str, _Bucket] = {}
        ungrouped: list[RankingEntry] = []

        for entry in entries:
            group_id = match_source_by_label(entry.label, index, lookup)
            if not group_id or group_id not in lookup.group_info:
                if group_id:
                    logger.warning(f"Group {group_id} has members but no group info; leaving entry ungrouped")
                ungrouped.append(entry)
                continue
            bucket = buckets.setdefault(group_id, _Bucket())
            bucket.value += entry.value
            bucket.members.append(entry)
            bucket.add_names(entry.integration_names or [entry.integration_name])

        group_entries = [
            _group_ranking_entry(lookup.group_info[group_id], bucket)
            for group_id, bucket in buckets.items()
        ]
        result[metric_type] = with_percentages(group_entries + ungrouped)

    return result


# ---------------------------------------------------------------------------
# Daily breakdowns
# ---------------------------------------------------------------------------

def merge_breakdown_entries(
    entries: list[BreakdownEntry],
    lookup: GroupLookup,
    projects: Optional[dict[str, ProjectInfo]] = None,
    account_labels: Optional[dict[str, str]] = None,
) -> list[BreakdownEntry]:
    """Same grouping for one day's breakdown list; a group row is pending if any member is."""
    if not lookup.member_to_group:
        return entries

    index = build_label_index(projects, account_labels)
    buckets: dict[str, _Bucket] = {}
    ungrouped: list[BreakdownEntry] = []

    for entry in entries:
        group_id = match_source_by_label(entry.label, index, lookup)
        if not group_id or group_id not in lookup.group_info:
            ungrouped.append(entry)
            continue
        bucket = buckets.setdefault(group_id, _Bucket())
        bucket.value += entry.value
        bucket.members.append(entry)
        bucket.add_names(entry.integration_names or [entry.integration_name or UNKNOWN_INTEGRATION])
        bucket.pending = bucket.pending or entry.pending

    merged = [
        BreakdownEntry(
            label=lookup.group_info[group_id].name,
            value=bucket.value,
            integration_name=bucket.integration_names[0] if bucket.integration_names else UNKNOWN_INTEGRATION,
            integration_names=list(bucket.integration_names),
            source_id=bucket.members[0].source_id if len(bucket.members) == 1 else None,
            pending=bucket.pending,
        )
        for group_id, bucket in buckets.items()
    ]
    return sorted(merged + ungrouped, key=lambda e: e.value, reverse=True)
