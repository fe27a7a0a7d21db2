"""MRR movement since yesterday, per ranking entry (and per child within groups)."""

from __future__ import annotations

from dataclasses import replace
from typing import Optional

from .models import RankingEntry


def entry_key(entry: RankingEntry) -> str:
    return f"source:{entry.source_id}" if entry.source_id else f"label:{entry.label}"


def _negated(entry: RankingEntry) -> RankingEntry:
    children = [replace(c, value=-c.value) for c in entry.children] if entry.children else entry.children
    return replace(entry, value=-entry.value, children=children)


def _diff_children(
    children: Optional[list[RankingEntry]],
    previous: Optional[RankingEntry],
) -> Optional[list[RankingEntry]]:
    if children is None:
        return None
    prev_by_key = {entry_key(c): c for c in (previous.children or [])} if previous else {}
    return [
        replace(c, value=c.value - (prev_by_key[entry_key(c)].value if entry_key(c) in prev_by_key else 0.0))
        for c in children
    ]


def compute_mrr_delta_entries(
    today: list[RankingEntry],
    yesterday: list[RankingEntry],
) -> list[RankingEntry]:
    """
    today - yesterday per entry, matched by source id (label when there is none).

    Entries only present yesterday come back fully negative. Zero deltas are
    dropped; the rest are ordered by magnitude, with percentages over the sum
    of magnitudes and child percentages over the parent's magnitude.
    """
    yesterday_by_key = {entry_key(e): e for e in yesterday}
    today_keys = {entry_key(e) for e in today}

    deltas: list[RankingEntry] = []
    for entry in today:
        previous = yesterday_by_key.get(entry_key(entry))
        deltas.append(replace(
            entry,
            value=entry.value - (previous.value if previous else 0.0),
            children=_diff_children(entry.children, previous),
        ))

    deltas.extend(_negated(e) for e in yesterday if entry_key(e) not in today_keys)

    non_zero = sorted((e for e in deltas if e.value != 0), key=lambda e: abs(e.value), reverse=True)
    abs_total = sum(abs(e.value) for e in non_zero)

    result = []
    for entry in non_zero:
        parent_abs = abs(entry.value)
        children = None
        if entry.children is not None:
            children = [
                replace(c, percentage=(abs(c.value) / parent_abs * 100) if parent_abs > 0 else 0.0)
                for c in entry.children
            ]
        result.append(replace(
            entry,
            percentage=(parent_abs / abs_total * 100) if abs_total > 0 else 0.0,
            children=children,
        ))
    return result
