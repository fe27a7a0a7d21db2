"""
Maps a displayed ranking/breakdown row back to a project group.

Rows are matched by their displayed label, in order:

  1. exact product label    -> "account:project" member keys
  2. exact account label    -> "account:" member keys
  3. label looks like "Base (Something)" -> retry 1 and 2 with "Base"

Step 3 undoes the integration suffix added by label disambiguation. A label
that genuinely ends in a parenthetical ("Starter (Beta)") is also stripped on
that pass; it is only reached when steps 1 and 2 found nothing. The same
pass can also pull an ungrouped source into a group when its label, once
stripped, equals a grouped product label (an ungrouped Stripe account "CSS
Pro" next to a grouped Gumroad product "CSS Pro").
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from .models import ProjectInfo
from .source_ids import member_key

if TYPE_CHECKING:
    from .group_merge import GroupLookup

_SUFFIX_RE = re.compile(r"^(.+?)\s*\([^)]+\)$")


@dataclass(frozen=True)
class LabelIndex:
    """Reverse lookups from display label to group member keys."""
    product_keys: dict[str, list[str]] = field(default_factory=dict)
    account_keys: dict[str, list[str]] = field(default_factory=dict)


def build_label_index(
    projects: Optional[dict[str, ProjectInfo]] = None,
    account_labels: Optional[dict[str, str]] = None,
) -> LabelIndex:
    product_keys: dict[str, list[str]] = {}
    for project_id, info in (projects or {}).items():
        product_keys.setdefault(info.label, []).append(member_key(info.account_id, project_id))

    account_keys: dict[str, list[str]] = {}
    for account_id, label in (account_labels or {}).items():
        account_keys.setdefault(label, []).append(member_key(account_id))

    return LabelIndex(product_keys=product_keys, account_keys=account_keys)


def _first_group(keys: Optional[list[str]], member_to_group: dict[str, str]) -> Optional[str]:
    for key in keys or ():
        group_id = member_to_group.get(key)
        if group_id:
            return group_id
    return None


def _match_exact(label: str, index: LabelIndex, member_to_group: dict[str, str]) -> Optional[str]:
    return (
        _first_group(index.product_keys.get(label), member_to_group)
        or _first_group(index.account_keys.get(label), member_to_group)
    )


def match_source_by_label(label: str, index: LabelIndex, lookup: GroupLookup) -> Optional[str]:
    """Group id for a display label, or None when the row is not grouped."""
    group_id = _match_exact(label, index, lookup.member_to_group)
    if group_id:
        return group_id

    m = _SUFFIX_RE.match(label)
    if m:
        return _match_exact(m.group(1), index, lookup.member_to_group)
    return None
