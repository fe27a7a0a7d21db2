"""Canonical identity of where a number came from: an account, optionally narrowed to a product."""

from __future__ import annotations

from typing import Optional

SOURCE_ID_SEPARATOR = "::"


def build_source_id(account_id: str, project_id: Optional[str] = None) -> str:
    return f"{account_id}{SOURCE_ID_SEPARATOR}{project_id or ''}"


def parse_source_id(source_id: str) -> tuple[str, Optional[str]]:
    """Inverse of build_source_id(). An empty project part parses back to None."""
    account_id, _, project_id = source_id.partition(SOURCE_ID_SEPARATOR)
    return account_id, project_id or None


def member_key(account_id: str, project_id: Optional[str] = None) -> str:
    """Key used by project-group membership: 'account:project' or 'account:'."""
    return f"{account_id}:{project_id or ''}"
