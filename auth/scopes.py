"""
auth/scopes.py -- Scope set helpers.

Scopes are order-insensitive capability strings. merge_scopes() returns a
sorted list so the scope parameter sent to a provider, and everything logged
about it, is deterministic.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

_TOKEN_SCOPE_SPLIT = re.compile(r"[,\s]+")


def merge_scopes(current: Iterable[str], wanted: Iterable[str]) -> list[str]:
    """Return the union of both scope sets, deduplicated and sorted."""
    return sorted(set(current) | set(wanted))


def parse_scopes(raw: str | None) -> list[str]:
    """Parse a comma-separated scopes query parameter.

    Tokens are stripped and empty tokens dropped; order is preserved so an
    override request is forwarded exactly as asked.
    """
    if not raw:
        return []
    return [s.strip() for s in raw.split(",") if s.strip()]


def parse_token_scopes(raw: str | None) -> list[str]:
    """Parse the scope field of a provider token response.

    GitHub separates granted scopes with commas, RFC 6749 providers with
    spaces; both are accepted.
    """
    if not raw:
        return []
    return [s for s in _TOKEN_SCOPE_SPLIT.split(raw) if s]
