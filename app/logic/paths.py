"""Choose between the materialized view and live joins."""

from __future__ import annotations

import enum

from app.logic.filters import FilterSpec

# Filters the view cannot answer: free-text columns it does not carry, or the
# latest traffic snapshot's social document.
LIVE_JOIN_FILTERS = (
    "search",
    "pixels",
    "themes",
    "applications",
    "languages",
    "domains",
    "social_networks",
)


class QueryPath(str, enum.Enum):
    FAST = "fast"
    SLOW = "slow"


def select_path(spec: FilterSpec) -> QueryPath:
    if any(getattr(spec, name) for name in LIVE_JOIN_FILTERS):
        return QueryPath.SLOW
    return QueryPath.FAST
