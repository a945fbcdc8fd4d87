"""Derived traffic and advertising signals for shop summaries."""

from __future__ import annotations

import math
import os
from typing import Any, Sequence

import numpy as np

GROWTH_FLOOR = -100.0
GROWTH_CEILING = 500.0
GROWTH_SUSPECT = float(os.environ.get("GROWTH_SUSPECT", 500))
GROWTH_IMPLAUSIBLE = float(os.environ.get("GROWTH_IMPLAUSIBLE", 1000))
TRAFFIC_SERIES_POINTS = 13


def _number(value: Any) -> float | None:
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def percent_change(current: float | None, previous: float | None) -> float:
    cur = _number(current) or 0.0
    prev = _number(previous) or 0.0
    if prev > 0:
        return (cur - prev) / prev * 100
    if cur > 0:
        return 100.0
    return 0.0


def corrected_growth_rate(stored: Any, current: Any, previous: Any) -> float:
    """Replace implausible stored growth with one derived from the visits.

    Stored rates above ``GROWTH_IMPLAUSIBLE`` are always recomputed; rates above
    ``GROWTH_SUSPECT`` only when last-last-month visits are known. The result
    is clamped to ``[GROWTH_FLOOR, GROWTH_CEILING]``.
    """
    rate = _number(stored) or 0.0
    known_previous = _number(previous) is not None
    if abs(rate) > GROWTH_IMPLAUSIBLE or (abs(rate) > GROWTH_SUSPECT and known_previous):
        rate = percent_change(current, previous)
    return float(np.clip(rate, GROWTH_FLOOR, GROWTH_CEILING))


def ads_change(current_active: Any, history: Sequence[int]) -> int:
    if not history:
        return 0
    return int(_number(current_active) or 0) - int(history[0])


def parse_series(raw: Any, *, numeric: bool = False, limit: int = TRAFFIC_SERIES_POINTS) -> list[Any]:
    """Split a comma-separated series and keep its trailing ``limit`` points."""
    if not raw:
        return []
    items = [item.strip() for item in str(raw).split(",")]
    if numeric:
        values = np.array([_number(item) or 0 for item in items], dtype=float)
        return [int(v) for v in values[-limit:]]
    return items[-limit:]
