"""Datetime helpers."""

from __future__ import annotations

import pendulum

US_DATE_FORMAT = "MM/DD/YYYY"


def utc_now() -> pendulum.DateTime:
    return pendulum.now("UTC")


def hour_bucket(moment: pendulum.DateTime | None = None) -> pendulum.DateTime:
    """Start of the UTC hour containing ``moment``."""
    moment = pendulum.instance(moment) if moment is not None else utc_now()
    return moment.in_timezone("UTC").start_of("hour")


def parse_us_date(value: str) -> pendulum.DateTime | None:
    value = value.strip()
    if not value:
        return None
    try:
        return pendulum.from_format(value, US_DATE_FORMAT, tz="UTC")
    except ValueError:
        return None
