"""Timezone resolution and timestamp rendering for envelope headers.

Renderings are fixed and locale independent::

    format_utc_timestamp(dt)                                -> "2024-01-15T10:30Z"
    format_zoned_timestamp(dt, time_zone="Europe/Berlin")   -> "2024-01-15 11:30 CET"
    format_time_ago(4 * 60_000, suffix=False)               -> "4m"
"""
from __future__ import annotations

import logging
import math
import os
from datetime import datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger("clawenvelope.timefmt")

# Epoch milliseconds or a point in time
Timestamp = Union[int, float, datetime]

_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

_ZONE_ERRORS = (ZoneInfoNotFoundError, ValueError, OSError)


def resolve_timezone(value: Optional[str]) -> Optional[str]:
    """Return *value* (trimmed) if it names a loadable IANA zone, else None."""
    name = (value or "").strip()
    if not name:
        return None
    try:
        ZoneInfo(name)
    except _ZONE_ERRORS:
        logger.debug("Unknown timezone %r", name)
        return None
    return name


def _host_timezone() -> Optional[str]:
    tz_env = os.environ.get("TZ", "").lstrip(":")
    resolved = resolve_timezone(tz_env)
    if resolved:
        return resolved
    localtime = "/etc/localtime"
    if os.path.islink(localtime):
        target = os.path.realpath(localtime)
        if "zoneinfo/" in target:
            return resolve_timezone(target.split("zoneinfo/", 1)[1])
    return None


def resolve_user_timezone(preferred: Optional[str] = None) -> str:
    """Return the user's IANA zone: *preferred* if valid, else the host zone, else UTC."""
    return resolve_timezone(preferred) or _host_timezone() or "UTC"


def to_datetime(value: Optional[Timestamp]) -> Optional[datetime]:
    """Convert epoch millis or a datetime to an aware UTC datetime.

    Naive datetimes are taken as UTC. Returns None for anything that
    is not a representable point in time.
    """
    if isinstance(value, datetime):
        aware = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        try:
            return aware.astimezone(timezone.utc)
        except (OverflowError, ValueError):
            return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        if not math.isfinite(value):
            return None
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def to_epoch_ms(value: Optional[Timestamp]) -> Optional[float]:
    """Convert a timestamp to epoch milliseconds, or None if it is not one."""
    if isinstance(value, datetime):
        aware = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        try:
            return aware.timestamp() * 1000
        except (OverflowError, ValueError):
            return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return float(value)
    except OverflowError:
        return None


def weekday_abbrev(dt: datetime) -> str:
    """English three-letter weekday for *dt* in its own timezone."""
    return _WEEKDAYS[dt.weekday()]


def _date_time(dt: datetime, display_seconds: bool) -> tuple[str, str]:
    date = f"{dt.year:04d}-{dt.month:02d}-{dt.day:02d}"
    time = f"{dt.hour:02d}:{dt.minute:02d}"
    if display_seconds:
        time += f":{dt.second:02d}"
    return date, time


def format_utc_timestamp(dt: datetime, *, display_seconds: bool = False) -> str:
    """Render *dt* as ``YYYY-MM-DDTHH:MMZ`` in UTC."""
    utc = dt.astimezone(timezone.utc)
    date, time = _date_time(utc, display_seconds)
    return f"{date}T{time}Z"


def format_zoned_timestamp(
    dt: datetime,
    *,
    time_zone: Optional[str] = None,
    display_seconds: bool = False,
) -> Optional[str]:
    """Render *dt* as ``YYYY-MM-DD HH:MM <abbr>`` in *time_zone*.

    With no *time_zone* the host's local zone is used. Returns None if
    the zone cannot be loaded or the date cannot be shifted into it.
    """
    try:
        zoned = dt.astimezone(ZoneInfo(time_zone)) if time_zone else dt.astimezone()
    except (OverflowError, *_ZONE_ERRORS):
        logger.debug("Cannot render %s in zone %r", dt, time_zone)
        return None
    date, time = _date_time(zoned, display_seconds)
    abbrev = zoned.tzname()
    return f"{date} {time} {abbrev}" if abbrev else f"{date} {time}"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_time_ago(
    duration_ms: Optional[float],
    *,
    suffix: bool = True,
    fallback: str = "unknown",
) -> str:
    """Humanize a non-negative duration into ``"4s"``, ``"5m"``, ``"2h"``, ``"3d"``.

    With *suffix* the result reads ``"5m ago"`` (``"just now"`` under a
    minute). Negative or non-finite durations return *fallback*.
    """
    if duration_ms is None or not math.isfinite(duration_ms) or duration_ms < 0:
        return fallback
    seconds = _round_half_up(duration_ms / 1000)
    minutes = _round_half_up(seconds / 60)
    if minutes < 1:
        return "just now" if suffix else f"{seconds}s"
    if minutes < 60:
        value = f"{minutes}m"
    else:
        hours = _round_half_up(minutes / 60)
        if hours < 48:
            value = f"{hours}h"
        else:
            value = f"{_round_half_up(hours / 24)}d"
    return f"{value} ago" if suffix else value
