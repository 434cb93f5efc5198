"""Weekday + local-time recurrence matching.

A schedule says "06:00 on Mondays and Fridays" in the *user's* time zone.
The tick fires every ten minutes on the server's clock, so "due" means:
today is one of the listed weekdays locally, and the local wall-clock
minute is within ``tolerance_minutes`` of the scheduled minute.

Daylight-saving shifts are absorbed by rendering each tick in the user's
zone. The window does not wrap around midnight: a 23:58 schedule is not
matched by a 00:02 tick.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from digest_spine.core.errors import ScheduleError
from digest_spine.core.models import WEEKDAYS

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_MINUTES = 5


def resolve_timezone(name: str | None) -> tzinfo:
    """IANA zone for ``name``; unknown or empty names fall back to UTC."""
    if not name:
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}; using UTC")
        return UTC


def parse_time_of_day(value: str) -> int:
    """``"HH:MM"`` to minutes after local midnight.

    Raises:
        ScheduleError: Not a valid 24-hour HH:MM string.
    """
    try:
        hour_text, minute_text = value.split(":")
        hour, minute = int(hour_text), int(minute_text)
    except (AttributeError, ValueError) as e:
        raise ScheduleError(f"Invalid schedule time {value!r}", cause=e) from e
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ScheduleError(f"Schedule time out of range: {value!r}")
    return hour * 60 + minute


@dataclass(frozen=True)
class LocalMoment:
    """``now`` as seen from one time zone."""

    weekday: str
    minute_of_day: int
    local: datetime


def localize(now: datetime, timezone: str | None) -> LocalMoment:
    local = now.astimezone(resolve_timezone(timezone))
    return LocalMoment(
        weekday=WEEKDAYS[local.weekday()],
        minute_of_day=local.hour * 60 + local.minute,
        local=local,
    )


def is_due(
    time: str,
    days: list[str],
    timezone: str | None,
    now: datetime,
    tolerance_minutes: int = DEFAULT_TOLERANCE_MINUTES,
) -> bool:
    """Whether a schedule is due at ``now``.

    Args:
        time: Local ``"HH:MM"``
        days: Weekday names (``"Monday"`` ... ``"Sunday"``)
        timezone: IANA zone name of the owning user
        now: Aware instant being evaluated
        tolerance_minutes: Half-width of the match window

    Example:
        >>> monday_0603_utc = datetime(2026, 1, 5, 6, 3, tzinfo=UTC)
        >>> is_due("06:00", ["Monday"], "UTC", monday_0603_utc)
        True
    """
    if not days:
        return False
    moment = localize(now, timezone)
    if moment.weekday not in days:
        return False
    scheduled = parse_time_of_day(time)
    return abs(moment.minute_of_day - scheduled) <= tolerance_minutes


__all__ = [
    "DEFAULT_TOLERANCE_MINUTES",
    "LocalMoment",
    "is_due",
    "localize",
    "parse_time_of_day",
    "resolve_timezone",
]
