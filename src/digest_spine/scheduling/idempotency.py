"""At-most-once-per-local-day guard.

A schedule that has ``lastRun`` on the user's current local calendar date
must not fire again. The 23-hour bound keeps a DST-shortened or
zone-changed day from blocking the next legitimate occurrence; differing
local dates never block.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from .recurrence import resolve_timezone

MIN_RUN_SPACING = timedelta(hours=23)


def already_ran_today(
    last_run: datetime | None,
    timezone: str | None,
    now: datetime,
) -> bool:
    """True iff ``last_run`` falls on today's local date and is under 23h old."""
    if last_run is None:
        return False
    zone = resolve_timezone(timezone)
    same_local_date = last_run.astimezone(zone).date() == now.astimezone(zone).date()
    return same_local_date and (now - last_run) < MIN_RUN_SPACING


__all__ = [
    "MIN_RUN_SPACING",
    "already_ran_today",
]
