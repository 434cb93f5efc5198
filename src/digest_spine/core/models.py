"""User records and the schedules embedded in them.

A user's JSON document looks like::

    {
        "preferences": {"timezone": "America/New_York", ...},
        "scheduledSummaries": [
            {"id": "s1", "name": "Morning", "time": "06:00",
             "days": ["Monday", "Friday"], "topics": ["tech"],
             "isEnabled": true, "lastRun": "2026-01-05T11:03:00.000000+00:00"}
        ],
        ...
    }

The scheduler only ever writes ``lastRun`` on a schedule, or removes a
schedule whose ``days`` list is empty.

Tags:
    digest-spine, models, scheduling, dataclasses
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .errors import ScheduleError
from .timestamps import from_iso8601, to_iso8601

DEFAULT_TIMEZONE = "UTC"
SCHEDULES_KEY = "scheduledSummaries"

WEEKDAYS = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


@dataclass
class Schedule:
    """One recurring digest (an element of ``scheduledSummaries``)."""

    id: str
    name: str = ""
    time: str = "00:00"  # local HH:MM
    days: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    is_enabled: bool = False
    last_run: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Schedule:
        """Build from a stored entry.

        Raises:
            ScheduleError: No ``id``, or a ``lastRun``/``days`` that cannot be read.
        """
        try:
            return cls(
                id=str(data["id"]),
                name=data.get("name", ""),
                time=data.get("time", "00:00"),
                days=list(data.get("days") or []),
                topics=list(data.get("topics") or []),
                is_enabled=bool(data.get("isEnabled", False)),
                last_run=from_iso8601(data.get("lastRun")),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ScheduleError(f"Malformed schedule entry: {e!r}", cause=e).with_context(
                schedule_id=str(data.get("id")) if "id" in data else None
            ) from e

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "time": self.time,
            "days": list(self.days),
            "topics": list(self.topics),
            "isEnabled": self.is_enabled,
            "lastRun": to_iso8601(self.last_run),
        }

    @property
    def has_days(self) -> bool:
        return bool(self.days)


@dataclass
class UserRecord:
    """A persisted user row: JSON document plus its version counter."""

    id: str
    doc: dict[str, Any] = field(default_factory=dict)
    version: int = 0
    email: str | None = None

    @property
    def timezone(self) -> str:
        prefs = self.doc.get("preferences") or {}
        return prefs.get("timezone") or DEFAULT_TIMEZONE

    @property
    def schedules(self) -> list[Schedule]:
        return [Schedule.from_dict(item) for item in self.schedule_entries()]

    def schedule_entries(self) -> list[dict[str, Any]]:
        """Raw ``scheduledSummaries`` objects, unparsed; non-object entries are dropped."""
        return [item for item in self.doc.get(SCHEDULES_KEY) or [] if isinstance(item, dict)]

    def get_schedule(self, schedule_id: str) -> Schedule | None:
        for item in self.schedule_entries():
            if "id" in item and str(item["id"]) == schedule_id:
                return Schedule.from_dict(item)
        return None


__all__ = [
    "DEFAULT_TIMEZONE",
    "SCHEDULES_KEY",
    "WEEKDAYS",
    "Schedule",
    "UserRecord",
]
