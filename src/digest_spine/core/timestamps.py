"""
UTC time helpers.

Lease expiry and ``lastRun`` are stored as text, always written through
``to_iso8601``. Every stored value therefore has the same width and the
same ``+00:00`` suffix, and ``expires_at < ?`` in SQL orders them the
same way the datetimes order.

Tags:
    timestamps, utc, ulid, digest-spine
"""

import os
import time
from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]

# Crockford base32
_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Serialize to ``YYYY-MM-DDTHH:MM:SS.ffffff+00:00``; naive input is taken as UTC."""
    if dt is None:
        return None
    aware = dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)
    return aware.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso8601(text: str | None) -> datetime | None:
    """Parse an ISO 8601 string (``Z`` suffix accepted) into an aware UTC datetime."""
    if text is None:
        return None
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def generate_ulid() -> str:
    """26-character, time-sortable job id (48-bit ms timestamp + 80 random bits)."""
    value = (time.time_ns() // 1_000_000) << 80 | int.from_bytes(os.urandom(10), "big")
    chars = []
    for _ in range(26):
        value, digit = divmod(value, 32)
        chars.append(_ALPHABET[digit])
    return "".join(reversed(chars))
