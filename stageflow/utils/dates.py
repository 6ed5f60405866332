"""Timestamp parsing shared by scoring and analytics."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any

SECONDS_PER_DAY = 86400


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware UTC datetime.

    Naive values are taken as UTC. Anything unparseable yields ``None``.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def whole_days_between(start: datetime, end: datetime) -> int:
    """Floor of the day difference; negative when ``start`` is after ``end``."""
    return math.floor((end - start).total_seconds() / SECONDS_PER_DAY)
