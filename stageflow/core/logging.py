"""Structured logging helpers for task lifecycle events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class LogContext:
    """Normalized context fields expected in structured logs."""

    organization_id: str | None = None
    user_id: str | None = None
    task_id: str | None = None
    task_type: str | None = None
    trace_id: str | None = None


def build_log_event(event: str, context: LogContext, **fields: Any) -> dict[str, Any]:
    """Build a normalized structured log payload."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "organization_id": context.organization_id,
        "user_id": context.user_id,
        "task_id": context.task_id,
        "task_type": context.task_type,
        "trace_id": context.trace_id,
    }
    payload.update(fields)
    return payload
