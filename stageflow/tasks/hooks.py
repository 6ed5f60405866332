"""Lifecycle hooks for worker pool task execution."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from stageflow.core.logging import LogContext, build_log_event


def _optional_str(value: Any) -> str | None:
    return str(value) if value is not None else None


def _log_context(task_id: str, task_type: str, context: dict[str, Any]) -> LogContext:
    return LogContext(
        organization_id=_optional_str(context.get("organization_id")),
        user_id=_optional_str(context.get("user_id")),
        task_id=task_id,
        task_type=task_type,
        trace_id=context.get("trace_id"),
    )


def before_task(task_id: str, task_type: str, context: dict[str, Any]) -> dict[str, Any]:
    """Build pre-task log payload."""
    return build_log_event(
        event="task.start",
        context=_log_context(task_id, task_type, context),
        queued=bool(context.get("queued", False)),
    )


def after_task(task_id: str, task_type: str, context: dict[str, Any], status: str) -> dict[str, Any]:
    """Build post-task log payload."""
    return build_log_event(
        event="task.finish",
        context=_log_context(task_id, task_type, context),
        status=status,
        finished_at=datetime.now(timezone.utc).isoformat(),
    )
