"""Task registry mapping worker task types to executable callables.

Executors take one self-contained payload dict and return plain data. They are
module-level functions so the process backend can ship them to a unit by
reference.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from stageflow.core.enums import TaskType
from stageflow.core.exceptions import UnknownTaskTypeError
from stageflow.schemas.deals import Deal
from stageflow.services.analytics_service import (
    calculate_confidence_scores,
    calculate_deal_analytics,
    calculate_pipeline_health_score,
    find_at_risk_deals,
    run_batch_analytics,
)
from stageflow.services.deal_normalizer import get_default_normalizer
from stageflow.utils.dates import parse_timestamp

TaskExecutor = Callable[[dict[str, Any]], Any]


def task_key(task_type: TaskType | str) -> str:
    return task_type.value if isinstance(task_type, TaskType) else str(task_type)


class TaskRegistry:
    """Mutable task registry for worker pool task types."""

    def __init__(self) -> None:
        self._executors: dict[str, TaskExecutor] = {}

    def register(self, task_type: TaskType | str, executor: TaskExecutor) -> None:
        self._executors[task_key(task_type)] = executor

    def get(self, task_type: TaskType | str) -> TaskExecutor:
        key = task_key(task_type)
        if key not in self._executors:
            raise UnknownTaskTypeError(key)
        return self._executors[key]

    def keys(self) -> list[str]:
        return sorted(self._executors.keys())


def _payload_deals(payload: dict[str, Any]) -> list[Deal]:
    return get_default_normalizer().normalize_many(payload.get("deals") or [])


def _payload_now(payload: dict[str, Any]) -> datetime | None:
    return parse_timestamp(payload.get("now"))


def run_analytics_task(payload: dict[str, Any]) -> dict[str, Any]:
    return calculate_deal_analytics(_payload_deals(payload), now=_payload_now(payload)).to_dict()


def run_pipeline_health_task(payload: dict[str, Any]) -> dict[str, Any]:
    return calculate_pipeline_health_score(_payload_deals(payload), now=_payload_now(payload)).to_dict()


def run_confidence_scores_task(payload: dict[str, Any]) -> dict[str, Any]:
    return calculate_confidence_scores(
        _payload_deals(payload),
        user_performance=payload.get("user_performance"),
        global_win_rate=payload.get("global_win_rate"),
        now=_payload_now(payload),
    )


def run_at_risk_task(payload: dict[str, Any]) -> list[dict[str, Any]]:
    return [item.to_dict() for item in find_at_risk_deals(_payload_deals(payload), now=_payload_now(payload))]


def run_batch_analytics_task(payload: dict[str, Any]) -> dict[str, Any]:
    return run_batch_analytics(
        _payload_deals(payload),
        user_performance=payload.get("user_performance"),
        global_win_rate=payload.get("global_win_rate"),
        now=_payload_now(payload),
    )


def build_default_registry() -> TaskRegistry:
    registry = TaskRegistry()
    registry.register(TaskType.ANALYTICS, run_analytics_task)
    registry.register(TaskType.PIPELINE_HEALTH, run_pipeline_health_task)
    registry.register(TaskType.CONFIDENCE_SCORES, run_confidence_scores_task)
    registry.register(TaskType.AT_RISK, run_at_risk_task)
    registry.register(TaskType.BATCH_ANALYTICS, run_batch_analytics_task)
    return registry


default_registry = build_default_registry()
