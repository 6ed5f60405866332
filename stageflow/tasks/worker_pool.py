"""Fixed-size pool of execution units for bulk scoring and analytics.

Each unit runs at most one task at a time. Work submitted while every unit is
busy waits in a FIFO queue; when a unit finishes, its result is routed to the
originating handle by task id and the unit takes the next queued task.

There is no cancellation. ``terminate()`` shuts the units down and abandons
outstanding handles without resolving them, so callers that need a failure
signal should wait with a timeout.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from collections.abc import Sequence
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from threading import RLock
from typing import Any

from stageflow.core.config import WORKER_POOL_BACKENDS, get_config
from stageflow.core.enums import TaskType
from stageflow.core.exceptions import ConfigurationError, TaskExecutionError, WorkerPoolError
from stageflow.schemas.deals import Deal
from stageflow.services.confidence_service import PerformanceSnapshot
from stageflow.tasks.hooks import after_task, before_task
from stageflow.tasks.registry import TaskExecutor, TaskRegistry, default_registry, task_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskResult:
    """What a unit sends back: the task id it was given plus the outcome."""

    task_id: str
    task_type: str
    ok: bool
    result: Any = None
    error: str | None = None


def run_unit_task(task_id: str, task_type: str, executor: TaskExecutor, payload: dict[str, Any]) -> TaskResult:
    """Body of one unit invocation; never raises for task errors."""
    try:
        return TaskResult(task_id=task_id, task_type=task_type, ok=True, result=executor(payload))
    except Exception as exc:
        return TaskResult(task_id=task_id, task_type=task_type, ok=False, error=f"{type(exc).__name__}: {exc}")


class TaskHandle:
    """Pending result of one submitted task."""

    def __init__(self, task_id: str, task_type: str) -> None:
        self.task_id = task_id
        self.task_type = task_type
        self._future: Future = Future()

    @property
    def future(self) -> Future:
        return self._future

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None) -> Any:
        """Block until the task finishes; ``TaskExecutionError`` if it failed."""
        return self._future.result(timeout=timeout)

    def add_done_callback(self, fn) -> None:
        self._future.add_done_callback(lambda _future: fn(self))


@dataclass
class _QueuedTask:
    task_id: str
    task_type: str
    executor: TaskExecutor
    payload: dict[str, Any]
    context: dict[str, Any] = field(default_factory=dict)


class _ExecutionUnit:
    def __init__(self, index: int, backend: str) -> None:
        self.index = index
        self.busy = False
        self.task_id: str | None = None
        if backend == "process":
            self.executor: Executor = ProcessPoolExecutor(max_workers=1)
        else:
            self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"stageflow-unit-{index}")

    def shutdown(self) -> None:
        self.executor.shutdown(wait=False, cancel_futures=True)


@dataclass(frozen=True)
class PoolStats:
    pool_size: int
    busy_units: int
    queue_length: int
    active_tasks: int

    def to_dict(self) -> dict[str, int]:
        return {
            "poolSize": self.pool_size,
            "busyWorkers": self.busy_units,
            "queueLength": self.queue_length,
            "activeTasksCount": self.active_tasks,
        }


class WorkerPool:
    """Runs registered task types on ``size`` independent execution units."""

    def __init__(
        self,
        size: int | None = None,
        backend: str | None = None,
        registry: TaskRegistry | None = None,
    ) -> None:
        config = get_config()
        self.size = size if size is not None else config.WORKER_POOL_SIZE
        self.backend = (backend or config.WORKER_POOL_BACKEND).strip().lower()
        if self.size < 1:
            raise ConfigurationError("Worker pool size must be >= 1.")
        if self.backend not in WORKER_POOL_BACKENDS:
            raise ConfigurationError(f"Unknown worker pool backend: {self.backend}")

        self._registry = registry or default_registry
        self._lock = RLock()
        self._units = [_ExecutionUnit(index, self.backend) for index in range(self.size)]
        self._queue: deque[_QueuedTask] = deque()
        self._handles: dict[str, TaskHandle] = {}
        self._terminated = False
        logger.info(
            "worker_pool.started",
            extra={"event": "worker_pool.started", "pool_size": self.size, "backend": self.backend},
        )

    @property
    def terminated(self) -> bool:
        return self._terminated

    def execute(
        self,
        task_type: TaskType | str,
        payload: dict[str, Any] | None = None,
        task_id: str | None = None,
    ) -> TaskHandle:
        """Submit a task; it starts now on an idle unit or waits its turn in the queue."""
        key = task_key(task_type)
        executor = self._registry.get(key)
        payload = payload or {}

        with self._lock:
            if self._terminated:
                raise WorkerPoolError("Worker pool has been terminated")
            task_id = task_id or uuid.uuid4().hex
            if task_id in self._handles:
                raise WorkerPoolError(f"Task id already in flight: {task_id}")

            handle = TaskHandle(task_id, key)
            self._handles[task_id] = handle
            task = _QueuedTask(
                task_id=task_id,
                task_type=key,
                executor=executor,
                payload=payload,
                context={"organization_id": payload.get("organization_id"), "trace_id": uuid.uuid4().hex},
            )

            unit = self._idle_unit()
            if unit is None:
                task.context["queued"] = True
                self._queue.append(task)
                logger.debug(
                    "worker_pool.task_queued",
                    extra={"event": "worker_pool.task_queued", "task_id": task_id, "queue_length": len(self._queue)},
                )
            else:
                self._dispatch(unit, task)
        return handle

    def _idle_unit(self) -> _ExecutionUnit | None:
        for unit in self._units:
            if not unit.busy:
                return unit
        return None

    def _dispatch(self, unit: _ExecutionUnit, task: _QueuedTask) -> None:
        unit.busy = True
        unit.task_id = task.task_id
        logger.info("task.start", extra=before_task(task.task_id, task.task_type, task.context))
        try:
            future = unit.executor.submit(run_unit_task, task.task_id, task.task_type, task.executor, task.payload)
        except RuntimeError as exc:
            # Executor already shut down or broken.
            unit.busy = False
            unit.task_id = None
            handle = self._handles.pop(task.task_id, None)
            if handle is not None:
                handle.future.set_exception(TaskExecutionError(task.task_id, task.task_type, str(exc)))
            return
        future.add_done_callback(lambda done, unit=unit, task=task: self._on_unit_done(unit, task, done))

    def _on_unit_done(self, unit: _ExecutionUnit, task: _QueuedTask, future: Future) -> None:
        with self._lock:
            if self._terminated:
                return
            unit.busy = False
            unit.task_id = None

            if future.cancelled():
                outcome = TaskResult(task.task_id, task.task_type, ok=False, error="cancelled")
            elif future.exception() is not None:
                exc = future.exception()
                outcome = TaskResult(task.task_id, task.task_type, ok=False, error=f"{type(exc).__name__}: {exc}")
            else:
                outcome = future.result()

            handle = self._handles.pop(outcome.task_id, None)

            if self._queue:
                self._dispatch(unit, self._queue.popleft())

        status = "succeeded" if outcome.ok else "failed"
        log = logger.info if outcome.ok else logger.error
        log("task.finish", extra=after_task(task.task_id, task.task_type, task.context, status=status))

        if handle is None:
            return
        if outcome.ok:
            handle.future.set_result(outcome.result)
        else:
            handle.future.set_exception(TaskExecutionError(outcome.task_id, outcome.task_type, outcome.error or ""))

    def get_stats(self) -> PoolStats:
        with self._lock:
            return PoolStats(
                pool_size=len(self._units),
                busy_units=sum(1 for unit in self._units if unit.busy),
                queue_length=len(self._queue),
                active_tasks=sum(1 for unit in self._units if unit.task_id is not None),
            )

    def terminate(self) -> None:
        """Shut every unit down and drop queued work; outstanding handles stay pending."""
        with self._lock:
            if self._terminated:
                return
            self._terminated = True
            abandoned = len(self._handles)
            self._queue.clear()
            self._handles.clear()
            units, self._units = self._units, []
        for unit in units:
            unit.shutdown()
        logger.info(
            "worker_pool.terminated",
            extra={"event": "worker_pool.terminated", "abandoned_tasks": abandoned},
        )

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.terminate()


class AnalyticsWorkerClient:
    """One method per analytics task kind, each returning a ``TaskHandle``.

    ``now`` pins the reference time for age-based rules; units use their own
    clock when it is omitted.
    """

    def __init__(self, pool: WorkerPool) -> None:
        self.pool = pool

    @staticmethod
    def _payload(
        deals: Sequence[Deal | dict[str, Any]],
        performance: PerformanceSnapshot | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "deals": [deal.to_record() if isinstance(deal, Deal) else dict(deal) for deal in deals],
        }
        if performance is not None:
            payload.update(performance.to_payload())
        if now is not None:
            payload["now"] = now.isoformat()
        return payload

    def calculate_analytics(self, deals: Sequence[Deal | dict[str, Any]], now: datetime | None = None) -> TaskHandle:
        return self.pool.execute(TaskType.ANALYTICS, self._payload(deals, now=now))

    def calculate_pipeline_health(
        self,
        deals: Sequence[Deal | dict[str, Any]],
        now: datetime | None = None,
    ) -> TaskHandle:
        return self.pool.execute(TaskType.PIPELINE_HEALTH, self._payload(deals, now=now))

    def calculate_confidence_scores(
        self,
        deals: Sequence[Deal | dict[str, Any]],
        performance: PerformanceSnapshot | None = None,
        now: datetime | None = None,
    ) -> TaskHandle:
        return self.pool.execute(TaskType.CONFIDENCE_SCORES, self._payload(deals, performance, now))

    def find_at_risk_deals(self, deals: Sequence[Deal | dict[str, Any]], now: datetime | None = None) -> TaskHandle:
        return self.pool.execute(TaskType.AT_RISK, self._payload(deals, now=now))

    def batch_analytics(
        self,
        deals: Sequence[Deal | dict[str, Any]],
        performance: PerformanceSnapshot | None = None,
        now: datetime | None = None,
    ) -> TaskHandle:
        return self.pool.execute(TaskType.BATCH_ANALYTICS, self._payload(deals, performance, now))
