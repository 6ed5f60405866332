from __future__ import annotations

import pytest

from stageflow.core.enums import TaskType
from stageflow.core.exceptions import UnknownTaskTypeError
from stageflow.tasks.hooks import after_task, before_task
from stageflow.tasks.registry import TaskRegistry, default_registry, run_at_risk_task, task_key
from tests.helpers import NOW, days_ago


def test_default_registry_covers_every_task_type():
    assert default_registry.keys() == sorted(task_type.value for task_type in TaskType)


def test_registry_accepts_enum_or_string_keys():
    registry = TaskRegistry()
    registry.register(TaskType.AT_RISK, run_at_risk_task)

    assert registry.get("at_risk") is run_at_risk_task
    assert task_key(TaskType.PIPELINE_HEALTH) == "pipeline_health"
    with pytest.raises(UnknownTaskTypeError):
        registry.get(TaskType.ANALYTICS)


def test_task_normalizes_its_own_payload():
    payload = {
        "deals": [
            {"id": "d1", "organization_id": "org-1", "stage": "lead", "last_activity": days_ago(31)},
            {"id": "d2"},
            "garbage",
        ],
        "now": NOW.isoformat(),
    }

    report = run_at_risk_task(payload)

    assert [item["dealId"] for item in report] == ["d1"]
    assert report[0]["dealName"] == "Unnamed"


def test_lifecycle_payloads_carry_task_identity():
    context = {"organization_id": "org-1", "trace_id": "trace-1", "queued": True}

    start = before_task("t-1", "analytics", context)
    finish = after_task("t-1", "analytics", context, status="failed")

    assert start["event"] == "task.start"
    assert start["queued"] is True
    assert (start["task_id"], start["task_type"], start["organization_id"]) == ("t-1", "analytics", "org-1")
    assert finish["event"] == "task.finish"
    assert finish["status"] == "failed"
    assert finish["trace_id"] == "trace-1"
