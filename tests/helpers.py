from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from stageflow.core.exceptions import DatabaseError

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def days_ago(days: float) -> str:
    return (NOW - timedelta(days=days)).isoformat()


class FakeDealStore:
    """In-memory storage collaborator that records every write."""

    def __init__(self, deals: list[dict[str, Any]] | None = None, active_template: str | None = None) -> None:
        self.deals = {deal["id"]: dict(deal) for deal in deals or []}
        self.active_template = active_template
        self.stage_updates: list[tuple[str, str, str | None]] = []
        self.template_writes: list[tuple[str, str]] = []
        self.template_reads = 0
        self.failing_ids: set[str] = set()

    def list_deals(self, organization_id: str) -> list[dict[str, Any]]:
        return [dict(deal) for deal in self.deals.values() if deal.get("organization_id") == organization_id]

    def update_deal_stage(self, deal_id: str, stage: str, last_activity: str, status: str | None = None) -> None:
        if deal_id in self.failing_ids:
            raise DatabaseError(f"write rejected for {deal_id}")
        self.stage_updates.append((deal_id, stage, status))
        self.deals[deal_id]["stage"] = stage
        self.deals[deal_id]["last_activity"] = last_activity
        if status is not None:
            self.deals[deal_id]["status"] = status

    def get_active_template(self, organization_id: str) -> str | None:
        self.template_reads += 1
        return self.active_template

    def set_active_template(self, organization_id: str, template_id: str) -> None:
        self.template_writes.append((organization_id, template_id))
        self.active_template = template_id
