"""SQLAlchemy-backed deal storage used by recovery, migration and scoring tasks."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stageflow.core.exceptions import DatabaseError, NotFoundError
from stageflow.database import db as database
from stageflow.database.models import DealRecord, Organization
from stageflow.utils.dates import parse_timestamp

logger = logging.getLogger(__name__)

_DATETIME_COLUMNS = (
    "created_at",
    "updated_at",
    "last_activity",
    "disqualified_at",
    "outcome_recorded_at",
)


def _to_column_value(value: Any) -> datetime | None:
    parsed = parse_timestamp(value)
    return parsed.replace(tzinfo=None) if parsed is not None else None


def _to_record(row: DealRecord) -> dict[str, Any]:
    record: dict[str, Any] = {column.name: getattr(row, column.name) for column in DealRecord.__table__.columns}
    for name in _DATETIME_COLUMNS:
        value = record.get(name)
        # Stored naive values are UTC.
        record[name] = value.replace(tzinfo=timezone.utc).isoformat() if value is not None else None
    return record


class SqlDealStore:
    """Reads raw deal snapshots and applies the few writes recovery needs.

    The store owns its session unless one is passed in. Failed writes are
    rolled back before ``DatabaseError`` leaves the store.
    """

    def __init__(self, db: Session | None = None) -> None:
        self.db = db or database.SessionLocal()

    def _write(self, description: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DatabaseError(f"Failed to {description}") from exc

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> "SqlDealStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.db.rollback()
        self.close()

    def list_deals(self, organization_id: str) -> list[dict[str, Any]]:
        try:
            rows = self.db.query(DealRecord).filter(DealRecord.organization_id == organization_id).all()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DatabaseError(f"Failed to list deals for organization {organization_id}") from exc
        return [_to_record(row) for row in rows]

    def update_deal_stage(
        self,
        deal_id: str,
        stage: str,
        last_activity: str,
        status: str | None = None,
    ) -> None:
        row = self._get(DealRecord, deal_id, f"read deal {deal_id}")
        if row is None:
            raise NotFoundError(f"Deal not found: {deal_id}")
        row.stage = stage
        row.last_activity = _to_column_value(last_activity)
        row.updated_at = _to_column_value(last_activity)
        if status is not None:
            row.status = status
        self._write(f"update stage for deal {deal_id}")

    def get_active_template(self, organization_id: str) -> str | None:
        organization = self._get(Organization, organization_id, f"read organization {organization_id}")
        return organization.pipeline_template if organization else None

    def set_active_template(self, organization_id: str, template_id: str) -> None:
        organization = self._get(Organization, organization_id, f"read organization {organization_id}")
        if organization is None:
            raise NotFoundError(f"Organization not found: {organization_id}")
        organization.pipeline_template = template_id
        self._write(f"set template for organization {organization_id}")
        logger.info(
            "deal_store.template_saved",
            extra={"event": "deal_store.template_saved", "organization_id": organization_id, "template_id": template_id},
        )

    def create_organization(self, organization_id: str, name: str = "", pipeline_template: str | None = None) -> None:
        self.db.add(Organization(id=organization_id, name=name, pipeline_template=pipeline_template))
        self._write(f"create organization {organization_id}")

    def add_deal(self, record: dict[str, Any]) -> None:
        columns = {column.name for column in DealRecord.__table__.columns}
        values = {key: value for key, value in record.items() if key in columns}
        for name in _DATETIME_COLUMNS:
            if name in values:
                values[name] = _to_column_value(values[name])
        self.db.add(DealRecord(**values))
        self._write(f"add deal {record.get('id')}")

    def _get(self, model, key: str, description: str):
        try:
            return self.db.get(model, key)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DatabaseError(f"Failed to {description}") from exc
