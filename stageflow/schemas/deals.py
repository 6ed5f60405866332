"""Canonical deal schema and raw-record parsing."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from stageflow.core.enums import DealStatus
from stageflow.core.stages import DEFAULT_STAGE, is_valid_stage_id

OUTCOME_FIELDS = (
    "lost_reason",
    "lost_reason_notes",
    "disqualified_reason_category",
    "disqualified_reason_notes",
    "stage_at_disqualification",
    "disqualified_at",
    "disqualified_by",
    "outcome_reason_category",
    "outcome_notes",
    "outcome_recorded_at",
    "outcome_recorded_by",
)

TEXT_FIELDS = (
    "created",
    "created_at",
    "updated_at",
    "last_activity",
    "assigned_to",
    "user_id",
    "expected_close",
    "company",
    "email",
    "phone",
    "notes",
) + OUTCOME_FIELDS


def _number(value: Any) -> float | None:
    # bool is an int subclass; a flag is never a usable amount.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value):
        return None
    return value


def _finite_number(value: Any) -> float | None:
    number = _number(value)
    if number is None or math.isinf(number):
        return None
    return number


class Deal(BaseModel):
    """A deal record after coercion. Instances are immutable; use ``model_copy(update=...)``."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(strict=True, min_length=1)
    organization_id: str = Field(strict=True, min_length=1)
    client: str = ""
    stage: str = DEFAULT_STAGE
    status: DealStatus = DealStatus.ACTIVE
    value: float | None = None
    confidence: float | None = Field(default=None, ge=0, le=100)
    probability: float | None = Field(default=None, ge=0, le=100)

    created: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_activity: str | None = None
    assigned_to: str | None = None
    user_id: str | None = None
    expected_close: str | None = None
    company: str | None = None
    email: str | None = None
    phone: str | None = None
    notes: str | None = None

    lost_reason: str | None = None
    lost_reason_notes: str | None = None
    disqualified_reason_category: str | None = None
    disqualified_reason_notes: str | None = None
    stage_at_disqualification: str | None = None
    disqualified_at: str | None = None
    disqualified_by: str | None = None
    outcome_reason_category: str | None = None
    outcome_notes: str | None = None
    outcome_recorded_at: str | None = None
    outcome_recorded_by: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _resolve_client(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        resolved = dict(data)
        client = resolved.get("client")
        if not isinstance(client, str):
            client_name = resolved.get("client_name")
            resolved["client"] = client_name if isinstance(client_name, str) else ""
        return resolved

    @field_validator("stage", mode="before")
    @classmethod
    def _coerce_stage(cls, value: Any) -> str:
        return value if is_valid_stage_id(value) else DEFAULT_STAGE

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> DealStatus:
        try:
            return DealStatus(value)
        except (TypeError, ValueError):
            return DealStatus.ACTIVE

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: Any) -> float | None:
        return _finite_number(value)

    @field_validator("confidence", "probability", mode="before")
    @classmethod
    def _clamp_percentage(cls, value: Any) -> float | None:
        number = _number(value)
        if number is None:
            return None
        return max(0, min(100, number))

    @field_validator(*TEXT_FIELDS, mode="before")
    @classmethod
    def _text_or_none(cls, value: Any) -> str | None:
        return value if isinstance(value, str) else None

    @property
    def owner_id(self) -> str:
        return self.user_id or self.assigned_to or "unassigned"

    @property
    def created_timestamp(self) -> str | None:
        return self.created or self.created_at

    def to_record(self) -> dict[str, Any]:
        """Plain JSON-safe dict, suitable for worker payloads and storage writes."""
        return self.model_dump(mode="json")


@dataclass(frozen=True)
class DealParseSuccess:
    deal: Deal
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class DealParseFailure:
    errors: tuple[str, ...]
    ok: bool = field(default=False, init=False)


DealParseResult = Union[DealParseSuccess, DealParseFailure]


def parse_raw_deal(raw: Any) -> DealParseResult:
    """Validate an untrusted record; only identifier problems produce a failure."""
    if not isinstance(raw, Mapping):
        return DealParseFailure(errors=(f"expected a mapping, got {type(raw).__name__}",))
    try:
        return DealParseSuccess(deal=Deal.model_validate(raw))
    except ValidationError as exc:
        messages = tuple(
            f"{'.'.join(str(part) for part in error['loc']) or 'deal'}: {error['msg']}"
            for error in exc.errors()
        )
        return DealParseFailure(errors=messages)
