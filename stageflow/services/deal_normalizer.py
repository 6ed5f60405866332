"""Deal normalization, stage validation and outcome-field rules."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from stageflow.core.enums import DealStatus
from stageflow.core.stages import (
    StageStatusRegistry,
    StageVocabulary,
    get_stage_vocabulary,
    get_status_registry,
    is_valid_stage_id,
)
from stageflow.schemas.deals import OUTCOME_FIELDS, Deal, DealParseFailure, parse_raw_deal

logger = logging.getLogger(__name__)

OTHER_REASON = "other"
LEGACY_OTHER_PREFIX = "Other:"


@dataclass(frozen=True)
class StageValidation:
    valid: bool
    error: str | None = None
    warning: str | None = None

    @property
    def is_custom(self) -> bool:
        return self.valid and self.warning is not None


@dataclass(frozen=True)
class OutcomeViolation:
    field: str
    message: str


class DealNormalizer:
    """Coerces untrusted deal records and keeps stage and status consistent."""

    def __init__(
        self,
        vocabulary: StageVocabulary | None = None,
        status_registry: StageStatusRegistry | None = None,
    ) -> None:
        self.vocabulary = vocabulary or get_stage_vocabulary()
        self.status_registry = status_registry or get_status_registry()

    def is_core_stage(self, stage: str) -> bool:
        return self.vocabulary.is_core_stage(stage)

    def validate_stage(self, stage: Any) -> StageValidation:
        if not is_valid_stage_id(stage):
            return StageValidation(
                valid=False,
                error=(
                    f'Invalid stage format: "{stage}". '
                    "Stage must be lowercase snake_case (e.g., lead_captured)."
                ),
            )
        if not self.vocabulary.is_core_stage(stage):
            logger.warning(
                "normalizer.custom_stage",
                extra={"event": "normalizer.custom_stage", "stage": stage},
            )
            return StageValidation(valid=True, warning=f"Custom stage detected: {stage}")
        return StageValidation(valid=True)

    def get_implied_status_for_stage(self, stage: str) -> DealStatus | None:
        return self.status_registry.implied_status_for(stage)

    def sync_stage_and_status(self, deal: Deal) -> Deal:
        """Return ``deal`` with its status forced to whatever its stage implies."""
        implied = self.status_registry.implied_status_for(deal.stage)
        if implied is not None and deal.status != implied:
            return deal.model_copy(update={"status": implied})
        return deal

    def normalize(self, raw: Any) -> Deal | None:
        result = parse_raw_deal(raw)
        if isinstance(result, DealParseFailure):
            logger.debug(
                "normalizer.deal_rejected",
                extra={"event": "normalizer.deal_rejected", "errors": list(result.errors)},
            )
            return None
        return self.sync_stage_and_status(result.deal)

    def normalize_many(self, records: Iterable[Any]) -> list[Deal]:
        """Normalize a batch, dropping records that lack identifiers."""
        deals: list[Deal] = []
        dropped = 0
        for raw in records:
            deal = self.normalize(raw)
            if deal is None:
                dropped += 1
                continue
            deals.append(deal)
        if dropped:
            logger.warning(
                "normalizer.records_dropped",
                extra={"event": "normalizer.records_dropped", "dropped": dropped, "kept": len(deals)},
            )
        return deals


def validate_outcome(deal: Deal) -> list[OutcomeViolation]:
    """List outcome-field violations for the deal's status. Empty means consistent."""
    violations: list[OutcomeViolation] = []

    if deal.status == DealStatus.LOST:
        if not (deal.lost_reason or deal.outcome_reason_category):
            violations.append(OutcomeViolation("lost_reason", "Lost deals must have a reason"))

        is_other = (
            deal.lost_reason == OTHER_REASON
            or deal.outcome_reason_category == OTHER_REASON
            or (deal.lost_reason or "").startswith(LEGACY_OTHER_PREFIX)
        )
        if is_other and not (deal.lost_reason_notes or deal.outcome_notes):
            violations.append(
                OutcomeViolation("lost_reason_notes", 'Please provide details when selecting "Other"')
            )

    if deal.status == DealStatus.DISQUALIFIED:
        if not (deal.disqualified_reason_category or deal.outcome_reason_category):
            violations.append(
                OutcomeViolation("disqualified_reason_category", "Disqualified deals must have a reason")
            )

    if deal.status in (DealStatus.ACTIVE, DealStatus.WON):
        if deal.lost_reason or deal.disqualified_reason_category or deal.outcome_reason_category:
            violations.append(
                OutcomeViolation(
                    "outcome_reason_category",
                    f"{deal.status.value} deals should not have outcome reason data",
                )
            )

    return violations


def clear_outcome_fields(deal: Deal) -> Deal:
    return deal.model_copy(update={name: None for name in OUTCOME_FIELDS})


_default_normalizer: DealNormalizer | None = None


def get_default_normalizer() -> DealNormalizer:
    global _default_normalizer
    if _default_normalizer is None:
        _default_normalizer = DealNormalizer()
    return _default_normalizer


def normalize_deal(raw: Any) -> Deal | None:
    return get_default_normalizer().normalize(raw)


def validate_stage(stage: Any) -> StageValidation:
    return get_default_normalizer().validate_stage(stage)


def is_core_stage(stage: str) -> bool:
    return get_default_normalizer().is_core_stage(stage)


def get_implied_status_for_stage(stage: str) -> DealStatus | None:
    return get_default_normalizer().get_implied_status_for_stage(stage)


def sync_stage_and_status(deal: Deal) -> Deal:
    return get_default_normalizer().sync_stage_and_status(deal)
