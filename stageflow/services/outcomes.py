"""Unified outcome model for lost and disqualified deals.

Lost and disqualified deals share one reason taxonomy (``OutcomeReason``).
Older records carry reasons in ``lost_reason`` or
``disqualified_reason_category`` using legacy ids; these are mapped onto the
unified categories when an outcome is read.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from stageflow.core.enums import NEGATIVE_STATUSES, TERMINAL_STATUSES, DealStatus, OutcomeReason
from stageflow.schemas.deals import Deal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReasonOption:
    id: str
    label: str
    short_label: str
    icon: str
    description: str


REASON_OPTIONS = {
    OutcomeReason.COMPETITOR: ReasonOption(
        "competitor", "Lost to Competitor", "Competitor", "🏆", "Prospect chose a competing solution"
    ),
    OutcomeReason.BUDGET: ReasonOption(
        "budget", "Budget Constraints", "Budget", "💰", "Financial limitations prevented the deal"
    ),
    OutcomeReason.TIMING: ReasonOption(
        "timing", "Wrong Timing", "Timing", "⏰", "Not the right time for the prospect"
    ),
    OutcomeReason.NO_FIT: ReasonOption(
        "no_fit", "Not a Fit", "No Fit", "🎯", "Product or service doesn't match prospect needs"
    ),
    OutcomeReason.UNRESPONSIVE: ReasonOption(
        "unresponsive", "Unresponsive", "Unresponsive", "📵", "Prospect stopped responding to outreach"
    ),
    OutcomeReason.NO_INTEREST: ReasonOption(
        "no_interest", "No Longer Interested", "No Interest", "❌", "Prospect lost interest or deprioritized"
    ),
    OutcomeReason.OTHER: ReasonOption("other", "Other", "Other", "📝", "Other reason not listed above"),
}

LOST_REASON_OPTIONS = (
    OutcomeReason.COMPETITOR,
    OutcomeReason.NO_INTEREST,
    OutcomeReason.BUDGET,
    OutcomeReason.TIMING,
    OutcomeReason.OTHER,
)

DISQUALIFIED_REASON_OPTIONS = (
    OutcomeReason.BUDGET,
    OutcomeReason.NO_FIT,
    OutcomeReason.TIMING,
    OutcomeReason.COMPETITOR,
    OutcomeReason.UNRESPONSIVE,
    OutcomeReason.OTHER,
)

LEGACY_REASON_MAP = {
    "no_budget": OutcomeReason.BUDGET,
    "not_a_fit": OutcomeReason.NO_FIT,
    "wrong_timing": OutcomeReason.TIMING,
    "went_with_competitor": OutcomeReason.COMPETITOR,
}


@dataclass(frozen=True)
class UnifiedOutcome:
    outcome_reason_category: OutcomeReason | None = None
    outcome_notes: str | None = None
    outcome_recorded_at: str | None = None
    outcome_recorded_by: str | None = None


@dataclass(frozen=True)
class OutcomeSummary:
    status: DealStatus
    is_negative: bool
    is_final: bool
    reason_category: OutcomeReason | None
    reason_label: str | None
    reason_icon: str | None
    notes: str | None
    recorded_at: str | None
    recorded_by: str | None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        data["reason_category"] = self.reason_category.value if self.reason_category else None
        return data


def normalize_reason_category(reason: str | None) -> OutcomeReason | None:
    """Map a unified or legacy reason id onto ``OutcomeReason``; unknown ids become OTHER."""
    if not reason:
        return None
    try:
        return OutcomeReason(reason)
    except ValueError:
        pass
    mapped = LEGACY_REASON_MAP.get(reason)
    if mapped is None:
        logger.debug(
            "outcomes.reason_unmapped",
            extra={"event": "outcomes.reason_unmapped", "reason": reason},
        )
        return OutcomeReason.OTHER
    return mapped


def get_reason_display(reason: str | None) -> ReasonOption:
    category = normalize_reason_category(reason) or OutcomeReason.OTHER
    return REASON_OPTIONS[category]


def get_reason_options(status: DealStatus | str) -> list[ReasonOption]:
    """Reason choices offered for a lost deal, or for a disqualified one otherwise."""
    ids = LOST_REASON_OPTIONS if status == DealStatus.LOST else DISQUALIFIED_REASON_OPTIONS
    return [REASON_OPTIONS[reason] for reason in ids]


def create_unified_outcome(deal: Deal) -> UnifiedOutcome:
    if deal.outcome_reason_category:
        return UnifiedOutcome(
            outcome_reason_category=normalize_reason_category(deal.outcome_reason_category),
            outcome_notes=deal.outcome_notes or None,
            outcome_recorded_at=deal.outcome_recorded_at or None,
            outcome_recorded_by=deal.outcome_recorded_by or None,
        )

    if deal.status == DealStatus.LOST and deal.lost_reason:
        return UnifiedOutcome(
            outcome_reason_category=normalize_reason_category(deal.lost_reason),
            outcome_notes=deal.lost_reason_notes or None,
            outcome_recorded_at=deal.updated_at or None,
        )

    if deal.status == DealStatus.DISQUALIFIED and deal.disqualified_reason_category:
        return UnifiedOutcome(
            outcome_reason_category=normalize_reason_category(deal.disqualified_reason_category),
            outcome_notes=deal.disqualified_reason_notes or None,
            outcome_recorded_at=deal.disqualified_at or deal.updated_at or None,
            outcome_recorded_by=deal.disqualified_by or None,
        )

    return UnifiedOutcome()


def has_negative_outcome(deal: Deal) -> bool:
    return deal.status in NEGATIVE_STATUSES


def is_final_outcome(deal: Deal) -> bool:
    return deal.status in TERMINAL_STATUSES


def get_outcome_summary(deal: Deal) -> OutcomeSummary:
    unified = create_unified_outcome(deal)
    display = REASON_OPTIONS[unified.outcome_reason_category] if unified.outcome_reason_category else None
    return OutcomeSummary(
        status=deal.status,
        is_negative=has_negative_outcome(deal),
        is_final=is_final_outcome(deal),
        reason_category=unified.outcome_reason_category,
        reason_label=display.label if display else None,
        reason_icon=display.icon if display else None,
        notes=unified.outcome_notes,
        recorded_at=unified.outcome_recorded_at,
        recorded_by=unified.outcome_recorded_by,
    )
