"""Display names for stages, statuses and outcome reasons.

Callers never show raw stage ids: unknown ids are title-cased from their
snake_case form.
"""

from __future__ import annotations

from dataclasses import dataclass

from stageflow.core.stages import StageVocabulary, get_stage_vocabulary
from stageflow.services.deal_normalizer import LEGACY_OTHER_PREFIX, OTHER_REASON
from stageflow.utils.validators import sanitize_text, title_case_identifier, truncate_label

UNKNOWN_COLOR = "#9CA3AF"
DEFAULT_OUTCOME_ICON = "📋"

LOST_REASON_DISPLAY = {
    "competitor": "Lost to Competitor",
    "no_interest": "No Longer Interested",
    "budget": "Budget Constraints",
    "timing": "Wrong Timing",
    "other": "Other",
}

DISQUALIFIED_REASON_DISPLAY = {
    "no_budget": "No Budget",
    "budget": "Budget Constraints",
    "not_a_fit": "Not a Fit",
    "no_fit": "Not a Fit",
    "wrong_timing": "Wrong Timing",
    "timing": "Wrong Timing",
    "went_with_competitor": "Went with Competitor",
    "competitor": "Went with Competitor",
    "unresponsive": "Unresponsive",
    "other": "Other",
}

# Categories whose free-text notes replace the generic label.
DISQUALIFIED_NOTE_CATEGORIES = {"other", "no_fit"}


@dataclass(frozen=True)
class OutcomeDisplay:
    label: str
    icon: str

    def to_dict(self) -> dict[str, str]:
        return {"label": self.label, "icon": self.icon}


@dataclass(frozen=True)
class StatusDisplay:
    label: str
    color: str

    def to_dict(self) -> dict[str, str]:
        return {"label": self.label, "color": self.color}


OUTCOME_REASON_DISPLAY = {
    "competitor": OutcomeDisplay("Lost to Competitor", "🏆"),
    "budget": OutcomeDisplay("Budget Constraints", "💰"),
    "timing": OutcomeDisplay("Wrong Timing", "⏰"),
    "no_fit": OutcomeDisplay("Not a Fit", "🎯"),
    "unresponsive": OutcomeDisplay("Unresponsive", "📵"),
    "no_interest": OutcomeDisplay("No Longer Interested", "❌"),
    "other": OutcomeDisplay("Other", "📝"),
}

STATUS_DISPLAY = {
    "active": StatusDisplay("Active", "#3B82F6"),
    "won": StatusDisplay("Won", "#10B981"),
    "lost": StatusDisplay("Lost", "#EF4444"),
    "disqualified": StatusDisplay("Disqualified", "#6B7280"),
}


def get_stage_display_name(stage_id: str | None, vocabulary: StageVocabulary | None = None) -> str:
    if not stage_id:
        return "Unknown"
    names = (vocabulary or get_stage_vocabulary()).display_names
    return names.get(stage_id) or title_case_identifier(stage_id)


def get_lost_reason_display(reason: str | None, notes: str | None = None) -> str | None:
    """Label for a lost reason; handles the legacy ``"Other: free text"`` encoding."""
    if not reason:
        return None
    if reason.startswith(LEGACY_OTHER_PREFIX):
        return sanitize_text(reason[len(LEGACY_OTHER_PREFIX):]) or "Other"

    display = LOST_REASON_DISPLAY.get(reason)
    if display:
        if reason == OTHER_REASON and notes:
            return notes
        return display
    return title_case_identifier(reason)


def get_disqualified_reason_display(category: str | None, notes: str | None = None) -> str | None:
    if not category:
        return None
    display = DISQUALIFIED_REASON_DISPLAY.get(category)
    if display:
        if category in DISQUALIFIED_NOTE_CATEGORIES and notes:
            return truncate_label(notes)
        return display
    return title_case_identifier(category)


def get_outcome_reason_display(category: str | None, notes: str | None = None) -> OutcomeDisplay | None:
    if not category:
        return None
    display = OUTCOME_REASON_DISPLAY.get(category)
    if display:
        if category == OTHER_REASON and notes:
            return OutcomeDisplay(truncate_label(notes), display.icon)
        return display
    return OutcomeDisplay(title_case_identifier(category), DEFAULT_OUTCOME_ICON)


def get_status_display(status: str | None) -> StatusDisplay:
    if not status:
        return StatusDisplay("Unknown", UNKNOWN_COLOR)
    return STATUS_DISPLAY.get(status) or StatusDisplay(title_case_identifier(status), UNKNOWN_COLOR)
