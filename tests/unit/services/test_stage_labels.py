from __future__ import annotations

from stageflow.core.stages import build_stage_vocabulary
from stageflow.services.stage_labels import (
    get_disqualified_reason_display,
    get_lost_reason_display,
    get_outcome_reason_display,
    get_stage_display_name,
    get_status_display,
)


def test_curated_stage_names():
    assert get_stage_display_name("renewal_upsell") == "Renewal / Upsell"
    assert get_stage_display_name("portfolio_mgmt") == "Portfolio Management"


def test_custom_stage_name_is_derived():
    assert get_stage_display_name("partner_security_review") == "Partner Security Review"
    assert get_stage_display_name(None) == "Unknown"


def test_stage_name_uses_injected_vocabulary():
    vocabulary = build_stage_vocabulary(display_names={"lead": "Prospect"})
    assert get_stage_display_name("lead", vocabulary) == "Prospect"


def test_lost_reason_display():
    assert get_lost_reason_display("competitor") == "Lost to Competitor"
    assert get_lost_reason_display("other", "Project cancelled") == "Project cancelled"
    assert get_lost_reason_display("other") == "Other"
    assert get_lost_reason_display("scope_creep") == "Scope Creep"
    assert get_lost_reason_display(None) is None


def test_legacy_other_lost_reason_carries_its_text():
    assert get_lost_reason_display("Other: went with in-house build") == "went with in-house build"
    assert get_lost_reason_display("Other:") == "Other"


def test_disqualified_reason_display_truncates_notes():
    notes = "Needs on-prem deployment with air-gapped updates and custom SSO"
    label = get_disqualified_reason_display("no_fit", notes)

    assert label.endswith("...")
    assert len(label) == 50
    assert get_disqualified_reason_display("no_budget") == "No Budget"
    assert get_disqualified_reason_display("budget", notes) == "Budget Constraints"


def test_outcome_reason_display():
    display = get_outcome_reason_display("timing")
    assert display.to_dict() == {"label": "Wrong Timing", "icon": "⏰"}

    other = get_outcome_reason_display("other", "Merged with another vendor")
    assert other.label == "Merged with another vendor"

    unknown = get_outcome_reason_display("acquired")
    assert unknown.label == "Acquired"
    assert unknown.icon == "📋"


def test_status_display():
    assert get_status_display("won").to_dict() == {"label": "Won", "color": "#10B981"}
    assert get_status_display("paused").to_dict() == {"label": "Paused", "color": "#9CA3AF"}
    assert get_status_display(None).label == "Unknown"
