from __future__ import annotations

import logging
import math

import pytest

from stageflow.core.enums import DealStatus
from stageflow.core.stages import build_status_registry
from stageflow.schemas.deals import DealParseFailure, DealParseSuccess, parse_raw_deal
from stageflow.services.deal_normalizer import (
    DealNormalizer,
    clear_outcome_fields,
    normalize_deal,
    sync_stage_and_status,
    validate_outcome,
    validate_stage,
)


def test_minimal_record_gets_defaults():
    deal = normalize_deal({"id": "d1", "organization_id": "o1"})

    assert deal is not None
    assert deal.stage == "lead"
    assert deal.status == DealStatus.ACTIVE
    assert deal.client == ""
    assert deal.value is None


@pytest.mark.parametrize(
    "raw",
    [
        {"organization_id": "o1"},
        {"id": "d1"},
        {"id": 17, "organization_id": "o1"},
        {"id": "d1", "organization_id": None},
        {"id": "", "organization_id": "o1"},
        None,
        "d1",
        ["d1", "o1"],
    ],
)
def test_missing_or_non_string_identifiers_are_rejected(raw):
    assert normalize_deal(raw) is None


def test_bad_fields_degrade_instead_of_rejecting():
    deal = normalize_deal(
        {
            "id": "d1",
            "organization_id": "o1",
            "stage": "Proposal Sent",
            "status": "pending",
            "value": "12,000",
            "confidence": 140,
            "probability": -3,
            "notes": 12,
        }
    )

    assert deal is not None
    assert deal.stage == "lead"
    assert deal.status == DealStatus.ACTIVE
    assert deal.value is None
    assert deal.confidence == 100
    assert deal.probability == 0
    assert deal.notes is None


@pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf, True])
def test_non_finite_or_boolean_value_becomes_none(value):
    deal = normalize_deal({"id": "d1", "organization_id": "o1", "value": value})
    assert deal.value is None


@pytest.mark.parametrize("value", [math.nan, True])
def test_nan_or_boolean_percentage_becomes_none(value):
    deal = normalize_deal({"id": "d1", "organization_id": "o1", "confidence": value, "probability": value})
    assert deal.confidence is None
    assert deal.probability is None


def test_infinite_percentages_clamp_to_bounds():
    deal = normalize_deal({"id": "d1", "organization_id": "o1", "confidence": math.inf, "probability": -math.inf})
    assert deal.confidence == 100
    assert deal.probability == 0


def test_client_name_is_used_when_client_missing():
    deal = normalize_deal({"id": "d1", "organization_id": "o1", "client_name": "Globex"})
    assert deal.client == "Globex"


def test_input_record_is_not_mutated():
    raw = {"id": "d1", "organization_id": "o1", "stage": "deal_won", "status": "active"}
    snapshot = dict(raw)

    deal = normalize_deal(raw)

    assert raw == snapshot
    assert deal.status == DealStatus.WON


@pytest.mark.parametrize(
    "stage,status,expected",
    [
        ("deal_won", "active", DealStatus.WON),
        ("closed_lost", "won", DealStatus.LOST),
        ("lost", "disqualified", DealStatus.LOST),
        ("negotiation", "lost", DealStatus.LOST),
        ("partner_review", "won", DealStatus.WON),
    ],
)
def test_stage_drives_status(stage, status, expected):
    deal = normalize_deal({"id": "d1", "organization_id": "o1", "stage": stage, "status": status})
    assert deal.status == expected


def test_sync_is_idempotent(make_deal):
    for stage in ("deal_won", "deal_lost", "proposal_sent", "custom_stage"):
        deal = make_deal(stage=stage, status="active")
        once = sync_stage_and_status(deal)
        assert sync_stage_and_status(once) == once


def test_normalizer_uses_injected_registry():
    registry = build_status_registry(implied_status={"signed": "won"}, won_stages=(), lost_stages=())
    normalizer = DealNormalizer(status_registry=registry)

    assert normalizer.normalize({"id": "d1", "organization_id": "o1", "stage": "signed"}).status == DealStatus.WON
    assert normalizer.normalize({"id": "d2", "organization_id": "o1", "stage": "deal_won"}).status == DealStatus.ACTIVE


def test_normalize_many_drops_unidentified_records():
    deals = DealNormalizer().normalize_many(
        [{"id": "d1", "organization_id": "o1"}, {"organization_id": "o1"}, None]
    )
    assert [deal.id for deal in deals] == ["d1"]


def test_parse_raw_deal_reports_identifier_errors():
    failure = parse_raw_deal({"organization_id": "o1"})
    assert isinstance(failure, DealParseFailure)
    assert failure.ok is False
    assert any(message.startswith("id") for message in failure.errors)

    success = parse_raw_deal({"id": "d1", "organization_id": "o1"})
    assert isinstance(success, DealParseSuccess)
    assert success.deal.id == "d1"


def test_validate_stage_three_outcomes(caplog):
    caplog.set_level(logging.WARNING, logger="stageflow.services.deal_normalizer")
    invalid = validate_stage("Bad Stage")
    assert invalid.valid is False
    assert "Invalid stage format" in invalid.error

    custom = validate_stage("partner_review")
    assert custom.valid is True
    assert custom.is_custom
    assert custom.warning == "Custom stage detected: partner_review"
    logged = [(r.levelname, r.stage) for r in caplog.records if r.getMessage() == "normalizer.custom_stage"]
    assert logged == [("WARNING", "partner_review")]

    core = validate_stage("lead_captured")
    assert core.valid is True
    assert core.error is None and core.warning is None


def test_lost_deal_without_reason_is_flagged(make_deal):
    violations = validate_outcome(make_deal(status="lost"))
    assert [violation.field for violation in violations] == ["lost_reason"]


def test_lost_deal_with_other_and_notes_is_clean(make_deal):
    deal = make_deal(status="lost", lost_reason="other", lost_reason_notes="Chose to build in-house")
    assert validate_outcome(deal) == []


def test_lost_deal_with_other_needs_notes(make_deal):
    violations = validate_outcome(make_deal(status="lost", outcome_reason_category="other"))
    assert [violation.field for violation in violations] == ["lost_reason_notes"]


def test_legacy_other_prefix_needs_notes(make_deal):
    violations = validate_outcome(make_deal(status="lost", lost_reason="Other:"))
    assert [violation.field for violation in violations] == ["lost_reason_notes"]


def test_disqualified_deal_needs_category(make_deal):
    assert validate_outcome(make_deal(status="disqualified"))[0].field == "disqualified_reason_category"
    assert validate_outcome(make_deal(status="disqualified", disqualified_reason_category="no_fit")) == []


def test_active_deal_with_reason_data_is_flagged(make_deal):
    violations = validate_outcome(make_deal(status="active", lost_reason="budget"))
    assert violations[0].message == "active deals should not have outcome reason data"


def test_clear_outcome_fields(make_deal):
    deal = make_deal(status="lost", lost_reason="budget", outcome_notes="n", outcome_recorded_by="u1")
    cleared = clear_outcome_fields(deal)

    assert cleared.lost_reason is None
    assert cleared.outcome_notes is None
    assert cleared.outcome_recorded_by is None
    assert deal.lost_reason == "budget"
