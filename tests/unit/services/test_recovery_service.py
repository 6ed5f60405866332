from __future__ import annotations

import pytest

from stageflow.core.enums import RecoveryStatus
from stageflow.core.exceptions import MissingIdentifierError, UnknownTemplateError
from stageflow.pipeline.templates import get_template_registry
from stageflow.services.recovery_service import PipelineRecoveryService, map_stage_to_closest_match
from tests.helpers import NOW, FakeDealStore

SAAS_STAGES = list(get_template_registry().require("saas").stage_ids)
DEFAULT_STAGES = list(get_template_registry().require("default").stage_ids)


def _deal(deal_id: str, stage: str, organization_id: str = "org-1", **fields):
    record = {"id": deal_id, "organization_id": organization_id, "client": f"Client {deal_id}", "stage": stage}
    record.update(fields)
    return record


def _service(store, cache):
    return PipelineRecoveryService(store, cache=cache)


@pytest.mark.parametrize(
    "old_stage,expected",
    [
        ("lead", "prospecting"),
        ("prospecting", "prospecting"),
        ("contacted", "qualification"),
        ("lead_qualification", "qualification"),
        ("proposal_sent", "negotiation"),
        ("deal_won", "adoption"),
        ("closed_won", "adoption"),
        ("lost", "renewal"),
        ("escrow_completed", "prospecting"),
        (None, "prospecting"),
    ],
)
def test_positional_mapping_onto_saas(old_stage, expected):
    assert map_stage_to_closest_match(old_stage, SAAS_STAGES) == expected


def test_lost_maps_to_explicit_lost_stage():
    assert map_stage_to_closest_match("lost", DEFAULT_STAGES) == "deal_lost"


def test_positional_mapping_edge_lists():
    assert map_stage_to_closest_match("lead", []) is None
    assert map_stage_to_closest_match("contacted", ["only"]) == "only"
    assert map_stage_to_closest_match("deal_won", ["only"]) == "only"


def test_positional_mapping_accepts_descriptors():
    stages = get_template_registry().require("saas").stages
    assert map_stage_to_closest_match("quote", stages) == "negotiation"


def test_find_orphaned_deals(template_cache):
    store = FakeDealStore(
        [
            _deal("d1", "lead_captured"),
            _deal("d2", "quote"),
            _deal("d3", "partner_review"),
            _deal("d4", "quote", organization_id="org-2"),
        ]
    )
    orphaned = _service(store, template_cache).find_orphaned_deals("org-1", DEFAULT_STAGES)
    assert [deal["id"] for deal in orphaned] == ["d2", "d3"]


def test_missing_identifiers_raise(template_cache):
    service = _service(FakeDealStore(), template_cache)
    with pytest.raises(MissingIdentifierError):
        service.find_orphaned_deals("", DEFAULT_STAGES)
    with pytest.raises(MissingIdentifierError):
        service.recover_orphaned_deals("org-1", [])
    with pytest.raises(MissingIdentifierError):
        service.get_pipeline_health(None, DEFAULT_STAGES)


def test_recovery_dry_run_writes_nothing(template_cache):
    store = FakeDealStore([_deal("d1", "quote"), _deal("d2", "lead_captured")])

    result = _service(store, template_cache).recover_orphaned_deals("org-1", SAAS_STAGES, dry_run=True, now=NOW)

    assert store.stage_updates == []
    assert [change.to_dict() for change in result.changes] == [
        {"dealId": "d1", "client": "Client d1", "oldStage": "quote", "newStage": "negotiation"},
        {"dealId": "d2", "client": "Client d2", "oldStage": "lead_captured", "newStage": "prospecting"},
    ]
    assert result.fixed == 0
    assert set(result.statuses.values()) == {RecoveryStatus.PLANNED}


def test_recovery_writes_stage_and_implied_status(template_cache):
    store = FakeDealStore([_deal("d1", "closed_won", status="won"), _deal("d2", "quote")])

    result = _service(store, template_cache).recover_orphaned_deals("org-1", DEFAULT_STAGES, now=NOW)

    assert result.fixed == 2
    # Positional placement: second-to-last stage for won ids, the middle stage for quotes.
    assert store.stage_updates == [("d1", "customer_onboarded", None), ("d2", "deal_won", "won")]
    assert store.deals["d2"]["last_activity"] == NOW.isoformat()


def test_recovery_records_failed_writes(template_cache):
    store = FakeDealStore([_deal("d1", "quote"), _deal("d2", "quote")])
    store.failing_ids.add("d1")

    result = _service(store, template_cache).recover_orphaned_deals("org-1", DEFAULT_STAGES, now=NOW)

    assert result.fixed == 1
    assert result.skipped == 1
    assert result.statuses == {"d1": RecoveryStatus.ERROR, "d2": RecoveryStatus.FIXED}
    assert result.errors[0].to_dict() == {"dealId": "d1", "client": "Client d1", "error": "write rejected for d1"}


def test_recovery_without_orphans(template_cache):
    store = FakeDealStore([_deal("d1", "lead_captured")])
    result = _service(store, template_cache).recover_orphaned_deals("org-1", DEFAULT_STAGES)

    assert result.to_dict() == {
        "fixed": 0,
        "skipped": 0,
        "errors": [],
        "changes": [],
        "statuses": {},
        "message": "No orphaned deals found",
    }


def test_pipeline_health(template_cache):
    store = FakeDealStore(
        [
            _deal("d1", "lead_captured"),
            _deal("d2", "quote"),
            _deal("d3", "quote"),
            _deal("d4", "partner_review"),
            _deal("d5", "negotiation"),
            _deal("d6", "deal_won"),
        ]
    )
    health = _service(store, template_cache).get_pipeline_health("org-1", DEFAULT_STAGES).to_dict()

    assert health == {
        "totalDeals": 6,
        "validDeals": 3,
        "orphanedDeals": 3,
        "healthPercentage": 50,
        "orphanedStages": ["quote", "partner_review"],
    }


def test_pipeline_health_rounds_and_handles_empty(template_cache):
    store = FakeDealStore([_deal("d1", "lead_captured"), _deal("d2", "negotiation"), _deal("d3", "quote")])
    service = _service(store, template_cache)

    assert service.get_pipeline_health("org-1", DEFAULT_STAGES).health_percentage == 67
    assert service.get_pipeline_health("org-9", DEFAULT_STAGES).health_percentage == 100


def test_migrate_dry_run_has_no_side_effects(template_cache):
    store = FakeDealStore([_deal("d1", "lead_captured"), _deal("d2", "deal_won", status="won")], active_template="default")
    template_cache.set("org-1", "default")

    result = _service(store, template_cache).migrate_pipeline("org-1", "default", "saas", dry_run=True, now=NOW)

    assert [change.new_stage for change in result.recovery.changes] == ["prospecting", "closed"]
    assert store.stage_updates == []
    assert store.template_writes == []
    assert template_cache.get("org-1") == "default"
    assert result.template_changed is False


def test_migrate_switches_template(template_cache):
    store = FakeDealStore([_deal("d1", "lead_captured"), _deal("d2", "deal_won", status="won")], active_template="default")
    template_cache.set("org-1", "default")

    result = _service(store, template_cache).migrate_pipeline("org-1", "default", "saas", now=NOW)

    assert store.stage_updates == [("d1", "prospecting", None), ("d2", "closed", "won")]
    assert store.template_writes == [("org-1", "saas")]
    assert template_cache.get("org-1") is None
    data = result.to_dict()
    assert data["fixed"] == 2
    assert data["templateChanged"] is True
    assert data["fromTemplate"] == "default"
    assert data["toTemplate"] == "saas"
    assert data["newStageCount"] == 10


def test_migrate_never_turns_lost_into_won(template_cache):
    store = FakeDealStore([_deal("d1", "deal_lost", status="lost")])

    result = _service(store, template_cache).migrate_pipeline("org-1", "default", "vc_pe", now=NOW)

    assert result.recovery.changes[0].new_stage != "investment_closed"
    assert store.stage_updates == [("d1", "portfolio_mgmt", None)]


def test_migrate_without_orphans_keeps_template(template_cache):
    store = FakeDealStore([_deal("d1", "prospecting")], active_template="default")

    result = _service(store, template_cache).migrate_pipeline("org-1", "default", "saas")

    assert result.template_changed is False
    assert store.template_writes == []


def test_migrate_to_unknown_template_raises(template_cache):
    store = FakeDealStore([_deal("d1", "lead_captured")])

    with pytest.raises(UnknownTemplateError):
        _service(store, template_cache).migrate_pipeline("org-1", "default", "aerospace")
    assert store.stage_updates == []


def test_resolve_active_template_caches_store_value(template_cache):
    store = FakeDealStore(active_template="saas")
    service = _service(store, template_cache)

    assert service.resolve_active_template("org-1") == "saas"
    assert service.resolve_active_template("org-1") == "saas"
    assert store.template_reads == 1


@pytest.mark.parametrize("stored", [None, "aerospace"])
def test_resolve_active_template_falls_back_to_default(template_cache, stored):
    service = _service(FakeDealStore(active_template=stored), template_cache)
    assert service.resolve_active_template("org-1") == "default"
