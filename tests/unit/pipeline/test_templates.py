from __future__ import annotations

import pytest

from stageflow.core.enums import DealStatus
from stageflow.core.exceptions import UnknownTemplateError
from stageflow.pipeline.templates import (
    BUILT_IN_TEMPLATES,
    STAGE_MAPPINGS,
    PipelineTemplate,
    StageDescriptor,
    TemplateRegistry,
    get_stage_mapping,
    get_status_for_stage,
    get_template_registry,
    is_lost_stage,
    is_won_stage,
    map_stage,
)


def test_built_in_templates_are_registered():
    assert set(get_template_registry().ids()) == {
        "healthcare",
        "vc_pe",
        "real_estate",
        "professional_services",
        "saas",
        "default",
    }


def test_template_stage_ids_are_unique():
    for template in BUILT_IN_TEMPLATES:
        assert len(set(template.stage_ids)) == len(template.stages), template.id


def test_every_mapping_lands_inside_its_template():
    registry = get_template_registry()
    for target, table in STAGE_MAPPINGS.items():
        template = registry.require(target)
        for source, destination in table.items():
            assert template.has_stage(destination), (target, source, destination)


def test_map_stage_uses_target_table():
    assert map_stage("deal_won", "vc_pe") == "investment_closed"
    assert map_stage("lead", "saas") == "prospecting"


def test_map_stage_returns_input_when_unmapped():
    assert map_stage("partner_review", "saas") == "partner_review"


def test_unknown_target_falls_back_to_default_table():
    assert get_stage_mapping("aerospace") is get_stage_mapping("default")
    assert map_stage("prospecting", "aerospace") == "lead_captured"


def test_require_unknown_template_raises():
    with pytest.raises(UnknownTemplateError, match="Invalid template: aerospace"):
        get_template_registry().require("aerospace")


def test_registry_needs_fallback_table():
    with pytest.raises(ValueError):
        TemplateRegistry(BUILT_IN_TEMPLATES, {"saas": {}})


def test_custom_registry_is_isolated():
    template = PipelineTemplate(
        id="partners",
        name="Partner Program",
        description="",
        stages=(StageDescriptor("applied", "Applied", "users", "#3A86FF"),),
    )
    registry = TemplateRegistry([template], {"default": {"lead": "applied"}})

    assert registry.ids() == ["partners"]
    assert registry.map_stage("lead", "partners") == "applied"
    assert get_template_registry().get("partners") is None


def test_template_to_dict():
    data = get_template_registry().require("saas").to_dict()
    assert data["id"] == "saas"
    assert data["stages"][0] == {"id": "prospecting", "name": "Prospecting", "icon": "target", "color": "#3A86FF"}


def test_display_status_for_stage():
    assert get_status_for_stage("capital_received") == DealStatus.WON
    assert get_status_for_stage("investment_lost") == DealStatus.LOST
    assert get_status_for_stage("discovery") == DealStatus.ACTIVE
    assert is_won_stage("portfolio_mgmt")
    assert is_lost_stage("passed")
