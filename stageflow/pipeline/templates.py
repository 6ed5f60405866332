"""Pipeline templates and the stage translation tables between them.

A template is an industry-specific, ordered stage list. Templates and the
translation tables are immutable, process-wide configuration held by a
``TemplateRegistry``; organizations select one template as their active
pipeline.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType

from stageflow.core.enums import DealStatus
from stageflow.core.exceptions import UnknownTemplateError
from stageflow.core.stages import StageStatusRegistry, get_status_registry

logger = logging.getLogger(__name__)

FALLBACK_TEMPLATE_ID = "default"


@dataclass(frozen=True)
class StageDescriptor:
    id: str
    name: str
    icon: str
    color: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name, "icon": self.icon, "color": self.color}


@dataclass(frozen=True)
class PipelineTemplate:
    id: str
    name: str
    description: str
    stages: tuple[StageDescriptor, ...]

    @property
    def stage_ids(self) -> tuple[str, ...]:
        return tuple(stage.id for stage in self.stages)

    def has_stage(self, stage_id: str) -> bool:
        return stage_id in self.stage_ids

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "stages": [stage.to_dict() for stage in self.stages],
        }


def _stages(*rows: tuple[str, str, str, str]) -> tuple[StageDescriptor, ...]:
    return tuple(StageDescriptor(*row) for row in rows)


BUILT_IN_TEMPLATES = (
    PipelineTemplate(
        id="healthcare",
        name="Healthcare Sales",
        description="Optimized for medical device, pharma, and healthcare services sales",
        stages=_stages(
            ("lead_generation", "Lead Generation", "users", "#3A86FF"),
            ("lead_qualification", "Lead Qualification", "user-check", "#1ABC9C"),
            ("discovery", "Discovery", "search", "#8B5CF6"),
            ("scope_defined", "Scope Defined", "clipboard-check", "#F39C12"),
            ("proposal_sent", "Proposal Sent", "file-text", "#3A86FF"),
            ("contract_sent", "Contract Sent", "send", "#8B5CF6"),
            ("negotiation", "Negotiation / Commitment", "check-circle", "#F39C12"),
            ("deal_won", "Deal Won", "trophy", "#27AE60"),
            ("deal_lost", "Deal Lost", "alert-circle", "#E74C3C"),
            ("invoice_sent", "Invoice Sent", "send", "#1ABC9C"),
            ("payment_received", "Payment Received", "dollar-sign", "#27AE60"),
            ("client_onboarding", "Client Onboarding / Support", "package", "#8B5CF6"),
            ("renewal_upsell", "Renewal / Upsell Opportunity", "refresh-cw", "#3A86FF"),
        ),
    ),
    PipelineTemplate(
        id="vc_pe",
        name="Venture Capital & PE",
        description="Deal flow management for venture capital and private equity firms",
        stages=_stages(
            ("deal_sourced", "Deal Sourced", "users", "#3A86FF"),
            ("initial_screening", "Initial Screening", "user-check", "#1ABC9C"),
            ("due_diligence", "Due Diligence", "clipboard", "#8B5CF6"),
            ("term_sheet_presented", "Term Sheet Presented", "file-text", "#F39C12"),
            ("negotiation", "Negotiation / Commitment", "check-circle", "#3A86FF"),
            ("investment_closed", "Investment Closed", "trophy", "#27AE60"),
            ("capital_call_sent", "Capital Call Sent", "send", "#1ABC9C"),
            ("capital_received", "Capital Received", "dollar-sign", "#27AE60"),
            ("portfolio_mgmt", "Portfolio Management / Reporting", "trending-up", "#8B5CF6"),
        ),
    ),
    PipelineTemplate(
        id="real_estate",
        name="Real Estate Sales",
        description="Property sales pipeline for real estate agents and brokerages",
        stages=_stages(
            ("lead_captured", "Lead Captured", "users", "#3A86FF"),
            ("qualification", "Qualification & Needs Assessment", "user-check", "#1ABC9C"),
            ("property_showing", "Property Showing / Offer Made", "home", "#8B5CF6"),
            ("negotiation", "Negotiation", "check-circle", "#F39C12"),
            ("contract_signed", "Contract Signed", "trophy", "#27AE60"),
            ("deal_lost", "Deal Lost", "alert-circle", "#E74C3C"),
            ("closing_statement_sent", "Closing Statement Sent", "send", "#1ABC9C"),
            ("escrow_completed", "Payment / Escrow Completed", "dollar-sign", "#27AE60"),
            ("client_followup", "Client Follow-Up / Referral", "refresh-cw", "#8B5CF6"),
        ),
    ),
    PipelineTemplate(
        id="professional_services",
        name="Professional Services",
        description="Consulting, legal, accounting, and agency services pipeline",
        stages=_stages(
            ("lead_identified", "Lead Identified", "users", "#3A86FF"),
            ("lead_qualified", "Lead Qualified", "user-check", "#1ABC9C"),
            ("discovery", "Discovery", "search", "#8B5CF6"),
            ("scope_defined", "Scope Defined", "clipboard-check", "#F39C12"),
            ("proposal_sent", "Proposal Sent", "file-text", "#3A86FF"),
            ("contract_sent", "Contract Sent", "send", "#8B5CF6"),
            ("negotiation", "Negotiation / Commitment", "check-circle", "#F39C12"),
            ("contract_signed", "Contract Signed", "trophy", "#27AE60"),
            ("deal_won", "Deal Won", "trophy", "#27AE60"),
            ("deal_lost", "Deal Lost", "alert-circle", "#E74C3C"),
            ("invoice_sent", "Invoice Sent", "send", "#1ABC9C"),
            ("payment_received", "Payment Received", "dollar-sign", "#27AE60"),
            ("client_onboarding", "Client Onboarding / Support", "package", "#8B5CF6"),
            ("renewal_upsell", "Renewal / Upsell Opportunity", "refresh-cw", "#3A86FF"),
        ),
    ),
    PipelineTemplate(
        id="saas",
        name="SaaS Sales",
        description="Modern SaaS sales and post-sale pipeline for subscription businesses",
        stages=_stages(
            ("prospecting", "Prospecting", "target", "#3A86FF"),
            ("qualification", "Qualification", "user-check", "#1ABC9C"),
            ("contact", "Contact", "phone", "#8B5CF6"),
            ("discovery", "Discovery", "search", "#F39C12"),
            ("proposal", "Proposal", "file-text", "#3A86FF"),
            ("negotiation", "Negotiation", "check-circle", "#8B5CF6"),
            ("closed", "Closed", "trophy", "#27AE60"),
            ("onboarding", "Onboarding", "package", "#1ABC9C"),
            ("adoption", "Adoption", "activity", "#8B5CF6"),
            ("renewal", "Renewal", "refresh-cw", "#3A86FF"),
        ),
    ),
    PipelineTemplate(
        id="default",
        name="StageFlow Default",
        description="Universal pipeline optimized for founders and small business owners",
        stages=_stages(
            ("lead_captured", "Lead Captured", "users", "#3A86FF"),
            ("lead_qualified", "Lead Qualified", "user-check", "#1ABC9C"),
            ("contacted", "Contacted / Outreach", "send", "#8B5CF6"),
            ("needs_identified", "Needs Identified", "search", "#F39C12"),
            ("proposal_sent", "Proposal Sent", "file-text", "#3A86FF"),
            ("negotiation", "Negotiation / Review", "check-circle", "#8B5CF6"),
            ("deal_won", "Deal Closed - Won", "trophy", "#27AE60"),
            ("deal_lost", "Deal Closed - Lost", "alert-circle", "#E74C3C"),
            ("invoice_sent", "Invoice Sent", "send", "#1ABC9C"),
            ("payment_received", "Payment Received", "dollar-sign", "#27AE60"),
            ("customer_onboarded", "Onboarding/Delivery", "package", "#8B5CF6"),
            ("retention", "Retention / Renewal", "refresh-cw", "#3A86FF"),
        ),
    ),
)


# Keyed by destination template id: source stage id -> destination stage id.
STAGE_MAPPINGS = {
    "healthcare": {
        "lead_captured": "lead_generation",
        "lead_qualified": "lead_qualification",
        "contacted": "lead_generation",
        "needs_identified": "discovery",
        "proposal_sent": "proposal_sent",
        "negotiation": "negotiation",
        "deal_won": "deal_won",
        "deal_lost": "deal_lost",
        "invoice_sent": "invoice_sent",
        "payment_received": "payment_received",
        "customer_onboarded": "client_onboarding",
        "retention": "renewal_upsell",
        "lead": "lead_generation",
        "quote": "proposal_sent",
        "approval": "negotiation",
        "invoice": "invoice_sent",
        "onboarding": "client_onboarding",
        "delivery": "payment_received",
        "lost": "deal_lost",
        "deal_sourced": "lead_generation",
        "initial_screening": "lead_qualification",
        "due_diligence": "discovery",
        "term_sheet_presented": "proposal_sent",
        "investment_closed": "deal_won",
        "capital_call_sent": "invoice_sent",
        "capital_received": "payment_received",
        "portfolio_mgmt": "renewal_upsell",
        "qualification": "lead_qualification",
        "property_showing": "discovery",
        "contract_signed": "deal_won",
        "closing_statement_sent": "invoice_sent",
        "escrow_completed": "payment_received",
        "client_followup": "renewal_upsell",
        "lead_identified": "lead_generation",
        "scope_defined": "scope_defined",
        "contract_sent": "contract_sent",
        "renewal_upsell": "renewal_upsell",
        "prospecting": "lead_generation",
        "contact": "lead_generation",
        "proposal": "proposal_sent",
        "closed": "deal_won",
        "adoption": "client_onboarding",
        "renewal": "renewal_upsell",
    },
    "vc_pe": {
        "lead_captured": "deal_sourced",
        "lead_qualified": "initial_screening",
        "contacted": "deal_sourced",
        "needs_identified": "due_diligence",
        "proposal_sent": "term_sheet_presented",
        "negotiation": "negotiation",
        "deal_won": "investment_closed",
        "deal_lost": "investment_closed",
        "invoice_sent": "capital_call_sent",
        "payment_received": "capital_received",
        "customer_onboarded": "portfolio_mgmt",
        "retention": "portfolio_mgmt",
        "lead": "deal_sourced",
        "quote": "term_sheet_presented",
        "approval": "negotiation",
        "invoice": "capital_call_sent",
        "onboarding": "portfolio_mgmt",
        "delivery": "capital_received",
        "lost": "investment_closed",
        "lead_generation": "deal_sourced",
        "lead_qualification": "initial_screening",
        "discovery": "due_diligence",
        "scope_defined": "term_sheet_presented",
        "contract_sent": "term_sheet_presented",
        "client_onboarding": "portfolio_mgmt",
        "renewal_upsell": "portfolio_mgmt",
        "qualification": "initial_screening",
        "property_showing": "due_diligence",
        "contract_signed": "investment_closed",
        "closing_statement_sent": "capital_call_sent",
        "escrow_completed": "capital_received",
        "client_followup": "portfolio_mgmt",
        "lead_identified": "deal_sourced",
        "prospecting": "deal_sourced",
        "contact": "deal_sourced",
        "proposal": "term_sheet_presented",
        "closed": "investment_closed",
        "adoption": "portfolio_mgmt",
        "renewal": "portfolio_mgmt",
    },
    "real_estate": {
        "lead_captured": "lead_captured",
        "lead_qualified": "qualification",
        "contacted": "lead_captured",
        "needs_identified": "property_showing",
        "proposal_sent": "property_showing",
        "negotiation": "negotiation",
        "deal_won": "contract_signed",
        "deal_lost": "deal_lost",
        "invoice_sent": "closing_statement_sent",
        "payment_received": "escrow_completed",
        "customer_onboarded": "client_followup",
        "retention": "client_followup",
        "lead": "lead_captured",
        "quote": "property_showing",
        "approval": "negotiation",
        "invoice": "closing_statement_sent",
        "onboarding": "client_followup",
        "delivery": "escrow_completed",
        "lost": "deal_lost",
        "lead_generation": "lead_captured",
        "lead_qualification": "qualification",
        "discovery": "property_showing",
        "scope_defined": "property_showing",
        "contract_sent": "negotiation",
        "client_onboarding": "client_followup",
        "renewal_upsell": "client_followup",
        "deal_sourced": "lead_captured",
        "initial_screening": "qualification",
        "due_diligence": "property_showing",
        "term_sheet_presented": "property_showing",
        "investment_closed": "contract_signed",
        "capital_call_sent": "closing_statement_sent",
        "capital_received": "escrow_completed",
        "portfolio_mgmt": "client_followup",
        "lead_identified": "lead_captured",
        "prospecting": "lead_captured",
        "qualification": "qualification",
        "contact": "lead_captured",
        "proposal": "property_showing",
        "closed": "contract_signed",
        "adoption": "client_followup",
        "renewal": "client_followup",
    },
    "professional_services": {
        "lead_captured": "lead_identified",
        "lead_qualified": "lead_qualified",
        "contacted": "lead_identified",
        "needs_identified": "discovery",
        "proposal_sent": "proposal_sent",
        "negotiation": "negotiation",
        "deal_won": "deal_won",
        "deal_lost": "deal_lost",
        "invoice_sent": "invoice_sent",
        "payment_received": "payment_received",
        "customer_onboarded": "client_onboarding",
        "retention": "renewal_upsell",
        "lead": "lead_identified",
        "quote": "proposal_sent",
        "approval": "negotiation",
        "invoice": "invoice_sent",
        "onboarding": "client_onboarding",
        "delivery": "payment_received",
        "lost": "deal_lost",
        "lead_generation": "lead_identified",
        "lead_qualification": "lead_qualified",
        "discovery": "discovery",
        "scope_defined": "scope_defined",
        "contract_sent": "contract_sent",
        "client_onboarding": "client_onboarding",
        "renewal_upsell": "renewal_upsell",
        "deal_sourced": "lead_identified",
        "initial_screening": "lead_qualified",
        "due_diligence": "discovery",
        "term_sheet_presented": "proposal_sent",
        "investment_closed": "deal_won",
        "capital_call_sent": "invoice_sent",
        "capital_received": "payment_received",
        "portfolio_mgmt": "renewal_upsell",
        "qualification": "lead_qualified",
        "property_showing": "discovery",
        "contract_signed": "deal_won",
        "closing_statement_sent": "invoice_sent",
        "escrow_completed": "payment_received",
        "client_followup": "renewal_upsell",
        "prospecting": "lead_identified",
        "contact": "lead_identified",
        "proposal": "proposal_sent",
        "closed": "deal_won",
        "adoption": "client_onboarding",
        "renewal": "renewal_upsell",
    },
    "saas": {
        "lead_captured": "prospecting",
        "lead_qualified": "qualification",
        "contacted": "contact",
        "needs_identified": "discovery",
        "proposal_sent": "proposal",
        "negotiation": "negotiation",
        "deal_won": "closed",
        "deal_lost": "closed",
        "invoice_sent": "closed",
        "payment_received": "onboarding",
        "customer_onboarded": "onboarding",
        "retention": "renewal",
        "lead": "prospecting",
        "quote": "proposal",
        "approval": "negotiation",
        "invoice": "closed",
        "onboarding": "onboarding",
        "delivery": "adoption",
        "lost": "closed",
        "lead_generation": "prospecting",
        "lead_qualification": "qualification",
        "discovery": "discovery",
        "scope_defined": "discovery",
        "contract_sent": "negotiation",
        "client_onboarding": "onboarding",
        "renewal_upsell": "renewal",
        "deal_sourced": "prospecting",
        "initial_screening": "qualification",
        "due_diligence": "discovery",
        "term_sheet_presented": "proposal",
        "investment_closed": "closed",
        "capital_call_sent": "closed",
        "capital_received": "onboarding",
        "portfolio_mgmt": "adoption",
        "qualification": "qualification",
        "property_showing": "discovery",
        "contract_signed": "closed",
        "closing_statement_sent": "closed",
        "escrow_completed": "onboarding",
        "client_followup": "renewal",
        "lead_identified": "prospecting",
    },
    "default": {
        "lead": "lead_captured",
        "quote": "proposal_sent",
        "approval": "negotiation",
        "invoice": "invoice_sent",
        "onboarding": "customer_onboarded",
        "delivery": "payment_received",
        "lead_generation": "lead_captured",
        "lead_qualification": "lead_qualified",
        "discovery": "needs_identified",
        "scope_defined": "needs_identified",
        "contract_sent": "proposal_sent",
        "client_onboarding": "customer_onboarded",
        "renewal_upsell": "retention",
        "deal_sourced": "lead_captured",
        "initial_screening": "lead_qualified",
        "due_diligence": "needs_identified",
        "term_sheet_presented": "proposal_sent",
        "investment_closed": "deal_won",
        "capital_call_sent": "invoice_sent",
        "capital_received": "payment_received",
        "portfolio_mgmt": "retention",
        "qualification": "lead_qualified",
        "property_showing": "needs_identified",
        "contract_signed": "deal_won",
        "closing_statement_sent": "invoice_sent",
        "escrow_completed": "payment_received",
        "client_followup": "retention",
        "lead_identified": "lead_captured",
        "prospecting": "lead_captured",
        "contact": "contacted",
        "proposal": "proposal_sent",
        "closed": "deal_won",
        "adoption": "customer_onboarded",
        "renewal": "retention",
    },
}


class TemplateRegistry:
    """Read-only lookup over templates and their translation tables."""

    def __init__(
        self,
        templates: Iterable[PipelineTemplate],
        stage_mappings: Mapping[str, Mapping[str, str]],
        fallback_template_id: str = FALLBACK_TEMPLATE_ID,
    ) -> None:
        self._templates = MappingProxyType({template.id: template for template in templates})
        self._mappings = MappingProxyType(
            {target: MappingProxyType(dict(table)) for target, table in stage_mappings.items()}
        )
        if fallback_template_id not in self._mappings:
            raise ValueError(f"Fallback mapping table missing for template: {fallback_template_id}")
        self.fallback_template_id = fallback_template_id

    def ids(self) -> list[str]:
        return list(self._templates.keys())

    def get(self, template_id: str | None) -> PipelineTemplate | None:
        if template_id is None:
            return None
        return self._templates.get(template_id)

    def require(self, template_id: str) -> PipelineTemplate:
        template = self.get(template_id)
        if template is None:
            raise UnknownTemplateError(template_id)
        return template

    def get_stage_mapping(self, target_template_id: str) -> Mapping[str, str]:
        """Translation table for ``target_template_id``, or the fallback table if it has none."""
        table = self._mappings.get(target_template_id)
        if table is None:
            logger.debug(
                "templates.mapping_fallback",
                extra={"event": "templates.mapping_fallback", "target_template": target_template_id},
            )
            return self._mappings[self.fallback_template_id]
        return table

    def map_stage(self, stage_id: str, target_template_id: str) -> str:
        return self.get_stage_mapping(target_template_id).get(stage_id, stage_id)


@lru_cache(maxsize=1)
def get_template_registry() -> TemplateRegistry:
    """Process-wide registry of the built-in templates."""
    return TemplateRegistry(BUILT_IN_TEMPLATES, STAGE_MAPPINGS)


def get_stage_mapping(target_template_id: str) -> Mapping[str, str]:
    return get_template_registry().get_stage_mapping(target_template_id)


def map_stage(stage_id: str, target_template_id: str) -> str:
    return get_template_registry().map_stage(stage_id, target_template_id)


def get_status_for_stage(stage_id: str, registry: StageStatusRegistry | None = None) -> DealStatus:
    """Display classification of a stage: won, lost or active."""
    return (registry or get_status_registry()).classify(stage_id)


def is_won_stage(stage_id: str, registry: StageStatusRegistry | None = None) -> bool:
    return (registry or get_status_registry()).is_won_stage(stage_id)


def is_lost_stage(stage_id: str, registry: StageStatusRegistry | None = None) -> bool:
    return (registry or get_status_registry()).is_lost_stage(stage_id)
