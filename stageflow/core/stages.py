"""Stage vocabulary and stage -> status registries.

Both registries are immutable values built once per process and handed to the
services that need them. Services accept an alternate instance so tests can run
against a different vocabulary without touching module state.

The stagnation-threshold and base-confidence tables are a shared contract: any
process that scores deals (worker units, the Celery mirror) must run identical
tables. ``StageVocabulary.fingerprint()`` exists so that can be checked.
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType

from stageflow.core.enums import DealStatus

STAGE_ID_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")
STAGE_ID_MAX_LENGTH = 50

DEFAULT_STAGE = "lead"
DEFAULT_STAGNATION_THRESHOLD = 14
DEFAULT_BASE_CONFIDENCE = 30

CORE_STAGES = (
    # Default pipeline
    "lead", "lead_captured", "lead_qualified", "contacted", "needs_identified",
    "proposal_sent", "negotiation", "deal_won", "deal_lost",
    "invoice_sent", "payment_received", "customer_onboarded",
    # Legacy stages
    "quote", "approval", "invoice", "onboarding", "delivery", "retention", "lost",
    # Healthcare
    "lead_generation", "lead_qualification", "discovery", "scope_defined",
    "contract_sent", "client_onboarding", "renewal_upsell",
    # VC / PE
    "deal_sourced", "initial_screening", "due_diligence", "term_sheet_presented",
    "investment_closed", "capital_call_sent", "capital_received", "portfolio_mgmt",
    # Real estate
    "qualification", "property_showing", "contract_signed",
    "closing_statement_sent", "escrow_completed", "client_followup",
    # Professional services
    "lead_identified",
    # SaaS
    "prospecting", "contact", "proposal", "closed", "adoption", "renewal",
)

STAGE_DISPLAY_NAMES = {
    "lead": "Lead",
    "lead_captured": "Lead Captured",
    "lead_qualified": "Lead Qualified",
    "contacted": "Contacted",
    "needs_identified": "Needs Identified",
    "proposal_sent": "Proposal Sent",
    "negotiation": "Negotiation",
    "deal_won": "Deal Won",
    "deal_lost": "Deal Lost",
    "invoice_sent": "Invoice Sent",
    "payment_received": "Payment Received",
    "customer_onboarded": "Customer Onboarded",
    "quote": "Quote",
    "approval": "Approval",
    "invoice": "Invoice",
    "onboarding": "Onboarding",
    "delivery": "Delivery",
    "retention": "Retention",
    "lost": "Lost",
    "lead_generation": "Lead Generation",
    "lead_qualification": "Lead Qualification",
    "discovery": "Discovery",
    "scope_defined": "Scope Defined",
    "contract_sent": "Contract Sent",
    "client_onboarding": "Client Onboarding",
    "renewal_upsell": "Renewal / Upsell",
    "deal_sourced": "Deal Sourced",
    "initial_screening": "Initial Screening",
    "due_diligence": "Due Diligence",
    "term_sheet_presented": "Term Sheet Presented",
    "investment_closed": "Investment Closed",
    "capital_call_sent": "Capital Call Sent",
    "capital_received": "Capital Received",
    "portfolio_mgmt": "Portfolio Management",
    "qualification": "Qualification",
    "property_showing": "Property Showing",
    "contract_signed": "Contract Signed",
    "closing_statement_sent": "Closing Statement Sent",
    "escrow_completed": "Escrow Completed",
    "client_followup": "Client Follow-up",
    "lead_identified": "Lead Identified",
    "prospecting": "Prospecting",
    "contact": "Contact",
    "proposal": "Proposal",
    "closed": "Closed",
    "adoption": "Adoption",
    "renewal": "Renewal",
    "closed_won": "Closed Won",
    "closed_lost": "Closed Lost",
    "won": "Won",
}

LEAD_STAGES = (
    "lead",
    "lead_captured",
    "lead_generation",
    "lead_identified",
    "lead_qualification",
    "lead_qualified",
)

# Days a deal may sit in a stage before it counts as stagnant.
STAGNATION_THRESHOLDS = {
    "lead": 7,
    "lead_captured": 7,
    "lead_generation": 7,
    "lead_identified": 7,
    "lead_qualification": 10,
    "lead_qualified": 10,
    "prospecting": 7,
    "contacted": 10,
    "contact": 10,
    "initial_screening": 10,
    "qualification": 14,
    "discovery": 14,
    "discovery_demo": 14,
    "needs_identified": 14,
    "scope_defined": 14,
    "quote": 14,
    "proposal": 14,
    "proposal_sent": 14,
    "contract": 14,
    "contract_sent": 14,
    "negotiation": 21,
    "approval": 21,
    "term_sheet_presented": 21,
    "invoice": 14,
    "invoice_sent": 14,
    "payment": 14,
    "payment_received": 7,
}

STAGE_BASE_CONFIDENCE = {
    "lead": 15,
    "lead_captured": 20,
    "lead_generation": 18,
    "lead_identified": 20,
    "lead_qualification": 25,
    "lead_qualified": 28,
    "prospecting": 15,
    "contacted": 30,
    "contact": 30,
    "initial_screening": 32,
    "qualification": 35,
    "discovery": 40,
    "discovery_demo": 42,
    "needs_identified": 45,
    "scope_defined": 48,
    "quote": 55,
    "proposal": 58,
    "proposal_sent": 60,
    "contract": 75,
    "contract_sent": 78,
    "negotiation": 80,
    "approval": 85,
    "term_sheet_presented": 87,
    "invoice": 88,
    "invoice_sent": 92,
    "payment": 93,
    "payment_received": 95,
    "deal_won": 95,
    "closed": 95,
    "closed_won": 95,
    "investment_closed": 95,
    "onboarding": 92,
    "customer_onboarded": 92,
    "client_onboarding": 92,
    "retention": 90,
    "renewal": 90,
    "renewal_upsell": 88,
    "lost": 0,
    "deal_lost": 0,
    "passed": 0,
}

STATUS_REGISTRY_VERSION = "2024-12-unified-outcomes"

# Stages that force a deal's status when the normalizer syncs stage and status.
IMPLIED_STATUS_BY_STAGE = {
    "deal_won": DealStatus.WON,
    "closed_won": DealStatus.WON,
    "won": DealStatus.WON,
    "closed": DealStatus.WON,
    "investment_closed": DealStatus.WON,
    "contract_signed": DealStatus.WON,
    "escrow_completed": DealStatus.WON,
    "payment_received": DealStatus.WON,
    "deal_lost": DealStatus.LOST,
    "closed_lost": DealStatus.LOST,
    "lost": DealStatus.LOST,
}

# Classification used by boards and reports. Membership differs from the table
# above (e.g. invoice_sent, retention, passed).
DISPLAY_WON_STAGES = (
    "deal_won", "closed_won", "won", "closed",
    "contract_signed", "escrow_completed",
    "investment_closed", "capital_received",
    "payment_received", "invoice_sent",
    "retention", "retention_renewal", "client_retention", "customer_retained", "portfolio_mgmt",
)

DISPLAY_LOST_STAGES = ("lost", "deal_lost", "closed_lost", "investment_lost", "passed")


def is_valid_stage_id(stage: object) -> bool:
    """True for lowercase snake_case ids of 1-50 characters; custom stages included."""
    if not isinstance(stage, str):
        return False
    if len(stage) == 0 or len(stage) > STAGE_ID_MAX_LENGTH:
        return False
    return STAGE_ID_PATTERN.fullmatch(stage) is not None


@dataclass(frozen=True)
class StageVocabulary:
    """Built-in stage ids plus the per-stage tables the confidence engine reads."""

    core_stages: frozenset[str]
    display_names: Mapping[str, str]
    lead_stages: frozenset[str]
    stagnation_thresholds: Mapping[str, int]
    base_confidence: Mapping[str, int]
    default_threshold: int = DEFAULT_STAGNATION_THRESHOLD
    default_base_confidence: int = DEFAULT_BASE_CONFIDENCE

    def is_core_stage(self, stage: str) -> bool:
        return stage in self.core_stages

    def is_lead_stage(self, stage: str) -> bool:
        return stage in self.lead_stages

    def threshold_for(self, stage: str | None) -> int:
        if stage is None:
            return self.default_threshold
        return self.stagnation_thresholds.get(stage, self.default_threshold)

    def base_confidence_for(self, stage: str | None) -> int:
        if stage is None:
            return self.default_base_confidence
        return self.base_confidence.get(stage, self.default_base_confidence)

    def fingerprint(self) -> str:
        """SHA-256 over the canonical form of the scoring tables."""
        canonical = json.dumps(
            {
                "stagnation_thresholds": dict(self.stagnation_thresholds),
                "default_threshold": self.default_threshold,
                "base_confidence": dict(self.base_confidence),
                "default_base_confidence": self.default_base_confidence,
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class StageStatusRegistry:
    """Versioned stage -> status knowledge.

    ``implied_status`` drives stage/status synchronization on write;
    ``won_stages``/``lost_stages`` drive display classification. The two are
    independently authored and do not agree on every stage; ``divergence()``
    lists the disagreements.
    """

    version: str
    implied_status: Mapping[str, DealStatus]
    won_stages: frozenset[str]
    lost_stages: frozenset[str]

    def implied_status_for(self, stage: str | None) -> DealStatus | None:
        if stage is None:
            return None
        return self.implied_status.get(stage)

    def classify(self, stage: str | None) -> DealStatus:
        if stage in self.won_stages:
            return DealStatus.WON
        if stage in self.lost_stages:
            return DealStatus.LOST
        return DealStatus.ACTIVE

    def is_won_stage(self, stage: str) -> bool:
        return stage in self.won_stages

    def is_lost_stage(self, stage: str) -> bool:
        return stage in self.lost_stages

    def divergence(self) -> dict[str, tuple[DealStatus, DealStatus]]:
        """Stages where (implied status, display status) disagree; no implication reads as active."""
        stages = set(self.implied_status) | self.won_stages | self.lost_stages
        report: dict[str, tuple[DealStatus, DealStatus]] = {}
        for stage in sorted(stages):
            implied = self.implied_status.get(stage, DealStatus.ACTIVE)
            displayed = self.classify(stage)
            if implied != displayed:
                report[stage] = (implied, displayed)
        return report


def build_stage_vocabulary(
    core_stages=CORE_STAGES,
    display_names=STAGE_DISPLAY_NAMES,
    lead_stages=LEAD_STAGES,
    stagnation_thresholds=STAGNATION_THRESHOLDS,
    base_confidence=STAGE_BASE_CONFIDENCE,
    default_threshold: int = DEFAULT_STAGNATION_THRESHOLD,
    default_base_confidence: int = DEFAULT_BASE_CONFIDENCE,
) -> StageVocabulary:
    return StageVocabulary(
        core_stages=frozenset(core_stages),
        display_names=MappingProxyType(dict(display_names)),
        lead_stages=frozenset(lead_stages),
        stagnation_thresholds=MappingProxyType(dict(stagnation_thresholds)),
        base_confidence=MappingProxyType(dict(base_confidence)),
        default_threshold=default_threshold,
        default_base_confidence=default_base_confidence,
    )


def build_status_registry(
    implied_status=IMPLIED_STATUS_BY_STAGE,
    won_stages=DISPLAY_WON_STAGES,
    lost_stages=DISPLAY_LOST_STAGES,
    version: str = STATUS_REGISTRY_VERSION,
) -> StageStatusRegistry:
    return StageStatusRegistry(
        version=version,
        implied_status=MappingProxyType({k: DealStatus(v) for k, v in implied_status.items()}),
        won_stages=frozenset(won_stages),
        lost_stages=frozenset(lost_stages),
    )


@lru_cache(maxsize=1)
def get_stage_vocabulary() -> StageVocabulary:
    """Process-wide default vocabulary."""
    return build_stage_vocabulary()


@lru_cache(maxsize=1)
def get_status_registry() -> StageStatusRegistry:
    """Process-wide default stage -> status registry."""
    return build_status_registry()
