"""Orphaned-deal recovery and pipeline template migration.

A deal is orphaned when its stage id is not part of its organization's active
template. Recovery re-maps such deals onto the active stage list; migration
does the same against another template and then switches the organization to
it. Reads and writes go through a ``DealStore``; nothing here serializes two
concurrent migrations of one organization.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from stageflow.core.config import get_config
from stageflow.core.enums import RecoveryStatus
from stageflow.core.exceptions import DatabaseError, MissingIdentifierError, NotFoundError
from stageflow.core.stages import StageStatusRegistry, get_status_registry
from stageflow.pipeline.selection_cache import TemplateSelectionCache, selection_cache
from stageflow.pipeline.templates import StageDescriptor, TemplateRegistry, get_template_registry
from stageflow.utils.numbers import round_half_up

logger = logging.getLogger(__name__)

NO_ORPHANS_MESSAGE = "No orphaned deals found"

FIRST_STAGE_ALIASES = frozenset({"lead", "lead_captured", "lead_generation", "lead_identified", "prospecting"})
SECOND_STAGE_ALIASES = frozenset({"discovery", "contacted", "contact", "qualification", "lead_qualification"})
MIDDLE_STAGE_ALIASES = frozenset({"quote", "proposal", "proposal_sent"})
WON_STAGE_ALIASES = frozenset({"deal_won", "closed", "closed_won"})
LOST_STAGE_ALIASES = frozenset({"lost", "deal_lost"})

StageList = Sequence[StageDescriptor | Mapping[str, Any] | str]


class DealStore(Protocol):
    """Storage collaborator for recovery and migration."""

    def list_deals(self, organization_id: str) -> list[dict[str, Any]]:
        """Raw deal records of one organization."""
        ...

    def update_deal_stage(
        self,
        deal_id: str,
        stage: str,
        last_activity: str,
        status: str | None = None,
    ) -> None:
        """Move one deal to ``stage``; ``status`` is written only when given."""
        ...

    def get_active_template(self, organization_id: str) -> str | None:
        ...

    def set_active_template(self, organization_id: str, template_id: str) -> None:
        ...


@dataclass(frozen=True)
class StageChange:
    deal_id: str
    client: str
    old_stage: str | None
    new_stage: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "dealId": self.deal_id,
            "client": self.client,
            "oldStage": self.old_stage,
            "newStage": self.new_stage,
        }


@dataclass(frozen=True)
class RecoveryError:
    deal_id: str
    client: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"dealId": self.deal_id, "client": self.client, "error": self.error}


@dataclass
class RecoveryResult:
    fixed: int = 0
    skipped: int = 0
    errors: list[RecoveryError] = field(default_factory=list)
    changes: list[StageChange] = field(default_factory=list)
    statuses: dict[str, RecoveryStatus] = field(default_factory=dict)
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "fixed": self.fixed,
            "skipped": self.skipped,
            "errors": [error.to_dict() for error in self.errors],
            "changes": [change.to_dict() for change in self.changes],
            "statuses": {deal_id: status.value for deal_id, status in self.statuses.items()},
        }
        if self.message is not None:
            data["message"] = self.message
        return data


@dataclass(frozen=True)
class PipelineHealth:
    total_deals: int
    valid_deals: int
    orphaned_deals: int
    health_percentage: int
    orphaned_stages: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalDeals": self.total_deals,
            "validDeals": self.valid_deals,
            "orphanedDeals": self.orphaned_deals,
            "healthPercentage": self.health_percentage,
            "orphanedStages": list(self.orphaned_stages),
        }


@dataclass(frozen=True)
class MigrationResult:
    recovery: RecoveryResult
    template_changed: bool
    from_template: str | None
    to_template: str
    new_stage_count: int

    def to_dict(self) -> dict[str, Any]:
        data = self.recovery.to_dict()
        data.update(
            {
                "templateChanged": self.template_changed,
                "fromTemplate": self.from_template,
                "toTemplate": self.to_template,
                "newStageCount": self.new_stage_count,
            }
        )
        return data


def _stage_id(stage: StageDescriptor | Mapping[str, Any] | str) -> str:
    if isinstance(stage, str):
        return stage
    if isinstance(stage, Mapping):
        return str(stage.get("id"))
    return stage.id


def _client_of(record: Mapping[str, Any]) -> str:
    client = record.get("client")
    if isinstance(client, str):
        return client
    client_name = record.get("client_name")
    return client_name if isinstance(client_name, str) else ""


def map_stage_to_closest_match(old_stage: str | None, new_stages: StageList) -> str | None:
    """Positional guess at where ``old_stage`` belongs in ``new_stages``.

    Returns ``None`` only when ``new_stages`` is empty.
    """
    stage_ids = [_stage_id(stage) for stage in new_stages]
    if not stage_ids:
        return None
    count = len(stage_ids)

    if old_stage in FIRST_STAGE_ALIASES:
        return stage_ids[0]
    if old_stage in SECOND_STAGE_ALIASES:
        return stage_ids[1] if count > 1 else stage_ids[0]
    if old_stage in MIDDLE_STAGE_ALIASES:
        return stage_ids[count // 2]
    if old_stage in WON_STAGE_ALIASES:
        return stage_ids[count - 2] if count >= 2 else stage_ids[-1]
    if old_stage in LOST_STAGE_ALIASES:
        for stage_id in stage_ids:
            if stage_id in LOST_STAGE_ALIASES:
                return stage_id
        return stage_ids[-1]
    return stage_ids[0]


class PipelineRecoveryService:
    """Finds and repairs orphaned deals; migrates organizations between templates."""

    def __init__(
        self,
        store: DealStore,
        templates: TemplateRegistry | None = None,
        status_registry: StageStatusRegistry | None = None,
        cache: TemplateSelectionCache | None = None,
    ) -> None:
        self.store = store
        self.templates = templates or get_template_registry()
        self.status_registry = status_registry or get_status_registry()
        self.cache = cache if cache is not None else selection_cache

    @staticmethod
    def _require(organization_id: str | None, stages: StageList | None = None, need_stages: bool = True) -> None:
        if not organization_id:
            raise MissingIdentifierError("Missing required parameters: organization_id")
        if need_stages and not stages:
            raise MissingIdentifierError("Missing required parameters: current_stages")

    def find_orphaned_deals(self, organization_id: str, current_stages: StageList) -> list[dict[str, Any]]:
        self._require(organization_id, current_stages)
        valid_ids = {_stage_id(stage) for stage in current_stages}
        deals = self.store.list_deals(organization_id)
        return [deal for deal in deals if deal.get("stage") not in valid_ids]

    def map_stage_to_closest_match(self, old_stage: str | None, new_stages: StageList) -> str | None:
        return map_stage_to_closest_match(old_stage, new_stages)

    def recover_orphaned_deals(
        self,
        organization_id: str,
        current_stages: StageList,
        dry_run: bool = False,
        target_template_id: str | None = None,
        now: datetime | None = None,
    ) -> RecoveryResult:
        """Re-map every orphaned deal onto ``current_stages``.

        With ``target_template_id`` the template's translation table is tried
        first; the positional heuristic covers stages the table cannot place.
        ``dry_run`` reports the planned changes and writes nothing.
        """
        orphaned = self.find_orphaned_deals(organization_id, current_stages)
        if not orphaned:
            return RecoveryResult(message=NO_ORPHANS_MESSAGE)

        stage_ids = [_stage_id(stage) for stage in current_stages]
        touched_at = (now or datetime.now(timezone.utc)).isoformat()
        result = RecoveryResult()

        for record in orphaned:
            deal_id = str(record.get("id"))
            client = _client_of(record)
            old_stage = record.get("stage")
            new_stage = self._resolve_stage(old_stage, stage_ids, target_template_id)

            if new_stage is None:
                result.skipped += 1
                result.errors.append(RecoveryError(deal_id, client, "Could not map stage"))
                result.statuses[deal_id] = RecoveryStatus.SKIPPED
                continue

            change = StageChange(deal_id=deal_id, client=client, old_stage=old_stage, new_stage=new_stage)
            if dry_run:
                result.changes.append(change)
                result.statuses[deal_id] = RecoveryStatus.PLANNED
                continue

            implied = self.status_registry.implied_status_for(new_stage)
            try:
                self.store.update_deal_stage(
                    deal_id,
                    new_stage,
                    last_activity=touched_at,
                    status=implied.value if implied is not None else None,
                )
            except (DatabaseError, NotFoundError) as exc:
                logger.warning(
                    "recovery.deal_update_failed",
                    extra={"event": "recovery.deal_update_failed", "deal_id": deal_id, "error": str(exc)},
                )
                result.errors.append(RecoveryError(deal_id, client, str(exc)))
                result.skipped += 1
                result.statuses[deal_id] = RecoveryStatus.ERROR
                continue

            result.fixed += 1
            result.changes.append(change)
            result.statuses[deal_id] = RecoveryStatus.FIXED
            logger.info(
                "recovery.deal_remapped",
                extra={
                    "event": "recovery.deal_remapped",
                    "organization_id": organization_id,
                    "deal_id": deal_id,
                    "old_stage": old_stage,
                    "new_stage": new_stage,
                },
            )

        logger.info(
            "recovery.completed",
            extra={
                "event": "recovery.completed",
                "organization_id": organization_id,
                "dry_run": dry_run,
                "orphaned": len(orphaned),
                "fixed": result.fixed,
                "skipped": result.skipped,
            },
        )
        return result

    def _resolve_stage(
        self,
        old_stage: str | None,
        stage_ids: list[str],
        target_template_id: str | None,
    ) -> str | None:
        if target_template_id and isinstance(old_stage, str):
            translated = self.templates.map_stage(old_stage, target_template_id)
            if translated in stage_ids and self._keeps_outcome(old_stage, translated):
                return translated
        guessed = map_stage_to_closest_match(old_stage, stage_ids)
        if guessed is not None and guessed != old_stage:
            logger.debug(
                "recovery.positional_match",
                extra={"event": "recovery.positional_match", "old_stage": old_stage, "new_stage": guessed},
            )
        return guessed

    def _keeps_outcome(self, old_stage: str, new_stage: str) -> bool:
        """A translation must not turn a lost-type stage into a won-type one or back."""
        before = self.status_registry.implied_status_for(old_stage)
        after = self.status_registry.implied_status_for(new_stage)
        if before is None or after is None:
            return True
        return before == after

    def get_pipeline_health(self, organization_id: str, current_stages: StageList) -> PipelineHealth:
        self._require(organization_id, need_stages=False)
        valid_ids = {_stage_id(stage) for stage in current_stages}
        deals = self.store.list_deals(organization_id)

        orphaned_stages: list[str] = []
        valid = 0
        for deal in deals:
            stage = deal.get("stage")
            if stage in valid_ids:
                valid += 1
            elif stage not in orphaned_stages:
                orphaned_stages.append(stage)

        total = len(deals)
        return PipelineHealth(
            total_deals=total,
            valid_deals=valid,
            orphaned_deals=total - valid,
            health_percentage=round_half_up(valid / total * 100) if total else 100,
            orphaned_stages=orphaned_stages,
        )

    def migrate_pipeline(
        self,
        organization_id: str,
        from_template: str | None,
        to_template: str,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> MigrationResult:
        """Move an organization's deals onto ``to_template`` and make it the active template.

        Raises ``UnknownTemplateError`` for a template id absent from the registry.
        The active template is persisted, and its cached selection dropped, only
        when this is not a dry run and at least one deal was re-mapped.
        """
        self._require(organization_id, need_stages=False)
        template = self.templates.require(to_template)

        recovery = self.recover_orphaned_deals(
            organization_id,
            template.stages,
            dry_run=dry_run,
            target_template_id=template.id,
            now=now,
        )

        template_changed = False
        if not dry_run and recovery.fixed > 0:
            self.store.set_active_template(organization_id, template.id)
            self.cache.invalidate(organization_id)
            template_changed = True
            logger.info(
                "migration.template_switched",
                extra={
                    "event": "migration.template_switched",
                    "organization_id": organization_id,
                    "from_template": from_template,
                    "to_template": template.id,
                    "fixed": recovery.fixed,
                },
            )

        return MigrationResult(
            recovery=recovery,
            template_changed=template_changed,
            from_template=from_template,
            to_template=template.id,
            new_stage_count=len(template.stages),
        )

    def resolve_active_template(self, organization_id: str) -> str:
        """Active template id for an organization: cache, then storage, then the configured default."""
        self._require(organization_id, need_stages=False)
        cached = self.cache.get(organization_id)
        if cached is not None:
            return cached

        template_id = self.store.get_active_template(organization_id)
        if template_id is None or self.templates.get(template_id) is None:
            template_id = get_config().DEFAULT_PIPELINE_TEMPLATE
        self.cache.set(organization_id, template_id)
        return template_id
