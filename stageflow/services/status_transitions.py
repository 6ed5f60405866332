"""Deal status transitions, including reactivation of closed deals."""

from __future__ import annotations

import logging

from stageflow.core.enums import TERMINAL_STATUSES, DealStatus
from stageflow.core.exceptions import InvalidTransitionError
from stageflow.schemas.deals import Deal
from stageflow.services.deal_normalizer import clear_outcome_fields

logger = logging.getLogger(__name__)

DEAL_STATUS_TRANSITIONS: dict[DealStatus, set[DealStatus]] = {
    DealStatus.ACTIVE: {DealStatus.WON, DealStatus.LOST, DealStatus.DISQUALIFIED},
    DealStatus.WON: {DealStatus.ACTIVE},
    DealStatus.LOST: {DealStatus.ACTIVE},
    DealStatus.DISQUALIFIED: {DealStatus.ACTIVE},
}


class StateMachine:
    """Simple in-memory state machine over a fixed transition table."""

    def __init__(self, transitions: dict[DealStatus, set[DealStatus]]) -> None:
        self._transitions = transitions

    def can_transition(self, current: DealStatus, target: DealStatus) -> bool:
        return target in self._transitions.get(current, set())

    def assert_transition(self, current: DealStatus, target: DealStatus) -> None:
        if not self.can_transition(current=current, target=target):
            raise InvalidTransitionError(f"Transition not allowed: {current.value} -> {target.value}")


deal_status_machine = StateMachine(DEAL_STATUS_TRANSITIONS)


def transition_status(deal: Deal, target: DealStatus | str) -> Deal:
    """Return a copy of ``deal`` moved to ``target``.

    Reactivating a won, lost or disqualified deal clears every outcome field so
    the reopened deal carries no stale reason data.
    """
    target_status = DealStatus(target)
    deal_status_machine.assert_transition(deal.status, target_status)

    updated = deal.model_copy(update={"status": target_status})
    if deal.status in TERMINAL_STATUSES and target_status == DealStatus.ACTIVE:
        updated = clear_outcome_fields(updated)
        logger.info(
            "deal.reactivated",
            extra={"event": "deal.reactivated", "deal_id": deal.id, "from_status": deal.status.value},
        )
    return updated
