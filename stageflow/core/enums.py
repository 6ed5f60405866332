"""Canonical enum values for deals, risks and background tasks."""

from __future__ import annotations

import enum


class DealStatus(str, enum.Enum):
    ACTIVE = "active"
    WON = "won"
    LOST = "lost"
    DISQUALIFIED = "disqualified"


class OutcomeReason(str, enum.Enum):
    """Unified reason taxonomy shared by lost and disqualified deals."""

    COMPETITOR = "competitor"
    BUDGET = "budget"
    TIMING = "timing"
    NO_FIT = "no_fit"
    UNRESPONSIVE = "unresponsive"
    NO_INTEREST = "no_interest"
    OTHER = "other"


class RiskSeverity(str, enum.Enum):
    MEDIUM = "medium"
    HIGH = "high"


class RiskType(str, enum.Enum):
    STAGNANT = "stagnant"
    STUCK = "stuck"
    HIGH_VALUE_NEGLECT = "high-value-neglect"


class TaskType(str, enum.Enum):
    """Task kinds every execution unit in the worker pool can run."""

    ANALYTICS = "analytics"
    PIPELINE_HEALTH = "pipeline_health"
    CONFIDENCE_SCORES = "confidence_scores"
    AT_RISK = "at_risk"
    BATCH_ANALYTICS = "batch_analytics"


class RecoveryStatus(str, enum.Enum):
    PLANNED = "planned"
    FIXED = "fixed"
    SKIPPED = "skipped"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({DealStatus.WON, DealStatus.LOST, DealStatus.DISQUALIFIED})
NEGATIVE_STATUSES = frozenset({DealStatus.LOST, DealStatus.DISQUALIFIED})
