"""Deal confidence scoring and stagnation detection.

Scores start from the stage's base confidence, move with the owner's track
record and the deal's value, and lose points for time spent past the stage's
stagnation threshold. Only the largest of the three age penalties applies.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from stageflow.core.enums import DealStatus
from stageflow.core.stages import StageVocabulary, get_stage_vocabulary
from stageflow.schemas.deals import Deal
from stageflow.utils.dates import parse_timestamp, utcnow, whole_days_between
from stageflow.utils.numbers import round_half_up

logger = logging.getLogger(__name__)

DEFAULT_GLOBAL_WIN_RATE = 0.3
DEFAULT_AVG_CLOSE_DAYS = 30
RETENTION_STAGE = "retention"
LOST_STAGE = "lost"

MAX_STAGNATION_PENALTY = 30
STAGNATION_PENALTY_PER_DAY = 2
DOUBLE_THRESHOLD_PENALTY = 15
FLAT_AGE_PENALTY = 10
FLAT_AGE_DAYS = 90
VERY_OLD_DEAL_DAYS = 1825


@dataclass
class UserPerformanceProfile:
    total_deals: int = 0
    won_deals: int = 0
    lost_deals: int = 0
    closed_count: int = 0
    total_close_days: int = 0
    timed_wins: int = 0
    avg_close_days: int = 0
    win_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserPerformanceProfile":
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        return cls(**known)


@dataclass
class PerformanceSnapshot:
    user_performance: dict[str, UserPerformanceProfile] = field(default_factory=dict)
    global_win_rate: float = DEFAULT_GLOBAL_WIN_RATE

    def to_payload(self) -> dict[str, Any]:
        return {
            "user_performance": {owner: profile.to_dict() for owner, profile in self.user_performance.items()},
            "global_win_rate": self.global_win_rate,
        }


@dataclass(frozen=True)
class StagnationResult:
    is_stagnant: bool = False
    days_over: int = 0
    threshold: int = 14
    deal_age: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "isStagnant": self.is_stagnant,
            "daysOver": self.days_over,
            "threshold": self.threshold,
            "dealAge": self.deal_age,
        }


def _is_won(deal: Deal) -> bool:
    return deal.status == DealStatus.WON or deal.stage == RETENTION_STAGE


def _is_lost(deal: Deal) -> bool:
    return deal.status == DealStatus.LOST or deal.stage == LOST_STAGE


class ConfidenceEngine:
    """Pure scoring functions over normalized deals and one stage vocabulary."""

    def __init__(self, vocabulary: StageVocabulary | None = None) -> None:
        self.vocabulary = vocabulary or get_stage_vocabulary()

    @staticmethod
    def build_user_performance_profiles(deals: Iterable[Deal]) -> PerformanceSnapshot:
        """One pass over all deals, grouping by owner (``user_id``, ``assigned_to`` or ``unassigned``)."""
        profiles: dict[str, UserPerformanceProfile] = {}
        total_won = 0
        total_lost = 0

        for deal in deals:
            if deal is None:
                continue
            profile = profiles.setdefault(deal.owner_id, UserPerformanceProfile())
            profile.total_deals += 1

            if _is_won(deal):
                profile.won_deals += 1
                profile.closed_count += 1
                total_won += 1
                created = parse_timestamp(deal.created_timestamp)
                closed = parse_timestamp(deal.last_activity or deal.updated_at)
                if created is not None and closed is not None:
                    profile.total_close_days += whole_days_between(created, closed)
                    profile.timed_wins += 1
            elif _is_lost(deal):
                profile.lost_deals += 1
                profile.closed_count += 1
                total_lost += 1

        for profile in profiles.values():
            if profile.closed_count == 0:
                continue
            profile.avg_close_days = (
                round_half_up(profile.total_close_days / profile.timed_wins)
                if profile.timed_wins
                else DEFAULT_AVG_CLOSE_DAYS
            )
            profile.win_rate = profile.won_deals / (profile.won_deals + profile.lost_deals)

        closed_total = total_won + total_lost
        global_win_rate = total_won / closed_total if closed_total else DEFAULT_GLOBAL_WIN_RATE
        return PerformanceSnapshot(user_performance=profiles, global_win_rate=global_win_rate)

    def deal_age_days(self, deal: Deal, now: datetime | None = None) -> int | None:
        """Whole days since creation, or ``None`` when the creation date cannot be trusted."""
        raw_created = deal.created_timestamp
        if not raw_created:
            logger.warning(
                "confidence.created_date_missing",
                extra={"event": "confidence.created_date_missing", "deal_id": deal.id},
            )
            return None

        created = parse_timestamp(raw_created)
        if created is None:
            logger.warning(
                "confidence.created_date_invalid",
                extra={"event": "confidence.created_date_invalid", "deal_id": deal.id, "created_value": raw_created},
            )
            return None

        age = whole_days_between(created, now or utcnow())
        if age < 0:
            logger.warning(
                "confidence.created_date_future",
                extra={"event": "confidence.created_date_future", "deal_id": deal.id, "age_days": age},
            )
            return None
        if age > VERY_OLD_DEAL_DAYS:
            logger.info(
                "confidence.deal_very_old",
                extra={"event": "confidence.deal_very_old", "deal_id": deal.id, "age_days": age},
            )
        return age

    @staticmethod
    def _owner_adjustment(profile: UserPerformanceProfile) -> int:
        win_rate = profile.win_rate or 0
        closed = profile.closed_count
        if win_rate > 0.7 and closed >= 5:
            return 15
        if win_rate > 0.5 and closed >= 3:
            return 10
        if win_rate > 0.3 and closed >= 1:
            return 5
        if closed == 0:
            return -10
        return 0

    @staticmethod
    def _resolve_profile(
        owner_id: str,
        user_performance: Mapping[str, UserPerformanceProfile | Mapping[str, Any]] | None,
        global_win_rate: float,
    ) -> UserPerformanceProfile:
        profile = (user_performance or {}).get(owner_id)
        if profile is None:
            return UserPerformanceProfile(win_rate=global_win_rate, avg_close_days=DEFAULT_AVG_CLOSE_DAYS)
        if isinstance(profile, UserPerformanceProfile):
            return profile
        return UserPerformanceProfile.from_dict(profile)

    @staticmethod
    def _age_penalty(age: int, threshold: int) -> int:
        stagnation = min(MAX_STAGNATION_PENALTY, max(0, age - threshold) * STAGNATION_PENALTY_PER_DAY)
        double_threshold = DOUBLE_THRESHOLD_PENALTY if age > 2 * threshold else 0
        flat = FLAT_AGE_PENALTY if age > FLAT_AGE_DAYS else 0
        return max(stagnation, double_threshold, flat)

    def calculate_deal_confidence(
        self,
        deal: Deal,
        user_performance: Mapping[str, UserPerformanceProfile | Mapping[str, Any]] | None = None,
        global_win_rate: float = DEFAULT_GLOBAL_WIN_RATE,
        now: datetime | None = None,
    ) -> int:
        if deal.status == DealStatus.LOST:
            return 0
        if deal.status == DealStatus.WON:
            return 100

        confidence = self.vocabulary.base_confidence_for(deal.stage)
        profile = self._resolve_profile(deal.owner_id, user_performance, global_win_rate)
        confidence += self._owner_adjustment(profile)

        age = self.deal_age_days(deal, now=now)
        if age is not None:
            confidence -= self._age_penalty(age, self.vocabulary.threshold_for(deal.stage))

        if deal.value is not None:
            if deal.value > 50000:
                confidence += 5
            elif deal.value > 10000:
                confidence += 3

        return max(0, min(100, int(confidence)))

    def check_deal_stagnation(self, deal: Deal | None, now: datetime | None = None) -> StagnationResult:
        if deal is None:
            return StagnationResult(threshold=self.vocabulary.default_threshold)
        age = self.deal_age_days(deal, now=now)
        if age is None:
            return StagnationResult(threshold=self.vocabulary.default_threshold)

        threshold = self.vocabulary.threshold_for(deal.stage)
        return StagnationResult(
            is_stagnant=age > threshold,
            days_over=max(0, age - threshold),
            threshold=threshold,
            deal_age=age,
        )


def get_confidence_label(confidence: float) -> str:
    if confidence >= 80:
        return "High Confidence"
    if confidence >= 50:
        return "Medium Confidence"
    return "Low Confidence"


_default_engine: ConfidenceEngine | None = None


def get_confidence_engine() -> ConfidenceEngine:
    global _default_engine
    if _default_engine is None:
        _default_engine = ConfidenceEngine()
    return _default_engine


def build_user_performance_profiles(deals: Iterable[Deal]) -> PerformanceSnapshot:
    return ConfidenceEngine.build_user_performance_profiles(deals)


def calculate_deal_confidence(
    deal: Deal,
    user_performance: Mapping[str, UserPerformanceProfile | Mapping[str, Any]] | None = None,
    global_win_rate: float = DEFAULT_GLOBAL_WIN_RATE,
    now: datetime | None = None,
) -> int:
    return get_confidence_engine().calculate_deal_confidence(deal, user_performance, global_win_rate, now=now)


def check_deal_stagnation(deal: Deal | None, now: datetime | None = None) -> StagnationResult:
    return get_confidence_engine().check_deal_stagnation(deal, now=now)
