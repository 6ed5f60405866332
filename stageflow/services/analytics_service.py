"""Bulk pipeline computations run by the worker pool.

Every function takes normalized deals and returns plain data, so a worker
unit can run it on a self-contained payload and hand the result back.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from stageflow.core.enums import DealStatus, RiskSeverity, RiskType
from stageflow.core.stages import StageVocabulary, get_stage_vocabulary
from stageflow.schemas.deals import Deal
from stageflow.services.confidence_service import (
    ConfidenceEngine,
    UserPerformanceProfile,
    get_confidence_label,
)
from stageflow.utils.dates import SECONDS_PER_DAY, parse_timestamp, utcnow
from stageflow.utils.numbers import round_half_up

logger = logging.getLogger(__name__)

HEALTH_WEIGHTS = {
    "velocity": 0.3,
    "winRate": 0.3,
    "stageBalance": 0.2,
    "dealQuality": 0.2,
}
QUALITY_REFERENCE_VALUE = 10000
REVENUE_WINDOW_MONTHS = 6
FORECAST_MONTHS = 3

STAGNANT_DAYS = 14
STAGNANT_HIGH_DAYS = 30
STUCK_DAYS = 30
STUCK_HIGH_DAYS = 60
HIGH_VALUE_THRESHOLD = 50000
HIGH_VALUE_IDLE_DAYS = 7


def _elapsed_ms(started: float) -> int:
    return round_half_up((time.perf_counter() - started) * 1000)


def _days_since(value: str | None, now: datetime) -> float | None:
    moment = parse_timestamp(value)
    if moment is None:
        return None
    return (now - moment).total_seconds() / SECONDS_PER_DAY


def _months_back(now: datetime, months: int) -> datetime:
    index = now.year * 12 + (now.month - 1) - months
    return now.replace(year=index // 12, month=index % 12 + 1, day=1, hour=0, minute=0, second=0, microsecond=0)


@dataclass
class StageBucket:
    count: int = 0
    value: float = 0

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.count, "value": self.value}


@dataclass
class DealAnalytics:
    total_deals: int = 0
    active_deals: int = 0
    won_deals: int = 0
    lost_deals: int = 0
    disqualified_deals: int = 0
    lead_deals: int = 0
    total_value: float = 0
    avg_deal_value: float = 0
    win_rate: float = 0
    avg_velocity: float = 0
    forecast: float = 0
    deals_by_stage: dict[str, StageBucket] = field(default_factory=dict)
    monthly_revenue: dict[str, float] = field(default_factory=dict)
    compute_time: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": {
                "totalDeals": self.total_deals,
                "activeDeals": self.active_deals,
                "wonDeals": self.won_deals,
                "lostDeals": self.lost_deals,
                "disqualifiedDeals": self.disqualified_deals,
                "leadDeals": self.lead_deals,
                "totalValue": self.total_value,
                "avgDealValue": self.avg_deal_value,
                "winRate": self.win_rate,
                "avgVelocity": self.avg_velocity,
                "forecast": self.forecast,
            },
            "dealsByStage": {stage: bucket.to_dict() for stage, bucket in self.deals_by_stage.items()},
            "monthlyRevenue": dict(self.monthly_revenue),
            "computeTime": self.compute_time,
        }


@dataclass(frozen=True)
class PipelineHealthScore:
    overall: int
    velocity: int
    win_rate: int
    stage_balance: int
    deal_quality: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall,
            "components": {
                "velocity": self.velocity,
                "winRate": self.win_rate,
                "stageBalance": self.stage_balance,
                "dealQuality": self.deal_quality,
            },
        }


@dataclass(frozen=True)
class Risk:
    type: RiskType
    severity: RiskSeverity
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type.value, "severity": self.severity.value, "message": self.message}


@dataclass(frozen=True)
class AtRiskDeal:
    deal_id: str
    deal_name: str
    risks: tuple[Risk, ...]

    @property
    def risk_score(self) -> int:
        return sum(2 if risk.severity == RiskSeverity.HIGH else 1 for risk in self.risks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dealId": self.deal_id,
            "dealName": self.deal_name,
            "risks": [risk.to_dict() for risk in self.risks],
            "riskScore": self.risk_score,
        }


def calculate_deal_analytics(
    deals: Sequence[Deal],
    now: datetime | None = None,
    vocabulary: StageVocabulary | None = None,
) -> DealAnalytics:
    started = time.perf_counter()
    now = now or utcnow()
    vocabulary = vocabulary or get_stage_vocabulary()
    analytics = DealAnalytics(total_deals=len(deals))

    velocities: list[float] = []
    window_start = _months_back(now, REVENUE_WINDOW_MONTHS)

    for deal in deals:
        value = deal.value or 0
        analytics.total_value += value

        bucket = analytics.deals_by_stage.setdefault(deal.stage or "unknown", StageBucket())
        bucket.count += 1
        bucket.value += value

        if vocabulary.is_lead_stage(deal.stage):
            analytics.lead_deals += 1

        if deal.status == DealStatus.ACTIVE:
            analytics.active_deals += 1
        elif deal.status == DealStatus.WON:
            analytics.won_deals += 1
        elif deal.status == DealStatus.LOST:
            analytics.lost_deals += 1
        elif deal.status == DealStatus.DISQUALIFIED:
            analytics.disqualified_deals += 1

        created = parse_timestamp(deal.created_timestamp)
        updated = parse_timestamp(deal.updated_at or deal.last_activity)
        if created is not None and updated is not None:
            velocities.append(max(0.0, (updated - created).total_seconds() / SECONDS_PER_DAY))

        if deal.status == DealStatus.WON and updated is not None and updated >= window_start:
            month = updated.strftime("%Y-%m")
            analytics.monthly_revenue[month] = analytics.monthly_revenue.get(month, 0) + value

    closed = analytics.won_deals + analytics.lost_deals
    analytics.win_rate = analytics.won_deals / closed if closed else 0
    analytics.avg_deal_value = analytics.total_value / len(deals) if deals else 0
    analytics.avg_velocity = sum(velocities) / len(velocities) if velocities else 0

    recent_months = sorted(analytics.monthly_revenue)[-FORECAST_MONTHS:]
    if len(recent_months) >= 2:
        recent_average = sum(analytics.monthly_revenue[month] for month in recent_months) / len(recent_months)
        analytics.forecast = recent_average * FORECAST_MONTHS

    analytics.monthly_revenue = dict(sorted(analytics.monthly_revenue.items()))
    analytics.compute_time = _elapsed_ms(started)
    return analytics


def calculate_pipeline_health_score(
    deals: Sequence[Deal],
    now: datetime | None = None,
    analytics: DealAnalytics | None = None,
) -> PipelineHealthScore:
    """Weighted 0-100 score over velocity, win rate, stage balance and deal quality."""
    analytics = analytics or calculate_deal_analytics(deals, now=now)

    velocity_score = max(0.0, 100 - analytics.avg_velocity * 2) if analytics.avg_velocity > 0 else 50.0
    win_rate_score = analytics.win_rate * 100

    stage_count = max(len(analytics.deals_by_stage), 1)
    mean_per_stage = len(deals) / stage_count
    variance = sum((bucket.count - mean_per_stage) ** 2 for bucket in analytics.deals_by_stage.values()) / stage_count
    balance_score = max(0.0, 100 - variance)

    quality_score = min(100.0, analytics.avg_deal_value / QUALITY_REFERENCE_VALUE * 100)

    overall = (
        velocity_score * HEALTH_WEIGHTS["velocity"]
        + win_rate_score * HEALTH_WEIGHTS["winRate"]
        + balance_score * HEALTH_WEIGHTS["stageBalance"]
        + quality_score * HEALTH_WEIGHTS["dealQuality"]
    )
    return PipelineHealthScore(
        overall=round_half_up(overall),
        velocity=round_half_up(velocity_score),
        win_rate=round_half_up(win_rate_score),
        stage_balance=round_half_up(balance_score),
        deal_quality=round_half_up(quality_score),
    )


def calculate_confidence_scores(
    deals: Sequence[Deal],
    user_performance: Mapping[str, UserPerformanceProfile | Mapping[str, Any]] | None = None,
    global_win_rate: float | None = None,
    now: datetime | None = None,
    engine: ConfidenceEngine | None = None,
) -> dict[str, Any]:
    """Confidence and stagnation for every deal.

    Profiles are built from ``deals`` when the caller does not pass them.
    """
    started = time.perf_counter()
    engine = engine or ConfidenceEngine()
    if user_performance is None:
        snapshot = engine.build_user_performance_profiles(deals)
        user_performance = snapshot.user_performance
        if global_win_rate is None:
            global_win_rate = snapshot.global_win_rate
    if global_win_rate is None:
        global_win_rate = 0.3

    scores = []
    for deal in deals:
        confidence = engine.calculate_deal_confidence(deal, user_performance, global_win_rate, now=now)
        scores.append(
            {
                "dealId": deal.id,
                "confidence": confidence,
                "label": get_confidence_label(confidence),
                "stagnation": engine.check_deal_stagnation(deal, now=now).to_dict(),
            }
        )
    return {"scores": scores, "computeTime": _elapsed_ms(started)}


def find_at_risk_deals(deals: Sequence[Deal], now: datetime | None = None) -> list[AtRiskDeal]:
    """Active deals showing inactivity, long pipeline time or neglected high value; riskiest first."""
    now = now or utcnow()
    at_risk: list[AtRiskDeal] = []

    for deal in deals:
        if deal.status != DealStatus.ACTIVE:
            continue
        risks: list[Risk] = []

        idle_days = _days_since(deal.last_activity, now)
        if idle_days is not None and idle_days >= STAGNANT_DAYS:
            risks.append(
                Risk(
                    RiskType.STAGNANT,
                    RiskSeverity.HIGH if idle_days >= STAGNANT_HIGH_DAYS else RiskSeverity.MEDIUM,
                    f"No activity in {round_half_up(idle_days)} days",
                )
            )

        pipeline_days = _days_since(deal.created_timestamp, now)
        if pipeline_days is not None and pipeline_days >= STUCK_DAYS:
            risks.append(
                Risk(
                    RiskType.STUCK,
                    RiskSeverity.HIGH if pipeline_days >= STUCK_HIGH_DAYS else RiskSeverity.MEDIUM,
                    f"In pipeline for {round_half_up(pipeline_days)} days",
                )
            )

        if (
            deal.value is not None
            and deal.value >= HIGH_VALUE_THRESHOLD
            and idle_days is not None
            and idle_days >= HIGH_VALUE_IDLE_DAYS
        ):
            risks.append(
                Risk(
                    RiskType.HIGH_VALUE_NEGLECT,
                    RiskSeverity.HIGH,
                    f"High-value deal (${round_half_up(deal.value / 1000)}k) with low activity",
                )
            )

        if risks:
            at_risk.append(AtRiskDeal(deal_id=deal.id, deal_name=deal.client or "Unnamed", risks=tuple(risks)))

    at_risk.sort(key=lambda item: item.risk_score, reverse=True)
    return at_risk


def run_batch_analytics(
    deals: Sequence[Deal],
    user_performance: Mapping[str, UserPerformanceProfile | Mapping[str, Any]] | None = None,
    global_win_rate: float | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """All four computations in one call."""
    analytics = calculate_deal_analytics(deals, now=now)
    health = calculate_pipeline_health_score(deals, now=now, analytics=analytics)
    confidence = calculate_confidence_scores(deals, user_performance, global_win_rate, now=now)
    at_risk = find_at_risk_deals(deals, now=now)
    logger.debug(
        "analytics.batch_completed",
        extra={"event": "analytics.batch_completed", "deals": len(deals), "at_risk": len(at_risk)},
    )
    return {
        "analytics": analytics.to_dict(),
        "health": health.to_dict(),
        "confidence": confidence,
        "atRisk": [item.to_dict() for item in at_risk],
    }
