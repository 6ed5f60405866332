"""Celery entry points for organization-wide scoring.

Tasks read through ``SqlDealStore`` and never write; results are JSON-safe
dicts so they survive the result backend.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from stageflow.core.stages import get_stage_vocabulary
from stageflow.database.deal_store import SqlDealStore
from stageflow.services.analytics_service import calculate_confidence_scores, find_at_risk_deals
from stageflow.services.confidence_service import ConfidenceEngine
from stageflow.services.deal_normalizer import get_default_normalizer
from stageflow.tasks.celery_app import celery_app
from stageflow.tasks.hooks import after_task, before_task
from stageflow.utils.dates import parse_timestamp

logger = logging.getLogger(__name__)

RECOMPUTE_TASK_NAME = "scoring.recompute_organization"


def recompute_organization_scores(
    organization_id: str,
    now: str | None = None,
    store: SqlDealStore | None = None,
    task_id: str | None = None,
) -> dict[str, Any]:
    """Confidence, stagnation and at-risk flags for every deal in one organization."""
    task_id = task_id or uuid.uuid4().hex
    context = {"organization_id": organization_id, "trace_id": uuid.uuid4().hex}
    logger.info("task.start", extra=before_task(task_id, RECOMPUTE_TASK_NAME, context))

    owns_store = store is None
    store = store or SqlDealStore()
    try:
        raw_deals = store.list_deals(organization_id)
    except Exception:
        logger.exception("task.finish", extra=after_task(task_id, RECOMPUTE_TASK_NAME, context, status="failed"))
        raise
    finally:
        if owns_store:
            store.close()

    deals = get_default_normalizer().normalize_many(raw_deals)

    vocabulary = get_stage_vocabulary()
    engine = ConfidenceEngine(vocabulary)
    snapshot = engine.build_user_performance_profiles(deals)
    reference_time = parse_timestamp(now)

    confidence = calculate_confidence_scores(
        deals,
        user_performance=snapshot.user_performance,
        global_win_rate=snapshot.global_win_rate,
        now=reference_time,
        engine=engine,
    )
    at_risk = find_at_risk_deals(deals, now=reference_time)

    logger.info("task.finish", extra=after_task(task_id, RECOMPUTE_TASK_NAME, context, status="succeeded"))
    return {
        "organizationId": organization_id,
        "vocabulary": vocabulary.fingerprint(),
        "dealCount": len(deals),
        "globalWinRate": snapshot.global_win_rate,
        "scores": confidence["scores"],
        "atRisk": [item.to_dict() for item in at_risk],
    }


@celery_app.task(bind=True, name=RECOMPUTE_TASK_NAME)
def recompute_organization(self, organization_id: str, now: str | None = None) -> dict[str, Any]:
    return recompute_organization_scores(organization_id, now=now, task_id=self.request.id)
