from __future__ import annotations

import pytest

import stageflow.tasks.scoring_tasks as scoring_tasks
from stageflow.core.exceptions import DatabaseError
from stageflow.core.stages import get_stage_vocabulary
from stageflow.database.deal_store import SqlDealStore
from tests.helpers import NOW, FakeDealStore, days_ago


def _store():
    return FakeDealStore(
        [
            {"id": "d1", "organization_id": "org-1", "client": "Globex", "stage": "negotiation",
             "value": 60000, "created": days_ago(45), "last_activity": days_ago(35), "user_id": "rep-1"},
            {"id": "d2", "organization_id": "org-1", "client": "Initech", "stage": "deal_won",
             "created": days_ago(60), "updated_at": days_ago(10), "user_id": "rep-1"},
            {"organization_id": "org-1", "id": None},
        ]
    )


def test_recompute_returns_scores_and_fingerprint():
    store = _store()

    result = scoring_tasks.recompute_organization_scores("org-1", now=NOW.isoformat(), store=store, task_id="t-1")

    assert result["organizationId"] == "org-1"
    assert result["vocabulary"] == get_stage_vocabulary().fingerprint()
    assert result["dealCount"] == 2
    scores = {item["dealId"]: item for item in result["scores"]}
    assert scores["d2"]["confidence"] == 100
    assert scores["d1"]["stagnation"]["isStagnant"] is True
    assert [item["dealId"] for item in result["atRisk"]] == ["d1"]


def test_recompute_never_writes():
    store = _store()
    scoring_tasks.recompute_organization_scores("org-1", now=NOW.isoformat(), store=store)

    assert store.stage_updates == []
    assert store.template_writes == []


def test_recompute_propagates_storage_failures():
    class BrokenStore(FakeDealStore):
        def list_deals(self, organization_id):
            raise DatabaseError("database unavailable")

    with pytest.raises(DatabaseError):
        scoring_tasks.recompute_organization_scores("org-1", store=BrokenStore())


def test_celery_task_reads_through_sql_store(session_factory):
    session = session_factory()
    seed = SqlDealStore(db=session)
    seed.create_organization("org-1")
    seed.add_deal({"id": "d1", "organization_id": "org-1", "stage": "proposal_sent", "created_at": days_ago(3)})
    session.close()

    result = scoring_tasks.recompute_organization("org-1", now=NOW.isoformat())

    assert scoring_tasks.recompute_organization.name == "scoring.recompute_organization"
    assert result["dealCount"] == 1
    # 60 base, -10 for an owner with no closed deals
    assert result["scores"][0]["confidence"] == 50
