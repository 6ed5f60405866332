from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from stageflow.core.exceptions import DatabaseError, NotFoundError
from stageflow.database.deal_store import SqlDealStore
from stageflow.pipeline.selection_cache import TemplateSelectionCache
from stageflow.services.deal_normalizer import normalize_deal
from stageflow.services.recovery_service import PipelineRecoveryService
from tests.helpers import NOW


def _seed(session):
    store = SqlDealStore(db=session)
    store.create_organization("org-1", name="Acme Holdings", pipeline_template="default")
    store.add_deal(
        {
            "id": "d1",
            "organization_id": "org-1",
            "client": "Initech",
            "stage": "quote",
            "status": "active",
            "value": 12000,
            "created_at": "2024-05-01T09:30:00Z",
        }
    )
    store.add_deal({"id": "d2", "organization_id": "org-1", "client": "Globex", "stage": "lead_captured"})
    return store


def test_list_deals_returns_normalizable_records(session_factory):
    session = session_factory()
    store = _seed(session)

    records = {record["id"]: record for record in store.list_deals("org-1")}

    assert records["d1"]["created_at"] == "2024-05-01T09:30:00+00:00"
    deal = normalize_deal(records["d1"])
    assert deal.value == 12000
    assert deal.client == "Initech"
    assert store.list_deals("org-2") == []
    session.close()


def test_update_deal_stage_persists(session_factory):
    session = session_factory()
    store = _seed(session)

    store.update_deal_stage("d1", "deal_won", last_activity=NOW.isoformat(), status="won")

    record = {r["id"]: r for r in store.list_deals("org-1")}["d1"]
    assert record["stage"] == "deal_won"
    assert record["status"] == "won"
    assert record["last_activity"] == NOW.isoformat()
    session.close()


def test_update_missing_deal_raises(session_factory):
    session = session_factory()
    store = _seed(session)

    with pytest.raises(NotFoundError):
        store.update_deal_stage("missing", "lead", last_activity=NOW.isoformat())
    session.close()


def test_active_template_round_trip(session_factory):
    session = session_factory()
    store = _seed(session)

    assert store.get_active_template("org-1") == "default"
    store.set_active_template("org-1", "saas")
    assert store.get_active_template("org-1") == "saas"
    assert store.get_active_template("org-404") is None
    session.close()


def test_migration_against_sql_store(session_factory):
    session = session_factory()
    store = _seed(session)
    cache = TemplateSelectionCache()
    cache.set("org-1", "default")

    result = PipelineRecoveryService(store, cache=cache).migrate_pipeline("org-1", "default", "saas", now=NOW)

    stages = {r["id"]: r["stage"] for r in store.list_deals("org-1")}
    assert stages == {"d1": "proposal", "d2": "prospecting"}
    assert result.template_changed is True
    assert store.get_active_template("org-1") == "saas"
    assert cache.get("org-1") is None
    session.close()


def test_store_uses_module_session_factory(session_factory):
    with SqlDealStore() as store:
        store.create_organization("org-7")
        assert store.get_active_template("org-7") is None


def test_failed_stage_write_rolls_back_and_store_stays_usable(session_factory, monkeypatch):
    session = session_factory()
    store = _seed(session)
    real_commit = session.commit

    def rejecting_commit():
        raise OperationalError("UPDATE deals", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "commit", rejecting_commit)
    with pytest.raises(DatabaseError, match="d1"):
        store.update_deal_stage("d1", "deal_won", last_activity=NOW.isoformat(), status="won")

    monkeypatch.setattr(session, "commit", real_commit)
    record = {r["id"]: r for r in store.list_deals("org-1")}["d1"]
    assert record["stage"] == "quote"
    assert record["status"] == "active"

    store.update_deal_stage("d2", "prospecting", last_activity=NOW.isoformat())
    assert {r["id"]: r["stage"] for r in store.list_deals("org-1")}["d2"] == "prospecting"
    session.close()


def test_duplicate_deal_is_wrapped_and_rolled_back(session_factory):
    session = session_factory()
    store = _seed(session)

    with pytest.raises(DatabaseError, match="d1"):
        store.add_deal({"id": "d1", "organization_id": "org-1", "stage": "lead"})

    store.set_active_template("org-1", "saas")
    assert store.get_active_template("org-1") == "saas"
    session.close()
