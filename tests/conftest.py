from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import stageflow.database.db as db_module
from stageflow.pipeline.selection_cache import TemplateSelectionCache
from stageflow.schemas.deals import Deal
from tests.helpers import NOW


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_deal():
    def _make(**fields: Any) -> Deal:
        record: dict[str, Any] = {"id": "deal-1", "organization_id": "org-1", "client": "Acme"}
        record.update(fields)
        return Deal.model_validate(record)

    return _make


@pytest.fixture
def template_cache() -> TemplateSelectionCache:
    return TemplateSelectionCache()


@pytest.fixture
def session_factory(monkeypatch):
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db_module.init_db(engine)
    monkeypatch.setattr(db_module, "SessionLocal", TestingSessionLocal)
    yield TestingSessionLocal
    engine.dispose()
