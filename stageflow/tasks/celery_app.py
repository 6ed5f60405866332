"""Celery application bootstrap."""

from __future__ import annotations

import os

from celery import Celery
from celery.signals import worker_init

from stageflow.core.config import get_config

config = get_config()

celery_app = Celery(
    "stageflow",
    broker=config.CELERY_BROKER_URL,
    backend=config.CELERY_RESULT_BACKEND,
    include=["stageflow.tasks.scoring_tasks"],
)
celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
)

# Local/dev convenience: run tasks synchronously when requested.
if os.getenv("CELERY_TASK_ALWAYS_EAGER", "false").lower() in {"1", "true", "yes", "on"}:
    celery_app.conf.task_always_eager = True
    celery_app.conf.task_eager_propagates = True


@worker_init.connect
def _bootstrap_worker(**_kwargs) -> None:
    from stageflow.core.startup import bootstrap

    bootstrap()
