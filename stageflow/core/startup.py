"""Startup validation and bootstrap helpers."""

from __future__ import annotations

import logging

from stageflow.core.config import get_config
from stageflow.core.exceptions import ConfigurationError
from stageflow.core.logging_config import configure_logging
from stageflow.core.stages import get_stage_vocabulary, get_status_registry
from stageflow.database.db import get_active_database_url, verify_database_connection
from stageflow.pipeline.templates import get_template_registry

logger = logging.getLogger(__name__)


def validate_startup_config() -> None:
    """Fail-fast config and connectivity checks."""
    config = get_config()
    database_ok = verify_database_connection()
    active_database_url = get_active_database_url()
    if not database_ok and config.DB_CONNECTIVITY_REQUIRED:
        raise RuntimeError("Database connectivity check failed.")
    if not database_ok:
        logger.warning(
            "startup.database.connectivity_optional_failed",
            extra={"event": "startup.database.connectivity_optional_failed"},
        )

    if config.is_production and active_database_url.startswith("sqlite"):
        logger.warning(
            "startup.production.sqlite_detected",
            extra={"event": "startup.production.sqlite_detected"},
        )

    if get_template_registry().get(config.DEFAULT_PIPELINE_TEMPLATE) is None:
        raise ConfigurationError(
            f"DEFAULT_PIPELINE_TEMPLATE '{config.DEFAULT_PIPELINE_TEMPLATE}' is not a known template."
        )

    status_registry = get_status_registry()
    divergent = status_registry.divergence()
    if divergent:
        logger.info(
            "startup.status_registry.divergent_stages",
            extra={
                "event": "startup.status_registry.divergent_stages",
                "registry_version": status_registry.version,
                "stages": sorted(divergent),
            },
        )

    logger.info(
        "startup.config.validated",
        extra={
            "event": "startup.config.validated",
            "env": config.ENV,
            "database_url_scheme": active_database_url.split("://", 1)[0],
            "db_connectivity_required": config.DB_CONNECTIVITY_REQUIRED,
            "stage_vocabulary": get_stage_vocabulary().fingerprint(),
            "status_registry_version": status_registry.version,
            "worker_pool_size": config.WORKER_POOL_SIZE,
            "worker_pool_backend": config.WORKER_POOL_BACKEND,
        },
    )


def bootstrap() -> None:
    """Initialize logging and validate runtime configuration."""
    configure_logging()
    validate_startup_config()
