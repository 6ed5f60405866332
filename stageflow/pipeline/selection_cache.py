"""Per-organization cache of the active pipeline template id."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock

logger = logging.getLogger(__name__)


@dataclass
class CachedSelection:
    template_id: str
    cached_at: str


class TemplateSelectionCache:
    """In-memory selection cache; entries are dropped whenever an organization migrates."""

    def __init__(self) -> None:
        self._entries: dict[str, CachedSelection] = {}
        self._lock = Lock()

    def get(self, organization_id: str) -> str | None:
        with self._lock:
            entry = self._entries.get(organization_id)
            return entry.template_id if entry else None

    def set(self, organization_id: str, template_id: str) -> None:
        with self._lock:
            self._entries[organization_id] = CachedSelection(
                template_id=template_id,
                cached_at=datetime.now(timezone.utc).isoformat(),
            )

    def invalidate(self, organization_id: str) -> bool:
        with self._lock:
            removed = self._entries.pop(organization_id, None) is not None
        logger.info(
            "template_cache.invalidated",
            extra={"event": "template_cache.invalidated", "organization_id": organization_id, "removed": removed},
        )
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


selection_cache = TemplateSelectionCache()
