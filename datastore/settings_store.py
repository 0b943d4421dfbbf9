from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Mapping, Optional

from app.schemas import DashboardSettings
from settings import get_settings

logger = logging.getLogger(__name__)


class SettingsStore:
    """Dashboard settings persisted as a JSON document."""

    def __init__(self, persistence_path: Optional[Path] = None) -> None:
        self.persistence_path = persistence_path
        self._settings = DashboardSettings()
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def get(self) -> DashboardSettings:
        with self._lock:
            return self._settings.model_copy(deep=True)

    def update(self, changes: Mapping[str, Any]) -> DashboardSettings:
        """Merge ``changes`` over the stored settings; raises ``ValueError`` if invalid."""
        with self._lock:
            merged = self._settings.model_dump()
            merged.update(changes)
            updated = DashboardSettings.model_validate(merged)
            self._settings = updated
            self._persist()
            logger.info("Dashboard settings updated", extra={"reason": ",".join(sorted(changes))})
            return updated.model_copy(deep=True)

    def reset(self) -> DashboardSettings:
        with self._lock:
            self._settings = DashboardSettings()
            self._persist()
            return self._settings.model_copy(deep=True)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = self._settings.model_dump(mode="json")
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data: Dict[str, Any] = json.loads(raw)
            stored = {**DashboardSettings().model_dump(), **data}
            self._settings = DashboardSettings.model_validate(stored)
        except (OSError, ValueError, TypeError) as exc:
            logger.error(
                "Could not load dashboard settings; using defaults",
                extra={"path": str(self.persistence_path), "reason": str(exc)},
            )
            self._settings = DashboardSettings()


@lru_cache
def build_default_settings_store(path: Optional[str] = None) -> SettingsStore:
    settings = get_settings()
    store_path = settings.settings_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return SettingsStore(persistence_path=persistence)
