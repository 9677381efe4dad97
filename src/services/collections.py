from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List

logger = logging.getLogger("horta.hub.collections")

COLLECTION_NAMES = ("plants", "tasks", "users")


class CollectionStoreError(RuntimeError):
    """Raised when a collection file cannot be read or written."""


class CollectionStore:
    """Flat JSON-file collections (one ``<name>.json`` list per collection)."""

    def __init__(self, data_dir: str | Path) -> None:
        self._data_dir = Path(data_dir)
        self._lock = RLock()
        self._last_id = 0

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def path_for(self, name: str) -> Path:
        if name not in COLLECTION_NAMES:
            raise ValueError(f"Unknown collection: {name}")
        return self._data_dir / f"{name}.json"

    def read_collection(self, name: str) -> List[Dict[str, Any]]:
        path = self.path_for(name)
        with self._lock:
            if not path.exists():
                return []
            try:
                text = path.read_text(encoding="utf-8")
            except OSError as exc:
                logger.warning("Failed to read %s: %s", path, exc)
                raise CollectionStoreError(f"Failed to read {name}") from exc
            if not text.strip():
                return []
            try:
                data = json.loads(text)
            except json.JSONDecodeError as exc:
                logger.warning("Collection %s is not valid JSON: %s", path, exc)
                raise CollectionStoreError(f"Failed to read {name}") from exc
        if not isinstance(data, list):
            raise CollectionStoreError(f"Collection {name} is not a list")
        return data

    def write_collection(self, name: str, items: List[Dict[str, Any]]) -> None:
        path = self.path_for(name)
        with self._lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(json.dumps(items, indent=2, ensure_ascii=False), encoding="utf-8")
            except OSError as exc:
                logger.warning("Failed to save %s: %s", path, exc)
                raise CollectionStoreError(f"Failed to save {name}") from exc

    def next_id(self) -> str:
        """Millisecond epoch id, strictly increasing within the process."""
        with self._lock:
            candidate = int(time.time() * 1000)
            if candidate <= self._last_id:
                candidate = self._last_id + 1
            self._last_id = candidate
            return str(candidate)


__all__ = ["COLLECTION_NAMES", "CollectionStore", "CollectionStoreError"]
