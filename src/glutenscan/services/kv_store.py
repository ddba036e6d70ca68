from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

from loguru import logger


SNAPSHOT_NAMESPACE = "restaurant_cache"
FAVORITES_NAMESPACE = "favorites_map"
NOTES_NAMESPACE = "notes_map"
INTERACTIONS_NAMESPACE = "interactions_map"


class KeyValueStore(Protocol):
    def get(self, namespace: str) -> Optional[str]:
        ...

    def set(self, namespace: str, value: str) -> None:
        ...


class InMemoryKeyValueStore:
    """Simple in-memory blob store, one string per namespace."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, namespace: str) -> Optional[str]:
        with self._lock:
            return self._data.get(namespace)

    def set(self, namespace: str, value: str) -> None:
        with self._lock:
            self._data[namespace] = value


class JsonFileKeyValueStore:
    """All namespaces in one JSON object on disk; last write wins."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("cannot read store {}: {}", self.path, exc)
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("store {} is not valid json, ignoring it", self.path)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def get(self, namespace: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(namespace)

    def set(self, namespace: str, value: str) -> None:
        with self._lock:
            data = self._read_all()
            data[namespace] = value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, ensure_ascii=False)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
