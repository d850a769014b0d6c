"""Durable key/value storage for client-side notification state.

Every backend keeps string values under string keys.  Reads never raise:
a missing, unreadable or malformed backing file is logged and treated as
"no data", and the next write replaces it with a clean copy.

Collections of records are stored through :func:`save_collection` /
:func:`load_collection`, which wrap the list in a small versioned envelope::

    {"version": 1, "items": [...]}

A bare JSON list (how the first client release wrote it) is read as
version 0 and rewritten in the current shape on the next save.
"""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class PersistenceLayer(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """Dict-backed store for tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data)


class JsonFileStore:
    """All keys kept in a single JSON object on disk.

    The file is re-read on every ``get`` so two processes sharing a profile
    see each other's writes.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, str]:
        try:
            if not self.path.exists():
                return {}
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Storage file %s unreadable, starting empty: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Storage file %s is not a JSON object, starting empty", self.path)
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if key in data:
                del data[key]
                self._write_all(data)


# ── Versioned record collections ──


def save_collection(layer: PersistenceLayer, key: str, records: List[Dict[str, Any]]) -> None:
    payload = {"version": SCHEMA_VERSION, "items": list(records)}
    layer.set(key, json.dumps(payload, ensure_ascii=False, separators=(",", ":")))


def load_collection(layer: PersistenceLayer, key: str) -> List[Dict[str, Any]]:
    """Return the stored records, or ``[]`` if there are none or they are unusable."""
    try:
        raw = layer.get(key)
    except Exception:
        logger.exception("Storage read failed for %r", key)
        return []
    if raw is None or raw == "":
        return []
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        logger.warning("Discarding malformed stored data under %r: %s", key, exc)
        return []

    if isinstance(payload, list):
        version, items = 0, payload
    elif isinstance(payload, dict) and isinstance(payload.get("items"), list):
        version, items = payload.get("version", 0), payload["items"]
    else:
        logger.warning("Discarding stored data under %r: unexpected shape", key)
        return []

    if not isinstance(version, int) or version > SCHEMA_VERSION:
        logger.warning(
            "Stored data under %r has schema version %r (this client understands <= %d), ignoring",
            key, version, SCHEMA_VERSION,
        )
        return []
    if version < SCHEMA_VERSION:
        logger.info("Migrating stored data under %r from schema v%s", key, version)
    return [r for r in items if isinstance(r, dict)]
