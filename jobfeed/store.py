"""Key/blob persistence for feed state, seen ids, analysis cache and config.

Each key is one JSON file guarded by an advisory ``fcntl`` lock. Readers
treat missing or corrupt files as absent; writers raise :class:`StoreError`
and leave it to the caller to decide that in-memory state stays
authoritative.
"""
from __future__ import annotations

import copy
import fcntl
import json
import os
import re
from pathlib import Path
from typing import Any, Protocol

from jobfeed.log import get_logger

log = get_logger(__name__)

SEEN_JOBS_KEY = "seen_job_ids"
ANALYSIS_CACHE_KEY = "analysis_cache"
FEED_STATE_KEY = "feed_state"
REFRESH_CONFIG_KEY = "refresh_config"

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class StoreError(Exception):
    """A persistence write failed."""


class Store(Protocol):
    def load(self, key: str) -> Any | None: ...
    def save(self, key: str, value: Any) -> None: ...
    def delete(self, key: str) -> None: ...


def _lock(f, exclusive: bool = True) -> None:
    """Advisory file lock (Unix fcntl)."""
    try:
        op = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
        fcntl.flock(f.fileno(), op)
    except (OSError, AttributeError):
        pass


def _unlock(f) -> None:
    try:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
    except (OSError, AttributeError):
        pass


class JsonFileStore:
    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid store key: {key!r}")
        return self.directory / f"{key}.json"

    def load(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                _lock(f, exclusive=False)
                try:
                    return json.load(f)
                finally:
                    _unlock(f)
        except (OSError, ValueError) as exc:
            log.warning("Discarding unreadable %s: %s", path.name, exc)
            return None

    def save(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(value, ensure_ascii=False)
            with open(tmp, "w", encoding="utf-8") as f:
                _lock(f)
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
                _unlock(f)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as exc:
            raise StoreError(f"Could not write {path.name}: {exc}") from exc
        log.debug("Saved %s (%d bytes)", path.name, len(payload))

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StoreError(f"Could not delete {key}: {exc}") from exc


class MemoryStore:
    """Process-local store; values are deep-copied in and out like a real blob store."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    def load(self, key: str) -> Any | None:
        return copy.deepcopy(self._data.get(key))

    def save(self, key: str, value: Any) -> None:
        try:
            json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"Value for {key} is not serializable: {exc}") from exc
        self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)
