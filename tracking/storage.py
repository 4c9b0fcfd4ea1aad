"""
Key-value persistence for ReelWatch.

The store mirrors the shape of the browser extension storage: a flat mapping
of string keys to JSON-serializable values. Two backends are provided:

- JsonFileStore: a single JSON file, written atomically on every change.
- MemoryStore: in-process dict, used by tests and embedding hosts.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a value could not be durably written."""


class KeyValueStore:
    """
    Base class for key-value stores.

    Subclasses implement _read_all() and _write_all(). Values handed out by
    get() are deep copies so callers can never mutate stored state in place.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, Any]:
        raise NotImplementedError

    def _write_all(self, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a single value.

        Args:
            key: Store key.
            default: Value returned when the key is absent.

        Returns:
            A copy of the stored value, or default.
        """
        with self._lock:
            data = self._read_all()
        if key not in data:
            return default
        return copy.deepcopy(data[key])

    def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Get several values at once; absent keys are omitted."""
        with self._lock:
            data = self._read_all()
        return {k: copy.deepcopy(data[k]) for k in keys if k in data}

    def set(self, key: str, value: Any) -> None:
        """
        Set a single value.

        Raises:
            StorageError: If the write failed.
        """
        self.set_many({key: value})

    def set_many(self, values: Dict[str, Any]) -> None:
        """
        Set several values in one write.

        Raises:
            StorageError: If the write failed.
        """
        with self._lock:
            data = self._read_all()
            data.update(copy.deepcopy(values))
            self._write_all(data)

    def remove(self, *keys: str) -> None:
        """Remove keys (missing keys are ignored)."""
        with self._lock:
            data = self._read_all()
            for key in keys:
                data.pop(key, None)
            self._write_all(data)

    def clear(self) -> None:
        """Remove every key."""
        with self._lock:
            self._write_all({})

    def snapshot(self) -> Dict[str, Any]:
        """Return a deep copy of the whole store."""
        with self._lock:
            return copy.deepcopy(self._read_all())


class MemoryStore(KeyValueStore):
    """In-memory store. Optionally seeded with initial data."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        super().__init__()
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def _read_all(self) -> Dict[str, Any]:
        return self._data

    def _write_all(self, data: Dict[str, Any]) -> None:
        self._data = data


class JsonFileStore(KeyValueStore):
    """
    Store backed by a single JSON file.

    The file is cached in memory after the first read. Every write goes
    to a temp file in the same directory and is then renamed over the
    target, so a crash mid-write never leaves a truncated store.
    """

    def __init__(self, data_file: Path) -> None:
        super().__init__()
        self.data_file = Path(data_file)
        self._cache: Optional[Dict[str, Any]] = None

    def _read_all(self) -> Dict[str, Any]:
        if self._cache is not None:
            return self._cache

        self._cache = {}
        if self.data_file.exists():
            try:
                with open(self.data_file, 'r') as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    self._cache = data
                    logger.debug(f"Loaded store with {len(data)} keys from {self.data_file}")
                else:
                    logger.warning(f"Store file {self.data_file} is not a JSON object. Starting fresh.")
            except (json.JSONDecodeError, IOError, OSError, PermissionError) as e:
                logger.warning(f"Failed to load store: {e}. Starting fresh.")
        return self._cache

    def _write_all(self, data: Dict[str, Any]) -> None:
        """
        Write the store atomically.

        The in-memory cache is updated even when the disk write fails, so
        the running tracker keeps its state; the failure is re-raised as
        StorageError for the caller to report.
        """
        self._cache = data
        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)

            temp_fd, temp_path = tempfile.mkstemp(
                suffix='.tmp',
                prefix='reelwatch_',
                dir=self.data_file.parent
            )

            try:
                with os.fdopen(temp_fd, 'w') as f:
                    json.dump(data, f, indent=2)
                os.replace(temp_path, self.data_file)
                logger.debug(f"Saved store to {self.data_file}")
            except Exception:
                # Clean up temp file on error
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
                raise

        except (IOError, OSError, PermissionError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to save store {self.data_file}: {e}") from e
