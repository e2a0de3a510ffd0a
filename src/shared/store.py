"""Key/value state store shared by the limiter, guard and bot scorer.

Detectors never keep module-level maps; each one owns a ``StateStore`` and
goes through ``get`` / ``set`` / ``delete`` / ``scan_prefix``.  A single
process uses ``InMemoryStore``; an external cache can be substituted by
implementing the same five methods plus ``lock``.

Locking model
─────────────
  * ``lock(key)`` serializes read-modify-write on one key.  Locks are
    sharded by key hash, so unrelated keys rarely contend.
  * ``scan_prefix`` returns a point-in-time copy and takes no per-key lock;
    cross-key readers (global rate check, stats) work on that snapshot.
"""

from __future__ import annotations

import abc
import threading
import zlib
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

_DEFAULT_SHARDS = 64


class StateStore(abc.ABC):
    """Minimal contract every backing store must honour."""

    @abc.abstractmethod
    def get(self, key: str, default: Any = None) -> Any: ...

    @abc.abstractmethod
    def set(self, key: str, value: Any) -> None: ...

    @abc.abstractmethod
    def delete(self, key: str) -> None: ...

    @abc.abstractmethod
    def scan_prefix(self, prefix: str) -> list[tuple[str, Any]]:
        """Return ``(key, value)`` pairs whose key starts with *prefix*."""

    @abc.abstractmethod
    def lock(self, key: str) -> Any:
        """Context manager guarding read-modify-write on *key*."""

    @abc.abstractmethod
    def clear(self) -> None: ...

    def keys(self, prefix: str = "") -> list[str]:
        return [k for k, _ in self.scan_prefix(prefix)]

    def __len__(self) -> int:
        return len(self.scan_prefix(""))


class InMemoryStore(StateStore):
    """Dict-backed store with sharded per-key locks."""

    def __init__(self, shards: int = _DEFAULT_SHARDS) -> None:
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._data: dict[str, Any] = {}
        self._map_lock = threading.Lock()
        self._shards = [threading.RLock() for _ in range(shards)]

    def _shard(self, key: str) -> threading.RLock:
        return self._shards[zlib.crc32(key.encode("utf-8")) % len(self._shards)]

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._shard(key):
            yield

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._map_lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._map_lock:
            self._data.pop(key, None)

    def scan_prefix(self, prefix: str) -> list[tuple[str, Any]]:
        with self._map_lock:
            snapshot = list(self._data.items())
        if not prefix:
            return snapshot
        return [(k, v) for k, v in snapshot if k.startswith(prefix)]

    def clear(self) -> None:
        with self._map_lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data
