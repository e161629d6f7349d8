"""
Fast key-value cache used for session state and idempotency markers.

KeyValueCache is the interface the engine needs. InMemoryCache is the
process-local implementation used in tests and single-process deployments; a
networked cache only has to offer the same five operations, with
set_if_absent mapped onto its atomic conditional write (SET NX EX or
equivalent).
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple


class KeyValueCache(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl: Optional[float] = None) -> None: ...

    def set_if_absent(self, key: str, value: str, ttl: Optional[float] = None) -> bool: ...

    def delete(self, *keys: str) -> int: ...

    def incr(self, key: str, amount: int = 1) -> int: ...


class InMemoryCache:
    """
    Thread-safe dict with per-key expiry.

    Args:
        clock: Returns the current time in seconds; defaults to
            time.monotonic. Tests pass a fake clock to expire keys.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        item = self._data.get(key)
        if item is None:
            return None
        expires_at = item[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return item

    def _expiry(self, ttl: Optional[float]) -> Optional[float]:
        return None if ttl is None else self._clock() + ttl

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._live(key)
            return None if item is None else item[0]

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._data[key] = (str(value), self._expiry(ttl))

    def set_if_absent(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Store value only when key is absent (or expired). True if stored."""
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (str(value), self._expiry(ttl))
            return True

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._live(key) is not None:
                    removed += 1
                self._data.pop(key, None)
        return removed

    def incr(self, key: str, amount: int = 1) -> int:
        with self._lock:
            item = self._live(key)
            value = (int(item[0]) if item else 0) + amount
            self._data[key] = (str(value), item[1] if item else None)
            return value

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for key in list(self._data) if self._live(key) is not None)


def session_key(response_id: str) -> str:
    return f"session:{response_id}"


def marker_key(response_id: str, status: Any) -> str:
    status_value = status.value if hasattr(status, "value") else status
    return f"metric_counted:{response_id}:{status_value}"
