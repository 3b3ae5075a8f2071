"""In-memory key/value stores with lazily enforced expiry."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, TypeVar

from smart_time_tracker.core.models import utcnow

V = TypeVar("V")


@dataclass(frozen=True)
class PairingEntry:
    user_id: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenEntry:
    user_id: str
    created_at: datetime


@dataclass
class _Slot(Generic[V]):
    value: V
    expires_at: datetime


class ExpiringStore(Generic[V]):
    """Thread-safe map whose entries die at a fixed instant.

    There is no background sweeper. Callers sweep at the top of each
    operation, and every read re-checks liveness, so an expired entry is
    never handed out even before it has been swept.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._entries: dict[str, _Slot[V]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, value: V, expires_at: datetime) -> None:
        with self._lock:
            self._entries[key] = _Slot(value, expires_at)

    def put_if_absent(self, key: str, value: V, expires_at: datetime) -> bool:
        """Store unless a live entry already holds ``key``."""
        with self._lock:
            slot = self._entries.get(key)
            if slot is not None and self._is_live(slot):
                return False
            self._entries[key] = _Slot(value, expires_at)
            return True

    def get_if_live(self, key: str) -> V | None:
        with self._lock:
            slot = self._entries.get(key)
            if slot is None or not self._is_live(slot):
                return None
            return slot.value

    def pop_if_live(self, key: str) -> V | None:
        """Remove ``key`` and return its value if it was live.

        Lookup and removal happen under one lock, so of several concurrent
        callers at most one gets the value.
        """
        with self._lock:
            slot = self._entries.pop(key, None)
            if slot is None or not self._is_live(slot):
                return None
            return slot.value

    def delete_if_present(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def sweep_expired(self) -> int:
        """Remove every entry past its expiry; returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, slot in self._entries.items() if slot.expires_at <= now]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _is_live(self, slot: _Slot[V]) -> bool:
        return slot.expires_at > self._clock()


class PairingCodeStore(ExpiringStore[PairingEntry]):
    """Pairing code -> user binding."""


class TokenStore(ExpiringStore[TokenEntry]):
    """Bearer token -> user binding."""
