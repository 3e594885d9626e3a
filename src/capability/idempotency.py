"""In-process idempotency store with TTL.

Entries expire lazily on read; ``purge_expired`` drops them eagerly.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class IdempotencyEntry(Generic[T]):
    key: str
    output: T
    expires_at: float


class IdempotencyStore(Generic[T]):
    def __init__(
        self,
        ttl_minutes: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_minutes * 60.0
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, IdempotencyEntry[T]] = {}

    def _live(self, key: str) -> IdempotencyEntry[T] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> T | None:
        with self._lock:
            entry = self._live(key)
            return entry.output if entry else None

    def set(self, key: str, output: T) -> None:
        with self._lock:
            self._entries[key] = IdempotencyEntry(key, output, self._clock() + self.ttl_seconds)

    def put_if_absent(self, key: str, output: T) -> T:
        """Store *output* unless a live entry exists; return whichever is stored."""
        with self._lock:
            entry = self._live(key)
            if entry is not None:
                log.debug("Idempotency race on %s: keeping first writer", key)
                return entry.output
            self._entries[key] = IdempotencyEntry(key, output, self._clock() + self.ttl_seconds)
            return output

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            stale = [k for k, e in self._entries.items() if now > e.expires_at]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
