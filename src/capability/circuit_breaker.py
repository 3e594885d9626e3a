"""Circuit breaker — closed / open / half-open.

State transitions
─────────────────
  closed    --failure_count >= threshold-->  open
  open      --recovery window elapsed---->  half-open   (one trial call)
  half-open --success------------------->  closed
  half-open --failure------------------->  open        (window restarts)
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from src.contracts.capability import CircuitBreakerPolicy
from src.contracts.enums import BreakerStatus

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CircuitBreakerState:
    status: BreakerStatus
    failure_count: int
    last_failure_time: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time,
        }


class CircuitBreaker:
    """Thread-safe breaker shared by every execution of one capability."""

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout_ms: int = 10000,
        clock: Callable[[], float] = time.monotonic,
        name: str = "breaker",
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.failure_threshold = failure_threshold
        self.recovery_timeout_ms = recovery_timeout_ms
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._status = BreakerStatus.CLOSED
        self._failures = 0
        self._last_failure: float | None = None
        self._trial_in_flight = False

    @classmethod
    def from_policy(
        cls,
        policy: CircuitBreakerPolicy,
        clock: Callable[[], float] = time.monotonic,
        name: str = "breaker",
    ) -> CircuitBreaker:
        return cls(policy.failure_threshold, policy.recovery_timeout_ms, clock, name)

    def can_execute(self) -> bool:
        """Admit or refuse a call; may move ``open`` → ``half-open``."""
        with self._lock:
            if self._status is BreakerStatus.CLOSED:
                return True
            if self._status is BreakerStatus.OPEN:
                elapsed_ms = (self._clock() - (self._last_failure or 0.0)) * 1000
                if elapsed_ms < self.recovery_timeout_ms:
                    return False
                self._status = BreakerStatus.HALF_OPEN
                self._trial_in_flight = True
                log.info("%s: recovery window elapsed, half-open trial admitted", self.name)
                return True
            # half-open: a single trial at a time
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._status is not BreakerStatus.CLOSED:
                log.info("%s: closed after successful call", self.name)
            self._status = BreakerStatus.CLOSED
            self._failures = 0
            self._last_failure = None
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure = self._clock()
            self._trial_in_flight = False
            if self._status is BreakerStatus.HALF_OPEN:
                self._status = BreakerStatus.OPEN
                log.warning("%s: half-open trial failed, reopened", self.name)
            elif self._status is BreakerStatus.CLOSED and self._failures >= self.failure_threshold:
                self._status = BreakerStatus.OPEN
                log.warning(
                    "%s: opened after %d consecutive failures", self.name, self._failures
                )

    def state(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(self._status, self._failures, self._last_failure)

    @property
    def status(self) -> BreakerStatus:
        return self.state().status

    def reset(self) -> None:
        with self._lock:
            self._status = BreakerStatus.CLOSED
            self._failures = 0
            self._last_failure = None
            self._trial_in_flight = False
