"""Capability runtime — resilient execution of one capability.

Execution order for ``await runtime.execute(raw_input, dependencies)``
───────────────────────────────────────────────────────────────────────
  1. validate input            → VALIDATION_ERROR, no output, nothing retried
  2. idempotency lookup        → cached output, ``attempts=0``
  3. per attempt:
       cancellation token set  → CANCELLED failure output
       timeout budget spent    → TIMEOUT_EXCEEDED failure output
       breaker refuses         → CIRCUIT_OPEN failure output
       run attempt             → success: breaker closed, output cached
                               → DependencyFailure: breaker failure, back off
  4. attempts exhausted        → DEPENDENCY_FAILURE failure output

Terminal failures come back as values on :class:`ExecutionResult`.  Only
programmer errors (anything that is not a :class:`DependencyFailure`)
propagate to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

from src.capability.backoff import backoff_delay_ms
from src.capability.circuit_breaker import CircuitBreaker
from src.capability.idempotency import IdempotencyStore
from src.contracts.capability import (
    AuditRecommendation,
    CapabilityExecutionPolicy,
    Evidence,
    Finding,
)
from src.contracts.common import generate_id, utc_now_iso
from src.contracts.errors import (
    DependencyFailure,
    ErrorCode,
    ErrorEnvelope,
    make_envelope,
)

log = logging.getLogger(__name__)


class CapabilityOutput(Protocol):
    def with_metadata(self, **changes: Any) -> Any: ...


In = TypeVar("In")
Out = TypeVar("Out", bound=CapabilityOutput)


class Capability(Protocol[In, Out]):
    """What a capability plugs into :class:`CapabilityRuntime`."""

    capability_id: str

    def validate(self, raw: Any) -> list[str]: ...

    def parse(self, raw: Any) -> In: ...

    def idempotency_key_of(self, inp: In) -> str | None: ...

    def with_idempotency_key(self, inp: In, key: str) -> In: ...

    def run(self, inp: In, dependencies: Any, attempt: int, key: str) -> Awaitable[Out]: ...

    def failure_output(
        self,
        inp: In,
        key: str,
        finding: Finding,
        recommendation: AuditRecommendation,
        attempts: int,
        started_at: str,
        elapsed_ms: int,
    ) -> Out: ...


@dataclass(frozen=True, slots=True)
class ExecutionResult(Generic[Out]):
    output: Out | None
    error: ErrorEnvelope | None = None
    cache_hit: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and self.output is not None


class CapabilityRuntime(Generic[In, Out]):
    """Owns the breaker and idempotency store of one capability.

    Parameters
    ──────────
    capability — validation, parsing, the attempt itself and failure outputs
    policy     — retry / timeout / breaker / TTL settings
    clock      — monotonic seconds; injected by tests
    sleep      — coroutine used for backoff when no cancel token is given
    """

    def __init__(
        self,
        capability: Capability[In, Out],
        policy: CapabilityExecutionPolicy,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        id_factory: Callable[[], str] = generate_id,
        now_iso: Callable[[], str] = utc_now_iso,
    ) -> None:
        self.capability = capability
        self.policy = policy
        self.breaker = CircuitBreaker.from_policy(
            policy.circuit_breaker, clock=clock, name=capability.capability_id
        )
        self.store: IdempotencyStore[Out] = IdempotencyStore(
            policy.idempotency_ttl_minutes, clock=clock
        )
        self._clock = clock
        self._sleep = sleep
        self._new_id = id_factory
        self._now_iso = now_iso

    async def execute(
        self,
        raw_input: Any,
        dependencies: Any = None,
        skip_idempotency: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionResult[Out]:
        cap = self.capability
        problems = cap.validate(raw_input)
        if problems:
            log.warning("%s: input rejected (%d problems)", cap.capability_id, len(problems))
            return ExecutionResult(
                output=None,
                error=make_envelope(
                    ErrorCode.VALIDATION_ERROR,
                    "; ".join(problems),
                    user_message="Input validation failed",
                    context={"problems": problems},
                ),
            )

        inp = cap.parse(raw_input)
        key = cap.idempotency_key_of(inp) or self._new_id()
        inp = cap.with_idempotency_key(inp, key)
        use_store = self.policy.idempotent and not skip_idempotency

        if use_store:
            cached = self.store.get(key)
            if cached is not None:
                log.info("%s: idempotency hit for %s", cap.capability_id, key)
                return ExecutionResult(output=cached.with_metadata(attempts=0), cache_hit=True)

        return await self._run_with_retry(inp, key, dependencies, use_store, cancel_event)

    async def _run_with_retry(
        self,
        inp: In,
        key: str,
        dependencies: Any,
        use_store: bool,
        cancel_event: asyncio.Event | None,
    ) -> ExecutionResult[Out]:
        cap = self.capability
        retry = self.policy.retry_policy
        budget_ms = self.policy.timeout_budget_ms
        started_at = self._now_iso()
        t0 = self._clock()
        last_error: DependencyFailure | None = None

        def elapsed_ms() -> int:
            return int((self._clock() - t0) * 1000)

        for attempt in range(1, retry.max_attempts + 1):
            consumed = attempt - 1
            if cancel_event is not None and cancel_event.is_set():
                return self._cancelled(inp, key, consumed, started_at, elapsed_ms())

            if elapsed_ms() >= budget_ms:
                self.breaker.record_failure()
                return self._timed_out(inp, key, consumed, started_at, elapsed_ms())

            if not self.breaker.can_execute():
                return self._circuit_open(inp, key, consumed, started_at, elapsed_ms())

            # the budget is cooperative: a started attempt runs to completion
            try:
                output = await cap.run(inp, dependencies, attempt, key)
            except DependencyFailure as exc:
                last_error = exc
                self.breaker.record_failure()
                log.warning(
                    "%s: attempt %d/%d failed: %s",
                    cap.capability_id, attempt, retry.max_attempts, exc,
                )
                if attempt < retry.max_attempts:
                    delay = backoff_delay_ms(attempt, retry)
                    if await self._pause(delay / 1000.0, cancel_event):
                        return self._cancelled(inp, key, attempt, started_at, elapsed_ms())
                continue
            except BaseException:
                # includes caller cancellation; releases a half-open trial
                self.breaker.record_failure()
                raise

            self.breaker.record_success()
            output = output.with_metadata(
                started_at=started_at,
                completed_at=self._now_iso(),
                attempts=attempt,
                execution_time_ms=elapsed_ms(),
            )
            if use_store:
                output = self.store.put_if_absent(key, output)
            log.info("%s: succeeded on attempt %d", cap.capability_id, attempt)
            return ExecutionResult(output=output)

        return self._exhausted(inp, key, retry.max_attempts, last_error, started_at, elapsed_ms())

    async def _pause(self, delay_s: float, cancel_event: asyncio.Event | None) -> bool:
        """Back off for *delay_s*; True when cancelled meanwhile."""
        if cancel_event is None:
            await self._sleep(delay_s)
            return False
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay_s)
        except TimeoutError:
            return False
        return True

    # ── terminal failure outputs ──────────────────────────────────────

    def _fail(
        self,
        code: ErrorCode,
        inp: In,
        key: str,
        finding: Finding,
        recommendation: AuditRecommendation,
        attempts: int,
        started_at: str,
        elapsed: int,
        cause: str | None = None,
    ) -> ExecutionResult[Out]:
        output = self.capability.failure_output(
            inp, key, finding, recommendation, attempts, started_at, elapsed
        )
        return ExecutionResult(
            output=output,
            error=make_envelope(code, finding.message, cause=cause, context={"attempts": attempts}),
        )

    def _finding_id(self, category: str) -> str:
        return f"finding-{category}-{self._new_id()[:8]}"

    def _circuit_open(
        self, inp: In, key: str, attempts: int, started_at: str, elapsed: int
    ) -> ExecutionResult[Out]:
        log.warning("%s: circuit open, execution refused", self.capability.capability_id)
        return self._fail(
            ErrorCode.CIRCUIT_OPEN,
            inp,
            key,
            Finding(
                id=self._finding_id("circuit-breaker"),
                severity="critical",
                category="circuit_breaker_open",
                message="Circuit breaker is open - too many recent failures",
                recommendation="Wait for circuit breaker recovery period",
            ),
            AuditRecommendation(
                priority="critical",
                description="Circuit breaker triggered - execution blocked",
                action="Investigate underlying issues and wait for recovery",
            ),
            attempts,
            started_at,
            elapsed,
        )

    def _timed_out(
        self, inp: In, key: str, attempts: int, started_at: str, elapsed: int
    ) -> ExecutionResult[Out]:
        budget = self.policy.timeout_budget_ms
        log.warning(
            "%s: timeout budget exhausted (%d/%d ms)",
            self.capability.capability_id, elapsed, budget,
        )
        return self._fail(
            ErrorCode.TIMEOUT_EXCEEDED,
            inp,
            key,
            Finding(
                id=self._finding_id("timeout"),
                severity="warning",
                category="timeout",
                message="Audit exceeded timeout budget",
                recommendation="Consider increasing timeout or reducing audit scope",
                evidence=(
                    Evidence(
                        type="timeout",
                        path="execution",
                        value={"budget_ms": budget, "elapsed_ms": elapsed},
                        description="Timeout budget exceeded",
                    ),
                ),
            ),
            AuditRecommendation(
                priority="high",
                description="Audit timed out",
                action="Retry with increased timeout or reduced scope",
            ),
            attempts,
            started_at,
            elapsed,
        )

    def _cancelled(
        self, inp: In, key: str, attempts: int, started_at: str, elapsed: int
    ) -> ExecutionResult[Out]:
        log.info("%s: cancelled after %d attempts", self.capability.capability_id, attempts)
        return self._fail(
            ErrorCode.CANCELLED,
            inp,
            key,
            Finding(
                id=self._finding_id("cancelled"),
                severity="warning",
                category="cancelled",
                message="Execution cancelled by caller",
                recommendation="Re-run the audit when ready",
            ),
            AuditRecommendation(
                priority="low",
                description="Audit cancelled",
                action="Re-run the audit if results are still needed",
            ),
            attempts,
            started_at,
            elapsed,
        )

    def _exhausted(
        self,
        inp: In,
        key: str,
        attempts: int,
        last_error: DependencyFailure | None,
        started_at: str,
        elapsed: int,
    ) -> ExecutionResult[Out]:
        msg = str(last_error) if last_error else "unknown error"
        log.error(
            "%s: all %d attempts failed: %s", self.capability.capability_id, attempts, msg
        )
        return self._fail(
            ErrorCode.DEPENDENCY_FAILURE,
            inp,
            key,
            Finding(
                id=self._finding_id("retry-exhausted"),
                severity="critical",
                category="retry_exhausted",
                message=f"All {attempts} retry attempts failed: {msg}",
                recommendation="Investigate underlying infrastructure issues",
                evidence=(
                    Evidence(
                        type="error",
                        path="execution",
                        value=msg,
                        description="Last retry attempt error",
                    ),
                ),
            ),
            AuditRecommendation(
                priority="critical",
                description="Audit failed after all retries",
                action="Investigate and fix underlying issues before retrying",
            ),
            attempts,
            started_at,
            elapsed,
            cause=type(last_error).__name__ if last_error else None,
        )
