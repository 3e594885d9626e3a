"""Shared fixtures for Ops Autopilot tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import pytest

from src.contracts.alert import Alert
from src.contracts.capability import (
    CapabilityExecutionPolicy,
    CircuitBreakerPolicy,
    RetryPolicy,
)
from src.contracts.correlation import CorrelationRule, MatchCriterion
from src.contracts.enums import BackoffStrategy, CorrelationLogic

BASE_TS = "2026-02-26T10:00:00Z"

# ── Helper: create Alert with sensible defaults ─────────────────────────


def make_alert(
    *,
    alert_id: str = "alert-001",
    tenant_id: str = "tenant-a",
    project_id: str = "project-a",
    source: str = "prometheus",
    status: str = "open",
    title: str = "High error rate",
    description: str = "test alert",
    severity: str = "warning",
    service: str = "api-service",
    timestamp: str = BASE_TS,
    metric: str | None = "error_rate",
    threshold: float | None = None,
    current_value: float | None = None,
) -> Alert:
    return Alert(
        alert_id=alert_id,
        tenant_id=tenant_id,
        project_id=project_id,
        source=source,
        status=status,
        title=title,
        description=description,
        severity=severity,
        service=service,
        timestamp=timestamp,
        metric=metric,
        threshold=threshold,
        current_value=current_value,
    )


def make_rule(
    *,
    rule_id: str = "test-rule",
    logic: CorrelationLogic = CorrelationLogic.SAME_SERVICE,
    criteria: tuple[MatchCriterion, ...] = (MatchCriterion("service", "equals", "{{service}}"),),
    window: int = 10,
    min_alerts: int = 2,
    enabled: bool = True,
) -> CorrelationRule:
    return CorrelationRule(
        rule_id=rule_id,
        name=rule_id,
        correlation_logic=logic,
        match_criteria=criteria,
        time_window_minutes=window,
        min_alerts=min_alerts,
        enabled=enabled,
    )


def make_policy(
    *,
    max_attempts: int = 3,
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL,
    initial_delay_ms: int = 100,
    max_delay_ms: int = 5000,
    multiplier: float = 2.0,
    timeout_budget_ms: int = 60000,
    failure_threshold: int = 5,
    recovery_timeout_ms: int = 10000,
    idempotent: bool = True,
) -> CapabilityExecutionPolicy:
    return CapabilityExecutionPolicy(
        idempotent=idempotent,
        retry_policy=RetryPolicy(
            max_attempts=max_attempts,
            backoff_strategy=strategy,
            initial_delay_ms=initial_delay_ms,
            max_delay_ms=max_delay_ms,
            backoff_multiplier=multiplier,
        ),
        timeout_budget_ms=timeout_budget_ms,
        circuit_breaker=CircuitBreakerPolicy(
            failure_threshold=failure_threshold,
            recovery_timeout_ms=recovery_timeout_ms,
        ),
    )


# ── Timestamp helpers ────────────────────────────────────────────────────


def ts_offset(base: str = BASE_TS, seconds: int = 0) -> str:
    """Return an ISO-8601 timestamp offset from *base* by *seconds*."""
    dt = datetime.fromisoformat(base.replace("Z", "+00:00"))
    dt += timedelta(seconds=seconds)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_seconds: float) -> None:
    return None


# ── Input fixtures ───────────────────────────────────────────────────────


@pytest.fixture
def audit_input() -> dict[str, Any]:
    return {
        "tenant_id": "tenant-a",
        "project_id": "project-a",
        "services": ["api", "database", "cache"],
        "audit_depth": "standard",
    }


@pytest.fixture
def analyze_row() -> dict[str, Any]:
    """Input document with two correlated api alerts and one critical alert."""
    return {
        "tenant_id": "tenant-a",
        "project_id": "project-a",
        "trace_id": "trace-001",
        "alerts": [
            make_alert(alert_id="a1", severity="critical", timestamp=ts_offset(seconds=0)).to_dict(),
            make_alert(
                alert_id="a2", metric="latency_p95", timestamp=ts_offset(seconds=60)
            ).to_dict(),
            make_alert(
                alert_id="a3", service="frontend", timestamp=ts_offset(seconds=660)
            ).to_dict(),
        ],
        "report": {
            "tenant_id": "tenant-a",
            "project_id": "project-a",
            "report_type": "health_check",
            "period_start": "2026-02-26T00:00:00Z",
            "period_end": "2026-02-27T00:00:00Z",
            "services": ["api-service", "frontend"],
        },
    }
