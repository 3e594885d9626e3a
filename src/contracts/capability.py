"""Capability contracts — execution policy plus ops.health_audit input/output."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from src.contracts.common import drop_none, is_identifier, is_iso_timestamp, parse_ts
from src.contracts.enums import AuditDepth, AuditStatus, BackoffStrategy, values

MAX_SERVICES = 50
DEFAULT_SERVICES = ("api", "database", "cache", "queue")

_DEPTHS = values(AuditDepth)


# ═══════════════════════════════════════════════════════════════════════════
#  Execution policy
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    initial_delay_ms: int = 100
    max_delay_ms: int = 5000
    backoff_multiplier: float = 2.0


@dataclass(frozen=True, slots=True)
class CircuitBreakerPolicy:
    failure_threshold: int = 5
    recovery_timeout_ms: int = 10000


@dataclass(frozen=True, slots=True)
class CapabilityExecutionPolicy:
    """Static per-capability execution metadata."""

    idempotent: bool = True
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    timeout_budget_ms: int = 60000
    circuit_breaker: CircuitBreakerPolicy = field(default_factory=CircuitBreakerPolicy)
    idempotency_ttl_minutes: float = 60.0

    def to_dict(self) -> dict[str, Any]:
        rp = self.retry_policy
        cb = self.circuit_breaker
        return {
            "idempotent": self.idempotent,
            "retry_policy": {
                "max_attempts": rp.max_attempts,
                "backoff_strategy": rp.backoff_strategy.value,
                "initial_delay_ms": rp.initial_delay_ms,
                "max_delay_ms": rp.max_delay_ms,
                "backoff_multiplier": rp.backoff_multiplier,
            },
            "timeout_budget_ms": self.timeout_budget_ms,
            "circuit_breaker": {
                "failure_threshold": cb.failure_threshold,
                "recovery_timeout_ms": cb.recovery_timeout_ms,
            },
        }


HEALTH_AUDIT_CAPABILITY_ID = "ops.health_audit"

HEALTH_AUDIT_POLICY = CapabilityExecutionPolicy(
    idempotent=True,
    retry_policy=RetryPolicy(
        max_attempts=3,
        backoff_strategy=BackoffStrategy.EXPONENTIAL,
        initial_delay_ms=100,
        max_delay_ms=5000,
        backoff_multiplier=2.0,
    ),
    timeout_budget_ms=60000,
    circuit_breaker=CircuitBreakerPolicy(failure_threshold=5, recovery_timeout_ms=10000),
)


# ═══════════════════════════════════════════════════════════════════════════
#  Health audit input
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class TimeRange:
    start: str
    end: str

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True, slots=True)
class HealthAuditInput:
    tenant_id: str
    project_id: str
    services: tuple[str, ...] = DEFAULT_SERVICES
    audit_depth: AuditDepth = AuditDepth.STANDARD
    include_metrics: tuple[str, ...] = ()
    time_range: TimeRange | None = None
    idempotency_key: str | None = None

    def with_idempotency_key(self, key: str) -> HealthAuditInput:
        return replace(self, idempotency_key=key)

    def to_dict(self) -> dict[str, Any]:
        return drop_none(
            {
                "tenant_id": self.tenant_id,
                "project_id": self.project_id,
                "services": list(self.services),
                "audit_depth": self.audit_depth,
                "include_metrics": list(self.include_metrics),
                "time_range": self.time_range.to_dict() if self.time_range else None,
                "idempotency_key": self.idempotency_key,
            }
        )


def validate_health_audit_input(raw: Any) -> list[str]:
    """Return a list of validation problems (empty = valid)."""
    if not isinstance(raw, dict):
        return ["input must be an object"]

    problems: list[str] = []
    for key in ("tenant_id", "project_id"):
        if not is_identifier(raw.get(key)):
            problems.append(f"{key}: must be an identifier (1-256 chars)")

    services = raw.get("services")
    if services is not None:
        if not isinstance(services, list) or not all(
            isinstance(s, str) and s for s in services
        ):
            problems.append("services: must be a list of non-empty strings")
        elif not services:
            problems.append("services: must not be empty when provided")
        elif len(services) > MAX_SERVICES:
            problems.append(f"services: at most {MAX_SERVICES} services per audit")

    metrics = raw.get("include_metrics")
    if metrics is not None and (
        not isinstance(metrics, list) or not all(isinstance(m, str) for m in metrics)
    ):
        problems.append("include_metrics: must be a list of strings")

    depth = raw.get("audit_depth", AuditDepth.STANDARD.value)
    if depth not in _DEPTHS:
        problems.append(f"audit_depth: unknown depth '{depth}'")

    time_range = raw.get("time_range")
    if time_range is not None:
        if not isinstance(time_range, dict):
            problems.append("time_range: must be an object")
        elif not (
            is_iso_timestamp(time_range.get("start")) and is_iso_timestamp(time_range.get("end"))
        ):
            problems.append("time_range: start and end must be ISO-8601 datetimes")
        elif parse_ts(time_range["start"]) > parse_ts(time_range["end"]):
            problems.append("time_range: start must not be after end")

    key = raw.get("idempotency_key")
    if key is not None and (not isinstance(key, str) or not key):
        problems.append("idempotency_key: must be a non-empty string")
    return problems


def parse_health_audit_input(raw: dict[str, Any]) -> HealthAuditInput:
    """Build the input record. Call :func:`validate_health_audit_input` first."""
    tr = raw.get("time_range")
    return HealthAuditInput(
        tenant_id=raw["tenant_id"],
        project_id=raw["project_id"],
        services=tuple(raw.get("services") or DEFAULT_SERVICES),
        audit_depth=AuditDepth(raw.get("audit_depth", AuditDepth.STANDARD.value)),
        include_metrics=tuple(raw.get("include_metrics") or ()),
        time_range=TimeRange(start=tr["start"], end=tr["end"]) if tr else None,
        idempotency_key=raw.get("idempotency_key"),
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Health audit output
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Evidence:
    type: str
    path: str
    value: Any
    description: str

    def to_dict(self) -> dict[str, Any]:
        return drop_none(
            {
                "type": self.type,
                "path": self.path,
                "value": self.value,
                "description": self.description,
            }
        )


@dataclass(frozen=True, slots=True)
class Finding:
    id: str
    severity: str  # info | opportunity | warning | critical
    category: str
    message: str
    recommendation: str = ""
    evidence: tuple[Evidence, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity,
            "category": self.category,
            "message": self.message,
            "recommendation": self.recommendation,
            "evidence": [e.to_dict() for e in self.evidence],
        }


@dataclass(frozen=True, slots=True)
class AuditRecommendation:
    priority: str  # low | medium | high | critical
    description: str
    action: str

    def to_dict(self) -> dict[str, str]:
        return {"priority": self.priority, "description": self.description, "action": self.action}


@dataclass(frozen=True, slots=True)
class ExecutionMetadata:
    started_at: str
    completed_at: str
    attempts: int
    execution_time_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "attempts": self.attempts,
            "execution_time_ms": self.execution_time_ms,
        }


@dataclass(frozen=True, slots=True)
class HealthAuditOutput:
    audit_id: str
    status: AuditStatus
    services_audited: tuple[str, ...]
    findings: tuple[Finding, ...]
    metrics: dict[str, float]
    recommendations: tuple[AuditRecommendation, ...]
    execution_metadata: ExecutionMetadata
    idempotency_key: str | None = None

    def with_metadata(self, **changes: Any) -> HealthAuditOutput:
        return replace(self, execution_metadata=replace(self.execution_metadata, **changes))

    def findings_by_category(self, category: str) -> list[Finding]:
        return [f for f in self.findings if f.category == category]

    def to_dict(self) -> dict[str, Any]:
        return drop_none(
            {
                "audit_id": self.audit_id,
                "status": self.status,
                "services_audited": list(self.services_audited),
                "findings": [f.to_dict() for f in self.findings],
                "metrics": dict(self.metrics),
                "recommendations": [r.to_dict() for r in self.recommendations],
                "execution_metadata": self.execution_metadata.to_dict(),
                "idempotency_key": self.idempotency_key,
            }
        )
