"""``ops.health_audit`` — multi-service health audit capability.

One attempt fans out ``check_service_health`` to every requested service.
Per-service failures become ``dependency_failure`` findings; only when every
service fails does the attempt raise :class:`DependencyFailure` so that the
runtime retries it.  Metrics are fetched for audited services only.

Audit depth
───────────
  surface  — health checks only
  standard — health checks + metrics
  deep     — standard + threshold findings (error rate, latency, availability)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from src.capability.policy import Threshold, get_execution_policy, load_thresholds
from src.capability.runner import CapabilityRuntime, ExecutionResult
from src.contracts.capability import (
    HEALTH_AUDIT_CAPABILITY_ID,
    AuditRecommendation,
    Evidence,
    ExecutionMetadata,
    Finding,
    HealthAuditInput,
    HealthAuditOutput,
    TimeRange,
    parse_health_audit_input,
    validate_health_audit_input,
)
from src.contracts.common import generate_id, utc_now_iso
from src.contracts.enums import AuditDepth, AuditStatus, ServiceStatus
from src.contracts.errors import DependencyFailure

log = logging.getLogger(__name__)

HealthCheck = Callable[[str], Awaitable[dict[str, Any]]]
MetricsFetch = Callable[[str, TimeRange | None], Awaitable[dict[str, Any]]]


async def default_check_service_health(service: str) -> dict[str, Any]:
    return {
        "status": ServiceStatus.HEALTHY.value,
        "availability": 99.9,
        "latency_p95": 150,
        "error_rate": 0.1,
    }


async def default_fetch_service_metrics(
    service: str, time_range: TimeRange | None = None
) -> dict[str, Any]:
    return {
        "status": ServiceStatus.HEALTHY.value,
        "metrics": {"cpu": 45, "memory": 60, "disk": 30},
    }


@dataclass(slots=True)
class AuditDependencies:
    """Injected collaborators; defaults report every service healthy."""

    check_service_health: HealthCheck = default_check_service_health
    fetch_service_metrics: MetricsFetch = default_fetch_service_metrics


async def perform_audit(
    inp: HealthAuditInput,
    deps: AuditDependencies,
    attempt: int,
    idempotency_key: str,
    thresholds: dict[str, Threshold] | None = None,
    id_factory: Callable[[], str] = generate_id,
    now_iso: Callable[[], str] = utc_now_iso,
) -> HealthAuditOutput:
    """Run one audit attempt.

    Raises
    ──────
    DependencyFailure — every service health check failed
    """
    started_at = now_iso()
    services = list(inp.services)
    findings: list[Finding] = []
    recommendations: list[AuditRecommendation] = []
    audited: list[str] = []
    failures: dict[str, str] = {}

    results = await asyncio.gather(
        *(deps.check_service_health(s) for s in services), return_exceptions=True
    )

    for service, result in zip(services, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            err = str(result) or type(result).__name__
            failures[service] = err
            findings.append(
                Finding(
                    id=f"finding-{service}-error-{id_factory()[:8]}",
                    severity="critical",
                    category="dependency_failure",
                    message=f"Failed to audit {service}: {err}",
                    recommendation="Verify monitoring infrastructure connectivity",
                    evidence=(
                        Evidence(
                            type="error",
                            path=f"services/{service}",
                            value=err,
                            description=f"Error during {service} audit",
                        ),
                    ),
                )
            )
            continue

        audited.append(service)
        health_status = result.get("status", ServiceStatus.UNKNOWN.value)
        if health_status != ServiceStatus.HEALTHY.value:
            unhealthy = health_status == ServiceStatus.UNHEALTHY.value
            findings.append(
                Finding(
                    id=f"finding-{service}-{id_factory()[:8]}",
                    severity="critical" if unhealthy else "warning",
                    category="service_health",
                    message=f"{service} is {health_status}",
                    recommendation=(
                        f"Investigate {service} degradation and consider scaling or restarting"
                    ),
                    evidence=(
                        Evidence(
                            type="health_check",
                            path=f"services/{service}/health",
                            value=dict(result),
                            description=f"Health status for {service}",
                        ),
                    ),
                )
            )
            recommendations.append(
                AuditRecommendation(
                    priority="critical" if unhealthy else "high",
                    description=f"{service} requires attention",
                    action=f"Check {service} logs and metrics",
                )
            )

        if inp.audit_depth is AuditDepth.DEEP and thresholds:
            findings.extend(_threshold_findings(service, result, thresholds, id_factory))

    if failures and not audited:
        first = next(iter(failures.values()))
        raise DependencyFailure(
            f"All {len(services)} service checks failed: {first}", failures=failures
        )

    metrics: dict[str, float] = {}
    if audited and inp.audit_depth is not AuditDepth.SURFACE:
        metrics = await _collect_metrics(inp, deps, audited)

    status = (
        AuditStatus.PARTIAL
        if any(f.severity == "critical" for f in findings)
        else AuditStatus.SUCCESS
    )
    log.info(
        "Audit attempt %d: %d/%d services audited, %d findings, status=%s",
        attempt, len(audited), len(services), len(findings), status.value,
    )
    return HealthAuditOutput(
        audit_id=id_factory(),
        status=status,
        services_audited=tuple(audited),
        findings=tuple(findings),
        metrics=metrics,
        recommendations=tuple(recommendations),
        execution_metadata=ExecutionMetadata(
            started_at=started_at,
            completed_at=now_iso(),
            attempts=attempt,
            execution_time_ms=0,
        ),
        idempotency_key=idempotency_key,
    )


def _threshold_findings(
    service: str,
    health: dict[str, Any],
    thresholds: dict[str, Threshold],
    id_factory: Callable[[], str],
) -> list[Finding]:
    out: list[Finding] = []
    for field_name, thr in sorted(thresholds.items()):
        value = health.get(field_name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        level = thr.level(float(value))
        if level is None:
            continue
        limit = thr.critical if level == "critical" else thr.warning
        out.append(
            Finding(
                id=f"finding-{service}-{field_name}-{id_factory()[:8]}",
                severity=level,
                category="service_threshold",
                message=f"{service} {field_name} {value} breaches {level} threshold {limit}",
                recommendation=f"Review {service} {field_name} trend and capacity",
                evidence=(
                    Evidence(
                        type="threshold",
                        path=f"services/{service}/{field_name}",
                        value={"observed": value, "threshold": limit},
                        description=f"{field_name} threshold check for {service}",
                    ),
                ),
            )
        )
    return out


async def _collect_metrics(
    inp: HealthAuditInput,
    deps: AuditDependencies,
    audited: list[str],
) -> dict[str, float]:
    wanted = set(inp.include_metrics)
    results = await asyncio.gather(
        *(deps.fetch_service_metrics(s, inp.time_range) for s in audited),
        return_exceptions=True,
    )
    metrics: dict[str, float] = {}
    for service, result in zip(audited, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            log.warning("Metrics fetch for %s failed: %s", service, result)
            continue
        for name, value in (result.get("metrics") or {}).items():
            if wanted and name not in wanted:
                continue
            metrics[f"{service}.{name}"] = float(value)
    return metrics


# ═══════════════════════════════════════════════════════════════════════════
#  Capability wiring
# ═══════════════════════════════════════════════════════════════════════════


class HealthAuditCapability:
    """Plugs :func:`perform_audit` into :class:`CapabilityRuntime`."""

    capability_id = HEALTH_AUDIT_CAPABILITY_ID

    def __init__(
        self,
        thresholds: dict[str, Threshold] | None = None,
        id_factory: Callable[[], str] = generate_id,
        now_iso: Callable[[], str] = utc_now_iso,
    ) -> None:
        self.thresholds = thresholds if thresholds is not None else load_thresholds(None)
        self._new_id = id_factory
        self._now_iso = now_iso

    def validate(self, raw: Any) -> list[str]:
        return validate_health_audit_input(raw)

    def parse(self, raw: Any) -> HealthAuditInput:
        return parse_health_audit_input(raw)

    def idempotency_key_of(self, inp: HealthAuditInput) -> str | None:
        return inp.idempotency_key

    def with_idempotency_key(self, inp: HealthAuditInput, key: str) -> HealthAuditInput:
        return inp.with_idempotency_key(key)

    async def run(
        self,
        inp: HealthAuditInput,
        dependencies: AuditDependencies | None,
        attempt: int,
        key: str,
    ) -> HealthAuditOutput:
        return await perform_audit(
            inp,
            dependencies or AuditDependencies(),
            attempt,
            key,
            thresholds=self.thresholds,
            id_factory=self._new_id,
            now_iso=self._now_iso,
        )

    def failure_output(
        self,
        inp: HealthAuditInput,
        key: str,
        finding: Finding,
        recommendation: AuditRecommendation,
        attempts: int,
        started_at: str,
        elapsed_ms: int,
    ) -> HealthAuditOutput:
        return HealthAuditOutput(
            audit_id=self._new_id(),
            status=AuditStatus.FAILURE,
            services_audited=(),
            findings=(finding,),
            metrics={},
            recommendations=(recommendation,),
            execution_metadata=ExecutionMetadata(
                started_at=started_at,
                completed_at=self._now_iso(),
                attempts=attempts,
                execution_time_ms=elapsed_ms,
            ),
            idempotency_key=key,
        )


def create_health_audit_runtime(
    config_dir: str | Path | None = None,
    **runtime_kwargs: Any,
) -> CapabilityRuntime[HealthAuditInput, HealthAuditOutput]:
    """Runtime with policy / thresholds from *config_dir* (built-ins when None)."""
    policy = get_execution_policy(config_dir, HEALTH_AUDIT_CAPABILITY_ID)
    capability = HealthAuditCapability(
        thresholds=load_thresholds(config_dir),
        id_factory=runtime_kwargs.get("id_factory", generate_id),
        now_iso=runtime_kwargs.get("now_iso", utc_now_iso),
    )
    return CapabilityRuntime(capability, policy, **runtime_kwargs)


async def execute_health_audit(
    raw_input: Any,
    dependencies: AuditDependencies | None = None,
    runtime: CapabilityRuntime[HealthAuditInput, HealthAuditOutput] | None = None,
    skip_idempotency: bool = False,
) -> ExecutionResult[HealthAuditOutput]:
    rt = runtime or create_health_audit_runtime()
    return await rt.execute(raw_input, dependencies, skip_idempotency=skip_idempotency)
