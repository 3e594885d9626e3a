"""Reliability report contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.contracts.capability import Finding
from src.contracts.common import drop_none, is_identifier, is_iso_timestamp, parse_ts
from src.contracts.enums import ReportType, values
from src.contracts.job import (
    BUNDLE_SCHEMA_VERSION,
    MODULE_ID,
    Canonicalization,
    IdempotencyKey,
)

_REPORT_TYPES = values(ReportType)


@dataclass(frozen=True, slots=True)
class ReportInput:
    tenant_id: str
    project_id: str
    report_type: ReportType
    period_start: str
    period_end: str
    services: tuple[str, ...] = ()
    profile_id: str = "ops-base"

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> ReportInput:
        return cls(
            tenant_id=row["tenant_id"],
            project_id=row["project_id"],
            report_type=ReportType(row["report_type"]),
            period_start=row["period_start"],
            period_end=row["period_end"],
            services=tuple(row.get("services") or ()),
            profile_id=row.get("profile_id", "ops-base"),
        )


def validate_report_input(row: Any) -> list[str]:
    if not isinstance(row, dict):
        return ["report must be an object"]
    problems: list[str] = []
    for key in ("tenant_id", "project_id"):
        if not is_identifier(row.get(key)):
            problems.append(f"{key}: must be an identifier (1-256 chars)")
    if row.get("report_type") not in _REPORT_TYPES:
        problems.append(f"report_type: unknown type '{row.get('report_type')}'")
    start, end = row.get("period_start"), row.get("period_end")
    if not (is_iso_timestamp(start) and is_iso_timestamp(end)):
        problems.append("period_start/period_end: must be ISO-8601 datetimes")
    elif parse_ts(start) > parse_ts(end):
        problems.append("period_start: must not be after period_end")
    services = row.get("services")
    if services is not None and (
        not isinstance(services, list) or not all(isinstance(s, str) for s in services)
    ):
        problems.append("services: must be a list of strings")
    return problems


@dataclass(frozen=True, slots=True)
class ServiceHealth:
    service_name: str
    status: str  # healthy | degraded | unhealthy | unknown
    availability_percent: float
    latency_p95_ms: float | None = None
    error_rate_percent: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return drop_none(
            {
                "service_name": self.service_name,
                "status": self.status,
                "availability_percent": self.availability_percent,
                "latency_p95_ms": self.latency_p95_ms,
                "error_rate_percent": self.error_rate_percent,
            }
        )


@dataclass(frozen=True, slots=True)
class Anomaly:
    anomaly_id: str
    type: str  # spike | drop | pattern_break | correlation | threshold_breach
    service: str
    metric: str
    detected_at: str
    severity: str
    baseline_value: float
    observed_value: float
    deviation_percent: float
    contributing_factors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "anomaly_id": self.anomaly_id,
            "type": self.type,
            "service": self.service,
            "metric": self.metric,
            "detected_at": self.detected_at,
            "severity": self.severity,
            "baseline_value": self.baseline_value,
            "observed_value": self.observed_value,
            "deviation_percent": self.deviation_percent,
            "contributing_factors": list(self.contributing_factors),
        }


@dataclass(frozen=True, slots=True)
class ReportRecommendation:
    priority: str  # low | medium | high | critical
    category: str
    description: str
    expected_impact: str
    implementation_effort: str  # low | medium | high
    related_findings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "priority": self.priority,
            "category": self.category,
            "description": self.description,
            "expected_impact": self.expected_impact,
            "implementation_effort": self.implementation_effort,
            "related_findings": list(self.related_findings),
        }


@dataclass(frozen=True, slots=True)
class ReliabilityReport:
    report_id: str
    tenant_id: str
    project_id: str
    report_type: ReportType
    period_start: str
    period_end: str
    generated_at: str
    overall_health_score: float
    report_hash: str
    service_health: tuple[ServiceHealth, ...] = ()
    anomalies: tuple[Anomaly, ...] = ()
    findings: tuple[Finding, ...] = ()
    recommendations: tuple[ReportRecommendation, ...] = ()
    profile_id: str = "ops-base"
    redaction_applied: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "report_id": self.report_id,
            "tenant_id": self.tenant_id,
            "project_id": self.project_id,
            "report_type": self.report_type.value,
            "period_start": self.period_start,
            "period_end": self.period_end,
            "generated_at": self.generated_at,
            "overall_health_score": self.overall_health_score,
            "service_health": [s.to_dict() for s in self.service_health],
            "anomalies": [a.to_dict() for a in self.anomalies],
            "findings": [f.to_dict() for f in self.findings],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "profile_id": self.profile_id,
            "report_hash": self.report_hash,
            "redaction_applied": self.redaction_applied,
        }


@dataclass(frozen=True, slots=True)
class ReportBundle:
    """Report wrapped with the same hash-addressed envelope as job bundles."""

    tenant_id: str
    project_id: str
    trace_id: str
    created_at: str
    report: ReliabilityReport
    idempotency_keys: tuple[IdempotencyKey, ...]
    canonicalization: Canonicalization
    job_types: tuple[str, ...] = field(default=())
    schema_version: str = BUNDLE_SCHEMA_VERSION
    module_id: str = MODULE_ID
    dry_run: bool = True

    def hash_material(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "module_id": self.module_id,
            "tenant_id": self.tenant_id,
            "project_id": self.project_id,
            "trace_id": self.trace_id,
            "created_at": self.created_at,
            "dry_run": self.dry_run,
            "report": self.report.to_dict(),
            "job_types": list(self.job_types),
            "idempotency_keys": [k.to_dict() for k in self.idempotency_keys],
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.hash_material()
        data["canonicalization"] = self.canonicalization.to_dict()
        return data
