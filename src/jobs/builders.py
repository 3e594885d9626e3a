"""Job request builders.

Every request produced here is a *proposal*: it carries runnerless metadata
and a policy that demands both a policy token and human approval.  Nothing in
this package executes work.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Any

from src.contracts.capability import HealthAuditOutput
from src.contracts.common import generate_id, utc_now_iso
from src.contracts.correlation import AlertCorrelation
from src.contracts.enums import Impact, JobType, Priority, Severity
from src.contracts.job import (
    MODULE_NAME,
    CostEstimate,
    EvidenceLink,
    JobPolicy,
    JobRequest,
    TenantContext,
)
from src.contracts.report import ReliabilityReport
from src.contracts.runbook import Runbook

log = logging.getLogger(__name__)

MAX_JOB_REQUESTS_PER_BATCH = 25

DEFAULT_FINOPS_METADATA: dict[str, Any] = {
    "cost_center": "ops-reliability",
    "budget_usd": 50,
    "max_cost_usd": 2,
    "estimated_cost_usd": 0.5,
    "owner": "ops-finops",
}

# credits, confidence
_COST_TABLE: dict[str, tuple[int, float]] = {
    JobType.ALERT_CORRELATE.value: (5, 0.8),
    JobType.RUNBOOK_GENERATE.value: (10, 0.7),
    JobType.RELIABILITY_REPORT.value: (8, 0.75),
    JobType.HEALTH_AUDIT.value: (3, 0.9),
}


@dataclass(slots=True)
class RequestOptions:
    priority: str = Priority.NORMAL.value
    requested_at: str | None = None
    expires_at: str | None = None
    trace_id: str | None = None
    evidence_links: tuple[EvidenceLink, ...] = ()
    risk_level: str = Impact.HIGH.value
    finops: dict[str, Any] | None = None
    with_cost_estimate: bool = False

    def but(self, **changes: Any) -> RequestOptions:
        return replace(self, **changes)


def estimate_cost(job_type: str) -> CostEstimate:
    credits, confidence = _COST_TABLE.get(job_type, (5, 0.5))
    return CostEstimate(credits=credits, confidence=confidence)


def build_job_request(
    tenant_context: TenantContext,
    job_type: str,
    payload: dict[str, Any],
    options: RequestOptions | None = None,
) -> JobRequest:
    """Wrap *payload* in a runnerless, approval-gated job request."""
    opts = options or RequestOptions()
    metadata: dict[str, Any] = {"runnerless": True, "triggered_by": MODULE_NAME}
    if opts.trace_id:
        metadata["trace_id"] = opts.trace_id
    metadata["finops"] = dict(opts.finops or DEFAULT_FINOPS_METADATA)

    return JobRequest(
        job_type=job_type,
        tenant_context=tenant_context,
        priority=opts.priority,
        requested_at=opts.requested_at or utc_now_iso(),
        expires_at=opts.expires_at,
        payload=payload,
        evidence_links=tuple(opts.evidence_links),
        policy=JobPolicy(
            requires_policy_token=True,
            requires_approval=True,
            risk_level=opts.risk_level,
        ),
        cost_estimate=estimate_cost(job_type) if opts.with_cost_estimate else None,
        metadata=metadata,
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Per-artifact generators
# ═══════════════════════════════════════════════════════════════════════════


def create_alert_correlation_jobs(
    tenant_context: TenantContext,
    correlation: AlertCorrelation,
    options: RequestOptions | None = None,
) -> list[JobRequest]:
    """One ``critical`` request per group whose impact is high or critical."""
    opts = (options or RequestOptions()).but(priority=Priority.CRITICAL.value)
    jobs: list[JobRequest] = []
    for group in correlation.groups:
        if group.blast_radius.estimated_impact not in (Impact.HIGH.value, Impact.CRITICAL.value):
            continue
        jobs.append(
            build_job_request(
                tenant_context,
                JobType.ALERT_CORRELATE.value,
                {
                    "correlation_group_id": group.group_id,
                    "alert_ids": group.alert_ids,
                    "root_cause": group.root_cause_analysis.probable_cause,
                    "confidence": group.root_cause_analysis.confidence,
                    "services_affected": list(group.blast_radius.services_affected),
                    "action": "investigate_and_notify",
                    "profile_id": correlation.profile_id,
                },
                opts,
            )
        )
    return jobs


def create_reliability_report_jobs(
    tenant_context: TenantContext,
    report: ReliabilityReport,
    options: RequestOptions | None = None,
) -> list[JobRequest]:
    opts = (options or RequestOptions()).but(priority=Priority.CRITICAL.value)
    jobs: list[JobRequest] = []

    for rec in report.recommendations:
        if rec.priority != "critical":
            continue
        jobs.append(
            build_job_request(
                tenant_context,
                JobType.RELIABILITY_REPORT.value,
                {
                    "report_id": report.report_id,
                    "action": "implement_recommendation",
                    "recommendation_id": generate_id(),
                    "priority": rec.priority,
                    "category": rec.category,
                    "description": rec.description,
                    "expected_impact": rec.expected_impact,
                    "implementation_effort": rec.implementation_effort,
                    "profile_id": report.profile_id,
                },
                opts,
            )
        )

    for anomaly in report.anomalies:
        if anomaly.severity != "critical":
            continue
        jobs.append(
            build_job_request(
                tenant_context,
                JobType.RELIABILITY_REPORT.value,
                {
                    "report_id": report.report_id,
                    "action": "investigate_anomaly",
                    "anomaly_id": anomaly.anomaly_id,
                    "service": anomaly.service,
                    "metric": anomaly.metric,
                    "severity": anomaly.severity,
                    "deviation_percent": anomaly.deviation_percent,
                    "profile_id": report.profile_id,
                },
                opts,
            )
        )
    return jobs


def create_health_audit_jobs(
    tenant_context: TenantContext,
    audit: HealthAuditOutput,
    options: RequestOptions | None = None,
) -> list[JobRequest]:
    """One ``high`` priority remediation proposal per critical audit finding."""
    opts = (options or RequestOptions()).but(priority=Priority.HIGH.value)
    jobs: list[JobRequest] = []
    for finding in audit.findings:
        if finding.severity != "critical":
            continue
        jobs.append(
            build_job_request(
                tenant_context,
                JobType.HEALTH_AUDIT.value,
                {
                    "audit_id": audit.audit_id,
                    "action": "remediate_finding",
                    "finding_id": finding.id,
                    "category": finding.category,
                    "message": finding.message,
                    "recommendation": finding.recommendation,
                },
                opts,
            )
        )
    return jobs


def create_runbook_jobs(
    tenant_context: TenantContext,
    runbook: Runbook,
    options: RequestOptions | None = None,
) -> list[JobRequest]:
    """Execution proposal for automated steps, on-call notice for critical runbooks."""
    opts = options or RequestOptions()
    jobs: list[JobRequest] = []
    auto = [s for s in runbook.steps if s.automated]
    critical = runbook.severity == Severity.CRITICAL.value

    if auto:
        jobs.append(
            build_job_request(
                tenant_context,
                JobType.RUNBOOK_GENERATE.value,
                {
                    "runbook_id": runbook.runbook_id,
                    "alert_group_id": runbook.alert_group_id,
                    "action": "execute_automated_steps",
                    "automated_step_numbers": [s.step_number for s in auto],
                    "requires_approval_before_each": any(s.requires_approval for s in auto),
                    "estimated_duration_minutes": runbook.estimated_duration_minutes,
                    "profile_id": "base",
                },
                opts.but(priority=(Priority.CRITICAL if critical else Priority.HIGH).value),
            )
        )

    if critical:
        jobs.append(
            build_job_request(
                tenant_context,
                JobType.RUNBOOK_GENERATE.value,
                {
                    "runbook_id": runbook.runbook_id,
                    "alert_group_id": runbook.alert_group_id,
                    "action": "notify_oncall",
                    "severity": runbook.severity,
                    "steps_require_manual": sum(1 for s in runbook.steps if not s.automated),
                    "profile_id": "base",
                },
                opts.but(priority=Priority.CRITICAL.value),
            )
        )
    return jobs


# ═══════════════════════════════════════════════════════════════════════════
#  Batch helpers
# ═══════════════════════════════════════════════════════════════════════════


def create_ops_job_batch(
    tenant_context: TenantContext,
    correlation: AlertCorrelation | None = None,
    report: ReliabilityReport | None = None,
    audit: HealthAuditOutput | None = None,
    options: RequestOptions | None = None,
    runbooks: list[Runbook] | None = None,
) -> list[JobRequest]:
    """All proposals for one run, truncated to ``MAX_JOB_REQUESTS_PER_BATCH``."""
    jobs: list[JobRequest] = []
    if correlation is not None:
        jobs.extend(create_alert_correlation_jobs(tenant_context, correlation, options))
    if report is not None:
        jobs.extend(create_reliability_report_jobs(tenant_context, report, options))
    if audit is not None:
        jobs.extend(create_health_audit_jobs(tenant_context, audit, options))
    for runbook in runbooks or ():
        jobs.extend(create_runbook_jobs(tenant_context, runbook, options))

    if len(jobs) > MAX_JOB_REQUESTS_PER_BATCH:
        log.warning(
            "Job batch truncated: %d proposals, keeping first %d",
            len(jobs), MAX_JOB_REQUESTS_PER_BATCH,
        )
    return jobs[:MAX_JOB_REQUESTS_PER_BATCH]


def group_jobs_by_type(requests: list[JobRequest]) -> dict[str, list[JobRequest]]:
    grouped: dict[str, list[JobRequest]] = defaultdict(list)
    for req in requests:
        grouped[req.job_type].append(req)
    return dict(grouped)


def serialize_jobs_as_json_lines(requests: list[JobRequest]) -> str:
    return "\n".join(json.dumps(r.to_dict(), ensure_ascii=False) for r in requests)


@dataclass(slots=True)
class BatchCost:
    total_credits: int = 0
    by_type: dict[str, int] = field(default_factory=dict)


def estimate_batch_cost(requests: list[JobRequest]) -> BatchCost:
    cost = BatchCost()
    for req in requests:
        credits = (req.cost_estimate or estimate_cost(req.job_type)).credits
        cost.total_credits += credits
        cost.by_type[req.job_type] = cost.by_type.get(req.job_type, 0) + credits
    return cost
