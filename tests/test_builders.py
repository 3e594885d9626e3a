"""Tests for src.jobs.builders — runnerless job proposals."""

from __future__ import annotations

from src.analyzer.correlator import build_group, correlate, create_alert_correlation
from src.analyzer.reporter import generate_reliability_report
from src.analyzer.runbooks import generate_runbook
from src.contracts.capability import ExecutionMetadata, Finding, HealthAuditOutput
from src.contracts.enums import AuditStatus, ReportType
from src.contracts.job import TenantContext, validate_job_request
from src.contracts.report import ReportInput
from src.jobs.builders import (
    MAX_JOB_REQUESTS_PER_BATCH,
    RequestOptions,
    build_job_request,
    create_alert_correlation_jobs,
    create_health_audit_jobs,
    create_ops_job_batch,
    create_reliability_report_jobs,
    create_runbook_jobs,
    estimate_batch_cost,
    group_jobs_by_type,
    serialize_jobs_as_json_lines,
)
from tests.conftest import BASE_TS, make_alert, make_rule, ts_offset

CTX = TenantContext("tenant-a", "project-a")
OPTS = RequestOptions(requested_at="2026-02-26T10:00:00.000Z", trace_id="trace-001")


def _correlation(severity: str, count: int = 2, groups: int = 1):
    alerts = []
    for g in range(groups):
        for i in range(count):
            alerts.append(
                make_alert(
                    alert_id=f"g{g}-a{i}",
                    service=f"svc-{g}",
                    severity=severity,
                    timestamp=ts_offset(seconds=i * 10),
                )
            )
    res = correlate(alerts, [make_rule()])
    return create_alert_correlation("tenant-a", "project-a", res)


def _report(alerts):
    inp = ReportInput(
        tenant_id="tenant-a",
        project_id="project-a",
        report_type=ReportType.HEALTH_CHECK,
        period_start="2026-02-26T00:00:00Z",
        period_end="2026-02-27T00:00:00Z",
    )
    return generate_reliability_report(inp, alerts)


def _audit(*severities: str) -> HealthAuditOutput:
    return HealthAuditOutput(
        audit_id="audit-1",
        status=AuditStatus.PARTIAL,
        services_audited=("api",),
        findings=tuple(
            Finding(id=f"f{i}", severity=s, category="service_health", message=f"m{i}")
            for i, s in enumerate(severities)
        ),
        metrics={},
        recommendations=(),
        execution_metadata=ExecutionMetadata("t0", "t1", 1, 5),
    )


def _runbook(rule_id: str, severity: str = "warning", automation: bool = False):
    alerts = [make_alert(alert_id=f"a{i}", severity=severity) for i in range(2)]
    group = build_group(alerts, make_rule(rule_id=rule_id), "group-1", BASE_TS)
    return generate_runbook(group, include_automation=automation, runbook_id="rb-1")


class TestBuildJobRequest:
    def test_runnerless_and_gated(self):
        req = build_job_request(CTX, "autopilot.ops.health_audit", {"x": 1}, OPTS)
        assert req.metadata["runnerless"] is True
        assert req.metadata["triggered_by"] == "ops-autopilot"
        assert req.metadata["trace_id"] == "trace-001"
        assert req.metadata["finops"]["cost_center"] == "ops-reliability"
        assert req.policy.requires_policy_token and req.policy.requires_approval
        assert req.priority == "normal"
        assert req.cost_estimate is None
        assert validate_job_request(req.to_dict()) == []

    def test_cost_estimate_opt_in(self):
        req = build_job_request(
            CTX, "autopilot.ops.runbook_generate", {}, OPTS.but(with_cost_estimate=True)
        )
        assert req.cost_estimate.credits == 10


class TestGenerators:
    def test_correlation_jobs_only_for_high_impact(self):
        assert create_alert_correlation_jobs(CTX, _correlation("warning"), OPTS) == []
        jobs = create_alert_correlation_jobs(CTX, _correlation("critical"), OPTS)
        assert len(jobs) == 1
        assert jobs[0].priority == "critical"
        assert jobs[0].payload["alert_ids"] == ["g0-a0", "g0-a1"]
        assert jobs[0].payload["action"] == "investigate_and_notify"

    def test_many_warnings_make_high_impact(self):
        jobs = create_alert_correlation_jobs(CTX, _correlation("warning", count=6), OPTS)
        assert len(jobs) == 1

    def test_report_jobs_from_critical_recommendation(self):
        report = _report([make_alert(severity="critical")])
        jobs = create_reliability_report_jobs(CTX, report, OPTS)
        assert len(jobs) == 1
        assert jobs[0].payload["action"] == "implement_recommendation"
        assert jobs[0].payload["report_id"] == report.report_id

    def test_no_report_jobs_without_critical_alerts(self):
        assert create_reliability_report_jobs(CTX, _report([make_alert()]), OPTS) == []

    def test_audit_jobs_for_critical_findings(self):
        jobs = create_health_audit_jobs(CTX, _audit("critical", "warning", "critical"), OPTS)
        assert [j.payload["finding_id"] for j in jobs] == ["f0", "f2"]
        assert {j.priority for j in jobs} == {"high"}


class TestBatch:
    def test_batch_capped(self):
        correlation = _correlation("critical", groups=30)
        assert len(correlation.groups) == 30
        jobs = create_ops_job_batch(CTX, correlation=correlation, options=OPTS)
        assert len(jobs) == MAX_JOB_REQUESTS_PER_BATCH

    def test_batch_combines_sources(self):
        jobs = create_ops_job_batch(
            CTX,
            correlation=_correlation("critical"),
            report=_report([make_alert(severity="critical")]),
            audit=_audit("critical"),
            options=OPTS,
        )
        assert set(group_jobs_by_type(jobs)) == {
            "autopilot.ops.alert_correlate",
            "autopilot.ops.reliability_report",
            "autopilot.ops.health_audit",
        }
        cost = estimate_batch_cost(jobs)
        assert cost.total_credits == 5 + 8 + 3
        assert len(serialize_jobs_as_json_lines(jobs).splitlines()) == 3

    def test_batch_includes_runbook_jobs(self):
        rb = _runbook("database-connection-pool", severity="critical", automation=True)
        jobs = create_ops_job_batch(CTX, options=OPTS, runbooks=[rb])
        assert [j.payload["action"] for j in jobs] == ["execute_automated_steps", "notify_oncall"]
        assert {j.job_type for j in jobs} == {"autopilot.ops.runbook_generate"}


class TestRunbookJobs:
    def test_automated_steps_become_execution_proposal(self):
        rb = _runbook("infrastructure-resource-exhaustion", automation=True)
        [job] = create_runbook_jobs(CTX, rb, OPTS)
        assert job.job_type == "autopilot.ops.runbook_generate"
        assert job.priority == "high"
        assert job.payload["runbook_id"] == "rb-1"
        assert job.payload["alert_group_id"] == "group-1"
        assert job.payload["automated_step_numbers"] == [1, 2]
        assert job.payload["requires_approval_before_each"] is False
        assert job.payload["estimated_duration_minutes"] == 60
        assert validate_job_request(job.to_dict()) == []

    def test_critical_manual_runbook_notifies_oncall(self):
        rb = _runbook("deployment-related-issues", severity="critical")
        [job] = create_runbook_jobs(CTX, rb, OPTS)
        assert job.priority == "critical"
        assert job.payload["action"] == "notify_oncall"
        assert job.payload["steps_require_manual"] == 5

    def test_critical_automated_runbook_gets_both(self):
        rb = _runbook("database-connection-pool", severity="critical", automation=True)
        jobs = create_runbook_jobs(CTX, rb, OPTS)
        assert [j.priority for j in jobs] == ["critical", "critical"]
        assert jobs[0].payload["requires_approval_before_each"] is True
        assert jobs[1].payload["steps_require_manual"] == 1

    def test_manual_non_critical_runbook_proposes_nothing(self):
        assert create_runbook_jobs(CTX, _runbook("deployment-related-issues"), OPTS) == []
