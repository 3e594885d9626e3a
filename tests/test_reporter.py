"""Tests for src.analyzer.reporter — reliability report and writers."""

from __future__ import annotations

import csv

import pytest

from src.analyzer.correlator import correlate
from src.analyzer.metrics import compute_alert_metrics
from src.analyzer.reporter import (
    generate_reliability_report,
    health_score,
    render_report_markdown,
    write_alert_metrics_csv,
    write_groups_csv,
    write_json,
    write_plots,
)
from src.contracts.capability import (
    Evidence,
    ExecutionMetadata,
    Finding,
    HealthAuditOutput,
)
from src.contracts.common import STABLE_ID, STABLE_TIMESTAMP
from src.contracts.enums import AuditStatus, ReportType
from src.contracts.report import ReportInput
from src.jobs.bundler import build_report_bundle
from src.jobs.canonical import sha256_hex
from tests.conftest import make_alert, make_rule, ts_offset


@pytest.fixture
def report_input() -> ReportInput:
    return ReportInput(
        tenant_id="tenant-a",
        project_id="project-a",
        report_type=ReportType.HEALTH_CHECK,
        period_start="2026-02-26T00:00:00Z",
        period_end="2026-02-27T00:00:00Z",
        services=("api", "db"),
    )


def _audit() -> HealthAuditOutput:
    return HealthAuditOutput(
        audit_id="audit-1",
        status=AuditStatus.PARTIAL,
        services_audited=("api",),
        findings=(
            Finding(
                id="f-api",
                severity="critical",
                category="service_health",
                message="api is unhealthy",
                evidence=(
                    Evidence(
                        type="health_check",
                        path="services/api",
                        value={"status": "unhealthy", "availability": 90.0, "latency_p95": 900},
                        description="health",
                    ),
                ),
            ),
            Finding(
                id="f-db",
                severity="warning",
                category="dependency_failure",
                message="Failed to audit db: refused",
                evidence=(Evidence("error", "services/db", "refused", "error"),),
            ),
        ),
        metrics={},
        recommendations=(),
        execution_metadata=ExecutionMetadata("t0", "t1", 1, 5),
    )


class TestGenerate:
    def test_clean_period(self, report_input):
        report = generate_reliability_report(report_input, [make_alert()])
        assert report.overall_health_score == 100.0
        assert report.findings == ()
        assert report.recommendations == ()
        assert [s.service_name for s in report.service_health] == ["api", "db"]
        assert report.service_health[0].status == "healthy"
        assert report.service_health[0].availability_percent == 99.9
        assert report.redaction_applied

    def test_critical_alerts_add_finding_and_recommendation(self, report_input):
        alerts = [make_alert(alert_id=f"c{i}", severity="critical") for i in range(3)]
        report = generate_reliability_report(report_input, alerts)
        assert report.overall_health_score == 70.0
        finding = report.findings[0]
        assert finding.message == "3 critical alerts during reporting period"
        assert finding.evidence[0].value == 3
        rec = report.recommendations[0]
        assert rec.priority == "critical"
        assert rec.related_findings == (finding.id,)

    def test_spike_anomaly_above_fifty(self, report_input):
        report = generate_reliability_report(report_input, [make_alert()] * 51)
        anomaly = report.anomalies[0]
        assert anomaly.type == "spike"
        assert anomaly.observed_value == 51
        assert anomaly.deviation_percent == 410.0
        assert report.overall_health_score == 95.0

    def test_fifty_alerts_is_no_spike(self, report_input):
        assert generate_reliability_report(report_input, [make_alert()] * 50).anomalies == ()

    def test_score_floor(self):
        assert health_score(20, 3) == 0.0

    def test_report_hash_covers_period(self, report_input):
        report = generate_reliability_report(report_input, [])
        assert report.report_hash == sha256_hex(
            "tenant-a:project-a:2026-02-26T00:00:00Z:2026-02-27T00:00:00Z"
        )

    def test_stable_output(self, report_input):
        report = generate_reliability_report(
            report_input, [make_alert(severity="critical")], stable_output=True
        )
        assert report.report_id == STABLE_ID
        assert report.generated_at == STABLE_TIMESTAMP
        assert report.findings[0].id == STABLE_ID

    def test_service_health_from_audit(self, report_input):
        report = generate_reliability_report(report_input, [], audit=_audit())
        health = {s.service_name: s for s in report.service_health}
        assert health["api"].status == "unhealthy"
        assert health["api"].availability_percent == 90.0
        assert health["api"].latency_p95_ms == 900
        assert health["db"].status == "unknown"
        assert health["db"].availability_percent == 0.0
        assert [f.id for f in report.findings] == ["f-api"]


class TestMarkdown:
    def test_sections(self, report_input):
        report = generate_reliability_report(
            report_input, [make_alert(severity="critical")], stable_output=True
        )
        bundle = build_report_bundle(
            "tenant-a", "project-a", "trace-001", report, (), stable_output=True
        )
        md = render_report_markdown(bundle)
        for heading in ("## Summary", "## Service Health", "## Findings", "## Recommendations"):
            assert heading in md
        assert "- Trace ID: trace-001" in md
        assert "- Actionable Recommendations: 1" in md
        assert "| api | healthy | 99.90% | 150 | 0.1% |" in md
        assert "No job requests generated." in md


class TestWriters:
    def test_groups_csv(self, tmp_path):
        res = correlate(
            [make_alert(alert_id="a1"), make_alert(alert_id="a2", timestamp=ts_offset(seconds=5))],
            [make_rule()],
        )
        path = tmp_path / "groups.csv"
        write_groups_csv(res.groups, path)
        rows = list(csv.reader(path.read_text(encoding="utf-8").splitlines()))
        assert rows[0][0] == "group_id"
        assert rows[1][3] == "a1;a2"

    def test_metrics_csv(self, tmp_path):
        path = tmp_path / "m.csv"
        write_alert_metrics_csv(compute_alert_metrics([make_alert()]), path)
        assert path.read_text(encoding="utf-8").splitlines()[1] == "1,0,1,0,0,1,1,0.0000"

    def test_json_sorted(self, tmp_path):
        path = tmp_path / "x.json"
        write_json({"b": 1, "a": 2}, path)
        assert path.read_text(encoding="utf-8").startswith('{\n  "a": 2')


class TestPlots:
    def test_writes_charts(self, tmp_path, report_input):
        pytest.importorskip("matplotlib")
        alerts = [
            make_alert(alert_id="a1", severity="critical"),
            make_alert(alert_id="a2", service="db"),
        ]
        report = generate_reliability_report(report_input, alerts)
        written = write_plots(compute_alert_metrics(alerts), report, tmp_path)
        assert sorted(p.name for p in written) == [
            "alerts_by_service.png",
            "alerts_by_severity.png",
            "service_availability.png",
        ]
        for path in written:
            assert path.parent == tmp_path / "plots"
            assert path.read_bytes().startswith(b"\x89PNG")

    def test_no_alerts_only_availability(self, tmp_path, report_input):
        pytest.importorskip("matplotlib")
        report = generate_reliability_report(report_input, [])
        written = write_plots(compute_alert_metrics([]), report, tmp_path)
        assert [p.name for p in written] == ["service_availability.png"]
