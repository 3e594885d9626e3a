"""Integration tests for src.analyzer.pipeline — input to bundles on disk."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from src.analyzer.pipeline import (
    analyze,
    load_analyze_input,
    parse_analyze_input,
    run_audit,
    run_pipeline,
    validate_analyze_input,
)
from src.capability.health_audit import AuditDependencies
from src.capability.runner import ExecutionResult
from src.contracts.errors import ErrorCode, RunnerError
from src.jobs.bundler import validate_bundle, verify_bundle

OUTPUT_FILES = (
    "report_bundle.json",
    "job_bundle.json",
    "report.md",
    "correlation_groups.csv",
    "alert_metrics.csv",
)


def _write_input(tmp_path: Path, row: dict, name: str = "input.json") -> Path:
    path = tmp_path / name
    path.write_text(json.dumps(row), encoding="utf-8")
    return path


def _summary(out_dir: Path) -> dict:
    [path] = list((out_dir / "artifacts").glob("*/summary.json"))
    return json.loads(path.read_text(encoding="utf-8"))


# ═══════════════════════════════════════════════════════════════════════════
#  Input validation
# ═══════════════════════════════════════════════════════════════════════════


class TestInput:
    def test_valid(self, analyze_row):
        assert validate_analyze_input(analyze_row) == []

    def test_problems_are_prefixed(self, analyze_row):
        analyze_row["alerts"][1]["severity"] = "urgent"
        analyze_row["report"]["report_type"] = "weekly"
        analyze_row["audit"] = {"tenant_id": "tenant-a", "project_id": "project-a", "services": []}
        assert validate_analyze_input(analyze_row) == [
            "alerts[1].severity: unknown severity 'urgent'",
            "report.report_type: unknown type 'weekly'",
            "audit.services: must not be empty when provided",
        ]

    def test_missing_trace_id(self, analyze_row):
        del analyze_row["trace_id"]
        assert validate_analyze_input(analyze_row) == [
            "trace_id: must be an identifier (1-256 chars)"
        ]

    def test_load_malformed_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(RunnerError) as exc_info:
            load_analyze_input(path)
        assert exc_info.value.envelope.code is ErrorCode.VALIDATION_ERROR
        assert exc_info.value.exit_code == 2

    def test_load_reports_all_problems(self, tmp_path, analyze_row):
        analyze_row["alerts"][0]["timestamp"] = "noon"
        analyze_row["tenant_id"] = ""
        with pytest.raises(RunnerError) as exc_info:
            load_analyze_input(_write_input(tmp_path, analyze_row))
        assert len(exc_info.value.envelope.context["problems"]) == 2


# ═══════════════════════════════════════════════════════════════════════════
#  analyze()
# ═══════════════════════════════════════════════════════════════════════════


class TestAnalyze:
    def test_groups_jobs_and_report(self, analyze_row):
        result = analyze(parse_analyze_input(analyze_row))
        assert len(result.correlation.groups) == 1
        assert result.correlation.groups[0].alert_ids == ["a1", "a2"]
        assert result.report.overall_health_score == 90.0
        assert sorted(r.job_type for r in result.job_bundle.requests) == [
            "autopilot.ops.alert_correlate",
            "autopilot.ops.reliability_report",
        ]
        assert result.report_bundle.job_types == (
            "autopilot.ops.alert_correlate",
            "autopilot.ops.reliability_report",
        )
        assert result.report_bundle.idempotency_keys == result.job_bundle.idempotency_keys
        assert result.alert_metrics.total == 3
        assert verify_bundle(result.job_bundle)
        assert verify_bundle(result.report_bundle)

    def test_no_alerts(self, analyze_row):
        analyze_row["alerts"] = []
        result = analyze(parse_analyze_input(analyze_row))
        assert result.correlation is None
        assert result.job_bundle.requests == ()
        assert result.report.overall_health_score == 100.0

    def test_stable_ids_seeded_by_trace(self, analyze_row):
        a = analyze(parse_analyze_input(analyze_row), stable_output=True)
        b = analyze(parse_analyze_input(analyze_row), stable_output=True)
        assert a.correlation.groups[0].group_id == b.correlation.groups[0].group_id
        assert a.job_bundle.canonicalization == b.job_bundle.canonicalization
        assert a.report_bundle.canonicalization == b.report_bundle.canonicalization

        analyze_row["trace_id"] = "trace-002"
        c = analyze(parse_analyze_input(analyze_row), stable_output=True)
        assert c.correlation.groups[0].group_id != a.correlation.groups[0].group_id


# ═══════════════════════════════════════════════════════════════════════════
#  run_pipeline()
# ═══════════════════════════════════════════════════════════════════════════


class TestRunPipeline:
    def test_writes_outputs_and_artifacts(self, tmp_path, analyze_row):
        out_dir = tmp_path / "out"
        run_pipeline(_write_input(tmp_path, analyze_row), out_dir=out_dir, config_dir=None)
        for name in OUTPUT_FILES:
            assert (out_dir / name).exists(), name

        job_bundle = json.loads((out_dir / "job_bundle.json").read_text(encoding="utf-8"))
        assert validate_bundle(job_bundle) == []
        report_bundle = json.loads((out_dir / "report_bundle.json").read_text(encoding="utf-8"))
        assert verify_bundle(report_bundle)

        summary = _summary(out_dir)
        assert summary["status"] == "success"
        assert summary["evidenceFiles"] == ["correlation.json", "report.json"]

    def test_stable_output_byte_identical(self, tmp_path, analyze_row):
        input_path = _write_input(tmp_path, analyze_row)
        first, second = tmp_path / "one", tmp_path / "two"
        run_pipeline(input_path, out_dir=first, config_dir=None, stable_output=True)
        run_pipeline(input_path, out_dir=second, config_dir=None, stable_output=True)
        for name in OUTPUT_FILES:
            assert (first / name).read_bytes() == (second / name).read_bytes(), name

    def test_stable_audit_evidence_byte_identical(self, tmp_path, analyze_row):
        analyze_row["audit"] = {"tenant_id": "tenant-a", "project_id": "project-a"}
        input_path = _write_input(tmp_path, analyze_row)
        first, second = tmp_path / "one", tmp_path / "two"
        run_pipeline(input_path, out_dir=first, config_dir=None, stable_output=True)
        run_pipeline(input_path, out_dir=second, config_dir=None, stable_output=True)
        [a] = list((first / "artifacts").glob("*/evidence/audit.json"))
        [b] = list((second / "artifacts").glob("*/evidence/audit.json"))
        assert a.read_bytes() == b.read_bytes()
        meta = json.loads(a.read_text(encoding="utf-8"))["execution_metadata"]
        assert meta["execution_time_ms"] == 0

    def test_plots_opt_in(self, tmp_path, analyze_row):
        pytest.importorskip("matplotlib")
        input_path = _write_input(tmp_path, analyze_row)
        run_pipeline(input_path, out_dir=tmp_path / "plain", config_dir=None)
        assert not (tmp_path / "plain" / "plots").exists()
        run_pipeline(input_path, out_dir=tmp_path / "charts", config_dir=None, plots=True)
        assert (tmp_path / "charts" / "plots" / "alerts_by_severity.png").exists()

    def test_runbooks_opt_in(self, tmp_path, analyze_row):
        input_path = _write_input(tmp_path, analyze_row)
        plain = run_pipeline(input_path, out_dir=tmp_path / "plain", config_dir=None)
        assert plain.runbooks == []
        assert not (tmp_path / "plain" / "runbooks.json").exists()

        out_dir = tmp_path / "rb"
        result = run_pipeline(input_path, out_dir=out_dir, config_dir=None, runbooks=True)
        [rb] = result.runbooks
        assert rb.alert_group_id == result.correlation.groups[0].group_id
        assert rb.severity == "critical"
        written = json.loads((out_dir / "runbooks.json").read_text(encoding="utf-8"))
        assert written["runbooks"][0]["runbook_id"] == rb.runbook_id
        assert "autopilot.ops.runbook_generate" in result.report_bundle.job_types
        assert "runbooks.json" in _summary(out_dir)["evidenceFiles"]

    def test_stable_runbooks_byte_identical(self, tmp_path, analyze_row):
        input_path = _write_input(tmp_path, analyze_row)
        first, second = tmp_path / "one", tmp_path / "two"
        result = run_pipeline(
            input_path, out_dir=first, config_dir=None, stable_output=True, runbooks=True
        )
        run_pipeline(input_path, out_dir=second, config_dir=None, stable_output=True, runbooks=True)
        for name in (*OUTPUT_FILES, "runbooks.json"):
            assert (first / name).read_bytes() == (second / name).read_bytes(), name

        [rb] = result.runbooks
        [job] = [
            r for r in result.job_bundle.requests if r.job_type == "autopilot.ops.runbook_generate"
        ]
        assert job.payload["runbook_id"] == rb.runbook_id

    def test_audit_runs_and_feeds_report(self, tmp_path, analyze_row):
        analyze_row["audit"] = {
            "tenant_id": "tenant-a",
            "project_id": "project-a",
            "services": ["api-service", "frontend"],
        }

        async def check(service: str) -> dict:
            if service == "frontend":
                return {"status": "unhealthy", "availability": 80.0}
            return {"status": "healthy", "availability": 99.9}

        out_dir = tmp_path / "out"
        result = run_pipeline(
            _write_input(tmp_path, analyze_row),
            out_dir=out_dir,
            config_dir=None,
            dependencies=AuditDependencies(check_service_health=check),
        )
        health = {s.service_name: s.status for s in result.report.service_health}
        assert health == {"api-service": "healthy", "frontend": "unhealthy"}
        assert "autopilot.ops.health_audit" in result.report_bundle.job_types
        assert "audit.json" in _summary(out_dir)["evidenceFiles"]

    def test_failure_still_writes_summary(self, tmp_path, analyze_row):
        analyze_row["report"]["period_start"] = "not-a-date"
        out_dir = tmp_path / "out"
        with pytest.raises(RunnerError):
            run_pipeline(_write_input(tmp_path, analyze_row), out_dir=out_dir, config_dir=None)
        summary = _summary(out_dir)
        assert summary["status"] == "failure"
        assert summary["error"]["code"] == "VALIDATION_ERROR"
        assert not (out_dir / "job_bundle.json").exists()


class TestRunAudit:
    def test_validation_error_raised(self):
        with pytest.raises(RunnerError) as exc_info:
            run_audit({"tenant_id": "", "project_id": "p"}, config_dir=None)
        assert exc_info.value.envelope.code is ErrorCode.VALIDATION_ERROR

    def test_empty_result_is_a_bug(self, monkeypatch):
        class EmptyRuntime:
            async def execute(self, raw, dependencies=None):
                return ExecutionResult(output=None)

        monkeypatch.setattr(
            "src.analyzer.pipeline.create_health_audit_runtime",
            lambda config_dir, **kwargs: EmptyRuntime(),
        )
        with pytest.raises(RunnerError) as exc_info:
            run_audit({"tenant_id": "tenant-a", "project_id": "project-a"}, config_dir=None)
        assert exc_info.value.envelope.code is ErrorCode.UNEXPECTED_BUG
        assert exc_info.value.exit_code == 4
