"""Pipeline — orchestrator: load input -> audit -> correlate -> report -> bundle.

The input document is one JSON object::

    {
      "tenant_id": "...", "project_id": "...", "trace_id": "...",
      "profile_id": "ops-base",                # optional
      "alerts": [ {Alert}, ... ],
      "report": {ReportInput},
      "audit":  {HealthAuditInput}            # optional
    }

Outputs (``out_dir``)
─────────────────────
  report_bundle.json, job_bundle.json  — hash-addressed bundles
  report.md                            — human-readable report
  correlation_groups.csv               — one row per correlated group
  alert_metrics.csv                    — alert volume metrics
  runbooks.json                        — response runbooks (only with runbooks=True)
  plots/*.png                          — charts (only with plots=True)
  artifacts/<run_id>/                  — logs, redacted evidence, summary
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from src.analyzer.correlator import correlate, create_alert_correlation
from src.analyzer.metrics import AlertMetrics, compute_alert_metrics
from src.analyzer.reporter import (
    generate_reliability_report,
    write_alert_metrics_csv,
    write_groups_csv,
    write_json,
    write_plots,
    write_report_markdown,
)
from src.analyzer.rules import DEFAULT_RULES, load_rules
from src.analyzer.runbooks import generate_runbook
from src.capability.health_audit import AuditDependencies, create_health_audit_runtime
from src.contracts.alert import Alert, parse_alerts
from src.contracts.capability import HealthAuditOutput, validate_health_audit_input
from src.contracts.common import STABLE_ID, STABLE_TIMESTAMP, is_identifier, utc_now_iso
from src.contracts.correlation import AlertCorrelation, CorrelationRule
from src.contracts.enums import Impact
from src.contracts.errors import RunnerError, bug_error, to_error_envelope, validation_error
from src.contracts.job import JobRequestBundle, TenantContext
from src.contracts.report import ReliabilityReport, ReportBundle, ReportInput, validate_report_input
from src.contracts.runbook import Runbook
from src.jobs.builders import RequestOptions, create_ops_job_batch
from src.jobs.bundler import (
    build_job_request_bundle,
    build_report_bundle,
    normalize_correlation,
    normalize_job_requests,
    stable_runbook_id,
)
from src.jobs.canonical import seeded_id
from src.shared.artifacts import ArtifactSummary, ArtifactWriter
from src.shared.logger import RunLogCollector

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Input
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class AnalyzeInput:
    tenant_id: str
    project_id: str
    trace_id: str
    report: ReportInput
    alerts: list[Alert] = field(default_factory=list)
    profile_id: str = "ops-base"
    audit: dict[str, Any] | None = None


def validate_analyze_input(row: Any) -> list[str]:
    """Return a list of validation problems (empty = valid)."""
    if not isinstance(row, dict):
        return ["input must be an object"]
    problems: list[str] = []
    for key in ("tenant_id", "project_id", "trace_id"):
        if not is_identifier(row.get(key)):
            problems.append(f"{key}: must be an identifier (1-256 chars)")

    alerts = row.get("alerts", [])
    if not isinstance(alerts, list):
        problems.append("alerts: must be a list")
    else:
        _, alert_problems = parse_alerts(alerts)
        problems.extend(alert_problems)

    problems.extend(f"report.{p}" for p in validate_report_input(row.get("report")))
    if row.get("audit") is not None:
        problems.extend(f"audit.{p}" for p in validate_health_audit_input(row["audit"]))
    return problems


def parse_analyze_input(row: dict[str, Any]) -> AnalyzeInput:
    """Build an AnalyzeInput. Call :func:`validate_analyze_input` first."""
    alerts, _ = parse_alerts(row.get("alerts", []))
    return AnalyzeInput(
        tenant_id=row["tenant_id"],
        project_id=row["project_id"],
        trace_id=row["trace_id"],
        report=ReportInput.from_dict(row["report"]),
        alerts=alerts,
        profile_id=row.get("profile_id", "ops-base"),
        audit=row.get("audit"),
    )


def load_analyze_input(path: str | Path) -> AnalyzeInput:
    """Read and validate a JSON input document.

    Raises
    ──────
    RunnerError — VALIDATION_ERROR for unreadable JSON or invalid content
    """
    p = Path(path)
    if not p.exists():
        raise validation_error(f"Input not found: {p}")
    try:
        row = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise validation_error(f"Malformed JSON in {p}: {exc}") from exc
    problems = validate_analyze_input(row)
    if problems:
        raise validation_error(
            f"{len(problems)} problems in {p.name}: {problems[0]}",
            context={"problems": problems},
        )
    inp = parse_analyze_input(row)
    log.info("Loaded input %s: %d alerts, trace=%s", p, len(inp.alerts), inp.trace_id)
    return inp


# ═══════════════════════════════════════════════════════════════════════════
#  Analysis core
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class AnalysisResult:
    correlation: AlertCorrelation | None
    report: ReliabilityReport
    report_bundle: ReportBundle
    job_bundle: JobRequestBundle
    alert_metrics: AlertMetrics
    audit: HealthAuditOutput | None = None
    runbooks: list[Runbook] = field(default_factory=list)


def analyze(
    inp: AnalyzeInput,
    rules: list[CorrelationRule] | None = None,
    audit: HealthAuditOutput | None = None,
    stable_output: bool = False,
    runbooks: bool = False,
) -> AnalysisResult:
    """Correlate alerts, build the report and both bundles.

    With ``stable_output`` every generated id and timestamp is replaced by a
    trace-seeded or fixed value, so equal inputs serialise byte-identically.
    With ``runbooks`` every high or critical impact group also gets a runbook
    and its job proposals.
    """
    tenant = TenantContext(tenant_id=inp.tenant_id, project_id=inp.project_id)

    correlation: AlertCorrelation | None = None
    if inp.alerts:
        result = correlate(inp.alerts, rules if rules is not None else DEFAULT_RULES)
        correlation = create_alert_correlation(
            inp.tenant_id, inp.project_id, result, profile_id=inp.profile_id
        )
        if stable_output:
            correlation = normalize_correlation(correlation, inp.trace_id)

    report = generate_reliability_report(
        inp.report, inp.alerts, audit=audit, stable_output=stable_output
    )
    generated = (
        _runbooks_for(correlation, inp.trace_id, stable_output)
        if runbooks and correlation is not None
        else []
    )

    options = RequestOptions(
        trace_id=inp.trace_id,
        requested_at=STABLE_TIMESTAMP if stable_output else None,
    )
    jobs = create_ops_job_batch(tenant, correlation, report, audit, options, runbooks=generated)
    if stable_output:
        jobs = normalize_job_requests(jobs, inp.trace_id)

    job_bundle = build_job_request_bundle(
        inp.tenant_id, inp.project_id, inp.trace_id, jobs, stable_output=stable_output
    )
    report_bundle = build_report_bundle(
        inp.tenant_id,
        inp.project_id,
        inp.trace_id,
        report,
        job_bundle.idempotency_keys,
        stable_output=stable_output,
        job_types=tuple(sorted({r.job_type for r in job_bundle.requests})),
    )
    return AnalysisResult(
        correlation=correlation,
        report=report,
        report_bundle=report_bundle,
        job_bundle=job_bundle,
        alert_metrics=compute_alert_metrics(inp.alerts),
        audit=audit,
        runbooks=generated,
    )


def _runbooks_for(
    correlation: AlertCorrelation, trace_id: str, stable_output: bool
) -> list[Runbook]:
    out: list[Runbook] = []
    for group in correlation.groups:
        if group.blast_radius.estimated_impact not in (Impact.HIGH.value, Impact.CRITICAL.value):
            continue
        if stable_output:
            out.append(
                generate_runbook(
                    group,
                    runbook_id=stable_runbook_id(trace_id, group.group_id),
                    now_iso=lambda: STABLE_TIMESTAMP,
                )
            )
        else:
            out.append(generate_runbook(group))
    return out


def run_audit(
    raw_audit: dict[str, Any],
    config_dir: str | Path | None,
    dependencies: AuditDependencies | None = None,
    stable_output: bool = False,
) -> HealthAuditOutput:
    """Run the health audit capability synchronously.

    Raises
    ──────
    RunnerError — the runtime returned an error without an output
    """
    stable: dict[str, Any] = (
        {
            "id_factory": lambda: STABLE_ID,
            "now_iso": lambda: STABLE_TIMESTAMP,
            "clock": lambda: 0.0,
        }
        if stable_output
        else {}
    )
    runtime = create_health_audit_runtime(config_dir, **stable)
    result = asyncio.run(runtime.execute(raw_audit, dependencies))
    if result.output is None:
        if result.error is None:
            raise bug_error("health audit returned neither output nor error")
        raise RunnerError(result.error)
    if result.error is not None:
        log.warning("Health audit ended with %s: %s", result.error.code.value, result.error.message)
    return result.output


# ═══════════════════════════════════════════════════════════════════════════
#  Pipeline with outputs
# ═══════════════════════════════════════════════════════════════════════════


def write_outputs(result: AnalysisResult, out_dir: str | Path, plots: bool = False) -> None:
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    write_json(result.report_bundle, out / "report_bundle.json")
    write_json(result.job_bundle, out / "job_bundle.json")
    write_report_markdown(result.report_bundle, out / "report.md", result.job_bundle)
    groups = list(result.correlation.groups) if result.correlation else []
    write_groups_csv(groups, out / "correlation_groups.csv")
    write_alert_metrics_csv(result.alert_metrics, out / "alert_metrics.csv")
    if result.runbooks:
        write_json({"runbooks": [rb.to_dict() for rb in result.runbooks]}, out / "runbooks.json")
    if plots:
        write_plots(result.alert_metrics, result.report, out)


def run_pipeline(
    input_path: str | Path,
    out_dir: str | Path = "out",
    config_dir: str | Path | None = "config",
    stable_output: bool = False,
    artifacts_dir: str | Path | None = None,
    dependencies: AuditDependencies | None = None,
    plots: bool = False,
    runbooks: bool = False,
) -> AnalysisResult:
    """Execute the full analysis pipeline and write outputs.

    Run artifacts (logs, redacted evidence, summary) always land under
    ``artifacts_dir`` (default ``<out_dir>/artifacts``), also on failure.
    """
    started_at = STABLE_TIMESTAMP if stable_output else utc_now_iso()
    run_id = seeded_id("run", str(input_path)) if stable_output else f"run-{started_at}"
    run_id = run_id.replace(":", "").replace(".", "")
    writer = ArtifactWriter(run_id, artifacts_dir or Path(out_dir) / "artifacts")
    writer.init()

    collector = RunLogCollector(run_id)
    root = logging.getLogger()
    root.addHandler(collector)
    summary = ArtifactSummary(
        run_id=run_id,
        command="analyze",
        status="success",
        started_at=started_at,
        completed_at=started_at,
    )
    try:
        inp = load_analyze_input(input_path)
        rules = load_rules(config_dir)
        audit = run_audit(inp.audit, config_dir, dependencies, stable_output) if inp.audit else None
        result = analyze(
            inp, rules=rules, audit=audit, stable_output=stable_output, runbooks=runbooks
        )
        write_outputs(result, out_dir, plots=plots)

        if result.correlation is not None:
            writer.write_evidence("correlation", result.correlation.to_dict())
        writer.write_evidence("report", result.report.to_dict())
        if audit is not None:
            writer.write_evidence("audit", audit.to_dict())
        if result.runbooks:
            writer.write_evidence("runbooks", [rb.to_dict() for rb in result.runbooks])
        log.info(
            "Pipeline complete: %d job requests, bundle=%s. Outputs in %s/",
            len(result.job_bundle.requests),
            result.job_bundle.canonicalization.hash[:12],
            out_dir,
        )
        return result
    except Exception as exc:
        summary.status = "failure"
        summary.error = to_error_envelope(exc)
        log.error("Pipeline failed: %s", exc)
        raise
    finally:
        root.removeHandler(collector)
        for line in collector.lines:
            writer.append_log(line)
        writer.flush_logs()
        summary.completed_at = STABLE_TIMESTAMP if stable_output else utc_now_iso()
        summary.evidence_files = writer.evidence_files
        summary.log_line_count = writer.log_line_count
        writer.write_summary(summary)
