"""Звітування: reliability report, Markdown, JSON і CSV."""

from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

from src.analyzer.metrics import AlertMetrics, critical_alerts
from src.contracts.alert import Alert
from src.contracts.capability import Evidence, Finding, HealthAuditOutput
from src.contracts.common import STABLE_ID, STABLE_TIMESTAMP, generate_id, utc_now_iso
from src.contracts.correlation import CorrelatedAlertGroup
from src.contracts.enums import ServiceStatus
from src.contracts.job import JobRequestBundle
from src.contracts.report import (
    Anomaly,
    ReliabilityReport,
    ReportBundle,
    ReportInput,
    ReportRecommendation,
    ServiceHealth,
)
from src.jobs.canonical import sha256_hex, stable_pretty_stringify
from src.shared.artifacts import atomic_write

log = logging.getLogger(__name__)

SPIKE_THRESHOLD = 50
SPIKE_BASELINE = 10

_DEFAULT_HEALTH = ServiceHealth(
    service_name="",
    status=ServiceStatus.HEALTHY.value,
    availability_percent=99.9,
    latency_p95_ms=150,
    error_rate_percent=0.1,
)


# ═══════════════════════════════════════════════════════════════════════════
#  Report generation
# ═══════════════════════════════════════════════════════════════════════════


def _service_health_from_audit(audit: HealthAuditOutput) -> list[ServiceHealth]:
    """One entry per requested service: audited ones from their health evidence."""
    observed: dict[str, dict[str, Any]] = {}
    for finding in audit.findings_by_category("service_health"):
        for ev in finding.evidence:
            if ev.type == "health_check" and isinstance(ev.value, dict):
                observed[ev.path.split("/")[1]] = ev.value

    out: list[ServiceHealth] = []
    for service in audit.services_audited:
        raw = observed.get(service)
        if raw is None:
            out.append(replace(_DEFAULT_HEALTH, service_name=service))
            continue
        out.append(
            ServiceHealth(
                service_name=service,
                status=str(raw.get("status", ServiceStatus.UNKNOWN.value)),
                availability_percent=float(raw.get("availability", 0.0)),
                latency_p95_ms=raw.get("latency_p95"),
                error_rate_percent=raw.get("error_rate"),
            )
        )
    for finding in audit.findings_by_category("dependency_failure"):
        service = finding.evidence[0].path.split("/")[1] if finding.evidence else "unknown"
        out.append(
            ServiceHealth(
                service_name=service,
                status=ServiceStatus.UNKNOWN.value,
                availability_percent=0.0,
            )
        )
    return out


def _default_service_health(services: tuple[str, ...]) -> list[ServiceHealth]:
    return [replace(_DEFAULT_HEALTH, service_name=s) for s in services]


def health_score(critical_count: int, anomaly_count: int) -> float:
    return float(max(0, 100 - critical_count * 10 - anomaly_count * 5))


def generate_reliability_report(
    inp: ReportInput,
    alerts: list[Alert],
    audit: HealthAuditOutput | None = None,
    stable_output: bool = False,
    generated_at: str | None = None,
) -> ReliabilityReport:
    """Build a reliability report for one tenant/project period.

    Parameters
    ──────────
    inp           — period, report type and (optionally) service list
    alerts        — alerts observed during the period
    audit         — health audit output; service health falls back to
                    healthy defaults for ``inp.services`` when absent
    stable_output — fixed ids and ``generated_at`` for reproducible output
    """
    new_id = (lambda: STABLE_ID) if stable_output else generate_id
    findings: list[Finding] = []
    recommendations: list[ReportRecommendation] = []
    anomalies: list[Anomaly] = []

    crit = critical_alerts(alerts)
    if crit:
        finding_id = new_id()
        findings.append(
            Finding(
                id=finding_id,
                severity="critical",
                category="incident_response",
                message=f"{len(crit)} critical alerts during reporting period",
                recommendation="Review critical incidents and ensure runbooks exist",
                evidence=(
                    Evidence(
                        type="event_count",
                        path="alerts",
                        value=len(crit),
                        description="Count of critical severity alerts",
                    ),
                ),
            )
        )
        recommendations.append(
            ReportRecommendation(
                priority="critical",
                category="incident_response",
                description="Improve early detection for critical issues",
                expected_impact="Reduce MTTR for critical incidents",
                implementation_effort="medium",
                related_findings=(finding_id,),
            )
        )

    if len(alerts) > SPIKE_THRESHOLD:
        anomalies.append(
            Anomaly(
                anomaly_id=new_id(),
                type="spike",
                service="multiple",
                metric="alert_count",
                detected_at=inp.period_end,
                severity="warning",
                baseline_value=SPIKE_BASELINE,
                observed_value=len(alerts),
                deviation_percent=((len(alerts) - SPIKE_BASELINE) / SPIKE_BASELINE) * 100,
                contributing_factors=("Unusual alert volume", "Possible infrastructure event"),
            )
        )

    if audit is not None:
        service_health = _service_health_from_audit(audit)
        findings.extend(f for f in audit.findings if f.severity == "critical")
    else:
        service_health = _default_service_health(inp.services)

    if generated_at is None:
        generated_at = STABLE_TIMESTAMP if stable_output else utc_now_iso()

    report = ReliabilityReport(
        report_id=new_id(),
        tenant_id=inp.tenant_id,
        project_id=inp.project_id,
        report_type=inp.report_type,
        period_start=inp.period_start,
        period_end=inp.period_end,
        generated_at=generated_at,
        overall_health_score=health_score(len(crit), len(anomalies)),
        report_hash=sha256_hex(
            f"{inp.tenant_id}:{inp.project_id}:{inp.period_start}:{inp.period_end}"
        ),
        service_health=tuple(service_health),
        anomalies=tuple(anomalies),
        findings=tuple(findings),
        recommendations=tuple(recommendations),
        profile_id=inp.profile_id,
    )
    log.info(
        "Report %s: score=%.0f, findings=%d, anomalies=%d, recommendations=%d",
        report.report_type.value, report.overall_health_score,
        len(findings), len(anomalies), len(recommendations),
    )
    return report


# ═══════════════════════════════════════════════════════════════════════════
#  Markdown
# ═══════════════════════════════════════════════════════════════════════════


def render_report_markdown(
    bundle: ReportBundle,
    job_bundle: JobRequestBundle | None = None,
) -> str:
    report = bundle.report
    actionable = sum(1 for r in report.recommendations if r.priority in ("high", "critical"))
    lines = [
        "# Ops Autopilot Report",
        "",
        f"- Report ID: {report.report_id}",
        f"- Report Type: {report.report_type.value}",
        f"- Tenant: {report.tenant_id}",
        f"- Project: {report.project_id}",
        f"- Period: {report.period_start} → {report.period_end}",
        f"- Generated At: {report.generated_at}",
        f"- Trace ID: {bundle.trace_id}",
        f"- Health Score: {report.overall_health_score:.0f}/100",
        "",
        "## Summary",
        "",
        f"- Total Findings: {len(report.findings)}",
        f"- Total Recommendations: {len(report.recommendations)}",
        f"- Actionable Recommendations: {actionable}",
        f"- Anomalies: {len(report.anomalies)}",
        "",
        "## Service Health",
        "",
    ]
    if report.service_health:
        lines.append("| Service | Status | Availability | Latency p95 (ms) | Error rate |")
        lines.append("|---|---|---|---|---|")
        for sh in report.service_health:
            latency = "-" if sh.latency_p95_ms is None else f"{sh.latency_p95_ms:g}"
            err = "-" if sh.error_rate_percent is None else f"{sh.error_rate_percent:g}%"
            lines.append(
                f"| {sh.service_name} | {sh.status} | {sh.availability_percent:.2f}% "
                f"| {latency} | {err} |"
            )
    else:
        lines.append("No service health data.")

    lines += ["", "## Findings", ""]
    if report.findings:
        for f in report.findings:
            lines.append(f"- **{f.category}** ({f.severity}): {f.message}")
    else:
        lines.append("No findings.")

    lines += ["", "## Recommendations", ""]
    if report.recommendations:
        for rec in report.recommendations:
            lines.append(f"- **{rec.description}** ({rec.priority})")
            lines.append(f"  - Expected impact: {rec.expected_impact}")
            lines.append(f"  - Effort: {rec.implementation_effort}")
    else:
        lines.append("No recommendations generated.")

    lines += ["", "## Job Requests", ""]
    if job_bundle is not None and job_bundle.requests:
        for req in job_bundle.requests:
            lines.append(f"- {req.job_type} (priority: {req.priority})")
    else:
        lines.append("No job requests generated.")

    return "\n".join(lines) + "\n"


# ═══════════════════════════════════════════════════════════════════════════
#  File writers
# ═══════════════════════════════════════════════════════════════════════════


def write_json(data: Any, path: str | Path) -> None:
    """Stable, key-sorted JSON; objects with ``to_dict`` are serialised first."""
    payload = data.to_dict() if hasattr(data, "to_dict") else data
    atomic_write(path, stable_pretty_stringify(payload))
    log.info("Wrote JSON → %s", path)


def write_groups_csv(groups: list[CorrelatedAlertGroup], path: str | Path) -> None:
    lines = [CorrelatedAlertGroup.csv_header()]
    for g in groups:
        lines.append(g.to_csv_row())
    atomic_write(path, "\n".join(lines) + "\n")
    log.info("Wrote correlation groups → %s (%d rows)", path, len(groups))


def write_alert_metrics_csv(metrics: AlertMetrics, path: str | Path) -> None:
    atomic_write(path, AlertMetrics.csv_header() + "\n" + metrics.to_csv_row() + "\n")
    log.info("Wrote alert metrics → %s", path)


def write_report_markdown(
    bundle: ReportBundle,
    path: str | Path,
    job_bundle: JobRequestBundle | None = None,
) -> None:
    atomic_write(path, render_report_markdown(bundle, job_bundle))
    log.info("Wrote report → %s", path)


# ═══════════════════════════════════════════════════════════════════════════
#  Plots (matplotlib)
# ═══════════════════════════════════════════════════════════════════════════

_SEVERITY_COLORS = {
    "critical": "#e74c3c",
    "warning": "#f39c12",
    "opportunity": "#3498db",
    "info": "#27ae60",
}


def write_plots(
    metrics: AlertMetrics,
    report: ReliabilityReport,
    out_dir: str | Path,
) -> list[Path]:
    """Generate PNG charts into out_dir/plots/; returns the written paths."""
    try:
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError:
        log.warning("matplotlib not installed — skipping plots")
        return []

    plots_dir = Path(out_dir) / "plots"
    plots_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []

    # ── 1. Alerts by severity ────────────────────────────────────────
    severities = [s for s in _SEVERITY_COLORS if metrics.by_severity.get(s)]
    if severities:
        fig, ax = plt.subplots(figsize=(8, 5))
        counts = [metrics.by_severity[s] for s in severities]
        bars = ax.bar(
            severities,
            counts,
            color=[_SEVERITY_COLORS[s] for s in severities],
            edgecolor="black",
            linewidth=0.5,
        )
        for bar, v in zip(bars, counts):
            ax.text(
                bar.get_x() + bar.get_width() / 2,
                bar.get_height() + 0.05,
                str(v),
                ha="center",
                va="bottom",
                fontweight="bold",
            )
        ax.set_ylabel("Alerts")
        ax.set_title("Alerts by Severity")
        fig.tight_layout()
        path = plots_dir / "alerts_by_severity.png"
        fig.savefig(str(path), dpi=150)
        plt.close(fig)
        written.append(path)
        log.info("Wrote plots/alerts_by_severity.png")

    # ── 2. Alerts by service (horizontal, busiest on top) ───────────
    if metrics.by_service:
        ranked = sorted(metrics.by_service.items(), key=lambda kv: (kv[1], kv[0]))
        fig, ax = plt.subplots(figsize=(8, max(3, 0.4 * len(ranked) + 1)))
        ax.barh(
            [name for name, _ in ranked],
            [count for _, count in ranked],
            color="#3498db",
            edgecolor="black",
            linewidth=0.5,
        )
        ax.set_xlabel("Alerts")
        ax.set_title("Alerts by Service")
        fig.tight_layout()
        path = plots_dir / "alerts_by_service.png"
        fig.savefig(str(path), dpi=150)
        plt.close(fig)
        written.append(path)
        log.info("Wrote plots/alerts_by_service.png")

    # ── 3. Service availability ──────────────────────────────────────
    if report.service_health:
        names = [sh.service_name for sh in report.service_health]
        avail = [sh.availability_percent for sh in report.service_health]
        colors = [
            "#27ae60" if sh.status == ServiceStatus.HEALTHY.value else "#e74c3c"
            for sh in report.service_health
        ]
        fig, ax = plt.subplots(figsize=(8, 5))
        bars = ax.bar(names, avail, color=colors, edgecolor="black", linewidth=0.5)
        for bar, v in zip(bars, avail):
            ax.text(
                bar.get_x() + bar.get_width() / 2,
                bar.get_height() + 0.1,
                f"{v:.2f}%",
                ha="center",
                va="bottom",
                fontsize=9,
            )
        ax.set_ylabel("Availability (%)")
        ax.set_title("Service Availability")
        ax.set_ylim(min(avail) - 2 if min(avail) > 2 else 0, 101)
        fig.tight_layout()
        path = plots_dir / "service_availability.png"
        fig.savefig(str(path), dpi=150)
        plt.close(fig)
        written.append(path)
        log.info("Wrote plots/service_availability.png")

    return written

