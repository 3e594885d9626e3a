"""Runbooks: покрокові процедури реагування для корельованих груп алертів.

Template selection
──────────────────
  The first template whose predicate matches the group wins; groups no
  template covers get the generic six-step procedure.  Predicates look at the
  root-cause text (case-insensitive), alert titles and alert metrics.

Every generated runbook is a proposal: steps that change infrastructure are
flagged ``requires_approval`` and nothing here runs a command.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace

from src.contracts.common import generate_id, utc_now_iso
from src.contracts.correlation import CorrelatedAlertGroup
from src.contracts.enums import Impact, Severity
from src.contracts.runbook import Runbook, RunbookStep, TriggerCondition

log = logging.getLogger(__name__)

GENERIC_RUNBOOK_NAME = "Generic Incident Response"
ROLLBACK_PROCEDURE = "Execute rollback steps indicated in the procedure"


def _cause(group: CorrelatedAlertGroup) -> str:
    return group.root_cause_analysis.probable_cause.lower()


def _any_metric(group: CorrelatedAlertGroup, *needles: str) -> bool:
    return any(a.metric and any(n in a.metric for n in needles) for a in group.alerts)


def _any_title(group: CorrelatedAlertGroup, needle: str) -> bool:
    return any(needle in a.title.lower() for a in group.alerts)


# ═══════════════════════════════════════════════════════════════════════════
#  Templates
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class RunbookTemplate:
    name: str
    description: str
    applies: Callable[[CorrelatedAlertGroup], bool]
    steps: Callable[[CorrelatedAlertGroup], list[RunbookStep]]
    estimated_duration_minutes: int
    prerequisites: tuple[str, ...]
    post_conditions: tuple[str, ...]


def _degradation_steps(group: CorrelatedAlertGroup) -> list[RunbookStep]:
    return [
        RunbookStep(
            1,
            "Assess Service Health",
            "Check service health dashboard and current error rates",
            command="kubectl get pods -l app={{service}}",
            expected_output="Running pods with status",
            verification="All critical pods are running",
        ),
        RunbookStep(
            2,
            "Review Recent Deployments",
            "Check for recent deployments that may have caused issues",
            command="helm history {{service}} -n production",
            expected_output="Deployment history",
            verification="Identify recent changes",
            rollback_step=5,
            automated=True,
        ),
        RunbookStep(
            3,
            "Check Resource Utilization",
            "Verify CPU, memory, and disk usage",
            command="kubectl top pods -l app={{service}}",
            expected_output="Resource metrics",
            verification="Resources within normal limits",
            automated=True,
        ),
        RunbookStep(
            4,
            "Scale Service if Needed",
            "Increase replica count to handle load",
            command="kubectl scale deployment {{service}} --replicas={{target_replicas}}",
            expected_output="Scaled",
            verification="New pods are ready",
            requires_approval=True,
        ),
        RunbookStep(
            5,
            "Rollback (if deployment issue)",
            "Rollback to previous stable version",
            command="helm rollback {{service}} {{revision}} -n production",
            expected_output="Rollback successful",
            verification="Service recovered",
            requires_approval=True,
        ),
    ]


def _cascade_steps(group: CorrelatedAlertGroup) -> list[RunbookStep]:
    services = ", ".join(group.blast_radius.services_affected)
    return [
        RunbookStep(
            1,
            "Identify Root Cause Service",
            f"Determine the originating service from {services}",
            command="kubectl get events --sort-by=.lastTimestamp | grep -i error",
            expected_output="Event log with errors",
            verification="Root cause service identified",
        ),
        RunbookStep(
            2,
            "Isolate Affected Services",
            "Circuit break downstream services to prevent further cascade",
            command='curl -X POST {{circuit_breaker_endpoint}}/break -d "service={{service}}"',
            expected_output="200 OK",
            verification="Circuit breaker activated",
            requires_approval=True,
        ),
        RunbookStep(
            3,
            "Restart Root Service",
            "Restart the root cause service pods",
            command="kubectl rollout restart deployment {{root_service}} -n production",
            expected_output="Restart initiated",
            verification="Pods restarting",
            automated=True,
            requires_approval=True,
        ),
        RunbookStep(
            4,
            "Verify Recovery",
            "Monitor service recovery in sequence",
            command='watch -n 5 "kubectl get pods -n production | grep {{services}}"',
            expected_output="All pods running",
            verification="Services healthy",
        ),
        RunbookStep(
            5,
            "Restore Circuit Breakers",
            "Gradually restore service connectivity",
            command='curl -X POST {{circuit_breaker_endpoint}}/restore -d "service={{service}}"',
            expected_output="200 OK",
            verification="Full service mesh restored",
            rollback_step=2,
            requires_approval=True,
        ),
    ]


def _resource_steps(group: CorrelatedAlertGroup) -> list[RunbookStep]:
    return [
        RunbookStep(
            1,
            "Identify Resource Type",
            "Determine which resource is exhausted",
            command="kubectl describe node {{node}}",
            expected_output="Node resource details",
            verification="Resource type identified",
            automated=True,
        ),
        RunbookStep(
            2,
            "Check Resource Limits",
            "Review pod resource requests and limits",
            command="kubectl get pods -o yaml | grep -A 5 resources",
            expected_output="Resource configurations",
            verification="Limits reviewed",
            automated=True,
        ),
        RunbookStep(
            3,
            "Increase Resource Allocation",
            "Update deployment with higher resource limits",
            command=(
                "kubectl set resources deployment {{service}} "
                "--limits=cpu={{new_cpu}},memory={{new_memory}}"
            ),
            expected_output="Resources updated",
            verification="New limits applied",
            requires_approval=True,
        ),
        RunbookStep(
            4,
            "Add Node Capacity",
            "Scale node pool if cluster-wide issue",
            command="kubectl scale node-pool {{pool}} --nodes={{target_nodes}}",
            expected_output="Node pool scaling",
            verification="New nodes available",
            rollback_step=5,
            requires_approval=True,
        ),
        RunbookStep(
            5,
            "Optimize Workloads",
            "Review and optimize resource-intensive workloads",
            command="kubectl top pods --all-namespaces | sort -k3 -n -r | head -20",
            expected_output="Top resource consumers",
            verification="Optimization targets identified",
        ),
    ]


def _db_pool_steps(group: CorrelatedAlertGroup) -> list[RunbookStep]:
    return [
        RunbookStep(
            1,
            "Check Current Connections",
            "View current database connection status",
            command='psql -c "SELECT count(*) FROM pg_stat_activity;"',
            expected_output="Connection count",
            verification="Current load assessed",
            automated=True,
        ),
        RunbookStep(
            2,
            "Identify Idle Connections",
            "Find and close idle connections",
            command=(
                "psql -c \"SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
                "WHERE state = 'idle' AND state_change < now() - interval '5 minutes';\""
            ),
            expected_output="Terminated connections",
            verification="Idle connections closed",
            automated=True,
            requires_approval=True,
        ),
        RunbookStep(
            3,
            "Increase Pool Size",
            "Temporarily increase connection pool size",
            command="kubectl set env deployment/{{service}} DB_POOL_SIZE={{new_pool_size}}",
            expected_output="Environment updated",
            verification="Pool size increased",
            requires_approval=True,
        ),
        RunbookStep(
            4,
            "Review Connection Leaks",
            "Analyze application for connection leaks",
            command='grep -r "getConnection" /var/log/app/ | grep -v "close" | wc -l',
            expected_output="Potential leak count",
            verification="Leak sources identified",
            automated=True,
        ),
        RunbookStep(
            5,
            "Restart Application Pods",
            "Restart to clear stuck connections",
            command="kubectl rollout restart deployment {{service}}",
            expected_output="Restart initiated",
            verification="Fresh connections established",
            rollback_step=3,
            automated=True,
            requires_approval=True,
        ),
    ]


def _deployment_steps(group: CorrelatedAlertGroup) -> list[RunbookStep]:
    return [
        RunbookStep(
            1,
            "Verify Deployment Status",
            "Check if deployment completed successfully",
            command="kubectl rollout status deployment {{service}}",
            expected_output="Successfully rolled out",
            verification="Deployment status confirmed",
            automated=True,
        ),
        RunbookStep(
            2,
            "Review Deployment Logs",
            "Check for deployment errors",
            command="kubectl logs deployment/{{service}} --tail=100 | grep -i error",
            expected_output="Error log entries",
            verification="Issues identified",
            automated=True,
        ),
        RunbookStep(
            3,
            "Check Configuration Changes",
            "Review configmap and secret changes",
            command="kubectl get configmap {{service}}-config -o yaml | diff - previous_config.yaml",
            expected_output="Configuration diff",
            verification="Config changes reviewed",
            automated=True,
        ),
        RunbookStep(
            4,
            "Rollback Deployment",
            "Revert to previous stable version",
            command="kubectl rollout undo deployment/{{service}}",
            expected_output="Rolled back",
            verification="Previous version active",
            requires_approval=True,
        ),
        RunbookStep(
            5,
            "Verify Rollback Success",
            "Confirm service health after rollback",
            command="kubectl get pods -l app={{service}} && curl -f http://{{service}}/health",
            expected_output="Healthy pods, 200 OK",
            verification="Service fully recovered",
            automated=True,
        ),
    ]


RUNBOOK_TEMPLATES: tuple[RunbookTemplate, ...] = (
    RunbookTemplate(
        name="Service Degradation Response",
        description="Respond to degraded service performance across multiple metrics",
        applies=lambda g: "degradation" in _cause(g) or _any_title(g, "degradation"),
        steps=_degradation_steps,
        estimated_duration_minutes=30,
        prerequisites=("kubectl access", "Helm access", "Service access"),
        post_conditions=("Service health restored", "Error rates normalized"),
    ),
    RunbookTemplate(
        name="Cascade Failure Recovery",
        description="Recover from cascading failures across multiple services",
        applies=lambda g: "cascading" in _cause(g) or len(g.blast_radius.services_affected) > 2,
        steps=_cascade_steps,
        estimated_duration_minutes=45,
        prerequisites=("kubectl access", "Circuit breaker API access", "Multi-service visibility"),
        post_conditions=("All services healthy", "No cascading alerts", "Circuit breakers reset"),
    ),
    RunbookTemplate(
        name="Resource Exhaustion Resolution",
        description="Address CPU, memory, or disk resource exhaustion",
        applies=lambda g: (
            "resource exhaustion" in _cause(g) or _any_metric(g, "cpu", "memory", "disk")
        ),
        steps=_resource_steps,
        estimated_duration_minutes=60,
        prerequisites=(
            "kubectl access",
            "Node scaling permissions",
            "Deployment update access",
        ),
        post_conditions=(
            "Resource utilization below 80%",
            "No resource alerts",
            "Performance normalized",
        ),
    ),
    RunbookTemplate(
        name="Database Connection Pool Recovery",
        description="Resolve database connection pool exhaustion issues",
        applies=lambda g: (
            "connection pool" in _cause(g)
            or _any_metric(g, "connection")
            or _any_title(g, "connection")
        ),
        steps=_db_pool_steps,
        estimated_duration_minutes=25,
        prerequisites=("Database access", "kubectl access", "Application deployment access"),
        post_conditions=(
            "Connection pool healthy",
            "No waiting connections",
            "Query performance normal",
        ),
    ),
    RunbookTemplate(
        name="Post-Deployment Incident Response",
        description="Handle issues following a deployment",
        applies=lambda g: "deployment" in _cause(g),
        steps=_deployment_steps,
        estimated_duration_minutes=20,
        prerequisites=(
            "kubectl access",
            "Previous deployment revision known",
            "Health endpoint available",
        ),
        post_conditions=("Deployment rolled back", "Service stable", "Error rates normal"),
    ),
)


def find_template(group: CorrelatedAlertGroup) -> RunbookTemplate | None:
    return next((t for t in RUNBOOK_TEMPLATES if t.applies(group)), None)


# ═══════════════════════════════════════════════════════════════════════════
#  Generation
# ═══════════════════════════════════════════════════════════════════════════


def determine_severity(group: CorrelatedAlertGroup) -> str:
    impact = group.blast_radius.estimated_impact
    severities = {a.severity for a in group.alerts}
    if impact == Impact.CRITICAL.value or Severity.CRITICAL.value in severities:
        return Severity.CRITICAL.value
    if impact == Impact.HIGH.value or Severity.WARNING.value in severities:
        return Severity.WARNING.value
    return Severity.INFO.value


def find_related_runbooks(group: CorrelatedAlertGroup) -> list[str]:
    related: list[str] = []
    if len(group.blast_radius.services_affected) > 2:
        related.append("Cascade Failure Recovery")
    if _any_metric(group, "cpu", "memory"):
        related.append("Resource Exhaustion Resolution")
    return related


def _finalize_steps(
    steps: list[RunbookStep],
    include_automation: bool,
    include_rollback: bool,
    custom_steps: tuple[RunbookStep, ...],
) -> list[RunbookStep]:
    """Drop rollback targets if asked, append custom steps, renumber.

    ``rollback_step`` references (custom steps included) point at template
    step numbers and follow the renumbering; a reference to a dropped step is
    cleared.
    """
    if not include_rollback:
        targets = {s.rollback_step for s in steps if s.rollback_step is not None}
        steps = [replace(s, rollback_step=None) for s in steps if s.step_number not in targets]
    renumber = {s.step_number: idx for idx, s in enumerate(steps, start=1)}
    steps = steps + list(custom_steps)

    return [
        replace(
            s,
            step_number=idx,
            rollback_step=renumber.get(s.rollback_step) if s.rollback_step else None,
            automated=s.automated and include_automation,
        )
        for idx, s in enumerate(steps, start=1)
    ]


def _generic_steps(group: CorrelatedAlertGroup, services: str) -> list[RunbookStep]:
    return [
        RunbookStep(
            1,
            "Acknowledge Alert Group",
            f"Acknowledge {len(group.alerts)} correlated alerts affecting {services}",
            verification="All alerts acknowledged in incident management system",
        ),
        RunbookStep(
            2,
            "Assess Impact",
            f"Evaluate impact level: {group.blast_radius.estimated_impact}. "
            f"Services affected: {services}",
            verification="Impact assessment complete",
        ),
        RunbookStep(
            3,
            "Investigate Root Cause",
            group.root_cause_analysis.probable_cause,
            verification="Root cause confirmed",
        ),
        RunbookStep(
            4,
            "Execute Remediation",
            "Apply appropriate fixes based on root cause analysis",
            verification="Issues resolved",
            requires_approval=True,
        ),
        RunbookStep(
            5,
            "Verify Recovery",
            "Confirm all services are healthy and metrics are normal",
            verification="All checks passing",
            automated=True,
        ),
        RunbookStep(
            6,
            "Close Alert Group",
            "Resolve all correlated alerts",
            verification="All alerts resolved",
        ),
    ]


def generate_runbook(
    group: CorrelatedAlertGroup,
    include_automation: bool = False,
    include_rollback: bool = True,
    custom_steps: tuple[RunbookStep, ...] = (),
    runbook_id: str | None = None,
    now_iso: Callable[[], str] = utc_now_iso,
) -> Runbook:
    """Build the response runbook for *group*.

    Parameters
    ──────────
    include_automation — keep the ``automated`` flag of template steps;
                         otherwise every step is manual
    include_rollback   — keep steps that other steps name as their rollback
    custom_steps       — appended after the template steps (templates only)
    runbook_id         — fixed id (stable output); generated when None
    """
    template = find_template(group)
    first = group.alerts[0] if group.alerts else None
    tenant_id = first.tenant_id if first else "default"
    project_id = first.project_id if first else "default"
    now = now_iso()

    if template is None:
        services = ", ".join(dict.fromkeys(a.service for a in group.alerts))
        steps = _finalize_steps(_generic_steps(group, services), include_automation, True, ())
        log.info("Runbook for %s: %s (%d steps)", group.group_id, GENERIC_RUNBOOK_NAME, len(steps))
        return Runbook(
            runbook_id=runbook_id or generate_id(),
            tenant_id=tenant_id,
            project_id=project_id,
            alert_group_id=group.group_id,
            name=GENERIC_RUNBOOK_NAME,
            description=(
                f"Automated runbook for {len(group.alerts)} correlated alerts. "
                f"Root cause: {group.root_cause_analysis.probable_cause}"
            ),
            trigger_conditions=tuple(
                TriggerCondition(alert_source=a.source, service=a.service) for a in group.alerts
            ),
            severity=determine_severity(group),
            estimated_duration_minutes=45,
            steps=tuple(steps),
            prerequisites=("Incident management access", "Service monitoring access"),
            post_conditions=("All alerts resolved", "Services healthy", "Root cause documented"),
            created_at=now,
            updated_at=now,
        )

    steps = _finalize_steps(
        template.steps(group), include_automation, include_rollback, custom_steps
    )
    log.info("Runbook for %s: %s (%d steps)", group.group_id, template.name, len(steps))
    return Runbook(
        runbook_id=runbook_id or generate_id(),
        tenant_id=tenant_id,
        project_id=project_id,
        alert_group_id=group.group_id,
        name=template.name,
        description=f"{template.description}\n\nGenerated for alert group: {group.group_id}",
        trigger_conditions=tuple(
            TriggerCondition(
                alert_source=a.source,
                alert_title_pattern=a.title,
                service=a.service,
                metric=a.metric,
            )
            for a in group.alerts
        ),
        severity=determine_severity(group),
        estimated_duration_minutes=template.estimated_duration_minutes,
        steps=tuple(steps),
        prerequisites=template.prerequisites,
        post_conditions=template.post_conditions,
        created_at=now,
        updated_at=now,
        rollback_procedure=(
            ROLLBACK_PROCEDURE if any(s.rollback_step for s in steps) else None
        ),
        related_runbooks=tuple(find_related_runbooks(group)),
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Step views
# ═══════════════════════════════════════════════════════════════════════════


def automated_steps(runbook: Runbook) -> list[RunbookStep]:
    return [s for s in runbook.steps if s.automated]


def manual_steps(runbook: Runbook) -> list[RunbookStep]:
    return [s for s in runbook.steps if not s.automated]


def steps_requiring_approval(runbook: Runbook) -> list[RunbookStep]:
    return [s for s in runbook.steps if s.requires_approval]


def runbook_progress(runbook: Runbook, completed_steps: list[int]) -> tuple[int, int]:
    """``(percent, remaining)`` for the given completed step numbers."""
    total = len(runbook.steps)
    done = len(set(completed_steps) & {s.step_number for s in runbook.steps})
    if not total:
        return 100, 0
    return round(done / total * 100), total - done
