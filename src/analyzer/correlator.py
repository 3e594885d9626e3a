"""Correlator — group Alerts into correlated incident groups.

Algorithm
─────────
  1. Sort alerts by timestamp (input index breaks ties).
  2. For each enabled rule, in configured order:
       * skip alerts already claimed by an earlier rule
       * skip alerts that do not satisfy the rule's match criteria
       * bucket the rest by a key chosen by ``correlation_logic``
       * single forward sweep per bucket: a new sub-group starts when the
         gap to the last alert of the running sub-group exceeds the window
       * sub-groups with at least ``min_alerts`` alerts become groups and
         their alerts are claimed
  3. Everything left unclaimed is ``ungrouped``.

The root cause attached to each group is a lookup keyed by ``rule_id``.  It
is a heuristic label, not a statistical inference, and is the place to plug
in a real scoring function later.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import timedelta

from src.analyzer.rules import DEFAULT_RULES, field_value, rule_matches
from src.contracts.alert import Alert
from src.contracts.common import generate_id, parse_ts, utc_now_iso
from src.contracts.correlation import (
    AlertCorrelation,
    BlastRadius,
    CorrelatedAlertGroup,
    CorrelationResult,
    CorrelationRule,
    CorrelationStats,
    RootCauseAnalysis,
)
from src.contracts.enums import CorrelationLogic, Impact

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Correlation key strategies
# ═══════════════════════════════════════════════════════════════════════════


def _custom_key(alert: Alert, rule: CorrelationRule) -> str:
    return "|".join(f"{c.field}:{field_value(alert, c.field)}" for c in rule.match_criteria)


KEY_STRATEGIES: dict[CorrelationLogic, Callable[[Alert, CorrelationRule], str]] = {
    CorrelationLogic.SAME_SERVICE: lambda a, _r: a.service,
    CorrelationLogic.SAME_METRIC: lambda a, _r: a.metric or "unknown",
    CorrelationLogic.COMMON_SOURCE: lambda a, _r: a.source,
    CorrelationLogic.CUSTOM: _custom_key,
}


def correlation_key(alert: Alert, rule: CorrelationRule) -> str:
    return KEY_STRATEGIES[CorrelationLogic(rule.correlation_logic)](alert, rule)


# ═══════════════════════════════════════════════════════════════════════════
#  Root cause heuristics
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class _Facts:
    count: int
    services: list[str]
    metrics: list[str]


def _same_service(f: _Facts) -> RootCauseAnalysis:
    svc = f.services[0]
    return RootCauseAnalysis(
        probable_cause=(
            f"Multiple infrastructure issues detected in {svc} affecting {', '.join(f.metrics)}"
        ),
        confidence=0.75,
        contributing_factors=(f"Service degradation in {svc}", "Multiple metric breaches"),
    )


def _cascade(f: _Facts) -> RootCauseAnalysis:
    return RootCauseAnalysis(
        probable_cause=f"Cascading failure detected across {len(f.services)} services",
        confidence=0.85,
        contributing_factors=(
            "Service dependency failure",
            "Resource exhaustion likely",
            "Chain reaction of alerts",
        ),
    )


def _resource_exhaustion(f: _Facts) -> RootCauseAnalysis:
    return RootCauseAnalysis(
        probable_cause="Resource exhaustion detected (CPU, memory, or disk)",
        confidence=0.9,
        contributing_factors=(
            "High resource utilization",
            "Possible capacity limit reached",
            "Scale-up may be required",
        ),
    )


def _deployment(f: _Facts) -> RootCauseAnalysis:
    return RootCauseAnalysis(
        probable_cause="Post-deployment issues detected",
        confidence=0.8,
        contributing_factors=(
            "Recent deployment activity",
            "New configuration issues possible",
            "Rollback candidate",
        ),
    )


def _db_pool(f: _Facts) -> RootCauseAnalysis:
    return RootCauseAnalysis(
        probable_cause="Database connection pool exhaustion",
        confidence=0.88,
        contributing_factors=(
            "Connection pool limit reached",
            "Connection leaks possible",
            "Query optimization needed",
        ),
    )


def _generic(f: _Facts) -> RootCauseAnalysis:
    return RootCauseAnalysis(
        probable_cause=(
            f"Correlated alerts: {f.count} alerts from {len(f.services)} services"
        ),
        confidence=0.65,
        contributing_factors=(f"{f.count} correlated alerts", f"Spanning {len(f.services)} services"),
    )


ROOT_CAUSE_TABLE: dict[str, Callable[[_Facts], RootCauseAnalysis]] = {
    "same-service-multiple-metrics": _same_service,
    "cascade-failure-pattern": _cascade,
    "infrastructure-resource-exhaustion": _resource_exhaustion,
    "deployment-related-issues": _deployment,
    "database-connection-pool": _db_pool,
}


def _distinct(values: Sequence[str | None]) -> list[str]:
    seen: dict[str, None] = {}
    for v in values:
        if v:
            seen.setdefault(v, None)
    return list(seen)


def analyze_root_cause(alerts: Sequence[Alert], rule: CorrelationRule) -> RootCauseAnalysis:
    facts = _Facts(
        count=len(alerts),
        services=_distinct([a.service for a in alerts]),
        metrics=_distinct([a.metric for a in alerts]),
    )
    return ROOT_CAUSE_TABLE.get(rule.rule_id, _generic)(facts)


def estimate_impact(alerts: Sequence[Alert]) -> str:
    severities = {a.severity for a in alerts}
    if "critical" in severities:
        return Impact.CRITICAL.value
    if "warning" in severities and len(alerts) > 5:
        return Impact.HIGH.value
    if len(alerts) > 3:
        return Impact.MEDIUM.value
    return Impact.LOW.value


def build_group(
    alerts: Sequence[Alert],
    rule: CorrelationRule,
    group_id: str,
    created_at: str,
) -> CorrelatedAlertGroup:
    return CorrelatedAlertGroup(
        group_id=group_id,
        correlation_rule_id=rule.rule_id,
        alerts=tuple(alerts),
        root_cause_analysis=analyze_root_cause(alerts, rule),
        blast_radius=BlastRadius(
            services_affected=tuple(_distinct([a.service for a in alerts])),
            estimated_impact=estimate_impact(alerts),
        ),
        created_at=created_at,
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Main entry
# ═══════════════════════════════════════════════════════════════════════════


def _sweep(bucket: list[Alert], window: timedelta) -> list[list[Alert]]:
    """Split a time-ordered bucket wherever the gap to the previous alert exceeds *window*."""
    runs: list[list[Alert]] = []
    last_ts = None
    for alert in bucket:
        ts = parse_ts(alert.timestamp)
        if runs and last_ts is not None and ts - last_ts <= window:
            runs[-1].append(alert)
        else:
            runs.append([alert])
        last_ts = ts
    return runs


def correlate(
    alerts: Sequence[Alert],
    rules: Sequence[CorrelationRule] = DEFAULT_RULES,
    id_factory: Callable[[], str] = generate_id,
    now_iso: Callable[[], str] = utc_now_iso,
) -> CorrelationResult:
    """Group *alerts* under *rules*.

    Parameters
    ──────────
    alerts     — any order; sorted here by timestamp
    rules      — applied in order, first rule to claim an alert wins
    id_factory — group id generator
    now_iso    — ``created_at`` source

    Returns
    ───────
    CorrelationResult with ``len(grouped) + len(ungrouped) == len(alerts)``.
    """
    ordered = [
        a for _, a in sorted(enumerate(alerts), key=lambda p: (parse_ts(p[1].timestamp), p[0]))
    ]
    claimed: set[int] = set()
    groups: list[CorrelatedAlertGroup] = []
    triggered: list[str] = []

    for rule in rules:
        if not rule.enabled:
            continue
        window = timedelta(minutes=rule.time_window_minutes)
        buckets: dict[str, list[tuple[int, Alert]]] = {}
        for pos, alert in enumerate(ordered):
            if pos in claimed or not rule_matches(alert, rule):
                continue
            buckets.setdefault(correlation_key(alert, rule), []).append((pos, alert))

        for entries in buckets.values():
            positions = {id(a): p for p, a in entries}
            for run in _sweep([a for _, a in entries], window):
                if len(run) < rule.min_alerts:
                    continue
                groups.append(build_group(run, rule, id_factory(), now_iso()))
                claimed.update(positions[id(a)] for a in run)
                if rule.rule_id not in triggered:
                    triggered.append(rule.rule_id)

    ungrouped = [a for pos, a in enumerate(ordered) if pos not in claimed]
    stats = CorrelationStats(
        total_alerts=len(alerts),
        grouped_alerts=len(claimed),
        total_groups=len(groups),
        rules_triggered=triggered,
    )
    log.info(
        "Correlator produced %d groups from %d alerts (%d ungrouped, rules=%s)",
        len(groups), len(alerts), len(ungrouped), ",".join(triggered) or "-",
    )
    return CorrelationResult(groups=groups, ungrouped=ungrouped, stats=stats)


def create_alert_correlation(
    tenant_id: str,
    project_id: str,
    result: CorrelationResult,
    profile_id: str = "ops-base",
    correlation_id: str | None = None,
    generated_at: str | None = None,
) -> AlertCorrelation:
    return AlertCorrelation(
        correlation_id=correlation_id or generate_id(),
        tenant_id=tenant_id,
        project_id=project_id,
        groups=list(result.groups),
        total_alerts=result.stats.total_alerts,
        generated_at=generated_at or utc_now_iso(),
        profile_id=profile_id,
    )
