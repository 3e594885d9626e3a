"""Canonical enumerations for the ops contracts."""

from __future__ import annotations

from enum import Enum


class Severity(str, Enum):
    INFO = "info"
    OPPORTUNITY = "opportunity"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertSource(str, Enum):
    CLOUDWATCH = "cloudwatch"
    DATADOG = "datadog"
    PROMETHEUS = "prometheus"
    GRAFANA = "grafana"
    PAGERDUTY = "pagerduty"
    OPSGENIE = "opsgenie"
    NEWRELIC = "newrelic"
    SENTRY = "sentry"
    CUSTOM = "custom"


class AlertStatus(str, Enum):
    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    SUPPRESSED = "suppressed"


class CorrelationLogic(str, Enum):
    SAME_SERVICE = "same_service"
    SAME_METRIC = "same_metric"
    COMMON_SOURCE = "common_source"
    CUSTOM = "custom"


class MatchField(str, Enum):
    SOURCE = "source"
    SERVICE = "service"
    SEVERITY = "severity"
    METRIC = "metric"
    TITLE = "title"


class MatchOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    REGEX = "regex"
    PREFIX = "prefix"


class Impact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class BackoffStrategy(str, Enum):
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class BreakerStatus(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


class AuditDepth(str, Enum):
    SURFACE = "surface"
    STANDARD = "standard"
    DEEP = "deep"


class ServiceStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class JobType(str, Enum):
    ALERT_CORRELATE = "autopilot.ops.alert_correlate"
    RUNBOOK_GENERATE = "autopilot.ops.runbook_generate"
    RELIABILITY_REPORT = "autopilot.ops.reliability_report"
    HEALTH_AUDIT = "autopilot.ops.health_audit"


class ReportType(str, Enum):
    INCIDENT_POSTMORTEM = "incident_postmortem"
    HEALTH_CHECK = "health_check"
    TREND_ANALYSIS = "trend_analysis"
    COMPLIANCE = "compliance"


def values(enum_cls: type[Enum]) -> set[str]:
    """Return the set of raw string values of *enum_cls*."""
    return {m.value for m in enum_cls}
