"""Alert utilities -- filtering, ordering, grouping and volume metrics.

Filter semantics
────────────────
    Every populated field of :class:`AlertFilter` narrows the result; list
    fields match when the alert value is one of the listed values.  ``since``
    and ``until`` are inclusive bounds on ``alert.timestamp``.

Metrics computed
────────────────
  total
      Number of alerts.

  by_severity / by_service / by_source
      Dict mapping the field value -> count.

  critical_ratio
      ``by_severity["critical"] / total`` rounded to 4 digits (0.0 when empty).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field

from src.contracts.alert import Alert
from src.contracts.common import parse_ts

log = logging.getLogger(__name__)

SEVERITY_ORDER: dict[str, int] = {
    "critical": 0,
    "warning": 1,
    "opportunity": 2,
    "info": 3,
}

ALERT_METRICS_CSV_COLUMNS = [
    "total",
    "critical",
    "warning",
    "opportunity",
    "info",
    "services",
    "sources",
    "critical_ratio",
]


@dataclass(slots=True)
class AlertFilter:
    sources: list[str] | None = None
    services: list[str] | None = None
    severities: list[str] | None = None
    statuses: list[str] | None = None
    since: str | None = None
    until: str | None = None

    def matches(self, alert: Alert) -> bool:
        if self.sources and alert.source not in self.sources:
            return False
        if self.services and alert.service not in self.services:
            return False
        if self.severities and alert.severity not in self.severities:
            return False
        if self.statuses and alert.status not in self.statuses:
            return False
        ts = parse_ts(alert.timestamp)
        if self.since and ts < parse_ts(self.since):
            return False
        if self.until and ts > parse_ts(self.until):
            return False
        return True


def filter_alerts(alerts: list[Alert], flt: AlertFilter | None = None) -> list[Alert]:
    if flt is None:
        return list(alerts)
    out = [a for a in alerts if flt.matches(a)]
    log.debug("Filter kept %d/%d alerts", len(out), len(alerts))
    return out


def sort_alerts_by_severity(alerts: list[Alert]) -> list[Alert]:
    """Critical first; equal severities keep timestamp order."""
    return sorted(
        alerts,
        key=lambda a: (SEVERITY_ORDER.get(a.severity, len(SEVERITY_ORDER)), parse_ts(a.timestamp)),
    )


def critical_alerts(alerts: list[Alert]) -> list[Alert]:
    return [a for a in alerts if a.severity == "critical"]


def alerts_by_service(alerts: list[Alert], service: str) -> list[Alert]:
    return [a for a in alerts if a.service == service]


def group_alerts_by_service(alerts: list[Alert]) -> dict[str, list[Alert]]:
    grouped: dict[str, list[Alert]] = defaultdict(list)
    for a in alerts:
        grouped[a.service].append(a)
    return dict(grouped)


def group_alerts_by_source(alerts: list[Alert]) -> dict[str, list[Alert]]:
    grouped: dict[str, list[Alert]] = defaultdict(list)
    for a in alerts:
        grouped[a.source].append(a)
    return dict(grouped)


@dataclass
class AlertMetrics:
    """Агреговані метрики потоку алертів."""

    total: int = 0
    by_severity: dict[str, int] = field(default_factory=dict)
    by_service: dict[str, int] = field(default_factory=dict)
    by_source: dict[str, int] = field(default_factory=dict)

    @property
    def critical_ratio(self) -> float:
        if not self.total:
            return 0.0
        return round(self.by_severity.get("critical", 0) / self.total, 4)

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "by_severity": dict(self.by_severity),
            "by_service": dict(self.by_service),
            "by_source": dict(self.by_source),
            "critical_ratio": self.critical_ratio,
        }

    def to_csv_row(self) -> str:
        """Повертає один рядок CSV для alert_metrics.csv."""
        sev = self.by_severity
        vals = [
            str(self.total),
            str(sev.get("critical", 0)),
            str(sev.get("warning", 0)),
            str(sev.get("opportunity", 0)),
            str(sev.get("info", 0)),
            str(len(self.by_service)),
            str(len(self.by_source)),
            f"{self.critical_ratio:.4f}",
        ]
        return ",".join(vals)

    @staticmethod
    def csv_header() -> str:
        return ",".join(ALERT_METRICS_CSV_COLUMNS)


def compute_alert_metrics(alerts: list[Alert]) -> AlertMetrics:
    """Обчислює метрики для списку алертів.

    Args:
        alerts: Список алертів.

    Returns:
        AlertMetrics з обчисленими значеннями.
    """
    m = AlertMetrics(total=len(alerts))
    for a in alerts:
        m.by_severity[a.severity] = m.by_severity.get(a.severity, 0) + 1
        m.by_service[a.service] = m.by_service.get(a.service, 0) + 1
        m.by_source[a.source] = m.by_source.get(a.source, 0) + 1

    log.info(
        "Alert metrics: total=%d, critical=%d, services=%d, sources=%d",
        m.total, m.by_severity.get("critical", 0), len(m.by_service), len(m.by_source),
    )
    return m
