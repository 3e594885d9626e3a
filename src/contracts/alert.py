"""Alert model — one raw infrastructure alert as ingested from a monitoring source."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.contracts.common import drop_none, is_identifier, is_iso_timestamp
from src.contracts.enums import AlertSource, AlertStatus, Severity, values

_SOURCES = values(AlertSource)
_STATUSES = values(AlertStatus)
_SEVERITIES = values(Severity)


@dataclass(frozen=True, slots=True)
class Alert:
    """Immutable alert, unique per tenant+project by ``alert_id``."""

    alert_id: str
    tenant_id: str
    project_id: str
    source: str  # cloudwatch | datadog | prometheus | ... | custom
    status: str  # open | acknowledged | resolved | suppressed
    title: str
    description: str
    severity: str  # critical | warning | info | opportunity
    service: str
    timestamp: str  # ISO-8601 UTC

    # ── optional ──
    metric: str | None = None
    threshold: float | None = None
    current_value: float | None = None
    correlation_id: str | None = None
    metadata: dict[str, Any] | None = field(default=None, hash=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return drop_none(
            {
                "alert_id": self.alert_id,
                "tenant_id": self.tenant_id,
                "project_id": self.project_id,
                "source": self.source,
                "status": self.status,
                "title": self.title,
                "description": self.description,
                "severity": self.severity,
                "service": self.service,
                "metric": self.metric,
                "threshold": self.threshold,
                "current_value": self.current_value,
                "timestamp": self.timestamp,
                "correlation_id": self.correlation_id,
                "metadata": dict(self.metadata) if self.metadata else None,
            }
        )

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> Alert:
        """Build an Alert from a JSON object. Call :func:`validate_alert` first."""
        return cls(
            alert_id=row["alert_id"],
            tenant_id=row["tenant_id"],
            project_id=row["project_id"],
            source=row["source"],
            status=row["status"],
            title=row["title"],
            description=row.get("description", ""),
            severity=row["severity"],
            service=row["service"],
            timestamp=row["timestamp"],
            metric=row.get("metric"),
            threshold=row.get("threshold"),
            current_value=row.get("current_value"),
            correlation_id=row.get("correlation_id"),
            metadata=row.get("metadata"),
        )


def validate_alert(row: Any) -> list[str]:
    """Return a list of validation problems (empty = valid)."""
    if not isinstance(row, dict):
        return ["alert must be an object"]

    problems: list[str] = []
    for key in ("alert_id", "title", "service"):
        if not isinstance(row.get(key), str) or not row.get(key):
            problems.append(f"{key}: must be a non-empty string")
    for key in ("tenant_id", "project_id"):
        if not is_identifier(row.get(key)):
            problems.append(f"{key}: must be an identifier (1-256 chars)")
    if not isinstance(row.get("description", ""), str):
        problems.append("description: must be a string")
    if row.get("source") not in _SOURCES:
        problems.append(f"source: unknown source '{row.get('source')}'")
    if row.get("status") not in _STATUSES:
        problems.append(f"status: unknown status '{row.get('status')}'")
    if row.get("severity") not in _SEVERITIES:
        problems.append(f"severity: unknown severity '{row.get('severity')}'")
    if not is_iso_timestamp(row.get("timestamp")):
        problems.append("timestamp: must be an ISO-8601 datetime with timezone")
    if row.get("metric") is not None and not isinstance(row["metric"], str):
        problems.append("metric: must be a string")
    for key in ("threshold", "current_value"):
        val = row.get(key)
        if val is not None and (isinstance(val, bool) or not isinstance(val, (int, float))):
            problems.append(f"{key}: must be a number")
    if row.get("metadata") is not None and not isinstance(row["metadata"], dict):
        problems.append("metadata: must be an object")
    return problems


def parse_alerts(rows: list[Any]) -> tuple[list[Alert], list[str]]:
    """Validate and build alerts; returns (alerts, problems) with index-prefixed problems."""
    alerts: list[Alert] = []
    problems: list[str] = []
    for idx, row in enumerate(rows):
        errs = validate_alert(row)
        if errs:
            problems.extend(f"alerts[{idx}].{e}" for e in errs)
            continue
        alerts.append(Alert.from_dict(row))
    return alerts, problems
