"""Correlation contracts — rules, correlated groups and the correlation envelope."""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field
from typing import Any

from src.contracts.alert import Alert
from src.contracts.common import drop_none
from src.contracts.enums import CorrelationLogic, MatchField, MatchOperator, values

_FIELDS = values(MatchField)
_OPERATORS = values(MatchOperator)
_LOGICS = values(CorrelationLogic)

GROUP_CSV_COLUMNS = [
    "group_id",
    "correlation_rule_id",
    "alert_count",
    "alert_ids",
    "services_affected",
    "estimated_impact",
    "probable_cause",
    "confidence",
    "created_at",
]


@dataclass(frozen=True, slots=True)
class MatchCriterion:
    field: str  # source | service | severity | metric | title
    operator: str  # equals | contains | regex | prefix
    value: str

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator, "value": self.value}


@dataclass(frozen=True, slots=True)
class CorrelationRule:
    """Static correlation rule, loaded once per run."""

    rule_id: str
    name: str
    correlation_logic: CorrelationLogic
    description: str = ""
    match_criteria: tuple[MatchCriterion, ...] = ()
    time_window_minutes: int = 10
    min_alerts: int = 2
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "match_criteria": [c.to_dict() for c in self.match_criteria],
            "time_window_minutes": self.time_window_minutes,
            "correlation_logic": self.correlation_logic.value,
            "min_alerts": self.min_alerts,
        }

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> CorrelationRule:
        return cls(
            rule_id=row["rule_id"],
            name=row.get("name", row["rule_id"]),
            description=row.get("description", ""),
            enabled=bool(row.get("enabled", True)),
            match_criteria=tuple(
                MatchCriterion(field=c["field"], operator=c["operator"], value=str(c["value"]))
                for c in row.get("match_criteria", [])
            ),
            time_window_minutes=int(row.get("time_window_minutes", 10)),
            correlation_logic=CorrelationLogic(row["correlation_logic"]),
            min_alerts=int(row.get("min_alerts", 2)),
        )


def validate_rule(row: Any) -> list[str]:
    """Return a list of validation problems for a rule mapping (empty = valid)."""
    if not isinstance(row, dict):
        return ["rule must be an object"]
    problems: list[str] = []
    if not isinstance(row.get("rule_id"), str) or not row.get("rule_id"):
        problems.append("rule_id: must be a non-empty string")
    if row.get("correlation_logic") not in _LOGICS:
        problems.append(f"correlation_logic: unknown logic '{row.get('correlation_logic')}'")
    window = row.get("time_window_minutes", 10)
    if isinstance(window, bool) or not isinstance(window, int) or window < 1:
        problems.append("time_window_minutes: must be an integer >= 1")
    min_alerts = row.get("min_alerts", 2)
    if isinstance(min_alerts, bool) or not isinstance(min_alerts, int) or min_alerts < 1:
        problems.append("min_alerts: must be an integer >= 1")
    criteria = row.get("match_criteria", [])
    if not isinstance(criteria, list):
        return problems + ["match_criteria: must be a list"]
    for idx, c in enumerate(criteria):
        if not isinstance(c, dict):
            problems.append(f"match_criteria[{idx}]: must be an object")
            continue
        if c.get("field") not in _FIELDS:
            problems.append(f"match_criteria[{idx}].field: unknown field '{c.get('field')}'")
        if c.get("operator") not in _OPERATORS:
            problems.append(
                f"match_criteria[{idx}].operator: unknown operator '{c.get('operator')}'"
            )
        if c.get("operator") == MatchOperator.REGEX.value:
            try:
                re.compile(str(c.get("value", "")))
            except re.error as exc:
                problems.append(f"match_criteria[{idx}].value: invalid regex ({exc})")
    return problems


@dataclass(frozen=True, slots=True)
class RootCauseAnalysis:
    probable_cause: str
    confidence: float  # 0.0..1.0
    contributing_factors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "probable_cause": self.probable_cause,
            "confidence": self.confidence,
            "contributing_factors": list(self.contributing_factors),
        }


@dataclass(frozen=True, slots=True)
class BlastRadius:
    services_affected: tuple[str, ...]
    estimated_impact: str  # low | medium | high | critical

    def to_dict(self) -> dict[str, Any]:
        return {
            "services_affected": list(self.services_affected),
            "estimated_impact": self.estimated_impact,
        }


@dataclass(frozen=True, slots=True)
class CorrelatedAlertGroup:
    """A set of alerts claimed by one rule, with its heuristic root cause."""

    group_id: str
    correlation_rule_id: str
    alerts: tuple[Alert, ...]
    root_cause_analysis: RootCauseAnalysis
    blast_radius: BlastRadius
    created_at: str
    resolved_at: str | None = None

    @property
    def alert_ids(self) -> list[str]:
        return [a.alert_id for a in self.alerts]

    def to_dict(self) -> dict[str, Any]:
        return drop_none(
            {
                "group_id": self.group_id,
                "correlation_rule_id": self.correlation_rule_id,
                "alerts": [a.to_dict() for a in self.alerts],
                "root_cause_analysis": self.root_cause_analysis.to_dict(),
                "blast_radius": self.blast_radius.to_dict(),
                "created_at": self.created_at,
                "resolved_at": self.resolved_at,
            }
        )

    def to_csv_row(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(
            [
                self.group_id,
                self.correlation_rule_id,
                len(self.alerts),
                ";".join(self.alert_ids),
                ";".join(self.blast_radius.services_affected),
                self.blast_radius.estimated_impact,
                self.root_cause_analysis.probable_cause,
                self.root_cause_analysis.confidence,
                self.created_at,
            ]
        )
        return buf.getvalue().rstrip("\r\n")

    @staticmethod
    def csv_header() -> str:
        return ",".join(GROUP_CSV_COLUMNS)


@dataclass(slots=True)
class CorrelationStats:
    total_alerts: int = 0
    grouped_alerts: int = 0
    total_groups: int = 0
    rules_triggered: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_alerts": self.total_alerts,
            "grouped_alerts": self.grouped_alerts,
            "total_groups": self.total_groups,
            "rules_triggered": list(self.rules_triggered),
        }


@dataclass(slots=True)
class CorrelationResult:
    groups: list[CorrelatedAlertGroup]
    ungrouped: list[Alert]
    stats: CorrelationStats

    def to_dict(self) -> dict[str, Any]:
        return {
            "groups": [g.to_dict() for g in self.groups],
            "ungrouped": [a.to_dict() for a in self.ungrouped],
            "stats": self.stats.to_dict(),
        }


@dataclass(slots=True)
class AlertCorrelation:
    """Tenant-scoped envelope around a correlation result."""

    correlation_id: str
    tenant_id: str
    project_id: str
    groups: list[CorrelatedAlertGroup]
    total_alerts: int
    generated_at: str
    profile_id: str = "ops-base"

    def summary(self) -> dict[str, int]:
        resolved = sum(1 for g in self.groups if g.resolved_at)
        return {
            "total_alerts": self.total_alerts,
            "total_groups": len(self.groups),
            "new_groups": len(self.groups) - resolved,
            "resolved_groups": resolved,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "tenant_id": self.tenant_id,
            "project_id": self.project_id,
            "groups": [g.to_dict() for g in self.groups],
            "summary": self.summary(),
            "generated_at": self.generated_at,
            "profile_id": self.profile_id,
        }
