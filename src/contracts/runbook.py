"""Incident response runbook contracts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from src.contracts.common import drop_none, is_identifier, is_iso_timestamp
from src.contracts.enums import Severity, values

RUNBOOK_VERSION = "1.0.0"

_SEVERITIES = values(Severity)
_GENERATED_BY = {"ai", "manual", "hybrid"}


@dataclass(frozen=True, slots=True)
class RunbookStep:
    step_number: int
    title: str
    description: str
    command: str | None = None
    expected_output: str | None = None
    verification: str | None = None
    rollback_step: int | None = None
    automated: bool = False
    requires_approval: bool = False

    def to_dict(self) -> dict[str, Any]:
        return drop_none(
            {
                "step_number": self.step_number,
                "title": self.title,
                "description": self.description,
                "command": self.command,
                "expected_output": self.expected_output,
                "verification": self.verification,
                "rollback_step": self.rollback_step,
                "automated": self.automated,
                "requires_approval": self.requires_approval,
            }
        )


@dataclass(frozen=True, slots=True)
class TriggerCondition:
    alert_source: str | None = None
    alert_title_pattern: str | None = None
    service: str | None = None
    metric: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return drop_none(
            {
                "alert_source": self.alert_source,
                "alert_title_pattern": self.alert_title_pattern,
                "service": self.service,
                "metric": self.metric,
            }
        )


@dataclass(frozen=True, slots=True)
class Runbook:
    """A step-by-step response procedure generated for one alert group."""

    runbook_id: str
    tenant_id: str
    project_id: str
    alert_group_id: str
    name: str
    description: str
    trigger_conditions: tuple[TriggerCondition, ...]
    severity: str
    estimated_duration_minutes: int
    steps: tuple[RunbookStep, ...]
    prerequisites: tuple[str, ...]
    post_conditions: tuple[str, ...]
    created_at: str
    updated_at: str
    rollback_procedure: str | None = None
    related_runbooks: tuple[str, ...] = ()
    version: str = RUNBOOK_VERSION
    generated_by: str = "ai"

    def to_dict(self) -> dict[str, Any]:
        return drop_none(
            {
                "runbook_id": self.runbook_id,
                "tenant_id": self.tenant_id,
                "project_id": self.project_id,
                "alert_group_id": self.alert_group_id,
                "name": self.name,
                "description": self.description,
                "trigger_conditions": [t.to_dict() for t in self.trigger_conditions],
                "severity": self.severity,
                "estimated_duration_minutes": self.estimated_duration_minutes,
                "steps": [s.to_dict() for s in self.steps],
                "prerequisites": list(self.prerequisites),
                "post_conditions": list(self.post_conditions),
                "rollback_procedure": self.rollback_procedure,
                "related_runbooks": list(self.related_runbooks),
                "created_at": self.created_at,
                "updated_at": self.updated_at,
                "version": self.version,
                "generated_by": self.generated_by,
            }
        )


def validate_runbook(row: Any) -> list[str]:
    """Problems with a serialised runbook (empty list = valid)."""
    if not isinstance(row, dict):
        return ["runbook must be an object"]
    problems: list[str] = []
    for key in ("runbook_id", "tenant_id", "project_id"):
        if not is_identifier(row.get(key)):
            problems.append(f"{key}: must be an identifier (1-256 chars)")
    if not row.get("name"):
        problems.append("name: must not be empty")
    if row.get("severity") not in _SEVERITIES:
        problems.append(f"severity: unknown severity '{row.get('severity')}'")
    duration = row.get("estimated_duration_minutes")
    if isinstance(duration, bool) or not isinstance(duration, int) or duration < 1:
        problems.append("estimated_duration_minutes: must be an integer >= 1")
    for key in ("created_at", "updated_at"):
        if not is_iso_timestamp(row.get(key)):
            problems.append(f"{key}: must be an ISO-8601 datetime")
    if row.get("generated_by", "ai") not in _GENERATED_BY:
        problems.append(f"generated_by: unknown value '{row.get('generated_by')}'")

    steps = row.get("steps")
    if not isinstance(steps, list):
        return problems + ["steps: must be a list"]
    for idx, step in enumerate(steps):
        if not isinstance(step, dict):
            problems.append(f"steps[{idx}]: must be an object")
            continue
        number = step.get("step_number")
        if isinstance(number, bool) or not isinstance(number, int) or number < 1:
            problems.append(f"steps[{idx}].step_number: must be an integer >= 1")
        if not step.get("title"):
            problems.append(f"steps[{idx}].title: must not be empty")
    return problems
