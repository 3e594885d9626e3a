"""Correlation rule catalogue.

Rules come from ``config/rules.yaml`` when present, otherwise from the five
built-in rules below.  Rule order is significant: the correlator applies
rules in order and the first rule to claim an alert wins.

Match criteria
──────────────
  equals   — exact string match
  contains — case-insensitive substring
  prefix   — ``str.startswith``
  regex    — ``re.search``

A value of the form ``{{field}}`` is a placeholder: it declares the field
the rule keys on and matches every alert.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from pathlib import Path

from src.contracts.alert import Alert
from src.contracts.correlation import CorrelationRule, MatchCriterion, validate_rule
from src.contracts.enums import CorrelationLogic, MatchOperator
from src.shared.config_loader import ConfigError, load_optional_yaml

log = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"^\{\{\s*\w+\s*\}\}$")

DEFAULT_RULES: tuple[CorrelationRule, ...] = (
    CorrelationRule(
        rule_id="same-service-multiple-metrics",
        name="Same Service - Multiple Metrics",
        description="Correlate alerts from the same service across different metrics",
        match_criteria=(MatchCriterion("service", "equals", "{{service}}"),),
        time_window_minutes=10,
        correlation_logic=CorrelationLogic.SAME_SERVICE,
        min_alerts=2,
    ),
    CorrelationRule(
        rule_id="cascade-failure-pattern",
        name="Cascade Failure Pattern",
        description="Detect cascading failures across dependent services",
        match_criteria=(MatchCriterion("severity", "equals", "critical"),),
        time_window_minutes=5,
        correlation_logic=CorrelationLogic.CUSTOM,
        min_alerts=3,
    ),
    CorrelationRule(
        rule_id="infrastructure-resource-exhaustion",
        name="Resource Exhaustion Pattern",
        description="Correlate CPU, memory, and disk alerts indicating resource exhaustion",
        match_criteria=(MatchCriterion("metric", "regex", "(cpu|memory|disk)_usage"),),
        time_window_minutes=15,
        correlation_logic=CorrelationLogic.COMMON_SOURCE,
        min_alerts=2,
    ),
    CorrelationRule(
        rule_id="deployment-related-issues",
        name="Deployment Related Issues",
        description="Group alerts that occur shortly after a deployment",
        match_criteria=(MatchCriterion("title", "contains", "deployment"),),
        time_window_minutes=30,
        correlation_logic=CorrelationLogic.CUSTOM,
        min_alerts=1,
    ),
    CorrelationRule(
        rule_id="database-connection-pool",
        name="Database Connection Pool Exhaustion",
        description="Detect database connection pool issues",
        match_criteria=(MatchCriterion("metric", "regex", "db_(connections|pool)"),),
        time_window_minutes=5,
        correlation_logic=CorrelationLogic.SAME_METRIC,
        min_alerts=2,
    ),
)


def field_value(alert: Alert, field: str) -> str:
    """String value of a match field; a missing metric reads as ``unknown``."""
    if field == "metric":
        return alert.metric or "unknown"
    return str(getattr(alert, field, "unknown"))


@lru_cache(maxsize=256)
def _compiled(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def criterion_matches(alert: Alert, criterion: MatchCriterion) -> bool:
    if _PLACEHOLDER_RE.match(criterion.value):
        return True
    actual = field_value(alert, criterion.field)
    op = MatchOperator(criterion.operator)
    if op is MatchOperator.EQUALS:
        return actual == criterion.value
    if op is MatchOperator.CONTAINS:
        return criterion.value.lower() in actual.lower()
    if op is MatchOperator.PREFIX:
        return actual.startswith(criterion.value)
    return _compiled(criterion.value).search(actual) is not None


def rule_matches(alert: Alert, rule: CorrelationRule) -> bool:
    return all(criterion_matches(alert, c) for c in rule.match_criteria)


def load_rules(config_dir: str | Path | None) -> list[CorrelationRule]:
    """Load ``rules.yaml`` from *config_dir*; built-ins when absent.

    Raises
    ──────
    ConfigError — a rule fails validation or ``rule_id`` values repeat
    """
    if config_dir is None:
        return list(DEFAULT_RULES)
    cfg = load_optional_yaml(Path(config_dir) / "rules.yaml")
    if cfg is None:
        log.info("No rules.yaml in %s — using %d built-in rules", config_dir, len(DEFAULT_RULES))
        return list(DEFAULT_RULES)

    rows = cfg.get("rules") or []
    if not isinstance(rows, list):
        raise ConfigError("rules: must be a list")
    rules: list[CorrelationRule] = []
    seen: set[str] = set()
    for idx, row in enumerate(rows):
        problems = validate_rule(row)
        if problems:
            raise ConfigError(f"rules[{idx}]: " + "; ".join(problems))
        rule = CorrelationRule.from_dict(row)
        if rule.rule_id in seen:
            raise ConfigError(f"rules[{idx}]: duplicate rule_id '{rule.rule_id}'")
        seen.add(rule.rule_id)
        rules.append(rule)
    enabled = sum(1 for r in rules if r.enabled)
    log.info("Loaded %d correlation rules (%d enabled)", len(rules), enabled)
    return rules
