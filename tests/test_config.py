"""Tests for YAML configuration: rules, capability policies, thresholds."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.analyzer.rules import DEFAULT_RULES, load_rules
from src.capability.policy import (
    DEFAULT_THRESHOLDS,
    Threshold,
    get_execution_policy,
    load_thresholds,
)
from src.contracts.capability import HEALTH_AUDIT_POLICY
from src.contracts.enums import BackoffStrategy
from src.shared.config_loader import ConfigError, load_optional_yaml, load_yaml

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def _write(tmp_path: Path, name: str, text: str) -> Path:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


class TestLoader:
    def test_missing_required_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_yaml(tmp_path / "nope.yaml")

    def test_missing_optional_file(self, tmp_path):
        assert load_optional_yaml(tmp_path / "nope.yaml") is None

    def test_malformed_yaml(self, tmp_path):
        with pytest.raises(ConfigError):
            load_yaml(_write(tmp_path, "bad.yaml", "rules: [unclosed"))

    def test_top_level_must_be_mapping(self, tmp_path):
        with pytest.raises(ConfigError):
            load_yaml(_write(tmp_path, "list.yaml", "- a\n- b\n"))

    def test_empty_file_is_empty_mapping(self, tmp_path):
        assert load_yaml(_write(tmp_path, "empty.yaml", "")) == {}


class TestRules:
    def test_shipped_rules_match_builtins(self):
        assert load_rules(CONFIG_DIR) == list(DEFAULT_RULES)

    def test_absent_file_uses_builtins(self, tmp_path):
        assert load_rules(tmp_path) == list(DEFAULT_RULES)
        assert load_rules(None) == list(DEFAULT_RULES)

    def test_invalid_rule_rejected(self, tmp_path):
        _write(
            tmp_path,
            "rules.yaml",
            "rules:\n  - rule_id: r1\n    correlation_logic: nearest_neighbour\n",
        )
        with pytest.raises(ConfigError, match="rules\\[0\\]: correlation_logic"):
            load_rules(tmp_path)

    def test_duplicate_rule_ids(self, tmp_path):
        rule = "  - rule_id: r1\n    correlation_logic: same_service\n"
        _write(tmp_path, "rules.yaml", "rules:\n" + rule + rule)
        with pytest.raises(ConfigError, match="duplicate rule_id 'r1'"):
            load_rules(tmp_path)

    def test_disabled_rule_loaded(self, tmp_path):
        _write(
            tmp_path,
            "rules.yaml",
            "rules:\n  - rule_id: r1\n    correlation_logic: same_metric\n    enabled: false\n",
        )
        rules = load_rules(tmp_path)
        assert len(rules) == 1
        assert not rules[0].enabled


class TestPolicies:
    def test_shipped_policy_matches_builtin(self):
        assert get_execution_policy(CONFIG_DIR) == HEALTH_AUDIT_POLICY

    def test_partial_override_keeps_base(self, tmp_path):
        _write(
            tmp_path,
            "capabilities.yaml",
            "capabilities:\n  ops.health_audit:\n    retry_policy:\n"
            "      backoff_strategy: linear\n",
        )
        policy = get_execution_policy(tmp_path)
        assert policy.retry_policy.backoff_strategy is BackoffStrategy.LINEAR
        assert policy.retry_policy.max_attempts == 3
        assert policy.circuit_breaker.failure_threshold == 5

    @pytest.mark.parametrize(
        "section,key,value",
        [
            ("retry_policy", "max_attempts", 11),
            ("retry_policy", "initial_delay_ms", 50),
            ("retry_policy", "backoff_multiplier", 0.5),
            ("circuit_breaker", "failure_threshold", 0),
            ("circuit_breaker", "recovery_timeout_ms", 120000),
        ],
    )
    def test_out_of_range(self, tmp_path, section, key, value):
        _write(
            tmp_path,
            "capabilities.yaml",
            f"capabilities:\n  ops.health_audit:\n    {section}:\n      {key}: {value}\n",
        )
        with pytest.raises(ConfigError, match=key):
            get_execution_policy(tmp_path)

    def test_unknown_strategy(self, tmp_path):
        _write(
            tmp_path,
            "capabilities.yaml",
            "capabilities:\n  ops.health_audit:\n    retry_policy:\n"
            "      backoff_strategy: random\n",
        )
        with pytest.raises(ConfigError, match="backoff_strategy"):
            get_execution_policy(tmp_path)

    def test_timeout_budget_range(self, tmp_path):
        _write(
            tmp_path,
            "capabilities.yaml",
            "capabilities:\n  ops.health_audit:\n    timeout_budget_ms: 500\n",
        )
        with pytest.raises(ConfigError, match="timeout_budget_ms"):
            get_execution_policy(tmp_path)


class TestThresholds:
    def test_shipped_thresholds_match_defaults(self):
        assert load_thresholds(CONFIG_DIR) == DEFAULT_THRESHOLDS

    def test_levels(self):
        assert DEFAULT_THRESHOLDS["error_rate"].level(1.0) is None
        assert DEFAULT_THRESHOLDS["error_rate"].level(3.0) == "warning"
        assert DEFAULT_THRESHOLDS["error_rate"].level(6.0) == "critical"
        assert DEFAULT_THRESHOLDS["availability"].level(99.5) is None
        assert DEFAULT_THRESHOLDS["availability"].level(97.0) == "warning"
        assert DEFAULT_THRESHOLDS["availability"].level(90.0) == "critical"

    def test_override_and_new_metric(self, tmp_path):
        _write(
            tmp_path,
            "thresholds.yaml",
            "thresholds:\n  latency_p95:\n    warning: 200\n    critical: 400\n"
            "  saturation:\n    warning: 70\n    critical: 90\n",
        )
        out = load_thresholds(tmp_path)
        assert out["latency_p95"] == Threshold(200.0, 400.0)
        assert out["saturation"].level(80) == "warning"
        assert out["error_rate"] == DEFAULT_THRESHOLDS["error_rate"]

    def test_inverted_levels_rejected(self, tmp_path):
        _write(
            tmp_path,
            "thresholds.yaml",
            "thresholds:\n  availability:\n    warning: 90\n    critical: 99\n",
        )
        with pytest.raises(ConfigError, match="critical level must be worse"):
            load_thresholds(tmp_path)

    def test_missing_level(self, tmp_path):
        _write(tmp_path, "thresholds.yaml", "thresholds:\n  error_rate:\n    warning: 1\n")
        with pytest.raises(ConfigError):
            load_thresholds(tmp_path)
