"""Capability policy loading — execution policies and audit thresholds.

Reads ``config/capabilities.yaml`` (per-capability execution policy) and
``config/thresholds.yaml`` (deep-audit thresholds).  Both files are optional;
missing files fall back to the built-in defaults, malformed values raise
:class:`ConfigError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from src.contracts.capability import (
    HEALTH_AUDIT_CAPABILITY_ID,
    HEALTH_AUDIT_POLICY,
    CapabilityExecutionPolicy,
    CircuitBreakerPolicy,
    RetryPolicy,
)
from src.contracts.enums import BackoffStrategy, values
from src.shared.config_loader import ConfigError, load_optional_yaml

log = logging.getLogger(__name__)

_BUILTIN_POLICIES: dict[str, CapabilityExecutionPolicy] = {
    HEALTH_AUDIT_CAPABILITY_ID: HEALTH_AUDIT_POLICY,
}

# field → (min, max)
_RANGES: dict[str, tuple[float, float]] = {
    "max_attempts": (1, 10),
    "initial_delay_ms": (100, 60000),
    "max_delay_ms": (1000, 300000),
    "backoff_multiplier": (1, 10),
    "timeout_budget_ms": (1000, 300000),
    "failure_threshold": (1, 20),
    "recovery_timeout_ms": (1000, 60000),
}


def _ranged(section: dict[str, Any], key: str, default: Any, where: str) -> Any:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{where}.{key}: must be a number, got {value!r}")
    lo, hi = _RANGES[key]
    if not lo <= value <= hi:
        raise ConfigError(f"{where}.{key}: {value} outside [{lo}, {hi}]")
    return value


def policy_from_dict(
    row: dict[str, Any],
    base: CapabilityExecutionPolicy = HEALTH_AUDIT_POLICY,
    where: str = "policy",
) -> CapabilityExecutionPolicy:
    """Build a policy from a YAML mapping; absent keys keep *base* values."""
    rp_raw = row.get("retry_policy") or {}
    cb_raw = row.get("circuit_breaker") or {}
    rp, cb = base.retry_policy, base.circuit_breaker

    strategy = rp_raw.get("backoff_strategy", rp.backoff_strategy.value)
    if strategy not in values(BackoffStrategy):
        raise ConfigError(f"{where}.retry_policy.backoff_strategy: unknown '{strategy}'")

    retry = RetryPolicy(
        max_attempts=int(_ranged(rp_raw, "max_attempts", rp.max_attempts, where)),
        backoff_strategy=BackoffStrategy(strategy),
        initial_delay_ms=int(_ranged(rp_raw, "initial_delay_ms", rp.initial_delay_ms, where)),
        max_delay_ms=int(_ranged(rp_raw, "max_delay_ms", rp.max_delay_ms, where)),
        backoff_multiplier=float(
            _ranged(rp_raw, "backoff_multiplier", rp.backoff_multiplier, where)
        ),
    )
    breaker = CircuitBreakerPolicy(
        failure_threshold=int(_ranged(cb_raw, "failure_threshold", cb.failure_threshold, where)),
        recovery_timeout_ms=int(
            _ranged(cb_raw, "recovery_timeout_ms", cb.recovery_timeout_ms, where)
        ),
    )
    ttl = row.get("idempotency_ttl_minutes", base.idempotency_ttl_minutes)
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)) or ttl <= 0:
        raise ConfigError(f"{where}.idempotency_ttl_minutes: must be a positive number")

    return CapabilityExecutionPolicy(
        idempotent=bool(row.get("idempotent", base.idempotent)),
        retry_policy=retry,
        timeout_budget_ms=int(_ranged(row, "timeout_budget_ms", base.timeout_budget_ms, where)),
        circuit_breaker=breaker,
        idempotency_ttl_minutes=float(ttl),
    )


def load_execution_policies(config_dir: str | Path) -> dict[str, CapabilityExecutionPolicy]:
    """Return ``{capability_id: policy}`` merged over the built-ins."""
    policies = dict(_BUILTIN_POLICIES)
    cfg = load_optional_yaml(Path(config_dir) / "capabilities.yaml")
    if cfg is None:
        return policies
    section = cfg.get("capabilities") or {}
    if not isinstance(section, dict):
        raise ConfigError("capabilities: must be a mapping of capability id → policy")
    for cap_id, row in section.items():
        if not isinstance(row, dict):
            raise ConfigError(f"capabilities.{cap_id}: must be a mapping")
        base = policies.get(cap_id, HEALTH_AUDIT_POLICY)
        policies[cap_id] = policy_from_dict(row, base, where=f"capabilities.{cap_id}")
    log.info("Loaded %d capability policies: %s", len(policies), ", ".join(sorted(policies)))
    return policies


def get_execution_policy(
    config_dir: str | Path | None,
    capability_id: str = HEALTH_AUDIT_CAPABILITY_ID,
) -> CapabilityExecutionPolicy:
    if config_dir is None:
        return _BUILTIN_POLICIES.get(capability_id, HEALTH_AUDIT_POLICY)
    policies = load_execution_policies(config_dir)
    if capability_id not in policies:
        log.warning("No policy for '%s' — using health audit defaults", capability_id)
    return policies.get(capability_id, HEALTH_AUDIT_POLICY)


# ═══════════════════════════════════════════════════════════════════════════
#  Deep-audit thresholds
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Threshold:
    warning: float
    critical: float
    # True when *lower* values are worse (availability)
    below: bool = False

    def level(self, value: float) -> str | None:
        if self.below:
            if value < self.critical:
                return "critical"
            if value < self.warning:
                return "warning"
            return None
        if value > self.critical:
            return "critical"
        if value > self.warning:
            return "warning"
        return None


DEFAULT_THRESHOLDS: dict[str, Threshold] = {
    "error_rate": Threshold(warning=2.0, critical=5.0),
    "latency_p95": Threshold(warning=500.0, critical=1000.0),
    "availability": Threshold(warning=99.0, critical=95.0, below=True),
}


def load_thresholds(config_dir: str | Path | None) -> dict[str, Threshold]:
    if config_dir is None:
        return dict(DEFAULT_THRESHOLDS)
    cfg = load_optional_yaml(Path(config_dir) / "thresholds.yaml")
    if cfg is None:
        return dict(DEFAULT_THRESHOLDS)
    out = dict(DEFAULT_THRESHOLDS)
    for name, row in (cfg.get("thresholds") or {}).items():
        if not isinstance(row, dict) or "warning" not in row or "critical" not in row:
            raise ConfigError(f"thresholds.{name}: needs 'warning' and 'critical'")
        below = bool(row.get("below", DEFAULT_THRESHOLDS.get(name, Threshold(0, 0)).below))
        warn, crit = float(row["warning"]), float(row["critical"])
        inverted = crit > warn if below else crit < warn
        if inverted:
            raise ConfigError(f"thresholds.{name}: critical level must be worse than warning")
        out[name] = Threshold(warning=warn, critical=crit, below=below)
    return out
