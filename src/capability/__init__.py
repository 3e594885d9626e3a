"""Resilient capability execution.

Modules
───────
  backoff         — retry delay calculation
  circuit_breaker — closed / open / half-open state machine
  idempotency     — TTL store keyed by idempotency key
  policy          — execution policy + audit thresholds from YAML
  runner          — CapabilityRuntime: validate → cache → breaker → retry loop
  health_audit    — the ``ops.health_audit`` capability
"""
