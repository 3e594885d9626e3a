"""Ops Autopilot analyzer — alert correlation and reliability reporting.

Modules
───────
  rules       — correlation rule catalogue (built-ins or rules.yaml)
  correlator  — Alert → CorrelatedAlertGroup (rule filter, key, time window)
  metrics     — alert filtering, grouping and volume metrics
  reporter    — reliability report, Markdown, JSON and CSV writers
  pipeline    — orchestrate audit → correlate → report → bundles
  cli         — argparse entry-point
"""
