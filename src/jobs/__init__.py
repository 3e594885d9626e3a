"""Runnerless job proposals.

Modules
───────
  canonical — canonical JSON, SHA-256 helpers, content-addressed ids
  builders  — correlation / report / audit results → JobRequest proposals
  bundler   — JobRequestBundle + ReportBundle construction and verification
"""
