"""CLI entry-point for the Ops Autopilot analyzer.

Usage examples
--------------
# Correlate alerts, build the report and job-request bundles:
python -m src.analyzer analyze --input data/input.json --out-dir out

# Reproducible output (fixed ids and timestamps):
python -m src.analyzer analyze --input data/input.json --stable-output

# Same, plus PNG charts (needs the "plots" extra):
python -m src.analyzer analyze --input data/input.json --plots

# Same, plus response runbooks for high/critical impact groups:
python -m src.analyzer analyze --input data/input.json --runbooks

# Run the health audit capability on its own:
python -m src.analyzer audit --input data/audit.json

# Check a bundle's hash and idempotency keys:
python -m src.analyzer verify --bundle out/job_bundle.json

# Inspect the artifacts of an earlier run:
python -m src.analyzer replay --artifact-dir out/artifacts/<run_id>

Exit codes: 0 success, 2 validation error, 3 dependency failure, 4 bug.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from src.analyzer.pipeline import run_pipeline
from src.capability.health_audit import create_health_audit_runtime
from src.contracts.errors import (
    EXIT_SUCCESS,
    EXIT_VALIDATION,
    RunnerError,
    bug_error,
    validation_error,
)
from src.jobs.bundler import validate_bundle, verify_bundle
from src.jobs.canonical import stable_pretty_stringify
from src.shared.artifacts import load_artifacts
from src.shared.config_loader import ConfigError
from src.shared.logger import setup_logging

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="analyzer",
        description="Ops Autopilot — correlate alerts, audit health, propose jobs",
    )
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level. Default: INFO",
    )
    p.add_argument(
        "--json-logs",
        action="store_true",
        default=False,
        help="Emit one JSON object per log line (secrets redacted).",
    )
    sub = p.add_subparsers(dest="command", required=True)

    a = sub.add_parser("analyze", help="Correlate alerts and write report / job bundles.")
    a.add_argument(
        "--input",
        required=True,
        help="JSON input document (tenant, trace, alerts, report, optional audit).",
    )
    a.add_argument(
        "--out-dir",
        default="out",
        help="Output directory. Default: out/",
    )
    a.add_argument(
        "--config-dir",
        default="config",
        help="Directory with rules.yaml, capabilities.yaml, thresholds.yaml. Default: config/",
    )
    a.add_argument(
        "--stable-output",
        action="store_true",
        default=False,
        help="Replace generated ids and timestamps with deterministic values.",
    )
    a.add_argument(
        "--plots",
        action="store_true",
        default=False,
        help="Also write PNG charts to <out-dir>/plots/ (requires matplotlib).",
    )
    a.add_argument(
        "--runbooks",
        action="store_true",
        default=False,
        help="Generate response runbooks (and their job proposals) for high-impact groups.",
    )

    au = sub.add_parser("audit", help="Run the ops.health_audit capability.")
    au.add_argument("--input", required=True, help="JSON health audit input.")
    au.add_argument(
        "--config-dir",
        default="config",
        help="Directory with capabilities.yaml and thresholds.yaml. Default: config/",
    )

    v = sub.add_parser("verify", help="Verify a job-request or report bundle.")
    v.add_argument("--bundle", required=True, help="Bundle JSON file.")

    r = sub.add_parser("replay", help="Print the summary and evidence of a previous run.")
    r.add_argument("--artifact-dir", required=True, help="artifacts/<run_id> directory.")
    return p


def _read_json(path: str) -> object:
    p = Path(path)
    if not p.exists():
        raise validation_error(f"File not found: {p}")
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise validation_error(f"Malformed JSON in {p}: {exc}") from exc


# ═══════════════════════════════════════════════════════════════════════════
#  Commands
# ═══════════════════════════════════════════════════════════════════════════


def cmd_analyze(args: argparse.Namespace) -> int:
    result = run_pipeline(
        input_path=args.input,
        out_dir=args.out_dir,
        config_dir=args.config_dir,
        stable_output=args.stable_output,
        plots=args.plots,
        runbooks=args.runbooks,
    )
    print(
        f"report score={result.report.overall_health_score:.0f} "
        f"jobs={len(result.job_bundle.requests)} "
        f"runbooks={len(result.runbooks)} "
        f"hash={result.job_bundle.canonicalization.hash}"
    )
    return EXIT_SUCCESS


def cmd_audit(args: argparse.Namespace) -> int:
    raw = _read_json(args.input)
    runtime = create_health_audit_runtime(args.config_dir)
    result = asyncio.run(runtime.execute(raw))
    if result.output is not None:
        print(stable_pretty_stringify(result.output.to_dict()), end="")
    if result.error is not None:
        raise RunnerError(result.error)
    return EXIT_SUCCESS


def cmd_verify(args: argparse.Namespace) -> int:
    row = _read_json(args.bundle)
    if isinstance(row, dict) and "report" in row:
        problems = [] if verify_bundle(row) else ["canonicalization.hash: does not match"]
    else:
        problems = validate_bundle(row)
    if problems:
        for problem in problems:
            print(f"INVALID {problem}")
        return EXIT_VALIDATION
    print(f"OK {args.bundle}")
    return EXIT_SUCCESS


def cmd_replay(args: argparse.Namespace) -> int:
    loaded = load_artifacts(args.artifact_dir)
    if loaded.summary is None:
        raise validation_error(f"No summary.json in {args.artifact_dir}")
    print(stable_pretty_stringify(loaded.summary), end="")
    for name in sorted(loaded.evidence):
        print(f"evidence: {name}")
    print(f"log lines: {len(loaded.logs)}")
    return EXIT_SUCCESS


_COMMANDS = {
    "analyze": cmd_analyze,
    "audit": cmd_audit,
    "verify": cmd_verify,
    "replay": cmd_replay,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, json=args.json_logs)
    try:
        return _COMMANDS[args.command](args)
    except ConfigError as exc:
        err = validation_error(f"Invalid configuration: {exc}")
        log.error("%s", err.envelope.user_message)
        return err.exit_code
    except RunnerError as exc:
        log.error("%s: %s", exc.envelope.code.value, exc.envelope.user_message)
        return exc.exit_code
    except Exception as exc:
        err = bug_error(str(exc) or type(exc).__name__, cause=type(exc).__name__)
        log.exception("%s: %s", err.envelope.code.value, err.envelope.user_message)
        return err.exit_code


if __name__ == "__main__":
    sys.exit(main())
