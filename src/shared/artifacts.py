"""Artifact layout for a single run.

    <base_dir>/<run_id>/logs.jsonl
    <base_dir>/<run_id>/evidence/*.json      (secret-redacted)
    <base_dir>/<run_id>/summary.json
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from src.contracts.errors import ErrorEnvelope
from src.shared.redaction import redact

log = logging.getLogger(__name__)

DEFAULT_BASE_DIR = "./artifacts"


def atomic_write(path: str | Path, content: str) -> None:
    """Атомарно записує content у файл path."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(
        dir=str(target.parent),
        prefix=f".{target.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, target)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


@dataclass(slots=True)
class ArtifactSummary:
    run_id: str
    command: str
    status: str  # success | failure
    started_at: str
    completed_at: str
    dry_run: bool = True
    error: ErrorEnvelope | None = None
    evidence_files: list[str] = field(default_factory=list)
    log_line_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "runId": self.run_id,
            "command": self.command,
            "status": self.status,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "dryRun": self.dry_run,
            "evidenceFiles": list(self.evidence_files),
            "logLineCount": self.log_line_count,
        }
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


class ArtifactWriter:
    """Writes evidence, logs and the run summary under ``<base_dir>/<run_id>``."""

    def __init__(
        self,
        run_id: str,
        base_dir: str | Path = DEFAULT_BASE_DIR,
        extra_deny_keys: list[str] | None = None,
    ) -> None:
        self.run_id = run_id
        self.dir = Path(base_dir) / run_id
        self.evidence_dir = self.dir / "evidence"
        self._deny = extra_deny_keys
        self._evidence_files: list[str] = []
        self._log_lines: list[str] = []

    def init(self) -> None:
        self.evidence_dir.mkdir(parents=True, exist_ok=True)
        log.debug("Artifact dir ready: %s", self.dir)

    def write_evidence(self, name: str, data: Any) -> Path:
        filename = name if name.endswith(".json") else f"{name}.json"
        path = self.evidence_dir / filename
        atomic_write(path, json.dumps(redact(data, self._deny), indent=2, ensure_ascii=False))
        if filename not in self._evidence_files:
            self._evidence_files.append(filename)
        log.info("Wrote evidence → %s", path)
        return path

    def append_log(self, line: str) -> None:
        self._log_lines.append(line)

    def flush_logs(self) -> Path:
        path = self.dir / "logs.jsonl"
        body = "\n".join(self._log_lines)
        atomic_write(path, body + ("\n" if self._log_lines else ""))
        return path

    def write_summary(self, summary: ArtifactSummary) -> Path:
        path = self.dir / "summary.json"
        atomic_write(path, json.dumps(redact(summary.to_dict(), self._deny), indent=2))
        log.info("Wrote summary → %s (status=%s)", path, summary.status)
        return path

    @property
    def evidence_files(self) -> list[str]:
        return list(self._evidence_files)

    @property
    def log_line_count(self) -> int:
        return len(self._log_lines)


@dataclass(slots=True)
class LoadedArtifacts:
    summary: dict[str, Any] | None
    logs: list[str]
    evidence: dict[str, Any]


def load_artifacts(artifact_dir: str | Path) -> LoadedArtifacts:
    """Load an existing run directory for replay / diagnosis."""
    root = Path(artifact_dir)
    summary_path = root / "summary.json"
    logs_path = root / "logs.jsonl"
    evidence_dir = root / "evidence"

    summary = (
        json.loads(summary_path.read_text(encoding="utf-8")) if summary_path.exists() else None
    )
    logs = (
        [ln for ln in logs_path.read_text(encoding="utf-8").split("\n") if ln]
        if logs_path.exists()
        else []
    )
    evidence: dict[str, Any] = {}
    if evidence_dir.is_dir():
        for f in sorted(evidence_dir.glob("*.json")):
            evidence[f.name] = json.loads(f.read_text(encoding="utf-8"))
    log.info("Loaded artifacts from %s (%d evidence files, %d log lines)",
             root, len(evidence), len(logs))
    return LoadedArtifacts(summary=summary, logs=logs, evidence=evidence)
