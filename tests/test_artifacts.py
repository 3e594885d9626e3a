"""Tests for src.shared.artifacts and src.shared.logger."""

from __future__ import annotations

import json
import logging

from src.contracts.errors import ErrorCode, make_envelope
from src.shared.artifacts import ArtifactSummary, ArtifactWriter, atomic_write, load_artifacts
from src.shared.logger import JsonLineFormatter, RunLogCollector


class TestAtomicWrite:
    def test_creates_parents_and_leaves_no_temp(self, tmp_path):
        target = tmp_path / "a" / "b" / "out.txt"
        atomic_write(target, "hello")
        assert target.read_text(encoding="utf-8") == "hello"
        assert [p.name for p in target.parent.iterdir()] == ["out.txt"]

    def test_overwrites(self, tmp_path):
        target = tmp_path / "out.txt"
        atomic_write(target, "one")
        atomic_write(target, "two")
        assert target.read_text(encoding="utf-8") == "two"


class TestArtifactWriter:
    def test_layout_and_reload(self, tmp_path):
        writer = ArtifactWriter("run-1", base_dir=tmp_path)
        writer.init()
        writer.write_evidence("audit", {"service": "api", "api_key": "k"})
        writer.append_log('{"msg": "one"}')
        writer.append_log('{"msg": "two"}')
        writer.flush_logs()
        writer.write_summary(
            ArtifactSummary(
                run_id="run-1",
                command="analyze",
                status="success",
                started_at="t0",
                completed_at="t1",
                evidence_files=writer.evidence_files,
                log_line_count=writer.log_line_count,
            )
        )

        run_dir = tmp_path / "run-1"
        assert (run_dir / "evidence" / "audit.json").exists()
        loaded = load_artifacts(run_dir)
        assert loaded.summary["runId"] == "run-1"
        assert loaded.summary["evidenceFiles"] == ["audit.json"]
        assert loaded.summary["logLineCount"] == 2
        assert loaded.logs == ['{"msg": "one"}', '{"msg": "two"}']
        assert loaded.evidence["audit.json"]["api_key"] == "[REDACTED]"

    def test_failure_summary_carries_error(self, tmp_path):
        writer = ArtifactWriter("run-2", base_dir=tmp_path)
        writer.init()
        env = make_envelope(ErrorCode.VALIDATION_ERROR, "bad input")
        writer.write_summary(
            ArtifactSummary("run-2", "analyze", "failure", "t0", "t1", error=env)
        )
        data = json.loads((tmp_path / "run-2" / "summary.json").read_text(encoding="utf-8"))
        assert data["status"] == "failure"
        assert data["error"]["code"] == "VALIDATION_ERROR"
        assert data["dryRun"] is True

    def test_missing_dir_loads_empty(self, tmp_path):
        loaded = load_artifacts(tmp_path / "nope")
        assert loaded.summary is None
        assert loaded.logs == []
        assert loaded.evidence == {}


class TestJsonLogs:
    def _record(self, msg: str, **extra) -> logging.LogRecord:
        record = logging.LogRecord("ops.test", logging.INFO, __file__, 1, msg, None, None)
        for k, v in extra.items():
            setattr(record, k, v)
        return record

    def test_line_shape(self):
        line = JsonLineFormatter(run_id="run-1").format(self._record("hello", service="api"))
        entry = json.loads(line)
        assert entry["level"] == "info"
        assert entry["logger"] == "ops.test"
        assert entry["msg"] == "hello"
        assert entry["run_id"] == "run-1"
        assert entry["service"] == "api"

    def test_secrets_masked_in_message_and_extra(self):
        line = JsonLineFormatter().format(self._record("token=abc123", password="p"))
        entry = json.loads(line)
        assert entry["msg"] == "token=[REDACTED]"
        assert entry["password"] == "[REDACTED]"

    def test_collector_keeps_lines(self):
        collector = RunLogCollector("run-1")
        logger = logging.getLogger("ops.collector.test")
        logger.addHandler(collector)
        logger.setLevel(logging.DEBUG)
        try:
            logger.info("first")
            logger.debug("second %d", 2)
        finally:
            logger.removeHandler(collector)
        assert [json.loads(ln)["msg"] for ln in collector.lines] == ["first", "second 2"]
