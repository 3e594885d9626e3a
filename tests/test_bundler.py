"""Tests for src.jobs.bundler — bundle hashing, verification, stable output."""

from __future__ import annotations

import json

import pytest

from src.contracts.common import STABLE_TIMESTAMP
from src.contracts.job import TenantContext
from src.jobs.builders import RequestOptions, build_job_request
from src.jobs.bundler import (
    build_job_request_bundle,
    request_idempotency_key,
    serialize_bundle,
    validate_bundle,
    verify_bundle,
)

CTX = TenantContext("tenant-a", "project-a")


def _requests(requested_at: str = "2026-02-26T10:00:00.000Z"):
    opts = RequestOptions(requested_at=requested_at, trace_id="trace-001")
    return [
        build_job_request(CTX, "autopilot.ops.reliability_report", {"report_id": "r1"}, opts),
        build_job_request(CTX, "autopilot.ops.alert_correlate", {"alert_ids": ["a1"]}, opts),
    ]


@pytest.fixture
def bundle():
    return build_job_request_bundle("tenant-a", "project-a", "trace-001", _requests())


class TestBuild:
    def test_requests_sorted_by_job_type(self, bundle):
        assert [r.job_type for r in bundle.requests] == [
            "autopilot.ops.alert_correlate",
            "autopilot.ops.reliability_report",
        ]

    def test_idempotency_keys_keep_input_order(self, bundle):
        assert [k.job_type for k in bundle.idempotency_keys] == [
            "autopilot.ops.reliability_report",
            "autopilot.ops.alert_correlate",
        ]

    def test_key_copied_into_request_metadata(self, bundle):
        by_type = {k.job_type: k.idempotency_key for k in bundle.idempotency_keys}
        for req in bundle.requests:
            assert req.metadata["idempotency_key"] == by_type[req.job_type]
            assert req.metadata["runnerless"] is True

    def test_key_ignores_timestamps(self):
        a = _requests("2026-02-26T10:00:00.000Z")[0]
        b = _requests("2027-01-01T00:00:00.000Z")[0]
        assert request_idempotency_key(a) == request_idempotency_key(b)

    def test_dry_run_and_schema(self, bundle):
        data = bundle.to_dict()
        assert data["dry_run"] is True
        assert data["schema_version"] == "1.0.0"
        assert data["module_id"] == "ops"
        assert data["canonicalization"]["algorithm"] == "json-lexicographic"


class TestVerify:
    def test_fresh_bundle_verifies(self, bundle):
        assert verify_bundle(bundle)
        assert verify_bundle(json.loads(serialize_bundle(bundle)))

    def test_validate_bundle_clean(self, bundle):
        assert validate_bundle(json.loads(serialize_bundle(bundle))) == []

    def test_tampered_payload_detected(self, bundle):
        data = json.loads(serialize_bundle(bundle))
        data["requests"][0]["payload"]["alert_ids"] = ["a1", "a2"]
        assert not verify_bundle(data)
        problems = validate_bundle(data)
        assert "canonicalization.hash: does not match bundle content" in problems
        assert "requests[0]: idempotency key not listed in idempotency_keys" in problems

    def test_tampered_dry_run_is_shape_problem(self, bundle):
        data = bundle.to_dict()
        data["dry_run"] = False
        assert validate_bundle(data) == ["dry_run: must be true"]

    def test_bad_hash_format(self, bundle):
        data = bundle.to_dict()
        data["canonicalization"] = dict(data["canonicalization"], hash="xyz")
        assert validate_bundle(data) == ["canonicalization.hash: must be a SHA-256 hex digest"]


class TestStableOutput:
    def test_byte_identical_across_builds(self):
        first = build_job_request_bundle(
            "tenant-a", "project-a", "trace-001", _requests(), stable_output=True
        )
        second = build_job_request_bundle(
            "tenant-a", "project-a", "trace-001", _requests(), stable_output=True
        )
        assert first.created_at == STABLE_TIMESTAMP
        assert serialize_bundle(first) == serialize_bundle(second)

    def test_trace_id_changes_hash(self):
        a = build_job_request_bundle("t", "p", "trace-1", _requests(), stable_output=True)
        b = build_job_request_bundle("t", "p", "trace-2", _requests(), stable_output=True)
        assert a.canonicalization.hash != b.canonicalization.hash
