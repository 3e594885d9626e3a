"""Job request bundler — hash-addressed, replay-safe artifacts.

Bundle construction
───────────────────
  1. each request gets an idempotency key
       sha256(canonical({job_type, tenant_context, payload, policy}))
     which is also copied into ``request.metadata.idempotency_key``
  2. requests are stably sorted by ``job_type``
  3. ``canonicalization.hash`` = sha256(canonical(bundle minus canonicalization))

``verify_bundle`` recomputes step 3 on a parsed or in-memory bundle.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from src.contracts.common import STABLE_TIMESTAMP, utc_now_iso
from src.contracts.correlation import AlertCorrelation
from src.contracts.job import (
    IdempotencyKey,
    JobRequest,
    JobRequestBundle,
    validate_bundle_shape,
)
from src.contracts.report import ReliabilityReport, ReportBundle
from src.jobs.canonical import (
    canonicalize,
    hash_canonical_json,
    seeded_id,
    sha256_hex,
    stable_hash,
    stable_pretty_stringify,
)

log = logging.getLogger(__name__)


def request_idempotency_key(request: JobRequest) -> str:
    return stable_hash(
        {
            "job_type": request.job_type,
            "tenant_context": request.tenant_context,
            "payload": request.payload,
            "policy": request.policy,
        }
    )


def with_idempotency(requests: list[JobRequest]) -> list[tuple[JobRequest, str]]:
    """Pair each request with its key; the key is recorded in a metadata copy."""
    out: list[tuple[JobRequest, str]] = []
    for req in requests:
        key = request_idempotency_key(req)
        out.append((replace(req, metadata={**req.metadata, "idempotency_key": key}), key))
    return out


def build_job_request_bundle(
    tenant_id: str,
    project_id: str,
    trace_id: str,
    requests: list[JobRequest],
    stable_output: bool = False,
    created_at: str | None = None,
) -> JobRequestBundle:
    created = STABLE_TIMESTAMP if stable_output else (created_at or utc_now_iso())
    keyed = with_idempotency(requests)
    sorted_requests = tuple(
        req for req, _ in sorted(keyed, key=lambda pair: pair[0].job_type)
    )
    keys = tuple(IdempotencyKey(job_type=req.job_type, idempotency_key=k) for req, k in keyed)

    draft = JobRequestBundle(
        tenant_id=tenant_id,
        project_id=project_id,
        trace_id=trace_id,
        created_at=created,
        requests=sorted_requests,
        idempotency_keys=keys,
        canonicalization=hash_canonical_json({}),
    )
    bundle = replace(draft, canonicalization=hash_canonical_json(draft.hash_material()))
    log.info(
        "Bundled %d job requests (trace=%s, hash=%s)",
        len(sorted_requests), trace_id, bundle.canonicalization.hash[:12],
    )
    return bundle


def build_report_bundle(
    tenant_id: str,
    project_id: str,
    trace_id: str,
    report: ReliabilityReport,
    idempotency_keys: tuple[IdempotencyKey, ...],
    stable_output: bool = False,
    created_at: str | None = None,
    job_types: tuple[str, ...] = (),
) -> ReportBundle:
    created = STABLE_TIMESTAMP if stable_output else (created_at or utc_now_iso())
    draft = ReportBundle(
        tenant_id=tenant_id,
        project_id=project_id,
        trace_id=trace_id,
        created_at=created,
        report=report,
        idempotency_keys=tuple(idempotency_keys),
        canonicalization=hash_canonical_json({}),
        job_types=tuple(job_types),
    )
    return replace(draft, canonicalization=hash_canonical_json(draft.hash_material()))


# ═══════════════════════════════════════════════════════════════════════════
#  Verification
# ═══════════════════════════════════════════════════════════════════════════


def _material_of(bundle: JobRequestBundle | ReportBundle | dict[str, Any]) -> tuple[Any, str]:
    if isinstance(bundle, dict):
        material = {k: v for k, v in bundle.items() if k != "canonicalization"}
        claimed = (bundle.get("canonicalization") or {}).get("hash", "")
        return material, claimed
    return bundle.hash_material(), bundle.canonicalization.hash


def verify_bundle(bundle: JobRequestBundle | ReportBundle | dict[str, Any]) -> bool:
    """True when the stored hash matches the recomputed canonical hash."""
    material, claimed = _material_of(bundle)
    _, actual = canonicalize(material)
    if actual != claimed:
        log.warning("Bundle hash mismatch: claimed=%s actual=%s", claimed[:12], actual[:12])
        return False
    return True


def validate_bundle(row: Any) -> list[str]:
    """Structural problems plus hash and idempotency-key consistency."""
    problems = validate_bundle_shape(row)
    if problems:
        return problems
    if not verify_bundle(row):
        problems.append("canonicalization.hash: does not match bundle content")
    claimed = {k["idempotency_key"] for k in row["idempotency_keys"]}
    for idx, req in enumerate(row["requests"]):
        key = stable_hash(
            {
                "job_type": req.get("job_type"),
                "tenant_context": req.get("tenant_context"),
                "payload": req.get("payload"),
                "policy": req.get("policy"),
            }
        )
        if key not in claimed:
            problems.append(f"requests[{idx}]: idempotency key not listed in idempotency_keys")
        elif req.get("metadata", {}).get("idempotency_key") not in (None, key):
            problems.append(f"requests[{idx}].metadata.idempotency_key: does not match content")
    return problems


# ═══════════════════════════════════════════════════════════════════════════
#  Stable output normalisation
# ═══════════════════════════════════════════════════════════════════════════


def normalize_correlation(correlation: AlertCorrelation, trace_id: str) -> AlertCorrelation:
    """Replace generated ids/timestamps with trace-seeded deterministic values."""
    seed = sha256_hex(f"{trace_id}:{correlation.tenant_id}:{correlation.project_id}")
    groups = []
    for idx, group in enumerate(correlation.groups):
        alert_ids = ",".join(sorted(group.alert_ids))
        groups.append(
            replace(
                group,
                group_id=seeded_id("grp", f"{seed}:{idx}:{alert_ids}"),
                created_at=STABLE_TIMESTAMP,
            )
        )
    return replace(
        correlation,
        correlation_id=f"corr-{seed[:12]}",
        generated_at=STABLE_TIMESTAMP,
        groups=groups,
    )


def stable_runbook_id(trace_id: str, alert_group_id: str) -> str:
    return seeded_id("rb", f"{trace_id}:{alert_group_id}")


def normalize_job_requests(requests: list[JobRequest], trace_id: str) -> list[JobRequest]:
    out: list[JobRequest] = []
    for req in requests:
        payload = dict(req.payload)
        if isinstance(payload.get("recommendation_id"), str):
            payload["recommendation_id"] = seeded_id(
                "rec",
                f"{trace_id}:{req.job_type}:{payload.get('category', '')}:"
                f"{payload.get('description', '')}:{payload.get('report_id', '')}",
            )
        if isinstance(payload.get("runbook_id"), str):
            payload["runbook_id"] = stable_runbook_id(
                trace_id, str(payload.get("alert_group_id", ""))
            )
        out.append(replace(req, payload=payload, requested_at=STABLE_TIMESTAMP))
    return out


def serialize_bundle(bundle: JobRequestBundle | ReportBundle) -> str:
    return stable_pretty_stringify(bundle.to_dict())
