"""Job request contracts — runnerless proposals handed to the external executor."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from src.contracts.common import drop_none, is_identifier, is_iso_timestamp
from src.contracts.enums import Impact, JobType, Priority, values

JOB_REQUEST_VERSION = "1.0.0"
BUNDLE_SCHEMA_VERSION = "1.0.0"
MODULE_ID = "ops"
MODULE_NAME = "ops-autopilot"
CANONICAL_ALGORITHM = "json-lexicographic"
HASH_ALGORITHM = "sha256"

_HASH_RE = re.compile(r"^[a-f0-9]{64}$", re.IGNORECASE)
_JOB_TYPES = values(JobType)
_PRIORITIES = values(Priority)
_RISK_LEVELS = values(Impact)


@dataclass(frozen=True, slots=True)
class TenantContext:
    tenant_id: str
    project_id: str

    def to_dict(self) -> dict[str, str]:
        return {"tenant_id": self.tenant_id, "project_id": self.project_id}


@dataclass(frozen=True, slots=True)
class EvidenceLink:
    type: str
    id: str
    description: str
    url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return drop_none(
            {"type": self.type, "id": self.id, "description": self.description, "url": self.url}
        )


@dataclass(frozen=True, slots=True)
class JobPolicy:
    requires_policy_token: bool = True
    requires_approval: bool = True
    risk_level: str = "high"
    required_scopes: tuple[str, ...] = ()
    compliance_tags: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "requires_policy_token": self.requires_policy_token,
            "requires_approval": self.requires_approval,
            "risk_level": self.risk_level,
            "required_scopes": list(self.required_scopes),
            "compliance_tags": list(self.compliance_tags),
        }


@dataclass(frozen=True, slots=True)
class CostEstimate:
    credits: int
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {"credits": self.credits, "confidence": self.confidence}


@dataclass(frozen=True, slots=True)
class JobRequest:
    """A single proposed job. Never mutated after creation, only wrapped."""

    job_type: str
    tenant_context: TenantContext
    priority: str
    requested_at: str
    payload: dict[str, Any]
    policy: JobPolicy = field(default_factory=JobPolicy)
    evidence_links: tuple[EvidenceLink, ...] = ()
    cost_estimate: CostEstimate | None = None
    expires_at: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    version: str = JOB_REQUEST_VERSION

    def to_dict(self) -> dict[str, Any]:
        return drop_none(
            {
                "version": self.version,
                "job_type": self.job_type,
                "tenant_context": self.tenant_context.to_dict(),
                "priority": self.priority,
                "requested_at": self.requested_at,
                "payload": dict(self.payload),
                "evidence_links": [e.to_dict() for e in self.evidence_links],
                "policy": self.policy.to_dict(),
                "cost_estimate": self.cost_estimate.to_dict() if self.cost_estimate else None,
                "expires_at": self.expires_at,
                "metadata": dict(self.metadata),
            }
        )

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> JobRequest:
        pol = row.get("policy", {})
        cost = row.get("cost_estimate")
        return cls(
            version=row.get("version", JOB_REQUEST_VERSION),
            job_type=row["job_type"],
            tenant_context=TenantContext(**row["tenant_context"]),
            priority=row.get("priority", "normal"),
            requested_at=row["requested_at"],
            payload=dict(row.get("payload", {})),
            evidence_links=tuple(EvidenceLink(**e) for e in row.get("evidence_links", [])),
            policy=JobPolicy(
                requires_policy_token=pol.get("requires_policy_token", True),
                requires_approval=pol.get("requires_approval", True),
                risk_level=pol.get("risk_level", "high"),
                required_scopes=tuple(pol.get("required_scopes", [])),
                compliance_tags=tuple(pol.get("compliance_tags", [])),
            ),
            cost_estimate=CostEstimate(**cost) if cost else None,
            expires_at=row.get("expires_at"),
            metadata=dict(row.get("metadata", {})),
        )


def validate_job_request(row: Any) -> list[str]:
    """Return a list of validation problems for a serialized job request."""
    if not isinstance(row, dict):
        return ["request must be an object"]
    problems: list[str] = []
    if row.get("job_type") not in _JOB_TYPES:
        problems.append(f"job_type: unknown job type '{row.get('job_type')}'")
    ctx = row.get("tenant_context")
    if not isinstance(ctx, dict) or not (
        is_identifier(ctx.get("tenant_id")) and is_identifier(ctx.get("project_id"))
    ):
        problems.append("tenant_context: tenant_id and project_id are required")
    if row.get("priority") not in _PRIORITIES:
        problems.append(f"priority: unknown priority '{row.get('priority')}'")
    if not is_iso_timestamp(row.get("requested_at")):
        problems.append("requested_at: must be an ISO-8601 datetime")
    if row.get("expires_at") is not None and not is_iso_timestamp(row["expires_at"]):
        problems.append("expires_at: must be an ISO-8601 datetime")
    if not isinstance(row.get("payload"), dict):
        problems.append("payload: must be an object")
    pol = row.get("policy")
    if not isinstance(pol, dict):
        problems.append("policy: must be an object")
    else:
        if pol.get("requires_policy_token") is not True:
            problems.append("policy.requires_policy_token: must be true")
        if pol.get("requires_approval") is not True:
            problems.append("policy.requires_approval: must be true")
        if pol.get("risk_level") not in _RISK_LEVELS:
            problems.append(f"policy.risk_level: unknown level '{pol.get('risk_level')}'")
    meta = row.get("metadata", {})
    if not isinstance(meta, dict) or meta.get("runnerless") is not True:
        problems.append("metadata.runnerless: must be true")
    return problems


@dataclass(frozen=True, slots=True)
class IdempotencyKey:
    job_type: str
    idempotency_key: str

    def to_dict(self) -> dict[str, str]:
        return {"job_type": self.job_type, "idempotency_key": self.idempotency_key}


@dataclass(frozen=True, slots=True)
class Canonicalization:
    hash: str
    algorithm: str = CANONICAL_ALGORITHM
    hash_algorithm: str = HASH_ALGORITHM

    def to_dict(self) -> dict[str, str]:
        return {
            "algorithm": self.algorithm,
            "hash_algorithm": self.hash_algorithm,
            "hash": self.hash,
        }


@dataclass(frozen=True, slots=True)
class JobRequestBundle:
    """Terminal artifact; ``canonicalization.hash`` covers every other field."""

    tenant_id: str
    project_id: str
    trace_id: str
    created_at: str
    requests: tuple[JobRequest, ...]
    idempotency_keys: tuple[IdempotencyKey, ...]
    canonicalization: Canonicalization
    schema_version: str = BUNDLE_SCHEMA_VERSION
    module_id: str = MODULE_ID
    dry_run: bool = True

    def hash_material(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "module_id": self.module_id,
            "tenant_id": self.tenant_id,
            "project_id": self.project_id,
            "trace_id": self.trace_id,
            "created_at": self.created_at,
            "dry_run": self.dry_run,
            "requests": [r.to_dict() for r in self.requests],
            "idempotency_keys": [k.to_dict() for k in self.idempotency_keys],
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.hash_material()
        data["canonicalization"] = self.canonicalization.to_dict()
        return data

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> JobRequestBundle:
        canon = row["canonicalization"]
        return cls(
            schema_version=row["schema_version"],
            module_id=row["module_id"],
            tenant_id=row["tenant_id"],
            project_id=row["project_id"],
            trace_id=row["trace_id"],
            created_at=row["created_at"],
            dry_run=row["dry_run"],
            requests=tuple(JobRequest.from_dict(r) for r in row.get("requests", [])),
            idempotency_keys=tuple(IdempotencyKey(**k) for k in row.get("idempotency_keys", [])),
            canonicalization=Canonicalization(
                hash=canon["hash"],
                algorithm=canon["algorithm"],
                hash_algorithm=canon["hash_algorithm"],
            ),
        )


def validate_bundle_shape(row: Any) -> list[str]:
    """Structural checks for a serialized bundle (hash is checked separately)."""
    if not isinstance(row, dict):
        return ["bundle must be an object"]
    problems: list[str] = []
    if row.get("schema_version") != BUNDLE_SCHEMA_VERSION:
        problems.append(f"schema_version: must be '{BUNDLE_SCHEMA_VERSION}'")
    if row.get("module_id") != MODULE_ID:
        problems.append(f"module_id: must be '{MODULE_ID}'")
    for key in ("tenant_id", "project_id", "trace_id"):
        if not is_identifier(row.get(key)):
            problems.append(f"{key}: must be a non-empty string")
    if not is_iso_timestamp(row.get("created_at")):
        problems.append("created_at: must be an ISO-8601 datetime")
    if row.get("dry_run") is not True:
        problems.append("dry_run: must be true")
    requests = row.get("requests")
    if not isinstance(requests, list):
        problems.append("requests: must be a list")
    else:
        for idx, req in enumerate(requests):
            problems.extend(f"requests[{idx}].{p}" for p in validate_job_request(req))
    keys = row.get("idempotency_keys")
    if not isinstance(keys, list) or not all(
        isinstance(k, dict) and k.get("job_type") and k.get("idempotency_key") for k in keys
    ):
        problems.append("idempotency_keys: must be a list of {job_type, idempotency_key}")
    canon = row.get("canonicalization")
    if not isinstance(canon, dict):
        problems.append("canonicalization: must be an object")
    else:
        if canon.get("algorithm") != CANONICAL_ALGORITHM:
            problems.append(f"canonicalization.algorithm: must be '{CANONICAL_ALGORITHM}'")
        if canon.get("hash_algorithm") != HASH_ALGORITHM:
            problems.append(f"canonicalization.hash_algorithm: must be '{HASH_ALGORITHM}'")
        if not isinstance(canon.get("hash"), str) or not _HASH_RE.match(canon["hash"]):
            problems.append("canonicalization.hash: must be a SHA-256 hex digest")
    return problems
