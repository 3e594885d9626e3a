"""Ops contracts — canonical data structures shared by all modules."""

from src.contracts.alert import Alert
from src.contracts.capability import (
    CapabilityExecutionPolicy,
    Finding,
    HealthAuditInput,
    HealthAuditOutput,
)
from src.contracts.correlation import (
    AlertCorrelation,
    CorrelatedAlertGroup,
    CorrelationResult,
    CorrelationRule,
)
from src.contracts.enums import CorrelationLogic, JobType, Priority, Severity
from src.contracts.errors import ErrorCode, ErrorEnvelope
from src.contracts.job import JobRequest, JobRequestBundle
from src.contracts.report import ReliabilityReport, ReportBundle

__all__ = [
    "Alert",
    "AlertCorrelation",
    "CapabilityExecutionPolicy",
    "CorrelatedAlertGroup",
    "CorrelationLogic",
    "CorrelationResult",
    "CorrelationRule",
    "ErrorCode",
    "ErrorEnvelope",
    "Finding",
    "HealthAuditInput",
    "HealthAuditOutput",
    "JobRequest",
    "JobRequestBundle",
    "JobType",
    "Priority",
    "ReliabilityReport",
    "ReportBundle",
    "Severity",
]
