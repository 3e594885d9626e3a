"""Shared error envelope and error taxonomy.

Terminal failures of the capability runner are returned as values
(``ErrorEnvelope`` on an ``ExecutionResult``), never raised.  Exceptions are
reserved for two places:

  DependencyFailure — raised by an attempt when every target failed; caught
                      inside the retry loop and never escapes the runner.
  RunnerError       — raised at the CLI boundary, carries the envelope and
                      the process exit code.

Exit codes
──────────
  0 — success
  2 — validation error
  3 — external dependency failure
  4 — unexpected bug
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from src.contracts.common import drop_none

EXIT_SUCCESS = 0
EXIT_VALIDATION = 2
EXIT_DEPENDENCY = 3
EXIT_BUG = 4


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DEPENDENCY_FAILURE = "DEPENDENCY_FAILURE"
    TIMEOUT_EXCEEDED = "TIMEOUT_EXCEEDED"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    CANCELLED = "CANCELLED"
    UNEXPECTED_BUG = "UNEXPECTED_BUG"


_RETRYABLE = {ErrorCode.DEPENDENCY_FAILURE, ErrorCode.TIMEOUT_EXCEEDED, ErrorCode.CIRCUIT_OPEN}

_EXIT_CODES = {
    ErrorCode.VALIDATION_ERROR: EXIT_VALIDATION,
    ErrorCode.DEPENDENCY_FAILURE: EXIT_DEPENDENCY,
    ErrorCode.TIMEOUT_EXCEEDED: EXIT_DEPENDENCY,
    ErrorCode.CIRCUIT_OPEN: EXIT_DEPENDENCY,
    ErrorCode.CANCELLED: EXIT_DEPENDENCY,
    ErrorCode.UNEXPECTED_BUG: EXIT_BUG,
}


@dataclass(frozen=True, slots=True)
class ErrorEnvelope:
    code: ErrorCode
    message: str
    user_message: str
    retryable: bool
    cause: str | None = None
    context: dict[str, Any] | None = None

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES.get(self.code, EXIT_BUG)

    def to_dict(self) -> dict[str, Any]:
        return drop_none(
            {
                "code": self.code,
                "message": self.message,
                "userMessage": self.user_message,
                "retryable": self.retryable,
                "cause": self.cause,
                "context": self.context,
            }
        )


def make_envelope(
    code: ErrorCode,
    message: str,
    user_message: str | None = None,
    cause: str | None = None,
    context: dict[str, Any] | None = None,
) -> ErrorEnvelope:
    return ErrorEnvelope(
        code=code,
        message=message,
        user_message=user_message or message,
        retryable=code in _RETRYABLE,
        cause=cause,
        context=context,
    )


class DependencyFailure(Exception):
    """A collaborator call failed for every target of an attempt."""

    def __init__(self, message: str, failures: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.failures = failures or {}


class RunnerError(Exception):
    """Error carrying an envelope and exit code, raised at the CLI boundary."""

    def __init__(self, envelope: ErrorEnvelope) -> None:
        super().__init__(envelope.message)
        self.envelope = envelope

    @property
    def exit_code(self) -> int:
        return self.envelope.exit_code


def validation_error(message: str, context: dict[str, Any] | None = None) -> RunnerError:
    return RunnerError(
        make_envelope(
            ErrorCode.VALIDATION_ERROR,
            message,
            user_message=f"Input validation failed: {message}",
            context=context,
        )
    )


def dependency_error(
    message: str,
    cause: str | None = None,
    context: dict[str, Any] | None = None,
) -> RunnerError:
    return RunnerError(
        make_envelope(
            ErrorCode.DEPENDENCY_FAILURE,
            message,
            user_message="An external dependency is unavailable. Retry may help.",
            cause=cause,
            context=context,
        )
    )


def bug_error(message: str, cause: str | None = None) -> RunnerError:
    return RunnerError(
        make_envelope(
            ErrorCode.UNEXPECTED_BUG,
            message,
            user_message="An unexpected error occurred. Please report this.",
            cause=cause,
        )
    )


def to_error_envelope(error: BaseException) -> ErrorEnvelope:
    if isinstance(error, RunnerError):
        return error.envelope
    if isinstance(error, DependencyFailure):
        return make_envelope(
            ErrorCode.DEPENDENCY_FAILURE,
            str(error),
            user_message="An external dependency is unavailable. Retry may help.",
            context={"failures": error.failures} if error.failures else None,
        )
    return make_envelope(
        ErrorCode.UNEXPECTED_BUG,
        str(error) or type(error).__name__,
        user_message="An unexpected error occurred.",
        cause=type(error).__name__,
    )


def exit_code_for_error(error: BaseException) -> int:
    return to_error_envelope(error).exit_code
