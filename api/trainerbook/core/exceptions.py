"""Typed errors raised by the booking core.

Each error carries the HTTP status and CLI exit code the outer layers map it
to, so route handlers and scripts never need to know which service raised it.
"""

from typing import Any


class TrainerBookError(Exception):
    """Base class for all booking, ledger and policy errors."""

    status_code: int = 500
    exit_code: int = 1
    retryable: bool = False

    def __init__(self, message: str, code: str | None = None, details: dict[str, Any] | None = None):
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(TrainerBookError):
    """Malformed input, e.g. a student-led request without a student."""

    status_code = 400
    exit_code = 2


class PolicyViolation(TrainerBookError):
    """One or more academy policy rules failed. Messages are user-displayable."""

    status_code = 422
    exit_code = 3

    def __init__(self, errors: list[str], code: str | None = None):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Policy violation", code, {"errors": self.errors})


class InsufficientBalance(TrainerBookError):
    status_code = 402
    exit_code = 4


class CapacityExceeded(TrainerBookError):
    status_code = 409
    exit_code = 5


class TeacherUnavailable(TrainerBookError):
    status_code = 409
    exit_code = 5


class NotFound(TrainerBookError):
    status_code = 404
    exit_code = 6


class ConfigurationError(TrainerBookError):
    """The academy has no resolvable franqueadora. Fatal for balance-bearing operations."""

    status_code = 500
    exit_code = 7


class ConcurrencyConflict(TrainerBookError):
    """A booking or balance row changed underneath the operation. Safe to retry."""

    status_code = 409
    exit_code = 8
    retryable = True
