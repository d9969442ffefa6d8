"""Typed errors raised by the RCTI services.

The HTTP layer maps each class to a status code; the services never retry.
"""

from __future__ import annotations


class RctiError(Exception):
    """Base class for all RCTI engine errors."""

    code = "RCTI_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(RctiError):
    """Raised when input is malformed. Always raised before any mutation."""

    code = "VALIDATION_ERROR"


class NotFoundError(RctiError):
    """Raised when an RCTI, line, job, driver or deduction id does not resolve."""

    code = "NOT_FOUND"


class NoValidJobsError(NotFoundError):
    """Raised when none of the requested jobs can be turned into lines."""

    code = "NO_VALID_JOBS"


class InvalidStateError(RctiError):
    """Raised when an operation does not fit the RCTI's current status."""

    code = "INVALID_STATE"

    def __init__(
        self,
        message: str,
        current_status: str | None = None,
        target_status: str | None = None,
    ):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(message)


class PersistenceError(RctiError):
    """Raised when the underlying transaction fails and has been rolled back."""

    code = "PERSISTENCE_ERROR"
