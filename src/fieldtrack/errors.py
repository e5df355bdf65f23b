# src/fieldtrack/errors.py

"""
Error taxonomy shared by stores, the contract surface and the device sampler.

Every error carries the HTTP-ish status code a transport layer would map it to,
so callers (CLI, tests, a future web glue) do not need their own lookup table.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .tracking.models import BatchResult


class FieldTrackError(Exception):
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(FieldTrackError):
    """Malformed or out-of-range input."""

    status_code = 422


class AuthorizationError(FieldTrackError):
    """Actor is not a member of the assignment or lacks an elevated role."""

    status_code = 403


class InvalidTransition(FieldTrackError):
    """Assignment state machine precondition violated."""

    status_code = 422


class NotFound(FieldTrackError):
    status_code = 404


class Rejected(FieldTrackError):
    """The assignment exists but is not currently trackable."""

    status_code = 422


class PartialBatchFailure(FieldTrackError):
    """No item of a location batch could be stored."""

    status_code = 422

    def __init__(self, message: str, result: BatchResult) -> None:
        super().__init__(message)
        self.result = result


class PermissionDenied(FieldTrackError):
    """Device refused the mandatory foreground location permission."""

    status_code = 403
