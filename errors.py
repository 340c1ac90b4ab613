"""Domain error kinds shared by services and the HTTP layer.

Every error carries the HTTP status it maps to, so the application factory
can render them uniformly as ``{"error": ...}`` JSON bodies.
"""

from __future__ import annotations

from typing import Optional


class AppError(Exception):
    """Base class for errors that are reported to the caller."""

    status_code = 500

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.field:
            body["field"] = self.field
        return body


class ValidationError(AppError):
    """Bad input shape or range. Always recoverable by the caller."""

    status_code = 400


class NotFound(AppError):
    """Resource absent, or absent from the caller's visible scope."""

    status_code = 404


class AccessDenied(AppError):
    """Authenticated, but the access policy denies the operation."""

    status_code = 403


class Conflict(AppError):
    """Uniqueness or referential rule prevents the operation."""

    status_code = 409


class ExternalServiceFailure(AppError):
    """A collaborator (mail, PDF, spreadsheet) failed."""

    status_code = 502
