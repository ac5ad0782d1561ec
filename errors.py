"""
Error taxonomy for OmniLens.

Every error carries the HTTP status it maps to so route handlers can turn it
into a JSON response without inspecting the type.
"""

from typing import List, Optional


class OmniLensError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None,
                 details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or []

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(OmniLensError):
    """Bad slug, date or request body."""

    status_code = 400


class AuthError(OmniLensError):
    """No session, or no delegated GitHub token for the user."""

    status_code = 401


class UpstreamAccessError(OmniLensError):
    """GitHub answered 403."""

    status_code = 403


class NotFoundError(OmniLensError):
    """Repository absent locally or on GitHub."""

    status_code = 404


class ConflictError(OmniLensError):
    status_code = 409


class UpstreamError(OmniLensError):
    """Any other GitHub failure, including transport errors."""

    status_code = 500

    def __init__(self, message: str, upstream_status: Optional[int] = None,
                 details: Optional[List[str]] = None):
        super().__init__(message, details=details)
        self.upstream_status = upstream_status


class PersistenceError(OmniLensError):
    """A database write failed. Never fatal for cache refreshes."""

    status_code = 500
