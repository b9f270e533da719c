"""
Exception hierarchy shared by the HTTP proxies, the collaborators and the
client-side workflow.

Each server-side error carries the HTTP status it maps to so the Flask
error handlers in :mod:`braindump.main` can translate it without a lookup
table.
"""

from __future__ import annotations

from typing import Optional


class BraindumpError(Exception):
    """Base class for every error raised by this package."""

    status_code = 500

    def __init__(self, message: str, *, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(BraindumpError):
    """Malformed or missing input at a proxy boundary."""

    status_code = 400


class AuthenticationError(BraindumpError):
    """The caller could not be identified."""

    status_code = 401


class NotFoundError(BraindumpError):
    status_code = 404


class CollaboratorError(BraindumpError):
    """A failure reported by an external service (speech, LLM, storage, identity)."""

    status_code = 500


class FetchError(CollaboratorError):
    """The blob store answered a fetch with a non-success status."""


class CleanupError(CollaboratorError):
    """Deleting a temporary blob failed. Logged, never surfaced."""


class WorkflowError(BraindumpError):
    """Base class for refused workflow transitions."""


class TransitionError(WorkflowError):
    """The requested transition is not allowed from the current state."""


class RequestInFlight(WorkflowError):
    """A request of the same kind is still outstanding."""
