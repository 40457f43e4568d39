"""Error taxonomy shared by the ticket services."""

from __future__ import annotations

from typing import Any, Sequence


class BugdeskError(RuntimeError):
    """Base error for ticket service issues."""

    kind = "error"


class ValidationError(BugdeskError):
    """Raised when submitted fields are missing or malformed."""

    kind = "validation_error"

    def __init__(self, message: str, errors: Sequence[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors: list[dict[str, Any]] = list(errors or [])


class NotFoundError(BugdeskError):
    """Raised when a ticket, staff member or note could not be located."""

    kind = "not_found"


class ConflictError(BugdeskError):
    """Raised when a write collides with existing or concurrently changed data."""

    kind = "conflict"


class CreateFailedError(BugdeskError):
    """Raised when a ticket could not be created after exhausting retries."""

    kind = "create_failed"


class UnauthorizedError(BugdeskError):
    """Raised when an actor or assignee lacks the required role or status."""

    kind = "unauthorized"


class InvalidTransitionError(BugdeskError):
    """Raised when attempting to transition to an invalid state."""

    kind = "invalid_transition"


class RepositoryUnavailableError(BugdeskError):
    """Raised when the storage backend cannot be reached."""

    kind = "repository_unavailable"
