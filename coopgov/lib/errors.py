"""Error kinds raised by the governance services.

Every error carries a human-readable message, a `details` dict with the
identifiers involved, and the HTTP status the API layer answers with.
"""

from typing import Any, Dict, Optional


class GovernanceError(Exception):
    """Base class for all governance errors."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(GovernanceError):
    """Missing coop config, proposal, amendment, revision or goal score."""

    status_code = 404


class ConflictError(GovernanceError):
    """The entity is not in a state that allows the operation."""

    status_code = 409


class ForbiddenError(GovernanceError):
    """Role or ownership check failed."""

    status_code = 403


class InvalidInputError(GovernanceError):
    """Input is out of range or malformed."""

    status_code = 422


class UpstreamFailureError(GovernanceError):
    """The AI evaluation service failed, timed out or returned malformed output."""

    status_code = 502
