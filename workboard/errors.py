"""
Typed errors raised by the Workboard core.

Every error carries a stable ``code`` for programmatic handling. Messages are
written so that they never reveal data belonging to another organization:
an entity that exists in a foreign tenant is reported exactly like one that
does not exist at all.
"""

from typing import Any, Dict, Optional


class WorkboardError(Exception):
    """
    Base class for core errors.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
    """

    code = "workboard_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(f"{self.code}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class UnauthenticatedError(WorkboardError):
    """No resolved caller identity."""

    code = "unauthenticated"


class AccessError(WorkboardError):
    """Caller is authenticated but lacks a membership or a permission."""

    code = "access_denied"


class InputValidationError(WorkboardError):
    """Malformed or out-of-range input, including date-order and cycle violations."""

    code = "validation_failed"


class NotFoundError(WorkboardError):
    """Referenced entity is absent or outside the caller's organizations."""

    code = "not_found"

    def __init__(self, entity_kind: str, entity_id: str):
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        super().__init__(f"{entity_kind} '{entity_id}' not found")


class ConflictError(WorkboardError):
    """Uniqueness or concurrent-mutation violation."""

    code = "conflict"


class QueryTimeoutError(WorkboardError):
    """A read exceeded the caller-supplied timeout."""

    code = "timeout"
