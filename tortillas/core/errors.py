"""
Error Taxonomy

Every failure of a store operation is surfaced to the initiating viewer as
one of these exceptions. The HTTP layer maps them onto status codes and the
viewer-side client maps status codes back onto them, so callers on both
sides handle the same types.

    ValidationError  - request rejected before anything was written
    ConflictError    - duplicate table number, table no longer available,
                       forbidden status edge
    NotFoundError    - order, table or menu item does not exist
    TransientError   - network or server failure; retry is up to the user
"""

from typing import Optional


class OrderingError(Exception):
    """Base class for all errors reported to a viewer."""

    status_code: int = 500
    error: str = "ordering_error"

    def __init__(self, detail: str, suggestion: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.suggestion = suggestion

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": False,
            "error": self.error,
            "detail": self.detail,
            "suggestion": self.suggestion,
        }


class ValidationError(OrderingError):
    """Missing or inconsistent input, caught before any mutation."""

    status_code = 400
    error = "validation_error"

    def __init__(
        self,
        detail: str,
        problems: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ):
        super().__init__(detail, suggestion)
        self.problems = problems or [detail]

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["problems"] = self.problems
        return data


class ConflictError(OrderingError):
    """The store refused the write because of current state."""

    status_code = 409
    error = "conflict"


class NotFoundError(OrderingError):
    status_code = 404
    error = "not_found"


class TransientError(OrderingError):
    """Network or server failure. Never retried automatically."""

    status_code = 503
    error = "transient_error"
