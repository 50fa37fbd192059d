"""
Error taxonomy for the Gantt data layer.

Validation and cycle errors are raised before any write; store errors are raised
after the surrounding transaction has been rolled back. The REST adapter maps
each class to an HTTP status through its ``status_code`` attribute.
"""

from typing import Any, Dict, Optional


class GanttError(Exception):
    """Base class for all errors surfaced to the request adapter."""

    code = "gantt_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "code": self.code,
            "details": self.details or None,
        }


class NotFound(GanttError):
    """Referenced task or link id does not exist."""

    code = "not_found"
    status_code = 404


class ValidationError(GanttError):
    """Malformed operation arguments (unknown mode, missing target, bad endpoint)."""

    code = "validation_error"
    status_code = 400


class CycleError(GanttError):
    """Move/copy target lies inside the subtree being moved."""

    code = "cycle_error"
    status_code = 400


class StoreError(GanttError):
    """Underlying persistence failure; the transaction has been rolled back."""

    code = "store_error"
    status_code = 500
