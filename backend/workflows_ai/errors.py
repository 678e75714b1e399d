"""
Exception taxonomy for the workflow engine.

Validation-class errors are raised before any node runs and map to HTTP 400.
Node failures are never raised; they travel as NodeFailure results.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for engine errors that surface to a caller."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class WorkflowValidationError(WorkflowError):
    """Selector, input or builder request is invalid (400)."""

    status_code = 400


class UnknownModelError(WorkflowValidationError):
    """Model id is not in the registry or lacks the requested capability."""


class SchemaError(WorkflowValidationError):
    """Schema example or field-kind tag cannot be turned into a descriptor."""


class StreamClosedError(WorkflowError):
    """An event was written to (or the close repeated on) a finished channel."""
