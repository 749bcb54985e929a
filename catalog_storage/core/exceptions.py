"""
Storage exceptions.

Every error raised by the storage managers, the query executor and the
cache derives from StorageError. Driver and SQLAlchemy exceptions are
caught at the executor boundary and re-raised as one of these, with the
original exception chained as ``__cause__``.
"""

from typing import Any, Dict, Optional


class StorageError(Exception):
    """Base exception for all storage operations."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        self.message = message
        self.operation = operation
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message


class AlreadyExistsError(StorageError):
    """Raised when an insert violates a unique constraint."""


class NotFoundError(StorageError):
    """Raised when a record that must exist cannot be found."""


class InvalidArgumentError(StorageError, ValueError):
    """Raised for malformed input, before any I/O happens."""


class IllegalQueryParameterError(InvalidArgumentError):
    """Raised when query parameters cannot be resolved against table columns."""


class UnsupportedOperationError(StorageError):
    """Raised when the configured dialect lacks a required capability."""
