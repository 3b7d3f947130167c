from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base error for deal assignment and workload operations."""

    status_code = 500

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(PipelineError):
    """Raised when a request is missing or carries malformed fields."""

    status_code = 400


class NotFoundError(PipelineError):
    """Raised when a sales rep or some requested deals cannot be resolved."""

    status_code = 404


class StorageError(PipelineError):
    """Raised when a read or write against storage fails.

    The message is kept for server-side logs only and never returned to callers.
    """

    status_code = 500
