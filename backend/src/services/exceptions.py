"""
Custom exceptions for service layer.

Routers translate these to HTTP responses: NotFoundError -> 404,
ConflictError -> 409, ValidationError -> 400.
"""

from typing import Any, Optional


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(ServiceError):
    """Raised when a notification or queue entry does not exist (or is not visible)."""

    def __init__(self, resource: str, identifier: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class ConflictError(ServiceError):
    """Raised when a queue entry is not in the state an operation requires."""

    def __init__(self, message: str, current_status: Optional[str] = None):
        self.current_status = current_status
        super().__init__(message)


class ValidationError(ServiceError):
    """Raised when producer input is rejected."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)
