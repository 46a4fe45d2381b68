"""
Typed errors raised by the permission, validation and service layers.

Every error carries the HTTP status it maps to; main.py renders them all
through one exception handler.
"""

from typing import Optional

from fastapi import status


class ServiceError(Exception):
    """Base class for business-rule and store failures."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    kind: str = "service_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": self.kind}


class ValidationFailed(ServiceError):
    """Malformed or rule-violating input. The caller must correct it."""

    status_code = status.HTTP_400_BAD_REQUEST
    kind = "validation_failed"


class PermissionDenied(ServiceError):
    """Caller lacks the role or membership required for the action."""

    status_code = status.HTTP_403_FORBIDDEN
    kind = "permission_denied"


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    kind = "not_found"


class ConcurrentModification(ServiceError):
    """The stored row changed since the caller read it."""

    status_code = status.HTTP_409_CONFLICT
    kind = "concurrent_modification"


class ServiceFailure(ServiceError):
    """The store failed unexpectedly (connectivity, constraint violation)."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    kind = "service_failure"
