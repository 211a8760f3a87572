"""
Service-layer exceptions.

Services raise these instead of HTTPException so they stay usable from
scripts and tests; ``main.create_app`` maps them onto HTTP responses.
"""
from typing import List, Optional


class ServiceError(Exception):
    status_code = 400

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class ValidationError(ServiceError):
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class ReferenceNotFoundError(ServiceError):
    """A referenced entity (customer, assignee) does not exist."""

    status_code = 400


class ConflictError(ServiceError):
    status_code = 409


class AuthError(ServiceError):
    status_code = 401


class PermissionDeniedError(ServiceError):
    status_code = 403
