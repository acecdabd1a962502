"""
Service-layer exceptions.

Services raise these; views turn them into responses with
``error_response(exc)``. Each class carries its HTTP status and an optional
``details`` dict merged into the response body.
"""
from rest_framework import status
from rest_framework.response import Response


class ServiceError(Exception):
    """Base class for errors raised by service-layer operations."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        return {'error': self.message, **self.details}


class ValidationFailed(ServiceError):
    """Missing or malformed input."""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(ServiceError):
    """A referenced feed, animal or record does not exist."""
    status_code = status.HTTP_404_NOT_FOUND


class PermissionDenied(ServiceError):
    """Caller lacks the role or ownership for the operation."""
    status_code = status.HTTP_403_FORBIDDEN


class BusinessRuleViolation(ServiceError):
    """Input is well-formed but a domain rule forbids the operation."""
    status_code = status.HTTP_400_BAD_REQUEST


def error_response(exc):
    """Build a DRF response for a ServiceError."""
    return Response(exc.to_dict(), status=exc.status_code)
