# core/exceptions.py
"""
Error taxonomy for the order engine and the DRF handler that renders it.

Services raise these directly; views let them propagate so that
``custom_exception_handler`` produces a uniform JSON body::

    {"error": true, "code": "...", "message": "...", "details": {...}, "status_code": 409}
"""
import logging

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class OrderingError(APIException):
    """Base class; ``details`` carries machine-readable context for the client."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Request could not be processed.'
    default_code = 'error'

    def __init__(self, detail=None, code=None, **details):
        super().__init__(detail=detail, code=code)
        self.details = details

    @property
    def message(self) -> str:
        return str(self.detail)


class ValidationError(OrderingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid input.'
    default_code = 'validation_error'


class NotFoundError(OrderingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'
    default_code = 'not_found'


class ForbiddenError(OrderingError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'This operation is not allowed.'
    default_code = 'forbidden'


class ConflictError(OrderingError):
    """Lost an optimistic-concurrency race or a limited resource ran out. Retry."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The resource was modified concurrently. Retry the request.'
    default_code = 'conflict'


class AuthenticationError(OrderingError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Signature verification failed.'
    default_code = 'authentication_failed'


class ExternalServiceError(OrderingError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Upstream service unavailable.'
    default_code = 'external_service_error'


class InvariantViolation(OrderingError):
    """A monetary invariant would break. Never coerced into a valid-looking value."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'A monetary invariant was violated.'
    default_code = 'invariant_violation'


_MESSAGES = {
    400: 'Validation error',
    401: 'Authentication required',
    403: 'Permission denied',
    404: 'Resource not found',
    405: 'Method not allowed',
    409: 'Conflict',
    429: 'Too many requests',
}


def custom_exception_handler(exc, context):
    """
    Render every API error in one envelope and log by severity.
    """
    view = context.get('view')
    view_name = view.__class__.__name__ if view is not None else 'unknown'

    if isinstance(exc, InvariantViolation):
        logger.error("Invariant violation in %s: %s %s", view_name, exc.detail, exc.details)
    elif isinstance(exc, ConflictError):
        logger.warning("Conflict in %s: %s", view_name, exc.detail)
    elif isinstance(exc, ExternalServiceError):
        logger.error("Upstream failure in %s: %s", view_name, exc.detail)

    if isinstance(exc, OrderingError):
        return Response({
            'error': True,
            'code': exc.default_code,
            'message': exc.message,
            'details': exc.details,
            'status_code': exc.status_code,
        }, status=exc.status_code)

    response = exception_handler(exc, context)

    if response is not None:
        response.data = {
            'error': True,
            'code': getattr(exc, 'default_code', 'error'),
            'message': _MESSAGES.get(response.status_code, 'An error occurred'),
            'details': response.data,
            'status_code': response.status_code,
        }
        return response

    if isinstance(exc, DjangoValidationError):
        logger.warning("Model validation error in %s: %s", view_name, exc)
        return Response({
            'error': True,
            'code': 'validation_error',
            'message': 'Validation error',
            'details': {'non_field_errors': exc.messages},
            'status_code': 400,
        }, status=status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, IntegrityError):
        logger.error("Integrity error in %s: %s", view_name, exc)
        return Response({
            'error': True,
            'code': 'conflict',
            'message': 'Database integrity error',
            'details': {'error': 'This operation violates database constraints'},
            'status_code': 409,
        }, status=status.HTTP_409_CONFLICT)

    logger.exception("Unexpected error in %s", view_name)
    return Response({
        'error': True,
        'code': 'server_error',
        'message': 'An unexpected error occurred',
        'details': {'error': str(exc)} if settings.DEBUG else {},
        'status_code': 500,
    }, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
