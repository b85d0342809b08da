"""
Error taxonomy and DRF exception handler for the DentalCare API.

Every expected failure is raised as one of the APIException subclasses below
and rendered by `api_exception_handler` as:

    {"success": false, "error": "<message>", "kind": "<code>"}

Anything else is treated as an internal failure: it is logged with the full
traceback and rendered as a generic 500 without leaking internals.
"""
import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class ClinicAPIException(APIException):
    """Base class for operational errors surfaced to API callers."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Request could not be processed.'
    default_code = 'error'


class InvalidInput(ClinicAPIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid input.'
    default_code = 'invalid_input'


class NotFound(ClinicAPIException):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Resource not found.'
    default_code = 'not_found'


class SlotUnavailable(ClinicAPIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'This time slot is already booked.'
    default_code = 'slot_unavailable'


class InvalidTransition(ClinicAPIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid status transition.'
    default_code = 'invalid_transition'


class InvalidOperation(ClinicAPIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Operation not allowed in the current state.'
    default_code = 'invalid_operation'


class ExceedsBalance(ClinicAPIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Amount exceeds the outstanding balance.'
    default_code = 'exceeds_balance'


class SignatureInvalid(ClinicAPIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Payment signature verification failed.'
    default_code = 'signature_invalid'


class Conflict(ClinicAPIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Resource already exists.'
    default_code = 'conflict'


class PaymentGatewayError(ClinicAPIException):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = 'Payment gateway request failed.'
    default_code = 'payment_error'


def _first_message(detail):
    """Pull a human-readable message out of a DRF error detail structure."""
    if isinstance(detail, dict):
        for value in detail.values():
            return _first_message(value)
        return 'Validation failed'
    if isinstance(detail, (list, tuple)):
        return _first_message(detail[0]) if detail else 'Validation failed'
    return str(detail)


def api_exception_handler(exc, context):
    """
    DRF EXCEPTION_HANDLER wrapping every error in the standard envelope.
    """
    if isinstance(exc, DjangoValidationError):
        if hasattr(exc, 'message_dict'):
            exc = ValidationError(detail=exc.message_dict)
        else:
            exc = ValidationError(detail=exc.messages)
    elif isinstance(exc, Http404):
        exc = NotFound(str(exc) or None)

    response = exception_handler(exc, context)

    if response is None:
        view = context.get('view')
        logger.exception(
            "Unhandled error in %s: %s",
            view.__class__.__name__ if view else 'unknown view', exc
        )
        return Response(
            {'success': False, 'error': 'Internal server error', 'kind': 'internal_error'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if isinstance(exc, ValidationError):
        response.data = {
            'success': False,
            'error': _first_message(exc.detail),
            'kind': InvalidInput.default_code,
            'errors': exc.detail,
        }
        return response

    detail = getattr(exc, 'detail', None)
    code = exc.get_codes() if isinstance(exc, APIException) else 'error'
    if not isinstance(code, str):
        code = getattr(exc, 'default_code', 'error')

    response.data = {
        'success': False,
        'error': _first_message(detail) if detail is not None else str(exc),
        'kind': code,
    }
    return response
