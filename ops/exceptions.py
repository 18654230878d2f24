"""
Domain error taxonomy and the unified API exception handler.

Services raise these; DRF turns them into responses through
``api_exception_handler`` so every failure leaves the API as
``{"ok": false, "error": "...", "code": "..."}``.
"""
from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class DomainError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Request failed'
    default_code = 'error'


class Unauthorized(DomainError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Unauthorized'
    default_code = 'unauthorized'


class Forbidden(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Forbidden'
    default_code = 'forbidden'


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found'
    default_code = 'not_found'


class InvalidStateTransition(DomainError):
    default_detail = 'Operation not allowed in the current state'
    default_code = 'invalid_state_transition'


class AlreadyFinalized(DomainError):
    default_detail = 'Already finalized'
    default_code = 'already_finalized'


class AlreadyDeleted(DomainError):
    default_detail = 'Entry is already deleted'
    default_code = 'already_deleted'


class NoPendingEdit(DomainError):
    default_detail = 'No pending edit request found'
    default_code = 'no_pending_edit'


class ValidationError(DomainError):
    default_detail = 'Invalid input'
    default_code = 'validation_error'


class InvalidRequest(DomainError):
    default_detail = 'Invalid request'
    default_code = 'invalid_request'


class Internal(DomainError):
    """Unexpected store failure. Safe to retry once the cause is reconciled."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Internal error'
    default_code = 'internal'
    retryable = True

    def __init__(self, detail=None, *, context: dict | None = None):
        super().__init__(detail)
        self.context = context or {}
        logger.error('internal error: %s context=%s', detail or self.default_detail, self.context)


# DRF's built-in exceptions keep their own codes; map the common ones.
_DRF_CODES = {
    401: 'unauthorized',
    403: 'forbidden',
    404: 'not_found',
    405: 'method_not_allowed',
    429: 'throttled',
}


def _flatten(detail) -> str:
    if isinstance(detail, dict):
        if 'detail' in detail:
            return _flatten(detail['detail'])
        parts = []
        for field, value in detail.items():
            parts.append(f"{field}: {_flatten(value)}")
        return '; '.join(parts)
    if isinstance(detail, (list, tuple)):
        return ', '.join(_flatten(d) for d in detail)
    return str(detail)


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        view = context.get('view')
        logger.exception('unhandled error in %s', getattr(view, '__name__', type(view).__name__), exc_info=exc)
        return Response(
            {'ok': False, 'error': 'Internal error', 'code': 'internal', 'retryable': True},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    if isinstance(exc, DomainError):
        code = exc.default_code
    elif resp.status_code == 400:
        code = 'validation_error'
    else:
        code = _DRF_CODES.get(resp.status_code, 'api_error')

    body = {'ok': False, 'error': _flatten(resp.data), 'code': code}
    if getattr(exc, 'retryable', False):
        body['retryable'] = True
    resp.data = body
    return resp
