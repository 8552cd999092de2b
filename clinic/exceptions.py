"""
Exception handling for the API.

DRF hands every exception raised inside a view to
:func:`api_exception_handler`, which rewrites the body into the failure
envelope.  Anything DRF does not recognise is logged with its traceback
and answered with a generic 500 so internals never leak to clients.
"""
from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class Conflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Conflict with the current state of the resource.'
    default_code = 'conflict'


def _first_message(data) -> str:
    if isinstance(data, dict):
        for field, value in data.items():
            msg = _first_message(value)
            if field in ('detail', 'non_field_errors'):
                return msg
            return f'{field}: {msg}'
        return 'Invalid input.'
    if isinstance(data, (list, tuple)):
        return _first_message(data[0]) if data else 'Invalid input.'
    return str(data)


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        view = context.get('view')
        logger.error('Unhandled error in %s', getattr(view, '__class__', type(view)).__name__,
                     exc_info=(type(exc), exc, exc.__traceback__))
        return Response(
            {'success': False, 'error': 'Internal server error', 'code': 'server_error'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    body = {
        'success': False,
        'error': _first_message(resp.data),
        'code': getattr(exc, 'default_code', 'api_error'),
    }
    if isinstance(exc, ValidationError):
        body['details'] = resp.data
    # keep status and headers (WWW-Authenticate, Retry-After)
    resp.data = body
    return resp
