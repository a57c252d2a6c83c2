"""
DRF exception handler rendering every error as
``{"status": "error", "kind": ..., "message": ...}``.
"""
from __future__ import annotations

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from apps.inventory.exceptions import InventoryError

logger = logging.getLogger(__name__)


def api_exception_handler(exc, context):
    if isinstance(exc, InventoryError):
        logger.info("Inventory request rejected (%s): %s", exc.kind, exc.message)
        return Response(exc.as_dict(), status=exc.status_code)

    if isinstance(exc, DjangoValidationError):
        messages = exc.message_dict if hasattr(exc, 'error_dict') else {'non_field_errors': exc.messages}
        return Response(
            {'status': 'error', 'kind': 'VALIDATION_ERROR', 'message': 'Invalid request.', 'details': messages},
            status=status.HTTP_400_BAD_REQUEST,
        )

    response = exception_handler(exc, context)
    if response is not None:
        kind = getattr(exc, 'default_code', 'error')
        if response.status_code == status.HTTP_400_BAD_REQUEST:
            kind = 'validation_error'
        detail = response.data
        message = detail.get('detail', 'Invalid request.') if isinstance(detail, dict) else 'Invalid request.'
        response.data = {
            'status': 'error',
            'kind': str(kind).upper(),
            'message': str(message),
            'details': detail,
        }
        return response

    view = context.get('view')
    logger.exception("Unhandled error in %s", view.__class__.__name__ if view else 'request')
    return Response(
        {'status': 'error', 'kind': 'INTERNAL_ERROR', 'message': 'An unexpected error occurred.'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
