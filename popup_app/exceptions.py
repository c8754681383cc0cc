import logging

from django.db import DatabaseError
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status

logger = logging.getLogger(__name__)


def custom_exception_handler(exc, context):
    # Call REST framework's default exception handler first,
    # to get the standard error response.
    response = exception_handler(exc, context)

    if response is None:
        if not isinstance(exc, DatabaseError):
            return None
        view = context.get('view')
        logger.exception("Database error in %s", type(view).__name__ if view else 'request')
        response = Response({'detail': 'Internal server error'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    # Standardize the error response format
    custom_data = {
        'status': 'error',
        'code': response.status_code,
        'message': 'An error occurred',
    }

    if isinstance(response.data, dict):
        details = dict(response.data)
        if 'detail' in details:
            custom_data['message'] = str(details.pop('detail'))
        if details:
            custom_data['details'] = details
    elif isinstance(response.data, list):
        custom_data['details'] = response.data

    response.data = custom_data
    return response
