import logging
import uuid
from threading import local

from django.utils.deprecation import MiddlewareMixin

# Thread-local storage for request ID
_thread_locals = local()

REQUEST_ID_HEADER = 'HTTP_X_REQUEST_ID'


class RequestIDMiddleware(MiddlewareMixin):
    """
    Tags each request with an id (taken from X-Request-ID when the proxy sets one)
    and exposes it to logging for the lifetime of the request.
    """

    def process_request(self, request):
        incoming = (request.META.get(REQUEST_ID_HEADER) or '').strip()
        request_id = incoming[:64] if incoming else str(uuid.uuid4())

        request.request_id = request_id
        _thread_locals.request_id = request_id
        return None

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id

        if hasattr(_thread_locals, 'request_id'):
            delattr(_thread_locals, 'request_id')

        return response

    def process_exception(self, request, exception):
        if hasattr(_thread_locals, 'request_id'):
            delattr(_thread_locals, 'request_id')
        return None


def get_request_id():
    """
    Current request id, or None outside a request (Celery tasks, shell).
    """
    return getattr(_thread_locals, 'request_id', None)


class RequestIDFilter(logging.Filter):
    """
    Logging filter that adds request ID to log records.
    """

    def filter(self, record):
        record.request_id = get_request_id() or 'no-request-id'
        return True
