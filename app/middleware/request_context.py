import uuid

from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.context import bind_request, unbind_request

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind the Request and a request id for services, logs and error bodies."""

    async def dispatch(self, request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        token = bind_request(request, request_id)
        try:
            with logger.contextualize(request_id=request_id):
                response = await call_next(request)
        finally:
            unbind_request(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
