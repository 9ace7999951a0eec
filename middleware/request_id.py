"""
Request ID middleware for correlating all log records of one request.
"""

import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from utils.logger import request_id_var


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Adds a request ID to each request.

    A client-provided X-Request-ID is reused, otherwise a UUID is generated.
    The id is stored in request.state, echoed in the response headers and
    bound to a context variable that RequestIDFilter reads, so concurrent
    requests never see each other's id.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        token = request_id_var.set(request_id)
        try:
            response: Response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            request_id_var.reset(token)


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "no-request-id")
