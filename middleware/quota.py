"""
Global admission control: every request is counted against its caller's
quota before any route code runs.
"""

from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from core.exceptions import ServiceUnavailableError, TooManyRequestsError
from utils.logger import get_logger

logger = get_logger(__name__)


def get_bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class RequestQuotaMiddleware(BaseHTTPMiddleware):
    """
    Rejects a request with 429 once its caller used up the window.
    The RequestQuota lives on app.state.quota.

    Exceptions raised here bypass FastAPI's exception handlers, so the
    error responses are built directly.
    """

    async def dispatch(self, request: Request, call_next):
        quota = request.app.state.quota

        if quota.is_exempt(request.url.path):
            return await call_next(request)

        try:
            decision = quota.check(get_client_ip(request), get_bearer_token(request))
        except TooManyRequestsError as e:
            return JSONResponse(
                status_code=e.status_code,
                content={"detail": e.detail},
                headers=e.headers
            )
        except RedisError as e:
            logger.error(
                f"Quota store unavailable: {str(e)}",
                extra={"error_type": type(e).__name__, "path": request.url.path}
            )
            unavailable = ServiceUnavailableError()
            return JSONResponse(
                status_code=unavailable.status_code,
                content={"detail": unavailable.detail}
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        response.headers["X-RateLimit-Reset"] = str(decision.reset_after)
        return response
