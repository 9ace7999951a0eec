"""
Middleware package exports.
"""

from middleware.request_id import RequestIDMiddleware, get_request_id
from middleware.rate_limiter import limiter, get_user_id
from middleware.quota import RequestQuotaMiddleware, get_bearer_token, get_client_ip

__all__ = [
    "RequestIDMiddleware", "get_request_id", "limiter", "get_user_id",
    "RequestQuotaMiddleware", "get_bearer_token", "get_client_ip",
]
