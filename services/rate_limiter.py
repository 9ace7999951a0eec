"""
Global request quota, counted with the `limits` fixed-window strategy
(the same storage and strategies slowapi runs on) in the shared store.
"""

import math
import time
from dataclasses import dataclass
from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter
from core.config import settings
from core.exceptions import TooManyRequestsError
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class QuotaDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after: int


class RequestQuota:
    """
    One fixed window per caller key. When the window's key expires the
    next request starts a fresh count. Callers presenting a bearer
    credential get the higher ceiling, whether or not the credential is
    valid (signatures are checked later).
    """

    NAMESPACE = "rl"

    def __init__(self, storage_uri: str, window_seconds: int = None, max_anonymous: int = None,
                 max_authenticated: int = None, exempt_paths: list[str] = None, **storage_options):
        self.storage = storage_from_string(storage_uri, **storage_options)
        self.strategy = FixedWindowRateLimiter(self.storage)

        window_seconds = window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS
        max_anonymous = max_anonymous or settings.RATE_LIMIT_MAX_REQUESTS
        max_authenticated = max_authenticated or settings.RATE_LIMIT_MAX_REQUESTS_AUTH

        if max_authenticated <= max_anonymous:
            raise ValueError("Authenticated ceiling must be higher than the anonymous one")

        self.anonymous_limit = RateLimitItemPerSecond(max_anonymous, window_seconds, namespace=self.NAMESPACE)
        self.authenticated_limit = RateLimitItemPerSecond(max_authenticated, window_seconds,
                                                          namespace=self.NAMESPACE)
        self.exempt_paths = set(settings.RATE_LIMIT_EXEMPT_PATHS if exempt_paths is None else exempt_paths)

    def is_exempt(self, path: str) -> bool:
        return path in self.exempt_paths

    def limit_for(self, bearer_token: str | None) -> RateLimitItem:
        return self.authenticated_limit if bearer_token else self.anonymous_limit

    @staticmethod
    def caller_key(client_ip: str, bearer_token: str | None) -> str:
        # Still keyed by address: minting fake bearer values must not buy new windows
        if bearer_token:
            return f"auth:{client_ip}"
        return f"ip:{client_ip}"

    def hit(self, client_ip: str, bearer_token: str | None = None) -> QuotaDecision:
        """Counts one request and reports whether it is within the ceiling."""
        item = self.limit_for(bearer_token)
        key = self.caller_key(client_ip, bearer_token)

        allowed = self.strategy.hit(item, key)
        reset_at, remaining = self.strategy.get_window_stats(item, key)

        return QuotaDecision(
            allowed=allowed,
            limit=item.amount,
            remaining=remaining,
            reset_after=max(0, math.ceil(reset_at - time.time()))
        )

    def check(self, client_ip: str, bearer_token: str | None = None) -> QuotaDecision:
        """
        Same as hit() but raises when the ceiling is exceeded.

        Raises:
            TooManyRequestsError: quota for the current window is used up
        """
        decision = self.hit(client_ip, bearer_token)
        if not decision.allowed:
            logger.warning(
                "Request quota exceeded",
                extra={
                    "client_ip": client_ip,
                    "authenticated": bool(bearer_token),
                    "limit": decision.limit
                }
            )
            raise TooManyRequestsError(retry_after=max(decision.reset_after, 1))
        return decision


def create_request_quota(storage_uri: str, timeout: float = 5.0) -> RequestQuota:
    """
    "memory://" keeps the windows in process, anything else is handed to
    the Redis storage with bounded socket timeouts.
    """
    if storage_uri.startswith("memory://"):
        return RequestQuota(storage_uri)
    return RequestQuota(storage_uri, socket_timeout=timeout, socket_connect_timeout=timeout)
