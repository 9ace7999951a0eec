"""
Per-route brute-force limits (login, register, reset...) on top of the
global quota in middleware/quota.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from jose import jwt, JWTError
from core.config import settings


def get_user_id(request: Request):
    token = request.headers.get("Authorization")
    if token:
        try:
            token = token.replace("Bearer ", "")
            payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
            user_id = payload.get("sub")
            if user_id and payload.get("type") == "access":
                return f"user:{user_id}"
        except JWTError:
            pass

    return get_remote_address(request)


limiter = Limiter(
    key_func=get_user_id,
    storage_uri=settings.REDIS_URL,
    enabled=settings.ENV != "testing"
)
