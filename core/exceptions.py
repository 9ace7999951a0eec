"""
Error taxonomy of the credential engine.

All errors are HTTPException subclasses so the services can raise them
directly and FastAPI renders the status code and detail.
"""

from fastapi import HTTPException
from starlette import status


class ConflictError(HTTPException):
    def __init__(self, detail: str = "Conflict"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class UnauthorizedError(HTTPException):
    def __init__(self, detail: str = "Could not validate user."):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidCredentialError(UnauthorizedError):
    """
    Raised for any token that fails verification.

    The detail sent to the caller is always the same; the concrete cause
    (bad signature, expired, wrong type, blacklisted, not active) is kept
    in `reason` for internal logging only.
    """

    def __init__(self, reason: str):
        super().__init__(detail="Invalid token")
        self.reason = reason


class ForbiddenError(HTTPException):
    def __init__(self, detail: str = "Insufficient permissions"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class BadRequestError(HTTPException):
    def __init__(self, detail: str = "Bad request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class TooManyRequestsError(HTTPException):
    def __init__(self, retry_after: int, detail: str = "Too many requests, please try again later."):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
            headers={"Retry-After": str(retry_after)},
        )
        self.retry_after = retry_after


class ServiceUnavailableError(HTTPException):
    def __init__(self, detail: str = "Service temporarily unavailable"):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
