from typing import Annotated
from fastapi import APIRouter, Body, Cookie, Depends, Request, Response
from fastapi.security import OAuth2PasswordRequestForm
from starlette import status
from core.config import settings
from core.exceptions import BadRequestError, UnauthorizedError
from utils.deps import db_dependency, cache_dependency, queue_dependency, providers_dependency
from schemas.auth_schemas import (Token, UserResponse, VerifyEmailRequest, CreateUserRequest,
    ForgotPasswordRequest, RefreshTokenRequest, ResetPasswordRequest, ExternalSignInRequest)
from services.auth_service import AuthService
from services.token_service import TokenService, ACCESS, REFRESH
from middleware.rate_limiter import limiter
from middleware.quota import get_bearer_token, get_client_ip
from utils.logger import get_logger

# Setup logger
logger = get_logger(__name__)


router = APIRouter(
    prefix="/auth",
    tags=["auth"]
)

refresh_cookie = Annotated[str | None, Cookie(alias=settings.REFRESH_COOKIE_NAME)]
refresh_body = Annotated[RefreshTokenRequest | None, Body()]


def set_refresh_cookie(response: Response, refresh_token: str):
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=refresh_token,
        httponly=True,
        secure=settings.ENV == "production",
        samesite="strict",
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        path="/auth"
    )


def pick_refresh_token(body: RefreshTokenRequest | None, cookie: str | None) -> str | None:
    """The refresh token may come from the JSON body or the HTTP-only cookie."""
    if body is not None:
        return body.refresh_token
    return cookie


@router.post("/register", status_code=status.HTTP_201_CREATED, response_model=UserResponse)
@limiter.limit("3/minute")
async def register(request: Request, body: CreateUserRequest, db: db_dependency, queue: queue_dependency):
    """
    Creates an unverified account. The verification link is sent by email only.
    """
    return AuthService.register(body, db, queue)


@router.post("/token", response_model=Token)
@limiter.limit("5/minute")
async def login_for_access_token(request: Request, response: Response, db: db_dependency,
                                 form_data: OAuth2PasswordRequestForm = Depends()):
    _, tokens = AuthService.login(form_data.username, form_data.password, get_client_ip(request), db)

    set_refresh_cookie(response, tokens["refresh_token"])
    return tokens


@router.post("/refresh", response_model=Token)
@limiter.limit("10/minute")
async def refresh_token(request: Request, response: Response, db: db_dependency, cache: cache_dependency,
                        body: refresh_body = None, cookie_token: refresh_cookie = None):
    """
    Rotates a refresh token: the presented one is consumed and a new pair is returned.
    """
    token = pick_refresh_token(body, cookie_token)
    if not token:
        raise UnauthorizedError("Refresh token required")

    tokens = TokenService.rotate(token, get_client_ip(request), db, cache)

    set_refresh_cookie(response, tokens["refresh_token"])
    return tokens


@router.post("/logout", status_code=status.HTTP_200_OK)
@limiter.limit("10/minute")
async def logout(request: Request, response: Response, db: db_dependency, cache: cache_dependency,
                 body: refresh_body = None, cookie_token: refresh_cookie = None):
    """
    Revokes the refresh token and, when one is presented, the access token.
    """
    ip = get_client_ip(request)

    token = pick_refresh_token(body, cookie_token)
    if token:
        TokenService.revoke(token, REFRESH, db, cache, source_ip=ip)

    access_token = get_bearer_token(request)
    if access_token:
        TokenService.revoke(access_token, ACCESS, db, cache, source_ip=ip)

    response.delete_cookie(settings.REFRESH_COOKIE_NAME, path="/auth")

    logger.info("User logged out")

    return {"message": "Logged out successfully"}


@router.post("/verify-email", status_code=status.HTTP_200_OK)
@limiter.limit("10/minute")
async def verify_email(request: Request, body: VerifyEmailRequest, db: db_dependency, queue: queue_dependency):
    AuthService.verify_email(body.token, db, queue)

    return {"message": "Email verified successfully"}


@router.post("/forgot-password", status_code=status.HTTP_200_OK)
@limiter.limit("3/minute")
async def forgot_password(request: Request, body: ForgotPasswordRequest, db: db_dependency, queue: queue_dependency):
    """
    Request password reset via email. The answer never reveals whether the email exists.
    """
    AuthService.forgot_password(body.email, db, queue)

    return {"message": "If that email exists, a reset link has been sent."}


@router.post("/reset-password", status_code=status.HTTP_200_OK)
@limiter.limit("5/minute")
async def reset_password(request: Request, body: ResetPasswordRequest, db: db_dependency):
    AuthService.reset_password(body.token, body.new_password, db)

    return {"message": "Password updated successfully. Please login again."}


@router.post("/external/{provider}", response_model=Token)
@limiter.limit("10/minute")
async def external_sign_in(request: Request, response: Response, provider: str, body: ExternalSignInRequest,
                           db: db_dependency, providers: providers_dependency):
    """
    Signs in with an identity vouched for by an external provider.
    """
    identity_provider = providers.get(provider)
    if identity_provider is None:
        logger.warning(
            "External sign-in with unknown provider",
            extra={"provider": provider, "supported": providers.names()}
        )
        raise BadRequestError("Unsupported identity provider")

    identity = identity_provider.resolve_external_identity(body.provider_token)
    _, tokens = AuthService.external_sign_in(identity, get_client_ip(request), db)

    set_refresh_cookie(response, tokens["refresh_token"])
    return tokens
