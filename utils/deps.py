import secrets
from core.database import SessionLocal
from typing import Annotated
from fastapi import Depends, Header, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from core.config import settings
from core.exceptions import ForbiddenError, UnauthorizedError
from models.users import User, UserRole
from services.token_service import TokenService, ACCESS
from services.auth_service import AuthService
from utils.logger import get_logger

logger = get_logger(__name__)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

db_dependency = Annotated[Session, Depends(get_db)]


# Store handles are created in the application lifespan and live on app.state
def get_cache(request: Request):
    return request.app.state.cache

cache_dependency = Annotated[object, Depends(get_cache)]


def get_notification_queue(request: Request):
    return request.app.state.notifications

queue_dependency = Annotated[object, Depends(get_notification_queue)]


def get_identity_providers(request: Request):
    return request.app.state.identity_providers

providers_dependency = Annotated[object, Depends(get_identity_providers)]


oauth2_bearer = OAuth2PasswordBearer(tokenUrl="auth/token", auto_error=False)


def get_current_user(token: Annotated[str | None, Depends(oauth2_bearer)], db: db_dependency,
                     cache: cache_dependency) -> User:
    if not token:
        raise UnauthorizedError("Not authenticated")

    payload = TokenService.verify(token, ACCESS, cache)

    user = AuthService.get_active_user_by_id(db, payload["sub"])
    if user is None or user.is_locked():
        logger.warning("Access token for unavailable account", extra={"user_id": payload["sub"]})
        raise UnauthorizedError("Could not validate credentials.")

    return user

user_dependency = Annotated[User, Depends(get_current_user)]


def require_role(*roles: UserRole):
    """Coarse role check: 401 without a valid access token, 403 for other roles."""
    allowed = {role.value for role in roles}

    def checker(user: user_dependency) -> User:
        if user.role not in allowed:
            logger.warning(
                "Role check failed",
                extra={"user_id": user.id, "role": user.role, "required": sorted(allowed)}
            )
            raise ForbiddenError()
        return user

    return checker

admin_dependency = Annotated[User, Depends(require_role(UserRole.ADMIN))]


def service_api_keys() -> dict[str, str]:
    return {
        settings.API_KEY_GATEWAY: "api-gateway",
        settings.API_KEY_USER_SERVICE: "user-service",
        settings.API_KEY_NOTIFICATION_SERVICE: "notification-service",
    }


def get_service_caller(x_api_key: Annotated[str | None, Header()] = None) -> str:
    """
    Resolves the static X-API-Key of a collaborating service to its name.
    Missing or unknown keys fail closed.
    """
    if not x_api_key:
        raise UnauthorizedError("API key required")

    for key, caller in service_api_keys().items():
        if secrets.compare_digest(x_api_key.encode("utf-8"), key.encode("utf-8")):
            return caller

    logger.warning("Rejected unknown service API key")
    raise UnauthorizedError("Invalid API key")

service_dependency = Annotated[str, Depends(get_service_caller)]
