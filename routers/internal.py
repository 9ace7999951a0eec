from fastapi import APIRouter
from starlette import status
from core.exceptions import InvalidCredentialError
from utils.deps import cache_dependency, db_dependency, service_dependency
from schemas.auth_schemas import TokenIntrospectionRequest, TokenIntrospectionResponse
from services.auth_service import AuthService
from services.token_service import TokenService, ACCESS
from utils.logger import get_logger

logger = get_logger(__name__)


router = APIRouter(
    prefix="/internal",
    tags=["internal"]
)


@router.post("/tokens/verify", status_code=status.HTTP_200_OK, response_model=TokenIntrospectionResponse)
async def verify_access_token(body: TokenIntrospectionRequest, caller: service_dependency,
                              db: db_dependency, cache: cache_dependency):
    """
    Lets a collaborating service check a user's access token.
    Guarded by the service API key, not by user credentials.
    """
    try:
        payload = TokenService.verify(body.token, ACCESS, cache)
    except InvalidCredentialError:
        return TokenIntrospectionResponse(active=False, caller=caller)

    user = AuthService.get_active_user_by_id(db, payload["sub"])
    if user is None or user.is_locked():
        return TokenIntrospectionResponse(active=False, caller=caller)

    logger.debug("Token introspected", extra={"caller": caller, "user_id": user.id})
    return TokenIntrospectionResponse(active=True, user_id=user.id, role=user.role, caller=caller)
