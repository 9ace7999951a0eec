from fastapi import APIRouter, HTTPException, Request
from starlette import status
from core.exceptions import BadRequestError
from utils.deps import user_dependency, admin_dependency, db_dependency
from schemas.auth_schemas import (ChangePasswordRequest, DeactivateUserRequest,
    UpdateUserStatusRequest, UserResponse)
from services.auth_service import AuthService
from models.users import User
from middleware.rate_limiter import limiter
from utils.logger import get_logger

# Setup logger
logger = get_logger(__name__)


router = APIRouter(
    prefix="/users",
    tags=["users"]
)


@router.get("/me", status_code=status.HTTP_200_OK, response_model=UserResponse)
@limiter.limit("30/minute")
async def get_user_info(request: Request, user: user_dependency):
    """
    Get current user info (protected endpoint).
    """
    return user


@router.put("/me/password", status_code=status.HTTP_200_OK)
@limiter.limit("2/minute")
async def change_password(request: Request, body: ChangePasswordRequest, user: user_dependency, db: db_dependency):
    """
    Changes the password and logs out every session.
    """
    AuthService.change_password(user.id, body.current_password, body.new_password, db)

    return {"message": "Password changed successfully. Please login again."}


@router.delete("/deactivate", status_code=status.HTTP_200_OK)
@limiter.limit("3/minute")
async def deactivate_user(request: Request, body: DeactivateUserRequest, user: user_dependency, db: db_dependency):
    AuthService.deactivate_self(user.id, body.password, db)

    logger.info("User deactivated own account", extra={"user_id": user.id})

    return {"message": "Account deactivated"}


@router.patch("/{user_id}/status", status_code=status.HTTP_200_OK, response_model=UserResponse)
async def update_user_status(user_id: str, body: UpdateUserStatusRequest, admin: admin_dependency, db: db_dependency):
    """
    Admin only: activates or deactivates another account.
    """
    if user_id == admin.id:
        raise BadRequestError("Admins cannot change their own status")

    model = db.query(User).filter(User.id == user_id).one_or_none()
    if model is None:
        raise HTTPException(status_code=404, detail="User not found")

    AuthService.set_active(model, body.is_active, db)

    logger.info(
        "User status changed by admin",
        extra={"user_id": user_id, "admin_id": admin.id, "is_active": body.is_active}
    )
    return model
