from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, EmailStr, field_validator
from models.users import UserRole
import re


def check_password_strength(value: str) -> str:
    """
    Password must be at least 8 characters and contain:
    - At least one letter
    - At least one digit
    """
    if len(value) < 8:
        raise ValueError('Password must be at least 8 characters')

    if not re.search(r'[A-Za-z]', value):
        raise ValueError('Password must contain at least one letter')

    if not re.search(r'\d', value):
        raise ValueError('Password must contain at least one digit')

    return value


def check_not_blank(value: str) -> str:
    if not value or not value.strip():
        raise ValueError('Token cannot be empty')
    return value


class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: EmailStr
    name: str
    role: UserRole
    is_email_verified: bool
    is_active: bool
    last_login: Optional[datetime] = None


class CreateUserRequest(BaseModel):
    email: EmailStr
    name: str
    password: str

    @field_validator('name')
    @classmethod
    def validate_name(cls, value):
        value = value.strip()
        if not value:
            raise ValueError('Name cannot be empty')
        return value

    @field_validator('password')
    @classmethod
    def validate_password(cls, value):
        return check_password_strength(value)


class VerifyEmailRequest(BaseModel):
    token: str

    @field_validator('token')
    @classmethod
    def validate_token(cls, value):
        return check_not_blank(value)


class RefreshTokenRequest(BaseModel):
    refresh_token: str

    @field_validator('refresh_token')
    @classmethod
    def validate_token(cls, value):
        return check_not_blank(value)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator('new_password')
    @classmethod
    def validate_password(cls, value):
        return check_password_strength(value)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str

    @field_validator('token')
    @classmethod
    def validate_token(cls, value):
        return check_not_blank(value)

    @field_validator('new_password')
    @classmethod
    def validate_password(cls, value):
        return check_password_strength(value)


class DeactivateUserRequest(BaseModel):
    password: str


class UpdateUserStatusRequest(BaseModel):
    is_active: bool


class ExternalSignInRequest(BaseModel):
    provider_token: str

    @field_validator('provider_token')
    @classmethod
    def validate_token(cls, value):
        return check_not_blank(value)


class TokenIntrospectionRequest(BaseModel):
    token: str


class TokenIntrospectionResponse(BaseModel):
    active: bool
    user_id: Optional[str] = None
    role: Optional[UserRole] = None
    caller: str
