import enum
import uuid
from core.database import Base
from sqlalchemy import (Column, Integer, String, Boolean, DateTime)
from sqlalchemy.orm import relationship
from models.mixins import CreatedAtMixin, UpdatedAtMixin
from utils.verification import ensure_utc, utcnow


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"
    MODERATOR = "moderator"


def generate_user_id() -> str:
    return uuid.uuid4().hex


class User(Base, CreatedAtMixin, UpdatedAtMixin):
    __tablename__ = "users"

    #pk
    id = Column(String(32), primary_key=True, default=generate_user_id)

    #relationships
    refresh_tokens = relationship("RefreshToken", back_populates="user")
    external_identities = relationship("ExternalIdentity", back_populates="user")

    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(150), nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(20), default=UserRole.USER.value, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login = Column(DateTime(timezone=True), nullable=True)
    # Lockout
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    lock_until = Column(DateTime(timezone=True), nullable=True)
    # Email verification (digest of the single-use secret)
    is_email_verified = Column(Boolean, default=False, nullable=False)
    email_verification_token_hash = Column(String(64), nullable=True, index=True)
    email_verification_expires_at = Column(DateTime(timezone=True), nullable=True)
    # Password reset (digest of the single-use secret)
    password_reset_token_hash = Column(String(64), nullable=True, index=True)
    password_reset_expires_at = Column(DateTime(timezone=True), nullable=True)

    def is_locked(self) -> bool:
        lock_until = ensure_utc(self.lock_until)
        return lock_until is not None and lock_until > utcnow()
