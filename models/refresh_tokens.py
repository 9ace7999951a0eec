import enum
from core.database import Base
from sqlalchemy import Column, DateTime, String, Integer, ForeignKey
from sqlalchemy.orm import relationship
from models.mixins import CreatedAtMixin
from utils.verification import ensure_utc, utcnow


class RefreshTokenStatus(str, enum.Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    # Revoked by rotation; replaced_by_id points at the successor
    ROTATED = "rotated"


class RefreshToken(Base, CreatedAtMixin):
    """
    Server-side record of an issued refresh token.

    Only the SHA-256 digest of the token value is stored. A record leaves
    the ACTIVE state exactly once (to REVOKED or ROTATED) and never returns.
    """
    __tablename__ = "refresh_tokens"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #fk
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    replaced_by_id = Column(Integer, ForeignKey("refresh_tokens.id"), nullable=True, unique=True)

    #relationships
    user = relationship("User", back_populates="refresh_tokens")

    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(10), default=RefreshTokenStatus.ACTIVE.value, nullable=False, index=True)
    created_by_ip = Column(String(45), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by_ip = Column(String(45), nullable=True)

    @property
    def is_expired(self) -> bool:
        return utcnow() >= ensure_utc(self.expires_at)

    @property
    def is_active(self) -> bool:
        return self.status == RefreshTokenStatus.ACTIVE.value and not self.is_expired
