from core.database import Base
from sqlalchemy import Column, String, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.mixins import CreatedAtMixin


class ExternalIdentity(Base, CreatedAtMixin):
    """Link between a federated identity (provider, subject id) and one user."""
    __tablename__ = "external_identities"
    __table_args__ = (
        UniqueConstraint("provider", "subject_id", name="uq_external_identity_provider_subject"),
    )

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #fk
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    #relationships
    user = relationship("User", back_populates="external_identities")

    provider = Column(String(50), nullable=False)
    subject_id = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
