from models.users import User, UserRole
from models.refresh_tokens import RefreshToken, RefreshTokenStatus
from models.external_identities import ExternalIdentity

__all__ = ["User", "UserRole", "RefreshToken", "RefreshTokenStatus", "ExternalIdentity"]
