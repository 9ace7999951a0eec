"""
Federated identity seam.

The engine never speaks an identity provider's protocol. A provider
implementation turns whatever the client obtained from the provider into
an ExternalIdentityAssertion; AuthService.external_sign_in consumes it.
Implementations are registered on app.state.identity_providers at startup.
"""

from abc import ABC, abstractmethod
from typing import Optional
from pydantic import BaseModel, EmailStr


class ExternalIdentityAssertion(BaseModel):
    provider: str
    subject_id: str
    email: EmailStr
    display_name: Optional[str] = None


class ExternalIdentityProvider(ABC):
    """Base class for one identity provider."""

    name: str = ""

    @abstractmethod
    def resolve_external_identity(self, provider_token: str) -> ExternalIdentityAssertion:
        """
        Validates provider_token and returns the identity it asserts.

        Raises:
            UnauthorizedError: the provider did not vouch for the token
        """


class IdentityProviderRegistry:
    def __init__(self):
        self._providers: dict[str, ExternalIdentityProvider] = {}

    def register(self, provider: ExternalIdentityProvider) -> None:
        if not provider.name:
            raise ValueError("Identity provider must have a name")
        self._providers[provider.name] = provider

    def get(self, name: str) -> Optional[ExternalIdentityProvider]:
        return self._providers.get(name)

    def names(self) -> list[str]:
        return sorted(self._providers)
