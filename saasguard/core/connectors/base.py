"""Identity-provider connector contract and normalized discovery shapes."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol


class ConnectorError(Exception):
    """Raised when an identity provider call fails."""

    pass


@dataclass
class DiscoveredApp:
    """An application seen in an IdP, before catalog matching."""

    external_id: str
    name: str
    vendor: Optional[str] = None
    website_url: Optional[str] = None
    logo_url: Optional[str] = None
    scopes: List[str] = field(default_factory=list)
    user_count: int = 0


@dataclass
class DiscoveredUser:
    id: str
    name: str
    email: Optional[str] = None
    department: Optional[str] = None
    manager_id: Optional[str] = None
    is_active: bool = True


@dataclass
class DiscoveredUserAccess:
    """A user's grant to an app, keyed by the IdP's app id."""

    user_id: str
    external_app_id: str
    access_type: str = "user"
    granted_date: Optional[datetime] = None
    last_access_date: Optional[datetime] = None
    business_justification: Optional[str] = None


@dataclass
class DiscoveredOAuthToken:
    token_id: str
    user_id: str
    external_app_id: str
    scopes: List[str] = field(default_factory=list)


class IdentityProviderConnector(Protocol):
    """Normalized view over an identity provider such as Google or Okta."""

    idp_id: str

    async def discover_apps(self) -> List[DiscoveredApp]: ...

    async def discover_users(self) -> List[DiscoveredUser]: ...

    async def discover_user_access(self) -> List[DiscoveredUserAccess]: ...

    async def discover_oauth_tokens(self) -> List[DiscoveredOAuthToken]: ...

    async def revoke_access(self, user_id: str, external_app_id: str) -> None:
        """Remove the user's grant at the provider.

        Raises:
            ConnectorError: If the provider rejects the revocation
        """
        ...
