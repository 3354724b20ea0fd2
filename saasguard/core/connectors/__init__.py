"""Identity-provider connectors."""

from saasguard.core.connectors.base import (
    ConnectorError,
    DiscoveredApp,
    DiscoveredOAuthToken,
    DiscoveredUser,
    DiscoveredUserAccess,
    IdentityProviderConnector,
)
from saasguard.core.connectors.static import StaticConnector

__all__ = [
    "ConnectorError",
    "DiscoveredApp",
    "DiscoveredOAuthToken",
    "DiscoveredUser",
    "DiscoveredUserAccess",
    "IdentityProviderConnector",
    "StaticConnector",
]
