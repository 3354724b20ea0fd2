"""Connector that serves discovery data from a JSON export."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog

from saasguard.core.connectors.base import (
    ConnectorError,
    DiscoveredApp,
    DiscoveredOAuthToken,
    DiscoveredUser,
    DiscoveredUserAccess,
)

logger = structlog.get_logger(__name__)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ConnectorError(f"Invalid timestamp in export: {value}") from e
    # Exports without an offset are UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class StaticConnector:
    """IdP connector backed by an in-memory export.

    The export is a mapping with ``apps``, ``users``, ``user_access`` and
    ``oauth_tokens`` lists. Revocations are recorded locally in ``revoked``.
    """

    def __init__(self, export: Dict[str, Any], idp_id: Optional[str] = None):
        self.export = export
        self.idp_id = idp_id or export.get("idp_id", "static")
        self.revoked: List[Tuple[str, str]] = []

    @classmethod
    def from_file(cls, path: Union[str, Path], idp_id: Optional[str] = None) -> "StaticConnector":
        """Load an export from a JSON file.

        Raises:
            ConnectorError: If the file is missing or not valid JSON
        """
        path = Path(path)
        try:
            with open(path, "r") as f:
                export = json.load(f)
        except FileNotFoundError as e:
            raise ConnectorError(f"Export file not found: {path}") from e
        except json.JSONDecodeError as e:
            raise ConnectorError(f"Invalid JSON in export {path}: {e}") from e

        if not isinstance(export, dict):
            raise ConnectorError(f"Export {path} must contain a JSON object")

        logger.info("static_export_loaded", path=str(path), apps=len(export.get("apps", [])))
        return cls(export, idp_id=idp_id)

    async def discover_apps(self) -> List[DiscoveredApp]:
        return [
            DiscoveredApp(
                external_id=str(raw.get("external_id") or raw["name"]),
                name=raw["name"],
                vendor=raw.get("vendor"),
                website_url=raw.get("website_url"),
                logo_url=raw.get("logo_url"),
                scopes=list(raw.get("scopes", [])),
                user_count=int(raw.get("user_count", 0)),
            )
            for raw in self.export.get("apps", [])
        ]

    async def discover_users(self) -> List[DiscoveredUser]:
        return [
            DiscoveredUser(
                id=str(raw["id"]),
                name=raw.get("name", raw["id"]),
                email=raw.get("email"),
                department=raw.get("department"),
                manager_id=raw.get("manager_id"),
                is_active=bool(raw.get("is_active", True)),
            )
            for raw in self.export.get("users", [])
        ]

    async def discover_user_access(self) -> List[DiscoveredUserAccess]:
        return [
            DiscoveredUserAccess(
                user_id=str(raw["user_id"]),
                external_app_id=str(raw["external_app_id"]),
                access_type=raw.get("access_type", "user"),
                granted_date=_parse_datetime(raw.get("granted_date")),
                last_access_date=_parse_datetime(raw.get("last_access_date")),
                business_justification=raw.get("business_justification"),
            )
            for raw in self.export.get("user_access", [])
        ]

    async def discover_oauth_tokens(self) -> List[DiscoveredOAuthToken]:
        return [
            DiscoveredOAuthToken(
                token_id=str(raw.get("token_id", f"{raw['user_id']}:{raw['external_app_id']}")),
                user_id=str(raw["user_id"]),
                external_app_id=str(raw["external_app_id"]),
                scopes=list(raw.get("scopes", [])),
            )
            for raw in self.export.get("oauth_tokens", [])
        ]

    async def revoke_access(self, user_id: str, external_app_id: str) -> None:
        self.revoked.append((user_id, external_app_id))
        logger.info(
            "static_access_revoked",
            idp_id=self.idp_id,
            user_id=user_id,
            external_app_id=external_app_id,
        )
