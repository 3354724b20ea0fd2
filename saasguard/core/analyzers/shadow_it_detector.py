"""Shadow IT detection for applications discovered in identity providers.

Each discovered application is scored, matched against the tenant's SaaS
catalog and persisted. Applications that are not approved are reported on
the event bus so tenant policies can react to them.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

import structlog

from saasguard.core.analyzers.risk_scorer import RiskScorer, risk_level_for
from saasguard.core.connectors.base import (
    DiscoveredApp,
    DiscoveredOAuthToken,
    DiscoveredUserAccess,
    IdentityProviderConnector,
)
from saasguard.core.events.bus import EventBus
from saasguard.core.events.topics import AppDiscoveredPayload, RiskyPermissionPayload
from saasguard.core.storage.records import (
    AccessStatus,
    ApprovalStatus,
    DirectoryUser,
    OAuthGrant,
    SaasApp,
    UserAppAccess,
)

if TYPE_CHECKING:
    from saasguard.core.storage.base import GovernanceStore

logger = structlog.get_logger(__name__)

HIGH_RISK_THRESHOLD = 70
RISKY_PERMISSION_THRESHOLD = 50
DENIED_APP_PENALTY = 30
MIN_SUBSTRING_MATCH_LENGTH = 4


class ShadowITDetectorError(Exception):
    """Raised when a sync cannot be processed."""

    pass


@dataclass
class ShadowITAnalysis:
    """Classification of one discovered application."""

    is_unapproved: bool
    is_new_discovery: bool
    risk_score: int
    risk_factors: List[str] = field(default_factory=list)
    matched_app_id: Optional[str] = None
    recommended_action: str = "review"

    @property
    def risk_level(self) -> str:
        return risk_level_for(self.risk_score)


@dataclass
class ProcessAppResult:
    created: bool
    app_id: str
    analysis: ShadowITAnalysis


@dataclass
class AppProcessingStats:
    apps_processed: int = 0
    apps_created: int = 0
    apps_updated: int = 0
    shadow_it_detected: int = 0
    high_risk_apps: int = 0
    apps_failed: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class SyncStats:
    """Totals for a full identity-provider sync."""

    idp_id: str
    users_synced: int = 0
    apps: AppProcessingStats = field(default_factory=AppProcessingStats)
    user_access_created: int = 0
    tokens_created: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "idp_id": self.idp_id,
            "users_synced": self.users_synced,
            "apps_processed": self.apps.apps_processed,
            "apps_created": self.apps.apps_created,
            "apps_updated": self.apps.apps_updated,
            "shadow_it_detected": self.apps.shadow_it_detected,
            "high_risk_apps": self.apps.high_risk_apps,
            "apps_failed": self.apps.apps_failed,
            "user_access_created": self.user_access_created,
            "tokens_created": self.tokens_created,
        }


def normalize_app_name(name: str) -> str:
    """Lowercase and strip everything except letters and digits."""
    return re.sub(r"[^a-z0-9]", "", name.lower())


class ShadowITDetector:
    """Detects unapproved SaaS usage for a single tenant."""

    def __init__(
        self,
        tenant_id: str,
        store: "GovernanceStore",
        bus: EventBus,
        scorer: Optional[RiskScorer] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the detector.

        Args:
            tenant_id: Tenant whose catalog is matched and updated
            store: Governance store
            bus: Event bus used to report unapproved applications
            scorer: Risk scorer (defaults to the OAuth scope table)
            clock: Returns the current UTC time
        """
        self.tenant_id = tenant_id
        self.store = store
        self.bus = bus
        self.scorer = scorer or RiskScorer()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        logger.info("shadow_it_detector_initialized", tenant_id=tenant_id)

    async def find_matching_app(self, app: DiscoveredApp) -> Optional[SaasApp]:
        """Find the catalog entry for a discovered app.

        Tries, in order: exact normalized name, normalized vendor (only when
        the discovered app names one), then substring containment when both
        normalized names have at least four characters.
        """
        catalog = await self.store.list_saas_apps(self.tenant_id)
        name = normalize_app_name(app.name)

        for existing in catalog:
            if normalize_app_name(existing.name) == name:
                return existing

        if app.vendor:
            vendor = normalize_app_name(app.vendor)
            for existing in catalog:
                if existing.vendor and normalize_app_name(existing.vendor) == vendor:
                    return existing

        if len(name) >= MIN_SUBSTRING_MATCH_LENGTH:
            for existing in catalog:
                candidate = normalize_app_name(existing.name)
                if len(candidate) >= MIN_SUBSTRING_MATCH_LENGTH and (
                    candidate in name or name in candidate
                ):
                    return existing

        return None

    async def analyze_app(self, app: DiscoveredApp) -> ShadowITAnalysis:
        """Score a discovered app and classify it against the catalog."""
        risk = self.scorer.score(app)
        matched = await self.find_matching_app(app)

        if matched is None:
            if risk.score >= 75:
                action = "investigate"
            elif risk.score >= 50:
                action = "review"
            else:
                action = "approve"
            return ShadowITAnalysis(
                is_unapproved=True,
                is_new_discovery=True,
                risk_score=risk.score,
                risk_factors=["App not in approved catalog"] + risk.factors,
                recommended_action=action,
            )

        if matched.approval_status == ApprovalStatus.DENIED:
            return ShadowITAnalysis(
                is_unapproved=True,
                is_new_discovery=False,
                risk_score=min(100, risk.score + DENIED_APP_PENALTY),
                risk_factors=["App explicitly denied"] + risk.factors,
                matched_app_id=matched.id,
                recommended_action="deny",
            )

        if matched.approval_status == ApprovalStatus.PENDING:
            return ShadowITAnalysis(
                is_unapproved=True,
                is_new_discovery=False,
                risk_score=risk.score,
                risk_factors=["App approval pending"] + risk.factors,
                matched_app_id=matched.id,
                recommended_action="review",
            )

        return ShadowITAnalysis(
            is_unapproved=False,
            is_new_discovery=False,
            risk_score=risk.score,
            risk_factors=risk.factors,
            matched_app_id=matched.id,
            recommended_action="approve",
        )

    async def process_app(self, app: DiscoveredApp, idp_id: str) -> ProcessAppResult:
        """Analyze, persist and report one discovered application.

        Args:
            app: Discovered application
            idp_id: Identity provider the app was seen in

        Returns:
            ProcessAppResult with the catalog id and the analysis
        """
        analysis = await self.analyze_app(app)
        now = self._clock()

        existing = None
        if analysis.matched_app_id:
            existing = await self.store.get_saas_app(analysis.matched_app_id, self.tenant_id)

        if existing is not None:
            metadata = dict(existing.metadata)
            metadata.setdefault("external_id", app.external_id)
            metadata.update(last_synced_from=idp_id, last_synced_at=now.isoformat())
            record = await self.store.update_saas_app(
                existing.id,
                self.tenant_id,
                risk_score=analysis.risk_score,
                risk_factors=analysis.risk_factors,
                permissions=list(app.scopes),
                last_seen_at=now,
                discovery_method="idp",
                metadata=metadata,
            )
            created = False
            logger.info("catalog_app_updated", app_id=record.id, app_name=app.name, idp_id=idp_id)
        else:
            record = await self.store.create_saas_app(
                SaasApp(
                    id=str(uuid.uuid4()),
                    tenant_id=self.tenant_id,
                    name=app.name,
                    vendor=app.vendor,
                    website_url=app.website_url,
                    logo_url=app.logo_url,
                    permissions=list(app.scopes),
                    approval_status=ApprovalStatus.PENDING,
                    risk_score=analysis.risk_score,
                    risk_factors=analysis.risk_factors,
                    discovery_method="idp",
                    discovered_at=now,
                    last_seen_at=now,
                    metadata={"external_id": app.external_id, "discovered_from": idp_id},
                )
            )
            created = True
            logger.info("catalog_app_created", app_id=record.id, app_name=app.name, idp_id=idp_id)

        if analysis.is_unapproved:
            await self._report_unapproved(record, app, analysis)

        return ProcessAppResult(created=created, app_id=record.id, analysis=analysis)

    async def _report_unapproved(
        self, record: SaasApp, app: DiscoveredApp, analysis: ShadowITAnalysis
    ) -> None:
        await self.bus.publish(
            AppDiscoveredPayload(
                tenant_id=self.tenant_id,
                app_id=record.id,
                app_name=record.name,
                vendor=record.vendor,
                approval_status=record.approval_status.value,
                risk_level=analysis.risk_level,
                risk_score=analysis.risk_score,
                recommended_action=analysis.recommended_action,
                is_new_discovery=analysis.is_new_discovery,
            )
        )

        if app.scopes and analysis.risk_score >= RISKY_PERMISSION_THRESHOLD:
            await self.bus.publish(
                RiskyPermissionPayload(
                    tenant_id=self.tenant_id,
                    app_id=record.id,
                    app_name=record.name,
                    risk_level=analysis.risk_level,
                    risk_score=analysis.risk_score,
                    scopes=list(app.scopes),
                )
            )

    async def process_apps(self, apps: List[DiscoveredApp], idp_id: str) -> AppProcessingStats:
        """Process a batch of discovered apps.

        A failure on one app is logged and recorded in ``errors``; the rest of
        the batch is still processed.
        """
        stats = AppProcessingStats(apps_processed=len(apps))

        for app in apps:
            try:
                result = await self.process_app(app, idp_id)
            except Exception as e:
                stats.apps_failed += 1
                stats.errors.append(f"{app.name}: {e}")
                logger.error("app_processing_failed", app_name=app.name, error=str(e), exc_info=True)
                continue

            if result.created:
                stats.apps_created += 1
            else:
                stats.apps_updated += 1
            if result.analysis.is_unapproved:
                stats.shadow_it_detected += 1
            if result.analysis.risk_score >= HIGH_RISK_THRESHOLD:
                stats.high_risk_apps += 1

        logger.info(
            "apps_processed",
            tenant_id=self.tenant_id,
            idp_id=idp_id,
            processed=stats.apps_processed,
            created=stats.apps_created,
            updated=stats.apps_updated,
            shadow_it=stats.shadow_it_detected,
            failed=stats.apps_failed,
        )
        return stats

    async def process_user_access(
        self, grants: List[DiscoveredUserAccess], idp_id: str
    ) -> int:
        """Record user-to-app grants against catalog apps.

        Grants whose app or user is unknown are skipped.

        Returns:
            Number of grants newly recorded
        """
        created_count = 0

        for grant in grants:
            app = await self.store.find_saas_app_by_external_id(
                self.tenant_id, grant.external_app_id
            )
            user = await self.store.get_user(grant.user_id, self.tenant_id)
            if app is None or user is None:
                logger.warning(
                    "user_access_skipped",
                    user_id=grant.user_id,
                    external_app_id=grant.external_app_id,
                    app_found=app is not None,
                    user_found=user is not None,
                )
                continue

            _, created = await self.store.upsert_user_app_access(
                UserAppAccess(
                    id=str(uuid.uuid4()),
                    tenant_id=self.tenant_id,
                    user_id=user.id,
                    app_id=app.id,
                    access_type=grant.access_type,
                    granted_date=grant.granted_date,
                    last_access_date=grant.last_access_date,
                    business_justification=grant.business_justification,
                    status=AccessStatus.ACTIVE,
                    source_idp=idp_id,
                )
            )
            if created:
                created_count += 1

        logger.info("user_access_processed", idp_id=idp_id, grants=len(grants), created=created_count)
        return created_count

    async def process_oauth_tokens(self, tokens: List[DiscoveredOAuthToken], idp_id: str) -> int:
        """Score and record OAuth tokens against catalog apps.

        Returns:
            Number of grants newly recorded
        """
        created_count = 0

        for token in tokens:
            app = await self.store.find_saas_app_by_external_id(
                self.tenant_id, token.external_app_id
            )
            if app is None:
                logger.warning(
                    "oauth_token_skipped",
                    token_id=token.token_id,
                    external_app_id=token.external_app_id,
                )
                continue

            assessment = self.scorer.analyzer.assess_permissions(token.scopes)
            _, created = await self.store.upsert_oauth_grant(
                OAuthGrant(
                    id=str(uuid.uuid4()),
                    tenant_id=self.tenant_id,
                    user_id=token.user_id,
                    app_id=app.id,
                    scopes=list(token.scopes),
                    risk_score=assessment.risk_score,
                    risk_factors=assessment.reasons,
                    source_idp=idp_id,
                    external_token_id=token.token_id,
                    discovered_at=self._clock(),
                )
            )
            if created:
                created_count += 1

        logger.info("oauth_tokens_processed", idp_id=idp_id, tokens=len(tokens), created=created_count)
        return created_count

    async def process_full_sync(
        self, connector: IdentityProviderConnector, idp_id: Optional[str] = None
    ) -> SyncStats:
        """Pull users, apps, grants and tokens from a connector and process them.

        Args:
            connector: Identity provider connector
            idp_id: Identity provider id (defaults to the connector's)

        Returns:
            SyncStats for the whole sync

        Raises:
            ShadowITDetectorError: If the connector cannot be read
        """
        idp_id = idp_id or connector.idp_id
        logger.info("full_sync_started", tenant_id=self.tenant_id, idp_id=idp_id)

        try:
            users = await connector.discover_users()
            apps = await connector.discover_apps()
            grants = await connector.discover_user_access()
            tokens = await connector.discover_oauth_tokens()
        except Exception as e:
            logger.error("full_sync_discovery_failed", idp_id=idp_id, error=str(e))
            raise ShadowITDetectorError(f"Failed to read from {idp_id}: {e}") from e

        for user in users:
            await self.store.upsert_user(
                DirectoryUser(
                    id=user.id,
                    tenant_id=self.tenant_id,
                    name=user.name,
                    email=user.email,
                    department=user.department,
                    manager_id=user.manager_id,
                    is_active=user.is_active,
                )
            )

        stats = SyncStats(idp_id=idp_id, users_synced=len(users))
        stats.apps = await self.process_apps(apps, idp_id)
        stats.user_access_created = await self.process_user_access(grants, idp_id)
        stats.tokens_created = await self.process_oauth_tokens(tokens, idp_id)

        logger.info("full_sync_completed", tenant_id=self.tenant_id, **stats.to_dict())
        return stats
