"""Wiring of the governance core for one CLI invocation."""

from dataclasses import dataclass
from typing import List, Optional

from saasguard.config.settings import SaaSGuardConfig
from saasguard.core.access_review.campaign_engine import AccessReviewCampaignEngine
from saasguard.core.analyzers.shadow_it_detector import ShadowITDetector
from saasguard.core.connectors.base import IdentityProviderConnector
from saasguard.core.events.bus import EventBus
from saasguard.core.policies.actions import ActionRegistry
from saasguard.core.policies.engine import PolicyEngine
from saasguard.core.remediation.revocation import RevocationService
from saasguard.core.storage.memory import InMemoryStore
from saasguard.integrations.base import Notifier
from saasguard.integrations.slack import SlackNotifier
from saasguard.integrations.webhook import WebhookConfig, WebhookNotifier


def build_notifiers(config: SaaSGuardConfig) -> List[Notifier]:
    """Notifiers enabled by the configuration."""
    notifiers: List[Notifier] = []
    if config.slack_webhook_url:
        notifiers.append(
            SlackNotifier(
                config.slack_webhook_url,
                channel=config.slack_channel,
                timeout=config.notification_timeout,
            )
        )
    if config.webhook_url:
        notifiers.append(
            WebhookNotifier(WebhookConfig(url=config.webhook_url, timeout=config.notification_timeout))
        )
    return notifiers


@dataclass
class Runtime:
    store: InMemoryStore
    bus: EventBus
    revocation: RevocationService
    engine: PolicyEngine

    def detector(self, tenant_id: str) -> ShadowITDetector:
        return ShadowITDetector(tenant_id, self.store, self.bus)

    def campaigns(self, tenant_id: str) -> AccessReviewCampaignEngine:
        return AccessReviewCampaignEngine(tenant_id, self.store, self.bus, self.revocation)


def build_runtime(
    config: SaaSGuardConfig,
    connector: Optional[IdentityProviderConnector] = None,
) -> Runtime:
    """Build an in-memory store, bus and started policy engine."""
    store = InMemoryStore()
    bus = EventBus()
    revocation = RevocationService(store, {connector.idp_id: connector} if connector else None)
    registry = ActionRegistry.with_defaults(
        store, bus=bus, revocation=revocation, notifiers=build_notifiers(config)
    )
    engine = PolicyEngine(
        store,
        bus,
        registry=registry,
        tenant_timezones=config.tenant_timezones,
        default_timezone=config.default_timezone,
    )
    engine.start()
    return Runtime(store=store, bus=bus, revocation=revocation, engine=engine)
