"""Pytest configuration and fixtures for SaaSGuard tests."""

from datetime import datetime, timedelta, timezone
from typing import List

import pytest
import pytest_asyncio
import structlog

from saasguard.config.settings import reset_config
from saasguard.core.events.bus import EventBus
from saasguard.core.events.topics import Event, Topic
from saasguard.core.storage.memory import InMemoryStore
from saasguard.core.storage.records import (
    AccessStatus,
    ApprovalStatus,
    DirectoryUser,
    SaasApp,
    UserAppAccess,
)

TENANT = "acme"


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingNotifier:
    """Notifier that keeps every message it is asked to send."""

    def __init__(self):
        self.sent = []

    async def send(self, message, context):
        self.sent.append((message, context))


@pytest.fixture(autouse=True)
def isolated_runtime(monkeypatch, tmp_path):
    """Keep settings and logging from leaking between tests."""
    for name in ("SAASGUARD_SLACK_WEBHOOK_URL", "SAASGUARD_WEBHOOK_URL", "SAASGUARD_POLICY_FILE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()
    structlog.reset_defaults()


@pytest.fixture
def tenant_id() -> str:
    return TENANT


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at 2024-06-15 12:00 UTC."""
    return FakeClock(datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def published(bus) -> List[Event]:
    """Every event published on the bus, in order."""
    events: List[Event] = []
    for topic in Topic:
        bus.subscribe(topic, events.append)
    return events


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def catalog_app() -> SaasApp:
    """Approved Slack entry in the tenant catalog."""
    return SaasApp(
        id="app-slack",
        tenant_id=TENANT,
        name="Slack",
        vendor="Salesforce",
        website_url="https://slack.com",
        approval_status=ApprovalStatus.APPROVED,
        risk_score=20,
        metadata={"external_id": "g-slack"},
    )


@pytest_asyncio.fixture
async def seeded_store(store, clock, catalog_app) -> InMemoryStore:
    """Store with a small directory and five active grants.

    Lee manages Dana and Sam. Dana holds Slack and Ledger, Sam holds Slack,
    Ledger and Payroll.
    """
    await store.create_saas_app(catalog_app)
    await store.create_saas_app(
        SaasApp(
            id="app-ledger",
            tenant_id=TENANT,
            name="Ledger",
            approval_status=ApprovalStatus.APPROVED,
            risk_score=80,
        )
    )
    await store.create_saas_app(
        SaasApp(
            id="app-payroll",
            tenant_id=TENANT,
            name="Payroll",
            approval_status=ApprovalStatus.APPROVED,
            risk_score=40,
        )
    )

    for user in (
        DirectoryUser(id="u-lee", tenant_id=TENANT, name="Lee Park", email="lee@acme.test"),
        DirectoryUser(
            id="u-dana",
            tenant_id=TENANT,
            name="Dana Ruiz",
            email="dana@acme.test",
            department="Finance",
            manager_id="u-lee",
        ),
        DirectoryUser(
            id="u-sam",
            tenant_id=TENANT,
            name="Sam Okafor",
            email="sam@acme.test",
            department="Engineering",
            manager_id="u-lee",
        ),
    ):
        await store.upsert_user(user)

    grants = [
        ("u-dana", "app-slack", "user", 2, "Team chat"),
        ("u-dana", "app-ledger", "admin", 200, None),
        ("u-sam", "app-slack", "user", 1, "Team chat"),
        ("u-sam", "app-ledger", "user", 45, "Budget reports"),
        ("u-sam", "app-payroll", "user", 10, None),
    ]
    for user_id, app_id, access_type, idle_days, justification in grants:
        await store.upsert_user_app_access(
            UserAppAccess(
                id=f"{user_id}:{app_id}",
                tenant_id=TENANT,
                user_id=user_id,
                app_id=app_id,
                access_type=access_type,
                last_access_date=clock() - timedelta(days=idle_days),
                business_justification=justification,
                status=AccessStatus.ACTIVE,
                source_idp="google",
            )
        )

    return store
