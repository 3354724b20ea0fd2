"""Dictionary-backed GovernanceStore used by the CLI and the test suite."""

import asyncio
import copy
import dataclasses
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, TypeVar

import structlog

from saasguard.core.access_review.models import (
    AccessReviewCampaign,
    AccessReviewDecision,
    AccessReviewItem,
    CampaignStatus,
    ReviewDecision,
    SodRule,
    SodStatus,
    SodViolation,
)
from saasguard.core.events.topics import Topic
from saasguard.core.policies.models import Policy, PolicyExecution
from saasguard.core.storage.base import RecordNotFoundError, StoreError
from saasguard.core.storage.records import (
    AccessStatus,
    DirectoryUser,
    OAuthGrant,
    SaasApp,
    UserAppAccess,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class InMemoryStore:
    """Reference implementation of :class:`GovernanceStore`.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store, mirroring an external database.
    """

    def __init__(self) -> None:
        self._policies: Dict[str, Policy] = {}
        self._executions: Dict[str, PolicyExecution] = {}
        self._apps: Dict[str, SaasApp] = {}
        self._users: Dict[Tuple[str, str], DirectoryUser] = {}
        self._access: Dict[str, UserAppAccess] = {}
        self._grants: Dict[str, OAuthGrant] = {}
        self._campaigns: Dict[str, AccessReviewCampaign] = {}
        self._items: Dict[str, AccessReviewItem] = {}
        self._decisions: List[AccessReviewDecision] = []
        self._sod_rules: Dict[str, SodRule] = {}
        self._sod_violations: Dict[str, SodViolation] = {}
        self._lock = asyncio.Lock()

    # Helpers

    @staticmethod
    def _get(table: Dict[str, T], record_id: str, tenant_id: str) -> Optional[T]:
        record = table.get(record_id)
        if record is None or getattr(record, "tenant_id") != tenant_id:
            return None
        return copy.deepcopy(record)

    @staticmethod
    def _insert(table: Dict[str, T], record: T) -> T:
        record_id = getattr(record, "id")
        if record_id in table:
            raise StoreError(f"{type(record).__name__} {record_id} already exists")
        table[record_id] = copy.deepcopy(record)
        return copy.deepcopy(record)

    @staticmethod
    def _update(table: Dict[str, T], record_id: str, tenant_id: str, changes: Dict[str, Any]) -> T:
        record = table.get(record_id)
        if record is None or getattr(record, "tenant_id") != tenant_id:
            raise RecordNotFoundError(f"Record {record_id} not found for tenant {tenant_id}")
        try:
            updated = dataclasses.replace(record, **changes)
        except TypeError as e:
            raise StoreError(f"Invalid update for {type(record).__name__}: {e}") from e
        table[record_id] = updated
        return copy.deepcopy(updated)

    # Policies

    async def create_policy(self, policy: Policy) -> Policy:
        return self._insert(self._policies, policy)

    async def get_policy(self, policy_id: str, tenant_id: str) -> Optional[Policy]:
        return self._get(self._policies, policy_id, tenant_id)

    async def list_policies(
        self,
        tenant_id: str,
        trigger_type: Optional[Topic] = None,
        enabled: Optional[bool] = None,
    ) -> List[Policy]:
        policies = [
            p
            for p in self._policies.values()
            if p.tenant_id == tenant_id
            and (trigger_type is None or p.trigger_type == trigger_type)
            and (enabled is None or p.enabled == enabled)
        ]
        policies.sort(key=lambda p: p.created_at)
        return copy.deepcopy(policies)

    async def create_policy_execution(self, execution: PolicyExecution) -> PolicyExecution:
        return self._insert(self._executions, execution)

    async def finalize_policy_execution(self, execution: PolicyExecution) -> Policy:
        async with self._lock:
            existing = self._executions.get(execution.id)
            if existing is None or existing.tenant_id != execution.tenant_id:
                raise RecordNotFoundError(f"Policy execution {execution.id} not found")
            if existing.status.is_final:
                raise StoreError(f"Policy execution {execution.id} is already finalized")

            policy = self._policies.get(execution.policy_id)
            if policy is None or policy.tenant_id != execution.tenant_id:
                raise RecordNotFoundError(f"Policy {execution.policy_id} not found")

            self._executions[execution.id] = copy.deepcopy(execution)
            policy.last_executed_at = execution.started_at
            policy.stats.record(execution.status)

            logger.debug(
                "policy_execution_finalized",
                execution_id=execution.id,
                policy_id=policy.id,
                status=execution.status.value,
            )
            return copy.deepcopy(policy)

    async def list_policy_executions(
        self, tenant_id: str, policy_id: Optional[str] = None
    ) -> List[PolicyExecution]:
        executions = [
            e
            for e in self._executions.values()
            if e.tenant_id == tenant_id and (policy_id is None or e.policy_id == policy_id)
        ]
        executions.sort(key=lambda e: e.started_at)
        return copy.deepcopy(executions)

    async def count_policy_executions_since(
        self, policy_id: str, tenant_id: str, since: datetime
    ) -> int:
        return sum(
            1
            for e in self._executions.values()
            if e.tenant_id == tenant_id and e.policy_id == policy_id and e.started_at >= since
        )

    # Catalog

    async def create_saas_app(self, app: SaasApp) -> SaasApp:
        return self._insert(self._apps, app)

    async def get_saas_app(self, app_id: str, tenant_id: str) -> Optional[SaasApp]:
        return self._get(self._apps, app_id, tenant_id)

    async def list_saas_apps(self, tenant_id: str) -> List[SaasApp]:
        return copy.deepcopy([a for a in self._apps.values() if a.tenant_id == tenant_id])

    async def find_saas_app_by_external_id(
        self, tenant_id: str, external_id: str
    ) -> Optional[SaasApp]:
        for app in self._apps.values():
            if app.tenant_id == tenant_id and app.external_id == external_id:
                return copy.deepcopy(app)
        return None

    async def update_saas_app(self, app_id: str, tenant_id: str, **changes) -> SaasApp:
        return self._update(self._apps, app_id, tenant_id, changes)

    # Directory

    # IdP user ids are only unique within a tenant
    async def upsert_user(self, user: DirectoryUser) -> DirectoryUser:
        self._users[(user.tenant_id, user.id)] = copy.deepcopy(user)
        return copy.deepcopy(user)

    async def get_user(self, user_id: str, tenant_id: str) -> Optional[DirectoryUser]:
        return copy.deepcopy(self._users.get((tenant_id, user_id)))

    async def list_users(self, tenant_id: str) -> List[DirectoryUser]:
        return copy.deepcopy([u for u in self._users.values() if u.tenant_id == tenant_id])

    # Access snapshot

    def _find_access(self, user_id: str, app_id: str, tenant_id: str) -> Optional[UserAppAccess]:
        for access in self._access.values():
            if (
                access.tenant_id == tenant_id
                and access.user_id == user_id
                and access.app_id == app_id
            ):
                return access
        return None

    async def upsert_user_app_access(self, access: UserAppAccess) -> Tuple[UserAppAccess, bool]:
        existing = self._find_access(access.user_id, access.app_id, access.tenant_id)
        if existing is None:
            return self._insert(self._access, access), True

        updated = dataclasses.replace(access, id=existing.id)
        self._access[existing.id] = copy.deepcopy(updated)
        return updated, False

    async def get_user_app_access(
        self, user_id: str, app_id: str, tenant_id: str
    ) -> Optional[UserAppAccess]:
        return copy.deepcopy(self._find_access(user_id, app_id, tenant_id))

    async def list_user_app_access(
        self, tenant_id: str, status: Optional[AccessStatus] = None
    ) -> List[UserAppAccess]:
        return copy.deepcopy(
            [
                a
                for a in self._access.values()
                if a.tenant_id == tenant_id and (status is None or a.status == status)
            ]
        )

    async def update_user_app_access(
        self, access_id: str, tenant_id: str, **changes
    ) -> UserAppAccess:
        return self._update(self._access, access_id, tenant_id, changes)

    async def upsert_oauth_grant(self, grant: OAuthGrant) -> Tuple[OAuthGrant, bool]:
        for existing in self._grants.values():
            if (
                existing.tenant_id == grant.tenant_id
                and existing.user_id == grant.user_id
                and existing.app_id == grant.app_id
            ):
                updated = dataclasses.replace(grant, id=existing.id)
                self._grants[existing.id] = copy.deepcopy(updated)
                return updated, False
        return self._insert(self._grants, grant), True

    async def list_oauth_grants(self, tenant_id: str) -> List[OAuthGrant]:
        return copy.deepcopy([g for g in self._grants.values() if g.tenant_id == tenant_id])

    # Access reviews

    async def create_campaign(self, campaign: AccessReviewCampaign) -> AccessReviewCampaign:
        return self._insert(self._campaigns, campaign)

    async def get_campaign(
        self, campaign_id: str, tenant_id: str
    ) -> Optional[AccessReviewCampaign]:
        return self._get(self._campaigns, campaign_id, tenant_id)

    async def list_campaigns(
        self, tenant_id: str, status: Optional[CampaignStatus] = None
    ) -> List[AccessReviewCampaign]:
        return copy.deepcopy(
            [
                c
                for c in self._campaigns.values()
                if c.tenant_id == tenant_id and (status is None or c.status == status)
            ]
        )

    async def update_campaign(
        self, campaign_id: str, tenant_id: str, **changes
    ) -> AccessReviewCampaign:
        async with self._lock:
            return self._update(self._campaigns, campaign_id, tenant_id, changes)

    async def recalculate_campaign_counters(
        self, campaign_id: str, tenant_id: str
    ) -> AccessReviewCampaign:
        async with self._lock:
            items = [
                i
                for i in self._items.values()
                if i.campaign_id == campaign_id and i.tenant_id == tenant_id
            ]
            counts = {d: 0 for d in ReviewDecision}
            for item in items:
                counts[item.decision] += 1

            return self._update(
                self._campaigns,
                campaign_id,
                tenant_id,
                {
                    "total_items": len(items),
                    "reviewed_items": len(items) - counts[ReviewDecision.PENDING],
                    "approved_items": counts[ReviewDecision.APPROVED],
                    "revoked_items": counts[ReviewDecision.REVOKED],
                    "deferred_items": counts[ReviewDecision.DEFERRED],
                },
            )

    async def create_review_item(self, item: AccessReviewItem) -> AccessReviewItem:
        return self._insert(self._items, item)

    async def get_review_item(self, item_id: str, tenant_id: str) -> Optional[AccessReviewItem]:
        return self._get(self._items, item_id, tenant_id)

    async def list_review_items(
        self,
        campaign_id: str,
        tenant_id: str,
        decision: Optional[ReviewDecision] = None,
    ) -> List[AccessReviewItem]:
        return copy.deepcopy(
            [
                i
                for i in self._items.values()
                if i.campaign_id == campaign_id
                and i.tenant_id == tenant_id
                and (decision is None or i.decision == decision)
            ]
        )

    async def update_review_item(
        self, item_id: str, tenant_id: str, **changes
    ) -> AccessReviewItem:
        return self._update(self._items, item_id, tenant_id, changes)

    async def create_review_decision(
        self, decision: AccessReviewDecision
    ) -> AccessReviewDecision:
        self._decisions.append(decision)
        return decision

    async def list_review_decisions(
        self, campaign_id: str, tenant_id: str
    ) -> List[AccessReviewDecision]:
        return [
            d for d in self._decisions if d.campaign_id == campaign_id and d.tenant_id == tenant_id
        ]

    # Segregation of duties

    async def create_sod_rule(self, rule: SodRule) -> SodRule:
        return self._insert(self._sod_rules, rule)

    async def get_sod_rule(self, rule_id: str, tenant_id: str) -> Optional[SodRule]:
        return self._get(self._sod_rules, rule_id, tenant_id)

    async def list_sod_rules(self, tenant_id: str, active: Optional[bool] = None) -> List[SodRule]:
        return copy.deepcopy(
            [
                r
                for r in self._sod_rules.values()
                if r.tenant_id == tenant_id and (active is None or r.is_active == active)
            ]
        )

    async def update_sod_rule(self, rule_id: str, tenant_id: str, **changes) -> SodRule:
        return self._update(self._sod_rules, rule_id, tenant_id, changes)

    async def create_sod_violation(self, violation: SodViolation) -> SodViolation:
        return self._insert(self._sod_violations, violation)

    async def get_sod_violation(
        self, violation_id: str, tenant_id: str
    ) -> Optional[SodViolation]:
        return self._get(self._sod_violations, violation_id, tenant_id)

    async def list_sod_violations(
        self,
        tenant_id: str,
        status: Optional[SodStatus] = None,
        user_id: Optional[str] = None,
    ) -> List[SodViolation]:
        return copy.deepcopy(
            [
                v
                for v in self._sod_violations.values()
                if v.tenant_id == tenant_id
                and (status is None or v.status == status)
                and (user_id is None or v.user_id == user_id)
            ]
        )

    async def update_sod_violation(
        self, violation_id: str, tenant_id: str, **changes
    ) -> SodViolation:
        return self._update(self._sod_violations, violation_id, tenant_id, changes)
