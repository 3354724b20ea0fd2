"""Persistence contract for the governance core.

The store is an external collaborator: any backend (SQL, document store,
in-memory) can be used as long as it implements :class:`GovernanceStore`.
Every query is scoped by ``tenant_id``; a record belonging to another tenant
is treated as missing.

Two operations must be atomic with respect to concurrent callers:
``finalize_policy_execution`` and ``recalculate_campaign_counters``.
"""

from datetime import datetime
from typing import List, Optional, Protocol, Tuple

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
from saasguard.core.storage.records import (
    AccessStatus,
    DirectoryUser,
    OAuthGrant,
    SaasApp,
    UserAppAccess,
)


class StoreError(Exception):
    """Raised when a store operation cannot be carried out."""

    pass


class RecordNotFoundError(StoreError):
    """Raised when updating a record that does not exist for the tenant."""

    pass


class GovernanceStore(Protocol):
    # Policies

    async def create_policy(self, policy: Policy) -> Policy: ...

    async def get_policy(self, policy_id: str, tenant_id: str) -> Optional[Policy]: ...

    async def list_policies(
        self,
        tenant_id: str,
        trigger_type: Optional[Topic] = None,
        enabled: Optional[bool] = None,
    ) -> List[Policy]: ...

    async def create_policy_execution(self, execution: PolicyExecution) -> PolicyExecution: ...

    async def finalize_policy_execution(self, execution: PolicyExecution) -> Policy:
        """Store the final execution and roll it into the owning policy.

        Sets ``last_executed_at`` to the execution's start time and records
        the status in the policy stats, in one atomic step.
        """
        ...

    async def list_policy_executions(
        self, tenant_id: str, policy_id: Optional[str] = None
    ) -> List[PolicyExecution]: ...

    async def count_policy_executions_since(
        self, policy_id: str, tenant_id: str, since: datetime
    ) -> int: ...

    # Catalog

    async def create_saas_app(self, app: SaasApp) -> SaasApp: ...

    async def get_saas_app(self, app_id: str, tenant_id: str) -> Optional[SaasApp]: ...

    async def list_saas_apps(self, tenant_id: str) -> List[SaasApp]: ...

    async def find_saas_app_by_external_id(
        self, tenant_id: str, external_id: str
    ) -> Optional[SaasApp]: ...

    async def update_saas_app(self, app_id: str, tenant_id: str, **changes) -> SaasApp: ...

    # Directory

    async def upsert_user(self, user: DirectoryUser) -> DirectoryUser: ...

    async def get_user(self, user_id: str, tenant_id: str) -> Optional[DirectoryUser]: ...

    async def list_users(self, tenant_id: str) -> List[DirectoryUser]: ...

    # Access snapshot

    async def upsert_user_app_access(self, access: UserAppAccess) -> Tuple[UserAppAccess, bool]: ...

    async def get_user_app_access(
        self, user_id: str, app_id: str, tenant_id: str
    ) -> Optional[UserAppAccess]: ...

    async def list_user_app_access(
        self, tenant_id: str, status: Optional[AccessStatus] = None
    ) -> List[UserAppAccess]: ...

    async def update_user_app_access(
        self, access_id: str, tenant_id: str, **changes
    ) -> UserAppAccess: ...

    async def upsert_oauth_grant(self, grant: OAuthGrant) -> Tuple[OAuthGrant, bool]: ...

    async def list_oauth_grants(self, tenant_id: str) -> List[OAuthGrant]: ...

    # Access reviews

    async def create_campaign(self, campaign: AccessReviewCampaign) -> AccessReviewCampaign: ...

    async def get_campaign(
        self, campaign_id: str, tenant_id: str
    ) -> Optional[AccessReviewCampaign]: ...

    async def list_campaigns(
        self, tenant_id: str, status: Optional[CampaignStatus] = None
    ) -> List[AccessReviewCampaign]: ...

    async def update_campaign(
        self, campaign_id: str, tenant_id: str, **changes
    ) -> AccessReviewCampaign: ...

    async def recalculate_campaign_counters(
        self, campaign_id: str, tenant_id: str
    ) -> AccessReviewCampaign:
        """Recount reviewed/approved/revoked/deferred from the campaign's items."""
        ...

    async def create_review_item(self, item: AccessReviewItem) -> AccessReviewItem: ...

    async def get_review_item(self, item_id: str, tenant_id: str) -> Optional[AccessReviewItem]: ...

    async def list_review_items(
        self,
        campaign_id: str,
        tenant_id: str,
        decision: Optional[ReviewDecision] = None,
    ) -> List[AccessReviewItem]: ...

    async def update_review_item(
        self, item_id: str, tenant_id: str, **changes
    ) -> AccessReviewItem: ...

    async def create_review_decision(
        self, decision: AccessReviewDecision
    ) -> AccessReviewDecision: ...

    async def list_review_decisions(
        self, campaign_id: str, tenant_id: str
    ) -> List[AccessReviewDecision]: ...

    # Segregation of duties

    async def create_sod_rule(self, rule: SodRule) -> SodRule: ...

    async def get_sod_rule(self, rule_id: str, tenant_id: str) -> Optional[SodRule]: ...

    async def list_sod_rules(
        self, tenant_id: str, active: Optional[bool] = None
    ) -> List[SodRule]: ...

    async def update_sod_rule(self, rule_id: str, tenant_id: str, **changes) -> SodRule: ...

    async def create_sod_violation(self, violation: SodViolation) -> SodViolation: ...

    async def get_sod_violation(
        self, violation_id: str, tenant_id: str
    ) -> Optional[SodViolation]: ...

    async def list_sod_violations(
        self,
        tenant_id: str,
        status: Optional[SodStatus] = None,
        user_id: Optional[str] = None,
    ) -> List[SodViolation]: ...

    async def update_sod_violation(
        self, violation_id: str, tenant_id: str, **changes
    ) -> SodViolation: ...
