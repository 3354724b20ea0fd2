"""Access-review campaigns: item generation, decisions and completion.

A campaign snapshots the (user, app) grants in its scope into review items,
routes each item to the user's manager, and records approve / revoke / defer
decisions. Revocations are executed immediately through the
RevocationService. Completing a campaign publishes
``access_review.completed`` so tenant policies can react to it.
"""

import math
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

import structlog

from saasguard.core.access_review.models import (
    AccessReviewCampaign,
    AccessReviewDecision,
    AccessReviewItem,
    CampaignConfig,
    CampaignStatus,
    ExecutionState,
    ReviewDecision,
    RiskLevel,
    ScopeType,
)
from saasguard.core.events.bus import EventBus
from saasguard.core.events.topics import AccessReviewCompletedPayload
from saasguard.core.storage.records import AccessStatus, DirectoryUser, UserAppAccess

if TYPE_CHECKING:
    from saasguard.core.remediation.revocation import RevocationService
    from saasguard.core.storage.base import GovernanceStore
    from saasguard.integrations.base import Notifier

logger = structlog.get_logger(__name__)

SYSTEM_REVIEWER_ID = "system"
SYSTEM_REVIEWER_NAME = "System"


class AccessReviewError(Exception):
    """Base error for access-review operations."""

    pass


class CampaignNotFoundError(AccessReviewError):
    pass


class ReviewItemNotFoundError(AccessReviewError):
    pass


class CampaignStateError(AccessReviewError):
    """Raised when an operation is not valid in the campaign's current status."""

    pass


@dataclass
class BulkDecision:
    item_ids: List[str]
    decision: Union[str, ReviewDecision]
    reviewer_id: str
    reviewer_name: str
    notes: Optional[str] = None


@dataclass
class DecisionResult:
    item_id: str
    decision: ReviewDecision
    execution_status: ExecutionState
    execution_error: Optional[str] = None


@dataclass
class BulkDecisionResult:
    """Per-item outcome of a bulk decision."""

    succeeded: int = 0
    failed: int = 0
    errors: Dict[str, str] = field(default_factory=dict)
    results: List[DecisionResult] = field(default_factory=list)

    @property
    def execution_failures(self) -> List[DecisionResult]:
        return [r for r in self.results if r.execution_status == ExecutionState.FAILED]


@dataclass
class SweepResult:
    """Tally of an overdue-campaign sweep."""

    campaigns: int = 0
    approved: int = 0
    failed: int = 0
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass
class CampaignProgress:
    campaign_id: str
    status: CampaignStatus
    total_items: int
    reviewed_items: int
    approved_items: int
    revoked_items: int
    deferred_items: int
    percent_complete: int
    days_remaining: int
    is_overdue: bool


@dataclass
class CompletionReport:
    """Compliance evidence produced when a campaign is completed."""

    campaign: Dict[str, Any]
    summary: Dict[str, Any]
    decisions: List[Dict[str, Any]]
    audit_trail: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign": self.campaign,
            "summary": self.summary,
            "decisions": self.decisions,
            "audit_trail": self.audit_trail,
        }


def access_risk_score(
    app_risk_score: int,
    access_type: str,
    days_since_last_use: Optional[int],
    business_justification: Optional[str],
) -> int:
    """Additive risk score of a single grant."""
    score = 0

    if app_risk_score >= 75:
        score += 30
    elif app_risk_score >= 50:
        score += 20
    elif app_risk_score >= 25:
        score += 10

    if access_type in ("admin", "owner"):
        score += 25

    if days_since_last_use is not None:
        if days_since_last_use > 180:
            score += 30
        elif days_since_last_use > 90:
            score += 20
        elif days_since_last_use > 30:
            score += 10

    if not business_justification:
        score += 10

    return score


def calculate_access_risk(
    app_risk_score: int,
    access_type: str,
    days_since_last_use: Optional[int],
    business_justification: Optional[str],
) -> RiskLevel:
    """Risk level of a grant: critical >= 60, high >= 40, medium >= 20."""
    score = access_risk_score(
        app_risk_score, access_type, days_since_last_use, business_justification
    )
    if score >= 60:
        return RiskLevel.CRITICAL
    if score >= 40:
        return RiskLevel.HIGH
    if score >= 20:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


class AccessReviewCampaignEngine:
    """Runs access-review campaigns for a single tenant."""

    def __init__(
        self,
        tenant_id: str,
        store: "GovernanceStore",
        bus: EventBus,
        revocation: "RevocationService",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.tenant_id = tenant_id
        self.store = store
        self.bus = bus
        self.revocation = revocation
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _require_campaign(self, campaign_id: str) -> AccessReviewCampaign:
        campaign = await self.store.get_campaign(campaign_id, self.tenant_id)
        if campaign is None:
            raise CampaignNotFoundError(f"Campaign {campaign_id} not found")
        return campaign

    async def create_campaign(
        self, config: CampaignConfig, created_by: Optional[str] = None
    ) -> AccessReviewCampaign:
        """Create a campaign in draft status.

        Args:
            config: Campaign name, scope and dates
            created_by: User creating the campaign

        Returns:
            The stored campaign

        Raises:
            AccessReviewError: If the due date precedes the start date
        """
        start_date = config.start_date or self._clock()
        if config.due_date < start_date:
            raise AccessReviewError(
                f"Campaign '{config.name}' is due before it starts ({config.due_date.isoformat()})"
            )

        campaign = await self.store.create_campaign(
            AccessReviewCampaign(
                id=str(uuid.uuid4()),
                tenant_id=self.tenant_id,
                name=config.name,
                description=config.description,
                campaign_type=config.campaign_type,
                frequency=config.frequency,
                scope_type=ScopeType(config.scope_type),
                scope_config=dict(config.scope_config),
                start_date=start_date,
                due_date=config.due_date,
                auto_approve_on_timeout=config.auto_approve_on_timeout,
                created_by=created_by,
            )
        )

        logger.info(
            "access_review_campaign_created",
            tenant_id=self.tenant_id,
            campaign_id=campaign.id,
            scope_type=campaign.scope_type.value,
        )
        return campaign

    def _in_scope(
        self, campaign: AccessReviewCampaign, access: UserAppAccess, user: DirectoryUser
    ) -> bool:
        scope = campaign.scope_config
        if campaign.scope_type == ScopeType.DEPARTMENT and "departments" in scope:
            return user.department in scope["departments"]
        if campaign.scope_type == ScopeType.APPS and "app_ids" in scope:
            return access.app_id in scope["app_ids"]
        if campaign.scope_type == ScopeType.USERS and "user_ids" in scope:
            return access.user_id in scope["user_ids"]
        return True

    async def generate_review_items(self, campaign_id: str) -> int:
        """Create one review item per active grant in the campaign's scope.

        Grants whose user or app no longer exists are skipped. The campaign
        becomes active.

        Returns:
            Number of items created

        Raises:
            CampaignNotFoundError: If the campaign does not exist
            CampaignStateError: If the campaign is not a draft
        """
        campaign = await self._require_campaign(campaign_id)
        if campaign.status != CampaignStatus.DRAFT:
            raise CampaignStateError(
                f"Review items can only be generated for draft campaigns "
                f"(campaign {campaign_id} is {campaign.status.value})"
            )

        now = self._clock()
        grants = await self.store.list_user_app_access(self.tenant_id, status=AccessStatus.ACTIVE)
        created = 0

        for access in grants:
            user = await self.store.get_user(access.user_id, self.tenant_id)
            app = await self.store.get_saas_app(access.app_id, self.tenant_id)
            if user is None or app is None:
                logger.warning(
                    "review_item_skipped",
                    user_id=access.user_id,
                    app_id=access.app_id,
                    user_found=user is not None,
                    app_found=app is not None,
                )
                continue

            if not self._in_scope(campaign, access, user):
                continue

            days_since_last_use = None
            if access.last_access_date is not None:
                days_since_last_use = (now - access.last_access_date).days

            reviewer = None
            if user.manager_id:
                reviewer = await self.store.get_user(user.manager_id, self.tenant_id)

            await self.store.create_review_item(
                AccessReviewItem(
                    id=str(uuid.uuid4()),
                    tenant_id=self.tenant_id,
                    campaign_id=campaign_id,
                    user_id=user.id,
                    user_name=user.name,
                    user_email=user.email,
                    user_department=user.department,
                    app_id=app.id,
                    app_name=app.name,
                    app_risk_score=app.risk_score,
                    access_type=access.access_type,
                    granted_date=access.granted_date,
                    last_used_date=access.last_access_date,
                    days_since_last_use=days_since_last_use,
                    business_justification=access.business_justification,
                    risk_level=calculate_access_risk(
                        app.risk_score,
                        access.access_type,
                        days_since_last_use,
                        access.business_justification,
                    ),
                    reviewer_id=user.manager_id,
                    reviewer_name=reviewer.name if reviewer else None,
                )
            )
            created += 1

        await self.store.update_campaign(campaign_id, self.tenant_id, status=CampaignStatus.ACTIVE)
        await self.store.recalculate_campaign_counters(campaign_id, self.tenant_id)

        logger.info("review_items_generated", campaign_id=campaign_id, items=created)
        return created

    async def submit_decision(
        self,
        item_id: str,
        decision: Union[str, ReviewDecision],
        notes: Optional[str],
        reviewer_id: str,
        reviewer_name: str,
    ) -> DecisionResult:
        """Record a reviewer's decision and carry out its effect.

        Approved items are marked executed, deferred items stay pending and
        revoked items are revoked immediately; a failed revocation is
        recorded on the item rather than raised.

        Raises:
            ReviewItemNotFoundError: If the item does not exist
            CampaignStateError: If the item's campaign is not active
            AccessReviewError: If the decision is not approve/revoke/defer
        """
        try:
            decision = ReviewDecision(decision)
        except ValueError:
            raise AccessReviewError(f"Unknown review decision: {decision}")
        if decision == ReviewDecision.PENDING:
            raise AccessReviewError("Decision must be approved, revoked or deferred")

        item = await self.store.get_review_item(item_id, self.tenant_id)
        if item is None:
            raise ReviewItemNotFoundError(f"Review item {item_id} not found")

        campaign = await self._require_campaign(item.campaign_id)
        if campaign.status != CampaignStatus.ACTIVE:
            raise CampaignStateError(
                f"Campaign {campaign.id} is {campaign.status.value}; decisions are closed"
            )

        now = self._clock()
        changes: Dict[str, Any] = {
            "decision": decision,
            "decision_notes": notes,
            "reviewer_id": reviewer_id,
            "reviewer_name": reviewer_name,
            "reviewed_at": now,
            "execution_error": None,
        }
        if decision == ReviewDecision.APPROVED:
            changes.update(execution_status=ExecutionState.COMPLETED, executed_at=now)
        else:
            changes.update(execution_status=ExecutionState.PENDING, executed_at=None)

        item = await self.store.update_review_item(item_id, self.tenant_id, **changes)

        try:
            await self.store.create_review_decision(
                AccessReviewDecision(
                    id=str(uuid.uuid4()),
                    tenant_id=self.tenant_id,
                    campaign_id=item.campaign_id,
                    item_id=item.id,
                    user_id=item.user_id,
                    app_id=item.app_id,
                    decision=decision,
                    reviewer_id=reviewer_id,
                    reviewer_name=reviewer_name,
                    notes=notes,
                    decided_at=now,
                )
            )
            await self.store.recalculate_campaign_counters(item.campaign_id, self.tenant_id)
        except Exception as e:
            # A revoked item must not be left pending
            if decision == ReviewDecision.REVOKED:
                await self.store.update_review_item(
                    item_id,
                    self.tenant_id,
                    execution_status=ExecutionState.FAILED,
                    execution_error=f"Decision not recorded: {e}",
                )
            raise

        logger.info(
            "review_decision_submitted",
            campaign_id=item.campaign_id,
            item_id=item_id,
            decision=decision.value,
            reviewer_id=reviewer_id,
        )

        if decision == ReviewDecision.REVOKED:
            item = await self.execute_revocation(item)

        return DecisionResult(
            item_id=item.id,
            decision=decision,
            execution_status=item.execution_status,
            execution_error=item.execution_error,
        )

    async def execute_revocation(self, item: AccessReviewItem) -> AccessReviewItem:
        """Revoke the grant behind a review item and record the outcome.

        The item always ends up ``completed`` or ``failed``.
        """
        try:
            await self.revocation.revoke_user_app_access(item.user_id, item.app_id, self.tenant_id)
        except Exception as e:
            logger.error(
                "review_revocation_failed",
                item_id=item.id,
                user_id=item.user_id,
                app_id=item.app_id,
                error=str(e),
            )
            return await self.store.update_review_item(
                item.id,
                self.tenant_id,
                execution_status=ExecutionState.FAILED,
                execution_error=str(e) or type(e).__name__,
            )

        logger.info("review_revocation_completed", item_id=item.id, user_id=item.user_id)
        return await self.store.update_review_item(
            item.id,
            self.tenant_id,
            execution_status=ExecutionState.COMPLETED,
            executed_at=self._clock(),
        )

    async def submit_bulk_decision(self, bulk: BulkDecision) -> BulkDecisionResult:
        """Apply one decision to many items, isolating per-item failures."""
        result = BulkDecisionResult()

        for item_id in bulk.item_ids:
            try:
                outcome = await self.submit_decision(
                    item_id, bulk.decision, bulk.notes, bulk.reviewer_id, bulk.reviewer_name
                )
            except Exception as e:
                result.failed += 1
                result.errors[item_id] = str(e)
                logger.error("bulk_decision_item_failed", item_id=item_id, error=str(e))
                continue

            result.succeeded += 1
            result.results.append(outcome)

        logger.info(
            "bulk_decision_submitted",
            items=len(bulk.item_ids),
            succeeded=result.succeeded,
            failed=result.failed,
            execution_failures=len(result.execution_failures),
        )
        return result

    async def get_campaign_progress(self, campaign_id: str) -> CampaignProgress:
        campaign = await self._require_campaign(campaign_id)

        total = campaign.total_items
        percent_complete = round(campaign.reviewed_items / total * 100) if total else 0
        days_remaining = math.ceil(
            (campaign.due_date - self._clock()) / timedelta(days=1)
        )

        return CampaignProgress(
            campaign_id=campaign.id,
            status=campaign.status,
            total_items=total,
            reviewed_items=campaign.reviewed_items,
            approved_items=campaign.approved_items,
            revoked_items=campaign.revoked_items,
            deferred_items=campaign.deferred_items,
            percent_complete=percent_complete,
            days_remaining=days_remaining,
            is_overdue=days_remaining < 0,
        )

    async def _build_report(
        self, campaign: AccessReviewCampaign, completed_at: datetime
    ) -> CompletionReport:
        items = await self.store.list_review_items(campaign.id, self.tenant_id)
        decisions = await self.store.list_review_decisions(campaign.id, self.tenant_id)
        items_by_id = {i.id: i for i in items}

        revoked = [i for i in items if i.decision == ReviewDecision.REVOKED]
        revoked_ok = [i for i in revoked if i.execution_status == ExecutionState.COMPLETED]
        total = campaign.total_items

        return CompletionReport(
            campaign={
                "id": campaign.id,
                "name": campaign.name,
                "type": campaign.campaign_type,
                "start_date": campaign.start_date.isoformat(),
                "due_date": campaign.due_date.isoformat(),
                "completed_at": completed_at.isoformat(),
            },
            summary={
                "total_items": total,
                "reviewed_items": campaign.reviewed_items,
                "approved_items": campaign.approved_items,
                "revoked_items": campaign.revoked_items,
                "deferred_items": campaign.deferred_items,
                "completion_rate": round(campaign.reviewed_items / total * 100) if total else 0,
            },
            decisions=[
                {
                    "user": items_by_id[d.item_id].user_name if d.item_id in items_by_id else None,
                    "app": items_by_id[d.item_id].app_name if d.item_id in items_by_id else None,
                    "decision": d.decision.value,
                    "reviewer": d.reviewer_name,
                    "timestamp": d.decided_at.isoformat(),
                }
                for d in decisions
            ],
            audit_trail={
                "total_decisions": len(decisions),
                "unique_reviewers": len({d.reviewer_id for d in decisions}),
                "access_revoked": campaign.revoked_items,
                "execution_success_rate": len(revoked_ok) / max(len(revoked), 1) * 100,
            },
        )

    async def complete_campaign(self, campaign_id: str) -> CompletionReport:
        """Close a campaign, attach its compliance report and announce it.

        Raises:
            CampaignNotFoundError: If the campaign does not exist
            CampaignStateError: If the campaign is already completed
        """
        campaign = await self._require_campaign(campaign_id)
        if campaign.status == CampaignStatus.COMPLETED:
            raise CampaignStateError(f"Campaign {campaign_id} is already completed")

        campaign = await self.store.recalculate_campaign_counters(campaign_id, self.tenant_id)
        completed_at = self._clock()
        report = await self._build_report(campaign, completed_at)

        await self.store.update_campaign(
            campaign_id,
            self.tenant_id,
            status=CampaignStatus.COMPLETED,
            completed_at=completed_at,
            completion_report=report.to_dict(),
        )

        await self.bus.publish(
            AccessReviewCompletedPayload(
                tenant_id=self.tenant_id,
                campaign_id=campaign.id,
                campaign_name=campaign.name,
                total_items=campaign.total_items,
                reviewed_items=campaign.reviewed_items,
                approved_items=campaign.approved_items,
                revoked_items=campaign.revoked_items,
                deferred_items=campaign.deferred_items,
                completion_rate=report.summary["completion_rate"],
            )
        )

        logger.info(
            "access_review_campaign_completed",
            campaign_id=campaign_id,
            completion_rate=report.summary["completion_rate"],
        )
        return report

    async def send_reminders(
        self, campaign_id: str, notifier: Optional["Notifier"] = None
    ) -> Dict[str, int]:
        """Remind each reviewer of their pending items.

        Items without a reviewer are not reminded. A delivery failure for one
        reviewer does not stop the others.

        Returns:
            Mapping of reviewer id to number of pending items
        """
        campaign = await self._require_campaign(campaign_id)
        pending = await self.store.list_review_items(
            campaign_id, self.tenant_id, decision=ReviewDecision.PENDING
        )

        by_reviewer: Dict[str, List[AccessReviewItem]] = defaultdict(list)
        for item in pending:
            if item.reviewer_id:
                by_reviewer[item.reviewer_id].append(item)

        for reviewer_id, items in by_reviewer.items():
            reviewer = await self.store.get_user(reviewer_id, self.tenant_id)
            message = (
                f"You have {len(items)} pending access review item(s) in "
                f"'{campaign.name}', due {campaign.due_date.date().isoformat()}"
            )
            logger.info("review_reminder", reviewer_id=reviewer_id, pending=len(items))

            if notifier is None:
                continue
            try:
                await notifier.send(
                    message,
                    {
                        "campaign_id": campaign.id,
                        "reviewer_id": reviewer_id,
                        "reviewer_email": reviewer.email if reviewer else None,
                        "pending_items": len(items),
                    },
                )
            except Exception as e:
                logger.error("review_reminder_failed", reviewer_id=reviewer_id, error=str(e))

        return {reviewer_id: len(items) for reviewer_id, items in by_reviewer.items()}

    async def sweep_overdue_campaigns(self) -> SweepResult:
        """Auto-approve pending items of overdue campaigns that allow it.

        A failure on one item is logged and counted; the sweep carries on
        with the remaining items and campaigns.
        """
        now = self._clock()
        result = SweepResult()

        for campaign in await self.store.list_campaigns(
            self.tenant_id, status=CampaignStatus.ACTIVE
        ):
            if not campaign.auto_approve_on_timeout or campaign.due_date >= now:
                continue

            pending = await self.store.list_review_items(
                campaign.id, self.tenant_id, decision=ReviewDecision.PENDING
            )
            approved = 0
            for item in pending:
                try:
                    await self.submit_decision(
                        item.id,
                        ReviewDecision.APPROVED,
                        "Auto-approved after campaign due date",
                        SYSTEM_REVIEWER_ID,
                        SYSTEM_REVIEWER_NAME,
                    )
                except Exception as e:
                    result.failed += 1
                    result.errors[item.id] = str(e)
                    logger.error(
                        "auto_approve_failed",
                        campaign_id=campaign.id,
                        item_id=item.id,
                        error=str(e),
                    )
                    continue
                approved += 1

            result.approved += approved
            result.campaigns += 1
            logger.info(
                "overdue_campaign_swept",
                campaign_id=campaign.id,
                auto_approved=approved,
                failed=len(pending) - approved,
            )

        return result
