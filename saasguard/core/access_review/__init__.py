"""Access-review campaigns and segregation-of-duties workflow."""

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
    SodRule,
    SodStatus,
    SodViolation,
)
from saasguard.core.access_review.campaign_engine import (
    AccessReviewCampaignEngine,
    AccessReviewError,
    BulkDecision,
    BulkDecisionResult,
    CampaignNotFoundError,
    CampaignProgress,
    CampaignStateError,
    CompletionReport,
    DecisionResult,
    ReviewItemNotFoundError,
    access_risk_score,
    calculate_access_risk,
)
from saasguard.core.access_review.sod import SodError, SodService

__all__ = [
    "AccessReviewCampaign",
    "AccessReviewCampaignEngine",
    "AccessReviewDecision",
    "AccessReviewError",
    "AccessReviewItem",
    "BulkDecision",
    "BulkDecisionResult",
    "CampaignConfig",
    "CampaignNotFoundError",
    "CampaignProgress",
    "CampaignStateError",
    "CampaignStatus",
    "CompletionReport",
    "DecisionResult",
    "ExecutionState",
    "ReviewDecision",
    "ReviewItemNotFoundError",
    "RiskLevel",
    "ScopeType",
    "SodError",
    "SodRule",
    "SodService",
    "SodStatus",
    "SodViolation",
    "access_risk_score",
    "calculate_access_risk",
]
