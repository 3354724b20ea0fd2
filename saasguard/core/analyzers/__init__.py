"""Risk scoring and Shadow IT detection."""

from saasguard.core.analyzers.risk_scorer import (
    OAuthRiskAnalyzer,
    PermissionRiskAssessment,
    RiskScore,
    RiskScorer,
    risk_level_for,
)
from saasguard.core.analyzers.shadow_it_detector import (
    AppProcessingStats,
    ProcessAppResult,
    ShadowITAnalysis,
    ShadowITDetector,
    ShadowITDetectorError,
    SyncStats,
    normalize_app_name,
)

__all__ = [
    "AppProcessingStats",
    "OAuthRiskAnalyzer",
    "PermissionRiskAssessment",
    "ProcessAppResult",
    "RiskScore",
    "RiskScorer",
    "ShadowITAnalysis",
    "ShadowITDetector",
    "ShadowITDetectorError",
    "SyncStats",
    "normalize_app_name",
    "risk_level_for",
]
