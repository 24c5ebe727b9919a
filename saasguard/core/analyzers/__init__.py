"""Risk scoring and Shadow IT classification."""

from saasguard.core.analyzers.oauth_risk import (
    OAuthRiskAssessment,
    PermissionEscalation,
    RiskLevel,
    assess_permissions,
    detect_permission_escalation,
    explain_risk,
)
from saasguard.core.analyzers.shadow_it import (
    ProcessingStats,
    RecommendedAction,
    ShadowITAnalysisResult,
    ShadowITDetector,
    normalize_app_name,
)

__all__ = [
    "OAuthRiskAssessment",
    "PermissionEscalation",
    "ProcessingStats",
    "RecommendedAction",
    "RiskLevel",
    "ShadowITAnalysisResult",
    "ShadowITDetector",
    "assess_permissions",
    "detect_permission_escalation",
    "explain_risk",
    "normalize_app_name",
]
