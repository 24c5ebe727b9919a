"""OAuth scope risk scoring.

Scores a list of granted OAuth scopes by matching them against weighted
pattern tables. Microsoft Graph and Google API scopes get provider tables;
anything else falls back to generic keyword patterns.
"""

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Dict, Iterable, List, Pattern, Tuple

import structlog

logger = structlog.get_logger(__name__)

MAX_SCORE = 100
CRITICAL_SCOPE_POINTS = 25
LONG_SCOPE_LENGTH = 100
EXCESSIVE_SCOPE_COUNT = 15
ESCALATION_THRESHOLD = 10


class RiskLevel(str, Enum):
    """Risk bands for a scored scope list."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ScopeCategory(str, Enum):
    DATA_ACCESS = "data-access"
    ADMIN = "admin"
    WRITE = "write"
    DELETE = "delete"


@dataclass(frozen=True)
class ScopeRiskPattern:
    pattern: Pattern
    points: int
    reason: str
    category: ScopeCategory


def _p(regex: str, points: int, reason: str, category: ScopeCategory) -> ScopeRiskPattern:
    return ScopeRiskPattern(re.compile(regex, re.IGNORECASE), points, reason, category)


_W, _A, _D, _R = ScopeCategory.WRITE, ScopeCategory.ADMIN, ScopeCategory.DELETE, ScopeCategory.DATA_ACCESS

MICROSOFT_PATTERNS: Tuple[ScopeRiskPattern, ...] = (
    _p(r"\b\.readwrite\.all\b", 35, "Full read/write access", _W),
    _p(r"\ball\.", 30, "Organization-wide access", _A),
    _p(r"\bmail\.send", 30, "Email sending capability", _W),
    _p(r"\bmail\.readwrite", 25, "Email read/write access", _W),
    _p(r"\bmail\.read\b", 20, "Email read access", _R),
    _p(r"\bfiles\.readwrite\.all", 30, "Full file system access", _W),
    _p(r"\bfiles\.readwrite", 20, "File read/write access", _W),
    _p(r"\bfiles\.read\.all", 15, "All files read access", _R),
    _p(r"\buser\.readwrite\.all", 35, "Modify all users", _A),
    _p(r"\buser\.read\.all", 25, "Read all user profiles", _R),
    _p(r"\bdirectory\.readwrite\.all", 40, "Full directory control", _A),
    _p(r"\bdirectory\.read\.all", 25, "Read directory data", _R),
    _p(r"\bgroup\.readwrite\.all", 30, "Modify all groups", _A),
    _p(r"\bgroup\.read\.all", 15, "Read all groups", _R),
    _p(r"\bcontacts\.readwrite", 20, "Contacts read/write", _W),
    _p(r"\bcontacts\.read", 15, "Contacts read access", _R),
    _p(r"\bcalendars\.readwrite", 20, "Calendar read/write", _W),
    _p(r"\bcalendars\.read", 15, "Calendar read access", _R),
    _p(r"\bteam\.readwrite\.all", 30, "Modify all Teams", _A),
    _p(r"\bsites\.readwrite\.all", 30, "Modify all SharePoint sites", _W),
    # App-only permissions
    _p(r"\bapplication\.", 15, "Application-level permissions", _A),
    _p(r"\bdevice\.readwrite\.all", 35, "Modify all devices", _A),
    _p(r"\brolemanagement\.readwrite", 40, "Modify admin roles", _A),
    _p(r"\bdirectoryroles\.readwrite", 40, "Modify directory roles", _A),
)

GOOGLE_PATTERNS: Tuple[ScopeRiskPattern, ...] = (
    _p(r"gmail\.send", 30, "Gmail send capability", _W),
    _p(r"gmail\.modify", 25, "Gmail modify access", _W),
    _p(r"gmail\.readonly", 20, "Gmail read access", _R),
    _p(r"gmail\.insert", 25, "Gmail insert messages", _W),
    _p(r"drive\.file", 15, "Drive file access", _R),
    _p(r"drive\.appdata", 10, "Drive app data", _R),
    _p(r"drive\.readonly", 15, "Drive read access", _R),
    _p(r"drive\b", 30, "Full Drive access", _W),
    _p(r"calendar\.events", 15, "Calendar events access", _R),
    _p(r"calendar\.readonly", 10, "Calendar read access", _R),
    _p(r"calendar\b", 20, "Full calendar access", _W),
    _p(r"contacts\.readonly", 15, "Contacts read access", _R),
    _p(r"contacts\b", 20, "Contacts read/write", _W),
    _p(r"admin\.directory\.user", 35, "User directory management", _A),
    _p(r"admin\.directory\.group", 30, "Group management", _A),
    _p(r"admin\.directory\.device", 35, "Device management", _A),
    _p(r"admin\.directory\.domain", 40, "Domain management", _A),
    _p(r"cloud-platform", 35, "Cloud platform access", _A),
    _p(r"compute", 30, "Compute engine access", _A),
)

GENERIC_PATTERNS: Tuple[ScopeRiskPattern, ...] = (
    _p(r"\bwrite\b", 15, "Write access", _W),
    _p(r"\bdelete\b", 20, "Delete capability", _D),
    _p(r"\badmin\b", 30, "Administrative access", _A),
    _p(r"\bmanage\b", 25, "Management permissions", _A),
    _p(r"\bfull", 20, "Full access scope", _A),
)

_MICROSOFT_SHORT_SCOPE = re.compile(r"\.(read|readwrite)(\.|$)", re.IGNORECASE)


@dataclass(frozen=True)
class OAuthRiskAssessment:
    """Risk of a scope list. Pure function of the scopes."""

    risk_level: RiskLevel
    risk_score: int
    reasons: Tuple[str, ...]
    critical_scopes: Tuple[str, ...]

    def to_dict(self) -> Dict[str, object]:
        return {
            "risk_level": self.risk_level.value,
            "risk_score": self.risk_score,
            "reasons": list(self.reasons),
            "critical_scopes": list(self.critical_scopes),
        }


@dataclass(frozen=True)
class PermissionEscalation:
    has_escalation: bool
    added_scopes: Tuple[str, ...]
    removed_scopes: Tuple[str, ...]


def detect_provider(scopes: Iterable[str]) -> str:
    """Guess the scope family: ``microsoft``, ``google`` or ``generic``."""
    scopes = list(scopes)
    if any(
        ".microsoft.com" in s or "graph" in s or _MICROSOFT_SHORT_SCOPE.search(s)
        for s in scopes
    ):
        return "microsoft"
    if any(
        "googleapis.com" in s or "google.com" in s or "gmail" in s or "drive" in s
        for s in scopes
    ):
        return "google"
    return "generic"


def patterns_for(provider: str) -> Tuple[ScopeRiskPattern, ...]:
    if provider == "microsoft":
        return MICROSOFT_PATTERNS + GENERIC_PATTERNS
    if provider == "google":
        return GOOGLE_PATTERNS + GENERIC_PATTERNS
    return GENERIC_PATTERNS


def risk_level_for(score: int) -> RiskLevel:
    if score >= 75:
        return RiskLevel.CRITICAL
    if score >= 50:
        return RiskLevel.HIGH
    if score >= 25:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def assess_permissions(scopes: Iterable[str]) -> OAuthRiskAssessment:
    """Score a list of OAuth scopes.

    Every matching pattern adds its points. Admin scopes co-occurring with
    write or delete scopes add a combination penalty, and so does a scope
    count above fifteen. The score is capped at 100.

    Args:
        scopes: Granted scopes, in any order

    Returns:
        Risk assessment; identical for any ordering of the same scopes

    Example:
        >>> assess_permissions(["Mail.ReadWrite.All"]).risk_level
        <RiskLevel.HIGH: 'high'>
    """
    return _assess(tuple(sorted({s for s in scopes if s})))


@lru_cache(maxsize=1024)
def _assess(scopes: Tuple[str, ...]) -> OAuthRiskAssessment:
    score = 0
    reasons: List[str] = []
    critical_scopes: List[str] = []
    category_points = {category: 0 for category in ScopeCategory}
    patterns = patterns_for(detect_provider(scopes))

    def add_reason(reason: str) -> None:
        if reason not in reasons:
            reasons.append(reason)

    for scope in scopes:
        matched = False

        for risk in patterns:
            if not risk.pattern.search(scope):
                continue

            matched = True
            score += risk.points
            category_points[risk.category] += risk.points
            add_reason(risk.reason)

            if risk.points >= CRITICAL_SCOPE_POINTS and scope not in critical_scopes:
                critical_scopes.append(scope)

        # Long unmatched scope strings tend to be broad custom grants
        if not matched and len(scope) > LONG_SCOPE_LENGTH:
            score += 5
            add_reason("Unusually long scope definition")

    has_admin = category_points[ScopeCategory.ADMIN] > 0
    if has_admin and category_points[ScopeCategory.WRITE] > 0:
        score += 10
        add_reason("Combination of admin and write permissions")

    if has_admin and category_points[ScopeCategory.DELETE] > 0:
        score += 15
        add_reason("Combination of admin and delete permissions")

    if len(scopes) > EXCESSIVE_SCOPE_COUNT:
        score += 10
        add_reason(f"Excessive permissions ({len(scopes)} scopes)")

    score = min(score, MAX_SCORE)

    return OAuthRiskAssessment(
        risk_level=risk_level_for(score),
        risk_score=score,
        reasons=tuple(reasons),
        critical_scopes=tuple(critical_scopes),
    )


def explain_risk(assessment: OAuthRiskAssessment) -> str:
    """Render an assessment as human-readable text."""
    lines = [
        f"Risk Level: {assessment.risk_level.value.upper()} (Score: {assessment.risk_score}/100)",
        "",
    ]

    if assessment.reasons:
        lines.append("Risk Factors:")
        lines.extend(f"{i}. {reason}" for i, reason in enumerate(assessment.reasons, 1))

    if assessment.critical_scopes:
        lines.append("")
        lines.append(f"Critical Scopes ({len(assessment.critical_scopes)}):")
        lines.extend(f"{i}. {scope}" for i, scope in enumerate(assessment.critical_scopes, 1))

    return "\n".join(lines) + "\n"


def detect_permission_escalation(
    old_scopes: Iterable[str], new_scopes: Iterable[str]
) -> PermissionEscalation:
    """Compare two grants of the same app.

    An escalation is a risk score increase of more than ten points.
    """
    old_scopes, new_scopes = list(old_scopes), list(new_scopes)
    old_set, new_set = set(old_scopes), set(new_scopes)

    old_risk = assess_permissions(old_scopes)
    new_risk = assess_permissions(new_scopes)
    has_escalation = new_risk.risk_score > old_risk.risk_score + ESCALATION_THRESHOLD

    if has_escalation:
        logger.info(
            "permission_escalation_detected",
            old_score=old_risk.risk_score,
            new_score=new_risk.risk_score,
        )

    return PermissionEscalation(
        has_escalation=has_escalation,
        added_scopes=tuple(s for s in new_scopes if s not in old_set),
        removed_scopes=tuple(s for s in old_scopes if s not in new_set),
    )
