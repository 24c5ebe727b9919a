"""Shadow IT detection against the sanctioned application catalog."""

import hashlib
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from saasguard.connectors.models import (
    DiscoveredApp,
    DiscoveredOAuthToken,
    DiscoveredUserAccess,
    SyncResult,
)
from saasguard.core.analyzers.oauth_risk import assess_permissions, risk_level_for
from saasguard.events import APP_DISCOVERED, OAUTH_RISKY_PERMISSION, EventBus
from saasguard.storage import APPS, OAUTH_TOKENS, USER_APP_ACCESS, Storage, utc_now
from saasguard.storage.queries import (
    get_app_by_external_id,
    get_oauth_token,
    get_user_app_access,
    get_user_by_email,
    list_apps,
)

logger = structlog.get_logger(__name__)

MIN_SUBSTRING_MATCH_LENGTH = 4
EXCESSIVE_SCOPE_COUNT = 10
HIGH_RISK_APP_SCORE = 70
RISKY_SCOPE_KEYWORDS = ("write", "delete", "admin", "full_control", "manage", "owner")

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]")
_CORPORATE_SUFFIX = re.compile(r"[\s,]+(inc|llc|ltd|limited|corp|corporation|gmbh|co|plc)\.?$")


class RecommendedAction(str, Enum):
    APPROVE = "approve"
    REVIEW = "review"
    DENY = "deny"
    INVESTIGATE = "investigate"


@dataclass
class ShadowITAnalysisResult:
    """Classification of one discovered app against the catalog."""

    is_unapproved: bool
    is_new_discovery: bool
    risk_score: int
    risk_factors: List[str] = field(default_factory=list)
    matched_app_id: Optional[str] = None
    recommended_action: RecommendedAction = RecommendedAction.REVIEW


@dataclass
class ProcessingStats:
    """Counters from feeding one sync result into the catalog."""

    apps_processed: int = 0
    apps_created: int = 0
    apps_updated: int = 0
    shadow_it_detected: int = 0
    user_access_created: int = 0
    tokens_created: int = 0
    high_risk_apps: int = 0
    warnings: List[str] = field(default_factory=list)


def normalize_app_name(name: Optional[str]) -> str:
    """Lowercase, drop a trailing corporate suffix, keep letters and digits."""
    lowered = _CORPORATE_SUFFIX.sub("", (name or "").strip().lower())
    return _NON_ALPHANUMERIC.sub("", lowered)


def find_matching_app(
    discovered: DiscoveredApp, catalog: List[Dict[str, Any]]
) -> Optional[Dict[str, Any]]:
    """Find the catalog entry for a discovered app.

    Tried in order, first hit wins: normalized name, normalized vendor,
    then substring containment in either direction when both normalized
    names have at least four characters.
    """
    name = normalize_app_name(discovered.name)

    for app in catalog:
        if normalize_app_name(app.get("name")) == name:
            logger.debug("catalog_match", match_type="name", app_name=app.get("name"))
            return app

    if discovered.vendor:
        vendor = normalize_app_name(discovered.vendor)
        for app in catalog:
            if app.get("vendor") and normalize_app_name(app["vendor"]) == vendor:
                logger.debug("catalog_match", match_type="vendor", app_name=app.get("name"))
                return app

    if len(name) >= MIN_SUBSTRING_MATCH_LENGTH:
        for app in catalog:
            candidate = normalize_app_name(app.get("name"))
            if len(candidate) < MIN_SUBSTRING_MATCH_LENGTH:
                continue
            if candidate in name or name in candidate:
                logger.debug("catalog_match", match_type="substring", app_name=app.get("name"))
                return app

    return None


def calculate_risk_score(app: DiscoveredApp) -> Dict[str, Any]:
    """Combine scope risk with catalog-hygiene penalties, capped at 100."""
    score = 0
    factors: List[str] = []

    if app.permissions:
        assessment = assess_permissions(app.permissions)
        score += assessment.risk_score
        factors.extend(f"High-risk permission: {reason}" for reason in assessment.reasons)

    if not app.vendor or app.vendor == "Unknown":
        score += 10
        factors.append("Unknown vendor")

    if not app.website_url:
        score += 5
        factors.append("No website URL available")

    if len(app.permissions) > EXCESSIVE_SCOPE_COUNT:
        score += 10
        factors.append(f"Excessive permissions ({len(app.permissions)} scopes)")

    return {"score": min(score, 100), "factors": factors}


def token_risk_level(scopes: List[str]) -> str:
    """Coarse per-token risk used on stored OAuth token records."""
    if any(keyword in scope.lower() for scope in scopes for keyword in RISKY_SCOPE_KEYWORDS):
        return "high"
    if len(scopes) > 5:
        return "medium"
    return "low"


class ShadowITDetector:
    """Classifies discovered apps and upserts them into the tenant catalog."""

    def __init__(self, tenant_id: str, storage: Storage, events: Optional[EventBus] = None):
        """Initialize detector.

        Args:
            tenant_id: Tenant whose catalog is consulted and updated
            storage: Record store
            events: Event bus for discovery notifications
        """
        self.tenant_id = tenant_id
        self.storage = storage
        self.events = events or EventBus()

    def analyze_app(self, discovered: DiscoveredApp) -> ShadowITAnalysisResult:
        matched = find_matching_app(discovered, list_apps(self.storage, self.tenant_id))
        risk = calculate_risk_score(discovered)
        score, factors = risk["score"], risk["factors"]

        if matched is None:
            if score >= 75:
                action = RecommendedAction.INVESTIGATE
            elif score >= 50:
                action = RecommendedAction.REVIEW
            else:
                action = RecommendedAction.APPROVE

            return ShadowITAnalysisResult(
                is_unapproved=True,
                is_new_discovery=True,
                risk_score=score,
                risk_factors=["App not in approved catalog", *factors],
                recommended_action=action,
            )

        status = matched.get("approval_status")
        if status == "denied":
            return ShadowITAnalysisResult(
                is_unapproved=True,
                is_new_discovery=False,
                risk_score=min(score + 30, 100),
                risk_factors=["App explicitly denied", *factors],
                matched_app_id=matched["id"],
                recommended_action=RecommendedAction.DENY,
            )

        if status == "pending":
            return ShadowITAnalysisResult(
                is_unapproved=True,
                is_new_discovery=False,
                risk_score=score,
                risk_factors=["App approval pending", *factors],
                matched_app_id=matched["id"],
                recommended_action=RecommendedAction.REVIEW,
            )

        return ShadowITAnalysisResult(
            is_unapproved=False,
            is_new_discovery=False,
            risk_score=score,
            risk_factors=factors,
            matched_app_id=matched["id"],
            recommended_action=RecommendedAction.APPROVE,
        )

    def process_app(
        self,
        discovered: DiscoveredApp,
        idp_id: str,
        analysis: Optional[ShadowITAnalysisResult] = None,
        warnings: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Upsert one discovered app into the catalog.

        Returns:
            Dict with ``created`` flag and catalog ``app_id``
        """
        analysis = analysis or self.analyze_app(discovered)
        now = utc_now()

        if analysis.matched_app_id:
            existing = self.storage.get(APPS, analysis.matched_app_id) or {}
            changes = {
                "last_used_at": now,
                "discovery_date": now,
                "discovery_method": "idp",
                "risk_score": analysis.risk_score,
                "risk_factors": analysis.risk_factors,
                "metadata": {
                    **(existing.get("metadata") or {}),
                    **discovered.metadata,
                    "last_synced_from": idp_id,
                    "last_synced_at": now,
                },
            }
            if not existing.get("external_id"):
                changes["external_id"] = discovered.external_id
            self.storage.update(APPS, analysis.matched_app_id, changes)

            logger.info("catalog_app_updated", app_name=discovered.name, app_id=analysis.matched_app_id)
            return {"created": False, "app_id": analysis.matched_app_id}

        created = self.storage.create(
            APPS,
            {
                "tenant_id": self.tenant_id,
                "name": discovered.name,
                "vendor": discovered.vendor,
                "logo_url": discovered.logo_url,
                "website_url": discovered.website_url,
                "approval_status": "pending",
                "risk_score": analysis.risk_score,
                "risk_factors": analysis.risk_factors,
                "discovery_method": "idp",
                "discovery_date": now,
                "external_id": discovered.external_id,
                "idp_id": idp_id,
                "category": discovered.metadata.get("category"),
                "metadata": {
                    **discovered.metadata,
                    "discovered_from": idp_id,
                    "permissions": list(discovered.permissions),
                },
            },
        )
        logger.info("catalog_app_created", app_name=discovered.name, app_id=created["id"])

        if analysis.is_unapproved:
            risk_level = risk_level_for(analysis.risk_score).value
            emit_warnings = self.events.emit(
                APP_DISCOVERED,
                {
                    "tenant_id": self.tenant_id,
                    "app_id": created["id"],
                    "app_name": created["name"],
                    "approval_status": created["approval_status"],
                    "risk_level": risk_level,
                    "risk_score": analysis.risk_score,
                },
            )

            if discovered.permissions and analysis.risk_score >= 50:
                emit_warnings += self.events.emit(
                    OAUTH_RISKY_PERMISSION,
                    {
                        "tenant_id": self.tenant_id,
                        "app_id": created["id"],
                        "app_name": created["name"],
                        "risk_level": risk_level,
                        "risk_score": analysis.risk_score,
                        "scopes": list(discovered.permissions),
                    },
                )

            if warnings is not None:
                warnings.extend(emit_warnings)

        return {"created": True, "app_id": created["id"]}

    def process_apps(
        self, apps: List[DiscoveredApp], idp_id: str, stats: Optional[ProcessingStats] = None
    ) -> Dict[str, str]:
        """Process a batch of apps, recording counts on ``stats``.

        Returns:
            Mapping of external app id to catalog app id
        """
        stats = stats if stats is not None else ProcessingStats()
        app_ids: Dict[str, str] = {}

        for discovered in apps:
            stats.apps_processed += 1
            try:
                analysis = self.analyze_app(discovered)
                if analysis.is_unapproved:
                    stats.shadow_it_detected += 1

                result = self.process_app(discovered, idp_id, analysis, stats.warnings)
            except Exception as e:
                logger.error("app_processing_failed", app_name=discovered.name, error=str(e))
                stats.warnings.append(f"Failed to process app {discovered.name}: {e}")
                continue

            app_ids[discovered.external_id] = result["app_id"]
            if result["created"]:
                stats.apps_created += 1
            else:
                stats.apps_updated += 1

        return app_ids

    def _resolve(
        self, external_id: str, user_email: str, app_ids: Dict[str, str]
    ) -> Optional[Dict[str, Any]]:
        app_id = app_ids.get(external_id)
        if app_id is None:
            app = get_app_by_external_id(self.storage, self.tenant_id, external_id)
            if app is None:
                logger.debug("app_not_found_for_external_id", external_id=external_id)
                return None
            app_id = app["id"]

        user = get_user_by_email(self.storage, self.tenant_id, user_email)
        if user is None:
            logger.debug("user_not_found", user=user_email)
            return None

        app = self.storage.get(APPS, app_id) or {}
        return {"user_id": user["id"], "app_id": app_id, "app_name": app.get("name")}

    def process_user_access(
        self,
        access_list: List[DiscoveredUserAccess],
        idp_id: str,
        app_ids: Optional[Dict[str, str]] = None,
        warnings: Optional[List[str]] = None,
    ) -> int:
        """Upsert user-app access records from IdP assignments.

        Returns:
            Number of new access records
        """
        app_ids = app_ids or {}
        created = 0

        for access in access_list:
            try:
                ids = self._resolve(access.app_external_id, access.user_id, app_ids)
                if ids is None:
                    continue

                last_access = access.last_access_date.isoformat() if access.last_access_date else None
                existing = get_user_app_access(self.storage, self.tenant_id, ids["user_id"], ids["app_id"])

                if existing:
                    self.storage.update(
                        USER_APP_ACCESS,
                        existing["id"],
                        {
                            "last_access_at": last_access or utc_now(),
                            "permissions": access.permissions or existing.get("permissions", []),
                            "roles": access.roles or existing.get("roles", []),
                            "assignment_method": "idp_sync",
                        },
                    )
                    continue

                self.storage.create(
                    USER_APP_ACCESS,
                    {
                        "tenant_id": self.tenant_id,
                        **ids,
                        "access_type": "sso",
                        "granted_at": (
                            access.granted_date.isoformat() if access.granted_date else utc_now()
                        ),
                        "last_access_at": last_access,
                        "permissions": list(access.permissions),
                        "roles": list(access.roles),
                        "assignment_method": "idp_sync",
                        "assigned_by": idp_id,
                        "status": "active",
                    },
                )
                created += 1
            except Exception as e:
                logger.error("user_access_processing_failed", user=access.user_id, error=str(e))
                if warnings is not None:
                    warnings.append(f"Failed to process access for {access.user_id}: {e}")

        logger.info("user_access_processed", created=created)
        return created

    def process_oauth_tokens(
        self,
        tokens: List[DiscoveredOAuthToken],
        idp_id: str,
        app_ids: Optional[Dict[str, str]] = None,
        warnings: Optional[List[str]] = None,
    ) -> int:
        """Upsert OAuth token records, keeping provider ids for revocation.

        Returns:
            Number of new token records
        """
        app_ids = app_ids or {}
        created = 0

        for token in tokens:
            try:
                ids = self._resolve(token.app_external_id, token.user_id, app_ids)
                if ids is None:
                    continue

                scopes = list(token.scopes)
                changes = {
                    "scopes": scopes,
                    "risk_level": token_risk_level(scopes),
                    "excessive_permissions": len(scopes) > EXCESSIVE_SCOPE_COUNT,
                    "expires_at": token.expires_at.isoformat() if token.expires_at else None,
                    "idp_metadata": {"idp_id": idp_id, "token_id": token.token_id},
                }

                existing = get_oauth_token(self.storage, self.tenant_id, ids["user_id"], ids["app_id"])
                if existing:
                    self.storage.update(OAUTH_TOKENS, existing["id"], changes)
                    continue

                fingerprint = f"{idp_id}:{token.user_id}:{token.app_external_id}"
                self.storage.create(
                    OAUTH_TOKENS,
                    {
                        "tenant_id": self.tenant_id,
                        **ids,
                        **changes,
                        "token_hash": token.token_id or hashlib.sha256(fingerprint.encode()).hexdigest(),
                        "granted_at": token.granted_at.isoformat() if token.granted_at else utc_now(),
                        "status": "active",
                    },
                )
                created += 1
            except Exception as e:
                logger.error("oauth_token_processing_failed", user=token.user_id, error=str(e))
                if warnings is not None:
                    warnings.append(f"Failed to process OAuth token for {token.user_id}: {e}")

        logger.info("oauth_tokens_processed", created=created)
        return created

    def process_full_sync(self, sync_result: SyncResult, idp_id: str) -> ProcessingStats:
        """Feed a successful sync into the catalog, access and token records."""
        stats = ProcessingStats()

        app_ids = self.process_apps(list(sync_result.apps), idp_id, stats)
        stats.user_access_created = self.process_user_access(
            list(sync_result.user_access), idp_id, app_ids, stats.warnings
        )
        stats.tokens_created = self.process_oauth_tokens(
            list(sync_result.tokens), idp_id, app_ids, stats.warnings
        )
        stats.high_risk_apps = sum(
            1 for app in sync_result.apps if calculate_risk_score(app)["score"] >= HIGH_RISK_APP_SCORE
        )

        logger.info(
            "full_sync_processed",
            tenant_id=self.tenant_id,
            idp_id=idp_id,
            apps_processed=stats.apps_processed,
            apps_created=stats.apps_created,
            shadow_it_detected=stats.shadow_it_detected,
            user_access_created=stats.user_access_created,
            tokens_created=stats.tokens_created,
            high_risk_apps=stats.high_risk_apps,
        )
        return stats
