"""Automatic revocation of unapproved application access."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from saasguard.core.exceptions import NotFoundError, SaasGuardError, ValidationError
from saasguard.core.lifecycle.sso_revocation import SSORevocationService
from saasguard.events import (
    ACCESS_AUTO_REVOKED,
    ACCESS_MANAGER_NOTIFIED,
    ACCESS_MANUALLY_REVOKED,
    ACCESS_REVOCATION_APPROVAL_REQUESTED,
    ACCESS_REVOCATION_APPROVED,
    ACCESS_REVOCATION_EXEMPTED,
    ACCESS_SECURITY_TEAM_NOTIFIED,
    ACCESS_UNAPPROVED_DETECTED,
    ACCESS_USER_NOTIFIED,
    EventBus,
)
from saasguard.storage import AUTO_REVOKE_RECORDS, Storage, StorageError
from saasguard.storage.queries import (
    delete_user_app_access,
    get_app,
    get_user,
    get_user_app_access,
    list_app_users,
    list_apps,
)

logger = structlog.get_logger(__name__)

ACCESS_HIERARCHY = ["viewer", "reader", "user", "editor", "contributor", "admin", "owner"]
APPROVAL_EXEMPT_CATEGORIES = frozenset({"productivity", "collaboration"})
HIGH_RISK_APP_SCORE = 70


class ViolationType(str, Enum):
    SHADOW_IT = "shadow_it"
    NO_APPROVAL = "no_approval"
    EXPIRED_APPROVAL = "expired_approval"
    SCOPE_EXCEEDED = "scope_exceeded"


class RecordStatus(str, Enum):
    """Lifecycle of an unapproved-access record."""

    DETECTED = "detected"
    PENDING_GRACE = "pending_grace"
    PENDING_APPROVAL = "pending_approval"
    REVOKED = "revoked"
    EXEMPTED = "exempted"
    RESOLVED = "resolved"


OPEN_STATUSES = (RecordStatus.PENDING_GRACE.value, RecordStatus.PENDING_APPROVAL.value)


@dataclass
class AutoRevokeConfig:
    enabled: bool = True
    dry_run: bool = False
    require_approval: bool = True
    grace_period_hours: int = 24
    notify_user: bool = True
    notify_manager: bool = True
    notify_security_team: bool = True
    exempted_apps: List[str] = field(default_factory=list)
    exempted_roles: List[str] = field(default_factory=lambda: ["admin", "super-admin", "security-admin"])

    @classmethod
    def from_settings(cls, settings) -> "AutoRevokeConfig":
        return cls(
            enabled=settings.auto_revoke_enabled,
            dry_run=settings.auto_revoke_dry_run,
            grace_period_hours=settings.auto_revoke_grace_period_hours,
        )


@dataclass
class Violation:
    violation_type: ViolationType
    details: str
    risk_level: str


@dataclass
class UnapprovedAccess:
    user_id: str
    user_name: str
    user_email: Optional[str]
    app_id: str
    app_name: str
    access_type: str
    violation_type: ViolationType
    violation_details: str
    risk_level: str
    discovered_at: str
    access_granted_at: Optional[str] = None

    def to_record(self, tenant_id: str) -> Dict[str, Any]:
        return {
            "tenant_id": tenant_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_email": self.user_email,
            "app_id": self.app_id,
            "app_name": self.app_name,
            "access_type": self.access_type,
            "violation_type": self.violation_type.value,
            "violation_details": self.violation_details,
            "risk_level": self.risk_level,
            "discovered_at": self.discovered_at,
            "access_granted_at": self.access_granted_at,
            "status": RecordStatus.DETECTED.value,
        }


@dataclass
class AutoRevokeResult:
    processed: int = 0
    revoked: int = 0
    pending_approval: int = 0
    pending_grace: int = 0
    exempted: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def parse_timestamp(value: str) -> datetime:
    """Parse a stored ISO timestamp, treating naive values as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def categorize_app(app: Dict[str, Any]) -> List[str]:
    name = (app.get("name") or "").lower()
    category = (app.get("category") or "").lower()
    categories = []

    if "security" in name or "security" in category:
        categories.append("security")
    if "data" in name or "storage" in category or "database" in category:
        categories.append("data")
    if "payment" in name or "finance" in name or "finance" in category:
        categories.append("financial")

    return categories


def is_access_escalation(approved: str, actual: str) -> bool:
    """True if ``actual`` ranks above ``approved`` in the access hierarchy."""
    try:
        approved_index = ACCESS_HIERARCHY.index(approved.lower())
        actual_index = ACCESS_HIERARCHY.index(actual.lower())
    except ValueError:
        return False
    return actual_index > approved_index


def check_for_violation(
    app: Dict[str, Any], access: Dict[str, Any], now: Optional[datetime] = None
) -> Optional[Violation]:
    """Classify one access record. The first matching rule wins."""
    now = now or datetime.now(timezone.utc)
    name = app.get("name") or app["id"]

    if app.get("approval_status") != "approved":
        categories = categorize_app(app)
        if "security" in categories:
            risk = "critical"
        elif "data" in categories:
            risk = "high"
        else:
            risk = "medium"
        return Violation(
            ViolationType.SHADOW_IT, f"User is accessing unsanctioned application: {name}", risk
        )

    if not access.get("approved_by") and not access.get("approved_at"):
        if (app.get("category") or "").lower() not in APPROVAL_EXEMPT_CATEGORIES:
            risk = "high" if (app.get("risk_score") or 0) >= HIGH_RISK_APP_SCORE else "medium"
            return Violation(
                ViolationType.NO_APPROVAL, f"Access granted without approval workflow for {name}", risk
            )

    expires = access.get("approval_expires_at")
    if expires and parse_timestamp(expires) < now:
        return Violation(
            ViolationType.EXPIRED_APPROVAL,
            f"Access approval expired on {parse_timestamp(expires).date().isoformat()}",
            "medium",
        )

    approved_level = access.get("approved_access_level")
    actual_level = access.get("access_level")
    if approved_level and actual_level and is_access_escalation(approved_level, actual_level):
        return Violation(
            ViolationType.SCOPE_EXCEEDED,
            f"User has {actual_level} access but was approved for {approved_level}",
            "high",
        )

    return None


class AutoRevokeService:
    """Finds access that was never approved and removes it.

    Critical violations are revoked immediately. Everything else first waits
    out a grace period and then, if configured, an explicit approval.
    """

    def __init__(
        self,
        tenant_id: str,
        storage: Storage,
        sso_revocation: SSORevocationService,
        config: Optional[AutoRevokeConfig] = None,
        events: Optional[EventBus] = None,
    ):
        self.tenant_id = tenant_id
        self.storage = storage
        self.sso_revocation = sso_revocation
        self.config = config or AutoRevokeConfig()
        self.events = events or EventBus()
        self.warnings: List[str] = []

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        warnings = self.events.emit(event, {"tenant_id": self.tenant_id, **payload})
        if warnings:
            logger.warning("auto_revoke_event_warnings", event_name=event, warnings=warnings)
            self.warnings.extend(warnings)

    def _is_exempt_app(self, app: Dict[str, Any]) -> bool:
        return app["id"] in self.config.exempted_apps or app.get("name") in self.config.exempted_apps

    def scan_for_unapproved_access(self, now: Optional[datetime] = None) -> List[UnapprovedAccess]:
        """List active access records that violate the approval policy."""
        now = now or datetime.now(timezone.utc)
        found: List[UnapprovedAccess] = []

        for app in list_apps(self.storage, self.tenant_id):
            if self._is_exempt_app(app):
                continue

            for access in list_app_users(self.storage, self.tenant_id, app["id"]):
                if access.get("status", "active") != "active":
                    continue

                user = get_user(self.storage, access["user_id"])
                if user is None or user.get("role") in self.config.exempted_roles:
                    continue

                violation = check_for_violation(app, access, now)
                if violation is None:
                    continue

                found.append(
                    UnapprovedAccess(
                        user_id=user["id"],
                        user_name=user.get("name") or user.get("email") or user["id"],
                        user_email=user.get("email"),
                        app_id=app["id"],
                        app_name=app.get("name") or app["id"],
                        access_type=access.get("access_type") or "user",
                        violation_type=violation.violation_type,
                        violation_details=violation.details,
                        risk_level=violation.risk_level,
                        discovered_at=now.isoformat(),
                        access_granted_at=access.get("granted_at"),
                    )
                )

        for item in found:
            if item.risk_level in ("critical", "high"):
                self._emit(
                    ACCESS_UNAPPROVED_DETECTED,
                    {
                        "user_id": item.user_id,
                        "user_name": item.user_name,
                        "app_id": item.app_id,
                        "app_name": item.app_name,
                        "violation_type": item.violation_type.value,
                        "risk_level": item.risk_level,
                    },
                )

        logger.info("unapproved_access_scanned", tenant_id=self.tenant_id, violations=len(found))
        return found

    def _existing_record(self, item: UnapprovedAccess) -> Optional[Dict[str, Any]]:
        for record in self.storage.find(
            AUTO_REVOKE_RECORDS,
            tenant_id=self.tenant_id,
            user_id=item.user_id,
            app_id=item.app_id,
            violation_type=item.violation_type.value,
        ):
            if record["status"] not in (RecordStatus.REVOKED.value, RecordStatus.RESOLVED.value):
                return record
        return None

    async def process_auto_revocation(self, now: Optional[datetime] = None) -> AutoRevokeResult:
        """Scan and act on every violation according to the configuration."""
        if not self.config.enabled:
            return AutoRevokeResult(errors=["Auto-revoke is disabled"])

        now = now or datetime.now(timezone.utc)
        first_warning = len(self.warnings)
        violations = self.scan_for_unapproved_access(now)
        result = AutoRevokeResult(processed=len(violations))

        for item in violations:
            try:
                record = self._existing_record(item)
                if record is None:
                    record = self.storage.create(AUTO_REVOKE_RECORDS, item.to_record(self.tenant_id))

                status = record["status"]
                if status == RecordStatus.EXEMPTED.value:
                    result.exempted += 1
                    continue
                if status == RecordStatus.PENDING_GRACE.value:
                    result.pending_grace += 1
                    continue
                if status == RecordStatus.PENDING_APPROVAL.value:
                    result.pending_approval += 1
                    continue

                if item.risk_level != "critical" and self.config.grace_period_hours > 0:
                    expires = now + timedelta(hours=self.config.grace_period_hours)
                    record = self.storage.update(
                        AUTO_REVOKE_RECORDS,
                        record["id"],
                        {"status": RecordStatus.PENDING_GRACE.value, "grace_expires_at": expires.isoformat()},
                    )
                    result.pending_grace += 1
                    if self.config.notify_user:
                        self._notify_user(record, "grace_period")
                    continue

                if item.risk_level != "critical" and self.config.require_approval:
                    self._request_approval(record)
                    result.pending_approval += 1
                    continue

                if await self._revoke(record, now):
                    result.revoked += 1

            except (SaasGuardError, StorageError) as e:
                logger.error(
                    "auto_revocation_failed",
                    user_id=item.user_id,
                    app_id=item.app_id,
                    error=str(e),
                )
                result.failed += 1
                result.errors.append(f"Failed to process {item.user_name} - {item.app_name}: {e}")

        result.warnings = self.warnings[first_warning:]
        logger.info(
            "auto_revocation_processed",
            tenant_id=self.tenant_id,
            revoked=result.revoked,
            pending_approval=result.pending_approval,
            pending_grace=result.pending_grace,
            failed=result.failed,
            warnings=len(result.warnings),
        )
        return result

    async def _revoke(self, record: Dict[str, Any], now: datetime, revoked_by: str = "system") -> bool:
        """Revoke the access behind a record.

        Returns:
            False in dry-run mode, True once access has been removed
        """
        if self.config.dry_run:
            logger.info(
                "auto_revocation_dry_run",
                user_id=record["user_id"],
                app_id=record["app_id"],
            )
            return False

        try:
            await self.sso_revocation.revoke_access(record["user_id"], record["app_id"])
        except SaasGuardError as e:
            logger.warning("sso_revocation_failed_removing_locally", app_id=record["app_id"], error=str(e))

        delete_user_app_access(self.storage, self.tenant_id, record["user_id"], record["app_id"])
        record = self.storage.update(
            AUTO_REVOKE_RECORDS,
            record["id"],
            {"status": RecordStatus.REVOKED.value, "revoked_at": now.isoformat(), "revoked_by": revoked_by},
        )

        self._emit(
            ACCESS_AUTO_REVOKED,
            {
                "user_id": record["user_id"],
                "user_name": record.get("user_name"),
                "app_id": record["app_id"],
                "app_name": record.get("app_name"),
                "violation_type": record["violation_type"],
                "violation_details": record.get("violation_details"),
                "revoked_at": record["revoked_at"],
            },
        )
        if self.config.notify_user:
            self._notify_user(record, "revoked")
        if self.config.notify_manager:
            self._emit(
                ACCESS_MANAGER_NOTIFIED,
                {
                    "user_id": record["user_id"],
                    "user_name": record.get("user_name"),
                    "app_name": record.get("app_name"),
                    "violation_type": record["violation_type"],
                },
            )
        if self.config.notify_security_team:
            self._emit(
                ACCESS_SECURITY_TEAM_NOTIFIED,
                {
                    "user_id": record["user_id"],
                    "user_name": record.get("user_name"),
                    "app_name": record.get("app_name"),
                    "violation_type": record["violation_type"],
                    "risk_level": record.get("risk_level"),
                },
            )

        logger.info("access_auto_revoked", user_id=record["user_id"], app_id=record["app_id"])
        return True

    def _notify_user(self, record: Dict[str, Any], notification_type: str) -> None:
        self._emit(
            ACCESS_USER_NOTIFIED,
            {
                "user_id": record["user_id"],
                "user_email": record.get("user_email"),
                "app_name": record.get("app_name"),
                "notification_type": notification_type,
                "grace_expires_at": record.get("grace_expires_at"),
            },
        )

    def _request_approval(self, record: Dict[str, Any]) -> None:
        self.storage.update(AUTO_REVOKE_RECORDS, record["id"], {"status": RecordStatus.PENDING_APPROVAL.value})
        self._emit(
            ACCESS_REVOCATION_APPROVAL_REQUESTED,
            {
                "record_id": record["id"],
                "user_id": record["user_id"],
                "user_name": record.get("user_name"),
                "app_id": record["app_id"],
                "app_name": record.get("app_name"),
                "violation_type": record["violation_type"],
                "risk_level": record.get("risk_level"),
            },
        )

    async def process_expired_grace_periods(self, now: Optional[datetime] = None) -> int:
        """Advance records whose grace period has run out.

        Each expired record goes to approval when approval is required and
        is revoked otherwise. Records whose access is already gone are
        marked resolved.

        Returns:
            Number of records advanced
        """
        now = now or datetime.now(timezone.utc)
        advanced = 0

        for record in self.storage.find(
            AUTO_REVOKE_RECORDS, tenant_id=self.tenant_id, status=RecordStatus.PENDING_GRACE.value
        ):
            expires = record.get("grace_expires_at")
            if not expires or parse_timestamp(expires) > now:
                continue

            if get_user_app_access(self.storage, self.tenant_id, record["user_id"], record["app_id"]) is None:
                self.storage.update(AUTO_REVOKE_RECORDS, record["id"], {"status": RecordStatus.RESOLVED.value})
                advanced += 1
                continue

            if self.config.require_approval:
                self._request_approval(record)
                advanced += 1
            elif await self._revoke(record, now):
                advanced += 1

        logger.info("expired_grace_periods_processed", tenant_id=self.tenant_id, advanced=advanced)
        return advanced

    def _open_record(self, record_id: str) -> Dict[str, Any]:
        record = self.storage.get(AUTO_REVOKE_RECORDS, record_id)
        if record is None or record.get("tenant_id") != self.tenant_id:
            raise NotFoundError(f"Auto-revoke record not found: {record_id}")
        if record["status"] not in OPEN_STATUSES:
            raise ValidationError(f"Auto-revoke record is {record['status']}")
        return record

    async def approve_revocation(self, record_id: str, approved_by: str) -> Dict[str, Any]:
        """Approve and carry out a pending revocation.

        Raises:
            NotFoundError: If the record does not exist
            ValidationError: If the record is not awaiting a decision
        """
        record = self._open_record(record_id)
        now = datetime.now(timezone.utc)

        self._emit(
            ACCESS_REVOCATION_APPROVED,
            {"record_id": record_id, "approved_by": approved_by, "approved_at": now.isoformat()},
        )
        await self._revoke(record, now, revoked_by=approved_by)
        return self.storage.get(AUTO_REVOKE_RECORDS, record_id)

    def reject_revocation(self, record_id: str, rejected_by: str, reason: str) -> Dict[str, Any]:
        """Exempt the access behind a record from revocation."""
        self._open_record(record_id)
        now = datetime.now(timezone.utc).isoformat()

        record = self.storage.update(
            AUTO_REVOKE_RECORDS,
            record_id,
            {
                "status": RecordStatus.EXEMPTED.value,
                "exempted_by": rejected_by,
                "exemption_reason": reason,
                "exempted_at": now,
            },
        )
        self._emit(
            ACCESS_REVOCATION_EXEMPTED,
            {"record_id": record_id, "exempted_by": rejected_by, "reason": reason, "exempted_at": now},
        )
        logger.info("revocation_exempted", record_id=record_id)
        return record

    async def manual_revoke(self, app_id: str, user_id: str, revoked_by: str, reason: str) -> None:
        """Revoke a user's access to an app on an operator's request.

        Raises:
            NotFoundError: If the app or user does not exist
        """
        app = get_app(self.storage, self.tenant_id, app_id)
        user = get_user(self.storage, user_id)
        if app is None or user is None:
            raise NotFoundError("App or user not found")

        await self.sso_revocation.revoke_access(user_id, app_id)
        delete_user_app_access(self.storage, self.tenant_id, user_id, app_id)

        self._emit(
            ACCESS_MANUALLY_REVOKED,
            {
                "user_id": user_id,
                "user_name": user.get("name") or user.get("email"),
                "app_id": app_id,
                "app_name": app.get("name"),
                "revoked_by": revoked_by,
                "reason": reason,
                "revoked_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        logger.info("access_manually_revoked", user_id=user_id, app_id=app_id)
