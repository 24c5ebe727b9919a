"""Policy enforcement on discovered application access."""

from saasguard.core.access.auto_revoke import (
    AutoRevokeConfig,
    AutoRevokeResult,
    AutoRevokeService,
    RecordStatus,
    UnapprovedAccess,
    ViolationType,
    check_for_violation,
    is_access_escalation,
)

__all__ = [
    "AutoRevokeConfig",
    "AutoRevokeResult",
    "AutoRevokeService",
    "RecordStatus",
    "UnapprovedAccess",
    "ViolationType",
    "check_for_violation",
    "is_access_escalation",
]
