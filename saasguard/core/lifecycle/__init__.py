"""Offboarding: playbooks, revocation services, orchestration and audit reports."""

from saasguard.core.lifecycle.audit_report import AuditReport, AuditReportGenerator, format_duration
from saasguard.core.lifecycle.oauth_revocation import OAuthRevocationResult, OAuthRevocationService
from saasguard.core.lifecycle.orchestrator import (
    OffboardingOrchestrator,
    OffboardingPreview,
    OffboardingStatus,
    PreviewApp,
)
from saasguard.core.lifecycle.ownership_transfer import (
    OwnershipTransferService,
    TransferResult,
    TransferSummary,
)
from saasguard.core.lifecycle.playbooks import (
    DEFAULT_PLAYBOOKS,
    PlaybookEngine,
    PlaybookStep,
    PlaybookType,
    StepType,
    recommend_playbook_type,
    validate_steps,
)
from saasguard.core.lifecycle.sso_revocation import RevocationResult, SSORevocationService

__all__ = [
    "AuditReport",
    "AuditReportGenerator",
    "format_duration",
    "OAuthRevocationResult",
    "OAuthRevocationService",
    "OffboardingOrchestrator",
    "OffboardingPreview",
    "OffboardingStatus",
    "PreviewApp",
    "OwnershipTransferService",
    "TransferResult",
    "TransferSummary",
    "DEFAULT_PLAYBOOKS",
    "PlaybookEngine",
    "PlaybookStep",
    "PlaybookType",
    "StepType",
    "recommend_playbook_type",
    "validate_steps",
    "RevocationResult",
    "SSORevocationService",
]
