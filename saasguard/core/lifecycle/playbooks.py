"""Offboarding playbook templates."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from saasguard.core.exceptions import NotFoundError, ValidationError
from saasguard.storage import PLAYBOOKS, Storage

logger = structlog.get_logger(__name__)


class PlaybookType(str, Enum):
    STANDARD = "standard"
    CONTRACTOR = "contractor"
    TRANSFER = "transfer"
    ROLE_CHANGE = "role_change"


class StepType(str, Enum):
    """Actions a playbook step can request."""

    REVOKE_SSO = "revoke_sso"
    REVOKE_OAUTH = "revoke_oauth"
    TRANSFER_OWNERSHIP = "transfer_ownership"
    REMOVE_FROM_GROUPS = "remove_from_groups"
    ARCHIVE_DATA = "archive_data"
    GENERATE_REPORT = "generate_report"
    REVIEW_ACCESS = "review_access"
    ADJUST_PERMISSIONS = "adjust_permissions"
    UPDATE_LICENSES = "update_licenses"
    UPDATE_GROUPS = "update_groups"
    UPDATE_PERMISSIONS = "update_permissions"


VALID_STEP_TYPES = frozenset(step.value for step in StepType)


@dataclass
class PlaybookStep:
    type: str
    priority: int
    enabled: bool
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _steps(*steps: tuple) -> List[Dict[str, Any]]:
    return [
        PlaybookStep(type=t.value, priority=i, enabled=True, description=d).to_dict()
        for i, (t, d) in enumerate(steps, 1)
    ]


DEFAULT_PLAYBOOKS: List[Dict[str, Any]] = [
    {
        "name": "Standard Employee Offboarding",
        "type": PlaybookType.STANDARD.value,
        "description": "Complete offboarding for departing full-time employees",
        "steps": _steps(
            (StepType.REVOKE_SSO, "Revoke SSO assignments from all applications"),
            (StepType.REVOKE_OAUTH, "Revoke OAuth tokens and API access"),
            (StepType.TRANSFER_OWNERSHIP, "Transfer ownership of files and resources"),
            (StepType.REMOVE_FROM_GROUPS, "Remove from all security groups"),
            (StepType.ARCHIVE_DATA, "Archive user data for compliance"),
            (StepType.GENERATE_REPORT, "Generate audit report"),
        ),
    },
    {
        "name": "Contractor Offboarding",
        "type": PlaybookType.CONTRACTOR.value,
        "description": "Streamlined offboarding for contractors and temporary staff",
        "steps": _steps(
            (StepType.REVOKE_SSO, "Revoke SSO assignments from all applications"),
            (StepType.REVOKE_OAUTH, "Revoke OAuth tokens and API access"),
            (StepType.REMOVE_FROM_GROUPS, "Remove from all security groups"),
            (StepType.GENERATE_REPORT, "Generate audit report"),
        ),
    },
    {
        "name": "Department Transfer",
        "type": PlaybookType.TRANSFER.value,
        "description": "Adjust access when an employee moves between departments",
        "steps": _steps(
            (StepType.TRANSFER_OWNERSHIP, "Transfer ownership of department resources"),
            (StepType.UPDATE_GROUPS, "Update group memberships for the new department"),
            (StepType.UPDATE_PERMISSIONS, "Update application permissions"),
            (StepType.GENERATE_REPORT, "Generate audit report"),
        ),
    },
    {
        "name": "Role Change",
        "type": PlaybookType.ROLE_CHANGE.value,
        "description": "Review and adjust access after a role change",
        "steps": _steps(
            (StepType.REVIEW_ACCESS, "Review current application access"),
            (StepType.ADJUST_PERMISSIONS, "Adjust permissions for the new role"),
            (StepType.UPDATE_LICENSES, "Update license assignments"),
            (StepType.GENERATE_REPORT, "Generate audit report"),
        ),
    },
]


def validate_steps(steps: Any) -> None:
    """Reject malformed step lists.

    Raises:
        ValidationError: On the first invalid step
    """
    if not isinstance(steps, list) or not steps:
        raise ValidationError("Playbook must have at least one step")

    for step in steps:
        if not isinstance(step, dict) or not step.get("type"):
            raise ValidationError("Step type is required")
        if step["type"] not in VALID_STEP_TYPES:
            raise ValidationError(f"Invalid step type: {step['type']}")

        priority = step.get("priority")
        # bool is an int subclass but never a valid priority
        if isinstance(priority, bool) or not isinstance(priority, (int, float)):
            raise ValidationError("Step priority must be a number")
        if not isinstance(step.get("enabled"), bool):
            raise ValidationError("Step enabled must be a boolean")
        if not step.get("description"):
            raise ValidationError("Step description is required")


def recommend_playbook_type(
    is_contractor: bool = False,
    is_department_transfer: bool = False,
    is_role_change: bool = False,
) -> PlaybookType:
    """Pick the playbook type for an offboarding scenario."""
    if is_contractor:
        return PlaybookType.CONTRACTOR
    if is_department_transfer:
        return PlaybookType.TRANSFER
    if is_role_change:
        return PlaybookType.ROLE_CHANGE
    return PlaybookType.STANDARD


class PlaybookEngine:
    """CRUD over playbook templates, with at most one default per type."""

    def __init__(self, storage: Storage):
        self.storage = storage

    def list_playbooks(self, tenant_id: str, playbook_type: Optional[str] = None) -> List[Dict[str, Any]]:
        filters = {"tenant_id": tenant_id}
        if playbook_type:
            filters["type"] = playbook_type
        return self.storage.find(PLAYBOOKS, **filters)

    def get_playbook(self, tenant_id: str, playbook_id: str) -> Optional[Dict[str, Any]]:
        playbook = self.storage.get(PLAYBOOKS, playbook_id)
        if playbook and playbook.get("tenant_id") == tenant_id:
            return playbook
        return None

    def get_default_playbook(self, tenant_id: str, playbook_type: str) -> Optional[Dict[str, Any]]:
        return self.storage.first(PLAYBOOKS, tenant_id=tenant_id, type=playbook_type, is_default=True)

    def get_recommended_playbook(self, tenant_id: str, **scenario: bool) -> Optional[Dict[str, Any]]:
        """Default playbook for a scenario, falling back to the standard default."""
        playbook_type = recommend_playbook_type(**scenario)
        return self.get_default_playbook(tenant_id, playbook_type.value) or self.get_default_playbook(
            tenant_id, PlaybookType.STANDARD.value
        )

    def _unset_defaults(self, tenant_id: str, playbook_type: str, keep_id: Optional[str] = None) -> None:
        for playbook in self.storage.find(PLAYBOOKS, tenant_id=tenant_id, type=playbook_type, is_default=True):
            if playbook["id"] != keep_id:
                self.storage.update(PLAYBOOKS, playbook["id"], {"is_default": False})
                logger.debug("playbook_default_unset", playbook_id=playbook["id"])

    def create_playbook(
        self,
        tenant_id: str,
        name: str,
        playbook_type: str,
        steps: List[Dict[str, Any]],
        is_default: bool = False,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a playbook template.

        Args:
            tenant_id: Owning tenant
            name: Display name
            playbook_type: Scenario type (standard, contractor, transfer, role_change)
            steps: Step definitions
            is_default: Make this the default for its type
            description: Optional description
            created_by: User id of the author

        Returns:
            Stored playbook record

        Raises:
            ValidationError: If the steps are invalid
        """
        validate_steps(steps)

        if is_default:
            self._unset_defaults(tenant_id, playbook_type)

        playbook = self.storage.create(
            PLAYBOOKS,
            {
                "tenant_id": tenant_id,
                "name": name,
                "type": playbook_type,
                "description": description,
                "steps": steps,
                "is_default": is_default,
                "created_by": created_by,
            },
        )
        logger.info("playbook_created", playbook_id=playbook["id"], type=playbook_type, is_default=is_default)
        return playbook

    def update_playbook(self, tenant_id: str, playbook_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Update a playbook template.

        Raises:
            NotFoundError: If the playbook does not exist for the tenant
            ValidationError: If new steps are invalid
        """
        playbook = self.get_playbook(tenant_id, playbook_id)
        if playbook is None:
            raise NotFoundError(f"Playbook not found: {playbook_id}")

        if "steps" in changes:
            validate_steps(changes["steps"])

        if changes.get("is_default") and not playbook.get("is_default"):
            self._unset_defaults(tenant_id, changes.get("type", playbook["type"]), keep_id=playbook_id)

        allowed = {k: v for k, v in changes.items() if k not in ("id", "tenant_id", "created_at")}
        updated = self.storage.update(PLAYBOOKS, playbook_id, allowed)
        logger.info("playbook_updated", playbook_id=playbook_id, fields=sorted(allowed))
        return updated

    def delete_playbook(self, tenant_id: str, playbook_id: str) -> bool:
        if self.get_playbook(tenant_id, playbook_id) is None:
            return False
        deleted = self.storage.delete(PLAYBOOKS, playbook_id)
        logger.info("playbook_deleted", playbook_id=playbook_id)
        return deleted

    def seed_default_playbooks(self, tenant_id: str) -> List[Dict[str, Any]]:
        """Create the built-in templates whose type has no default yet.

        Returns:
            Newly created playbooks
        """
        created = []
        for template in DEFAULT_PLAYBOOKS:
            if self.get_default_playbook(tenant_id, template["type"]):
                continue
            created.append(
                self.create_playbook(
                    tenant_id,
                    name=template["name"],
                    playbook_type=template["type"],
                    steps=[dict(step) for step in template["steps"]],
                    is_default=True,
                    description=template["description"],
                    created_by="system",
                )
            )

        logger.info("default_playbooks_seeded", tenant_id=tenant_id, created=len(created))
        return created
