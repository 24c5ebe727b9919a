"""Offboarding orchestration.

Turns a playbook into concrete tasks for one departing user and runs them
one at a time in priority order. A task that fails is recorded on the task
and counted on the request; the remaining tasks still run. Only an error
outside the per-task boundary marks the whole request ``failed``.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import structlog

from saasguard.connectors.factory import create_connector
from saasguard.core.exceptions import NotFoundError, PartialFailure, SaasGuardError, ValidationError
from saasguard.core.lifecycle.audit_report import AuditReportGenerator
from saasguard.core.lifecycle.oauth_revocation import OAuthRevocationService
from saasguard.core.lifecycle.ownership_transfer import OwnershipTransferService
from saasguard.core.lifecycle.playbooks import PlaybookEngine, PlaybookType, StepType
from saasguard.core.lifecycle.sso_revocation import SSORevocationService
from saasguard.events import USER_OFFBOARDED, EventBus
from saasguard.storage import OFFBOARDING_REQUESTS, OFFBOARDING_TASKS, Storage, StorageError, utc_now
from saasguard.storage.queries import (
    get_offboarding_request,
    get_user,
    list_offboarding_tasks,
    list_oauth_tokens,
    list_user_app_access,
)

logger = structlog.get_logger(__name__)

TERMINAL_REQUEST_STATUSES = frozenset({"completed", "partial", "failed", "cancelled"})

# Step types that are recorded by the playbook but produce no task
INFORMATIONAL_STEPS = frozenset(
    {
        StepType.ARCHIVE_DATA.value,
        StepType.GENERATE_REPORT.value,
        StepType.REVIEW_ACCESS.value,
        StepType.ADJUST_PERMISSIONS.value,
        StepType.UPDATE_LICENSES.value,
        StepType.UPDATE_GROUPS.value,
        StepType.UPDATE_PERMISSIONS.value,
    }
)


@dataclass
class PreviewApp:
    app_id: str
    app_name: str
    access_type: str
    last_used: Optional[str] = None


@dataclass
class OffboardingPreview:
    user_id: str
    user_name: Optional[str]
    email: Optional[str]
    apps: List[PreviewApp] = field(default_factory=list)
    oauth_tokens: int = 0
    estimated_time_minutes: int = 2


@dataclass
class OffboardingStatus:
    request_id: str
    status: str
    progress: int
    total_tasks: int
    completed_tasks: int
    failed_tasks: int
    current_task: Optional[str] = None
    errors: List[str] = field(default_factory=list)


class OffboardingOrchestrator:
    """Coordinates revocation, ownership transfer and reporting for one tenant."""

    def __init__(
        self,
        tenant_id: str,
        storage: Storage,
        cipher,
        events: Optional[EventBus] = None,
        report_dir: Optional[Path] = None,
        connector_factory: Callable[..., Any] = create_connector,
        connector_options: Optional[Dict[str, Any]] = None,
        sso_revocation: Optional[SSORevocationService] = None,
        oauth_revocation: Optional[OAuthRevocationService] = None,
        ownership_transfer: Optional[OwnershipTransferService] = None,
    ):
        """Initialize orchestrator.

        Args:
            tenant_id: Tenant whose users are offboarded
            storage: Record store
            cipher: Cipher used to decrypt provider secrets
            events: Event bus for the completion event
            report_dir: Directory for audit reports
            connector_factory: Builds connectors for the revocation services
            connector_options: Extra keyword arguments for the factory
            sso_revocation: Service override
            oauth_revocation: Service override
            ownership_transfer: Service override
        """
        self.tenant_id = tenant_id
        self.storage = storage
        self.events = events or EventBus()

        options = connector_options or {}
        self.sso_revocation = sso_revocation or SSORevocationService(
            tenant_id, storage, cipher, connector_factory, options
        )
        self.oauth_revocation = oauth_revocation or OAuthRevocationService(tenant_id, storage, cipher)
        self.ownership_transfer = ownership_transfer or OwnershipTransferService(
            tenant_id, storage, cipher, connector_factory, options
        )
        self.playbooks = PlaybookEngine(storage)
        self.reports = AuditReportGenerator(tenant_id, storage, report_dir)

    def preview_offboarding(self, user_id: str) -> OffboardingPreview:
        """Describe what offboarding a user would touch.

        Raises:
            NotFoundError: If the user does not exist
        """
        user = get_user(self.storage, user_id)
        if user is None:
            raise NotFoundError("User not found")

        apps = [
            PreviewApp(
                app_id=access["app_id"],
                app_name=access.get("app_name") or "Unknown",
                access_type=access.get("access_type") or "Unknown",
                last_used=access.get("last_access_at"),
            )
            for access in list_user_app_access(self.storage, self.tenant_id, user_id)
        ]

        return OffboardingPreview(
            user_id=user["id"],
            user_name=user.get("name"),
            email=user.get("email"),
            apps=apps,
            oauth_tokens=len(list_oauth_tokens(self.storage, self.tenant_id, user_id)),
            # one minute per app plus fixed overhead
            estimated_time_minutes=len(apps) + 2,
        )

    def create_request(
        self,
        user_id: str,
        initiated_by: str,
        playbook_id: Optional[str] = None,
        reason: Optional[str] = None,
        transfer_to_user_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a pending offboarding request.

        Args:
            user_id: Departing user
            initiated_by: User id of whoever started the offboarding
            playbook_id: Playbook to run; the standard default when omitted
            reason: Free-text reason
            transfer_to_user_id: New owner for the user's resources
            notes: Free-text notes

        Returns:
            Stored request record

        Raises:
            NotFoundError: If no playbook is given and there is no standard default
        """
        if not playbook_id:
            playbook = self.playbooks.get_default_playbook(self.tenant_id, PlaybookType.STANDARD.value)
            if playbook is None:
                raise NotFoundError("No default playbook found")
            playbook_id = playbook["id"]

        request = self.storage.create(
            OFFBOARDING_REQUESTS,
            {
                "tenant_id": self.tenant_id,
                "user_id": user_id,
                "playbook_id": playbook_id,
                "status": "pending",
                "initiated_by": initiated_by,
                "initiated_at": utc_now(),
                "reason": reason,
                "transfer_to_user_id": transfer_to_user_id,
                "notes": notes,
                "total_tasks": 0,
                "completed_tasks": 0,
                "failed_tasks": 0,
            },
        )
        logger.info("offboarding_request_created", request_id=request["id"], user_id=user_id)
        return request

    def _update_request(self, request_id: str, changes: Dict[str, Any]) -> None:
        self.storage.update(OFFBOARDING_REQUESTS, request_id, changes)

    def _update_task(self, task_id: str, changes: Dict[str, Any]) -> None:
        self.storage.update(OFFBOARDING_TASKS, task_id, changes)

    async def execute_offboarding(self, request_id: str) -> OffboardingStatus:
        """Run every task of a pending request and finalize it.

        Returns:
            Final status of the request

        Raises:
            NotFoundError: If the request or its playbook does not exist
            ValidationError: If the request is not pending
        """
        request = get_offboarding_request(self.storage, self.tenant_id, request_id)
        if request is None:
            raise NotFoundError("Offboarding request not found")
        if request["status"] != "pending":
            raise ValidationError(f"Offboarding request is {request['status']}, expected pending")

        logger.info("offboarding_started", request_id=request_id, user_id=request["user_id"])

        try:
            self._update_request(request_id, {"status": "in_progress", "started_at": utc_now()})

            playbook = self.playbooks.get_playbook(self.tenant_id, request.get("playbook_id") or "")
            if playbook is None:
                playbook = self.playbooks.get_default_playbook(self.tenant_id, PlaybookType.STANDARD.value)
            if playbook is None:
                raise NotFoundError("Playbook not found")

            tasks = self.generate_tasks(request, playbook)
            self._update_request(request_id, {"total_tasks": len(tasks)})

            completed = failed = 0
            # sorted() is stable, so equal priorities keep playbook order
            for task in sorted(tasks, key=lambda t: t.get("priority") or 0):
                current = self.storage.get(OFFBOARDING_TASKS, task["id"])
                if current is None or current["status"] != "pending":
                    logger.info("offboarding_task_not_pending", task_id=task["id"])
                    continue

                if await self.execute_task(request, current):
                    completed += 1
                    self._update_request(request_id, {"completed_tasks": completed})
                else:
                    failed += 1
                    self._update_request(request_id, {"failed_tasks": failed})

            latest = get_offboarding_request(self.storage, self.tenant_id, request_id) or request
            if latest["status"] == "cancelled":
                logger.info("offboarding_cancelled_during_run", request_id=request_id)
                return self.get_status(request_id)

            final_status = "partial" if failed > 0 else "completed"
            self._update_request(request_id, {"status": final_status, "completed_at": utc_now()})

            # The work is done; a report failure only degrades the record
            warnings: List[str] = []
            try:
                report_url = self.reports.generate_report(request_id)
                self._update_request(request_id, {"audit_report_url": report_url})
            except (SaasGuardError, StorageError, OSError) as e:
                logger.error("audit_report_failed", request_id=request_id, error=str(e))
                warnings.append(f"Audit report could not be generated: {e}")

            warnings += self.events.emit(
                USER_OFFBOARDED,
                {
                    "tenant_id": self.tenant_id,
                    "user_id": request["user_id"],
                    "offboarding_status": final_status,
                    "offboarding_request_id": request_id,
                    "total_tasks": len(tasks),
                    "completed_tasks": completed,
                    "failed_tasks": failed,
                },
            )
            if warnings:
                logger.warning("offboarding_finished_with_warnings", request_id=request_id, warnings=warnings)
                self._update_request(request_id, {"warnings": warnings})

            logger.info(
                "offboarding_finished",
                request_id=request_id,
                status=final_status,
                completed=completed,
                failed=failed,
            )
            return self.get_status(request_id)

        except Exception as e:
            logger.error("offboarding_failed", request_id=request_id, error=str(e))
            self._update_request(request_id, {"status": "failed", "completed_at": utc_now()})
            raise

    def generate_tasks(self, request: Dict[str, Any], playbook: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Expand enabled playbook steps into stored tasks."""
        tasks = []
        access_list = list_user_app_access(self.storage, self.tenant_id, request["user_id"])

        def add(task_type: str, priority: int, **extra: Any) -> None:
            tasks.append(
                self.storage.create(
                    OFFBOARDING_TASKS,
                    {
                        "request_id": request["id"],
                        "task_type": task_type,
                        "status": "pending",
                        "priority": priority,
                        "retry_count": 0,
                        **extra,
                    },
                )
            )

        for step in playbook.get("steps") or []:
            if not step.get("enabled"):
                continue

            step_type, priority = step["type"], step.get("priority") or 0

            if step_type == StepType.REVOKE_SSO.value:
                for access in access_list:
                    if access.get("access_type") == "sso":
                        add(step_type, priority, app_id=access["app_id"], app_name=access.get("app_name"))
            elif step_type in (StepType.REVOKE_OAUTH.value, StepType.REMOVE_FROM_GROUPS.value):
                add(step_type, priority)
            elif step_type == StepType.TRANSFER_OWNERSHIP.value:
                if request.get("transfer_to_user_id"):
                    add(step_type, priority)
            elif step_type not in INFORMATIONAL_STEPS:
                logger.warning("unknown_playbook_step", step_type=step_type)

        logger.info("offboarding_tasks_generated", request_id=request["id"], tasks=len(tasks))
        return tasks

    async def execute_task(self, request: Dict[str, Any], task: Dict[str, Any]) -> bool:
        """Run one task and record its outcome.

        Returns:
            True if the task completed, False if it failed
        """
        logger.info("offboarding_task_started", task_id=task["id"], task_type=task["task_type"])
        self._update_task(task["id"], {"status": "in_progress", "started_at": utc_now()})

        try:
            result = await self._dispatch(request, task)
        except Exception as e:
            logger.warning(
                "offboarding_task_failed",
                task_id=task["id"],
                task_type=task["task_type"],
                error=str(e),
            )
            changes = {
                "status": "failed",
                "completed_at": utc_now(),
                "error_message": str(e) or "Unknown error",
                "retry_count": (task.get("retry_count") or 0) + 1,
            }
            if isinstance(e, PartialFailure):
                changes["result"] = e.details
            self._update_task(task["id"], changes)
            return False

        self._update_task(task["id"], {"status": "completed", "completed_at": utc_now(), "result": result})
        return True

    async def _dispatch(self, request: Dict[str, Any], task: Dict[str, Any]) -> Dict[str, Any]:
        task_type, user_id = task["task_type"], request["user_id"]

        if task_type == StepType.REVOKE_SSO.value:
            outcome = await self.sso_revocation.revoke_access(user_id, task["app_id"])
            if not outcome.success:
                raise PartialFailure(outcome.message, outcome.to_dict())
            return outcome.to_dict()

        if task_type == StepType.REVOKE_OAUTH.value:
            outcome = await self.oauth_revocation.revoke_all_tokens(user_id)
            if not outcome.success:
                raise PartialFailure("; ".join(outcome.errors), outcome.to_dict())
            return outcome.to_dict()

        if task_type == StepType.REMOVE_FROM_GROUPS.value:
            outcome = await self.sso_revocation.remove_from_all_groups(user_id)
            if not outcome.success:
                raise PartialFailure(outcome.message, outcome.to_dict())
            return outcome.to_dict()

        if task_type == StepType.TRANSFER_OWNERSHIP.value:
            summary = await self.ownership_transfer.transfer_all(user_id, request["transfer_to_user_id"])
            if summary.failed_transfers:
                raise PartialFailure("; ".join(summary.errors), summary.to_dict())
            return summary.to_dict()

        logger.warning("unhandled_task_type", task_type=task_type)
        return {"skipped": True}

    def get_status(self, request_id: str) -> OffboardingStatus:
        """Progress of a request from its last stored counts.

        Raises:
            NotFoundError: If the request does not exist
        """
        request = get_offboarding_request(self.storage, self.tenant_id, request_id)
        if request is None:
            raise NotFoundError("Offboarding request not found")

        tasks = list_offboarding_tasks(self.storage, request_id)
        current = next((t for t in tasks if t["status"] == "in_progress"), None)

        total = request.get("total_tasks") or 0
        completed = request.get("completed_tasks") or 0

        return OffboardingStatus(
            request_id=request["id"],
            status=request["status"],
            progress=round(completed / total * 100) if total else 0,
            total_tasks=total,
            completed_tasks=completed,
            failed_tasks=request.get("failed_tasks") or 0,
            current_task=current["task_type"] if current else None,
            errors=[t.get("error_message") or "Unknown error" for t in tasks if t["status"] == "failed"],
        )

    def cancel_offboarding(self, request_id: str) -> int:
        """Cancel a request and skip its pending tasks.

        Tasks already running or finished are left alone.

        Returns:
            Number of tasks skipped

        Raises:
            NotFoundError: If the request does not exist
            ValidationError: If the request already finished
        """
        request = get_offboarding_request(self.storage, self.tenant_id, request_id)
        if request is None:
            raise NotFoundError("Offboarding request not found")
        if request["status"] in TERMINAL_REQUEST_STATUSES:
            raise ValidationError(f"Offboarding request is already {request['status']}")

        self._update_request(request_id, {"status": "cancelled", "completed_at": utc_now()})

        skipped = 0
        for task in list_offboarding_tasks(self.storage, request_id):
            if task["status"] == "pending":
                self._update_task(task["id"], {"status": "skipped"})
                skipped += 1

        logger.info("offboarding_cancelled", request_id=request_id, tasks_skipped=skipped)
        return skipped
