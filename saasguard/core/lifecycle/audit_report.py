"""Audit reports for finished offboarding requests."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from saasguard.core.exceptions import NotFoundError
from saasguard.storage import Storage
from saasguard.storage.queries import get_offboarding_request, get_user, list_offboarding_tasks

logger = structlog.get_logger(__name__)

REPORT_URL_TEMPLATE = "/api/offboarding/reports/{request_id}.pdf"


@dataclass
class ReportSummary:
    user_id: str
    user_name: Optional[str]
    email: Optional[str]
    status: str
    initiated_by: str
    initiated_at: Optional[str]
    completed_at: Optional[str] = None
    duration: Optional[str] = None


@dataclass
class ReportMetrics:
    total_tasks: int
    completed_tasks: int
    failed_tasks: int
    success_rate: int


@dataclass
class ReportAction:
    task_type: str
    status: str
    app_name: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    result: Any = None
    error: Optional[str] = None


@dataclass
class ComplianceChecklist:
    sso_revoked: bool
    oauth_revoked: bool
    ownership_transferred: bool
    data_archived: bool
    audit_trail_complete: bool = True


@dataclass
class AuditReport:
    request_id: str
    generated_at: str
    summary: ReportSummary
    metrics: ReportMetrics
    actions: List[ReportAction]
    compliance: ComplianceChecklist
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _parse(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def format_duration(started_at: datetime, completed_at: datetime) -> str:
    """Render an elapsed time the way the report shows it."""
    elapsed = (completed_at - started_at).total_seconds()
    minutes = int(elapsed // 60)

    if minutes < 1:
        return f"{int(elapsed)} seconds"
    if minutes < 60:
        return f"{minutes} minutes"
    return f"{minutes // 60} hours {minutes % 60} minutes"


def success_rate(completed: int, total: int) -> int:
    if total == 0:
        return 0
    return round(completed / total * 100)


def assess_compliance(tasks: List[Dict[str, Any]]) -> ComplianceChecklist:
    def done(task_type: str) -> bool:
        return any(t["task_type"] == task_type and t["status"] == "completed" for t in tasks)

    return ComplianceChecklist(
        sso_revoked=done("revoke_sso"),
        oauth_revoked=done("revoke_oauth"),
        ownership_transferred=done("transfer_ownership"),
        data_archived=done("archive_data"),
    )


def build_recommendations(request: Dict[str, Any], tasks: List[Dict[str, Any]]) -> List[str]:
    recommendations = []

    failed = [t for t in tasks if t["status"] == "failed"]
    if failed:
        recommendations.append(f"{len(failed)} task(s) failed - manual intervention may be required")
        for task in failed:
            suffix = f" for {task['app_name']}" if task.get("app_name") else ""
            recommendations.append(f"Review failed task: {task['task_type']}{suffix}")

    if request.get("status") == "partial":
        recommendations.append(
            "Offboarding completed partially - verify all access has been revoked manually"
        )

    if request.get("transfer_to_user_id"):
        recommendations.append(
            "Verify that all file ownership transfers were successful with the new owner"
        )

    recommendations.append("Verify that licenses have been reclaimed and reassigned if needed")
    recommendations.append(
        "Ensure user data is retained according to compliance requirements before deletion"
    )
    return recommendations


class AuditReportGenerator:
    """Builds, renders and stores offboarding audit reports."""

    def __init__(self, tenant_id: str, storage: Storage, report_dir: Optional[Path] = None):
        """Initialize generator.

        Args:
            tenant_id: Tenant owning the requests
            storage: Record store
            report_dir: Where reports are written; nothing is written if None
        """
        self.tenant_id = tenant_id
        self.storage = storage
        self.report_dir = Path(report_dir) if report_dir else None

    def build_report(self, request_id: str) -> AuditReport:
        """Assemble the report for a request from its stored state.

        Raises:
            NotFoundError: If the request or its user does not exist
        """
        request = get_offboarding_request(self.storage, self.tenant_id, request_id)
        if request is None:
            raise NotFoundError("Offboarding request not found")

        user = get_user(self.storage, request["user_id"])
        if user is None:
            raise NotFoundError("User not found")

        initiator = get_user(self.storage, request.get("initiated_by") or "")
        tasks = list_offboarding_tasks(self.storage, request_id)

        started, completed = _parse(request.get("started_at")), _parse(request.get("completed_at"))
        duration = format_duration(started, completed) if started and completed else None

        total = request.get("total_tasks") or 0
        done = request.get("completed_tasks") or 0

        return AuditReport(
            request_id=request["id"],
            generated_at=datetime.now(timezone.utc).isoformat(),
            summary=ReportSummary(
                user_id=user["id"],
                user_name=user.get("name"),
                email=user.get("email"),
                status=request["status"],
                initiated_by=(initiator or {}).get("name") or "Unknown",
                initiated_at=request.get("initiated_at") or request.get("created_at"),
                completed_at=request.get("completed_at"),
                duration=duration,
            ),
            metrics=ReportMetrics(
                total_tasks=total,
                completed_tasks=done,
                failed_tasks=request.get("failed_tasks") or 0,
                success_rate=success_rate(done, total),
            ),
            actions=[
                ReportAction(
                    task_type=t["task_type"],
                    status=t["status"],
                    app_name=t.get("app_name"),
                    started_at=t.get("started_at"),
                    completed_at=t.get("completed_at"),
                    result=t.get("result"),
                    error=t.get("error_message"),
                )
                for t in tasks
            ],
            compliance=assess_compliance(tasks),
            recommendations=build_recommendations(request, tasks),
        )

    def render_text(self, report: AuditReport) -> str:
        """Plain-text rendering of a report."""
        summary, metrics, compliance = report.summary, report.metrics, report.compliance

        def yes_no(flag: bool) -> str:
            return "Yes" if flag else "No"

        lines = [
            "OFFBOARDING AUDIT REPORT",
            "========================",
            f"Generated: {report.generated_at}",
            "",
            "SUMMARY",
            "-------",
            f"User: {summary.user_name or 'Unknown'} ({summary.email or 'no email'})",
            f"Status: {summary.status.upper()}",
            f"Initiated By: {summary.initiated_by}",
            f"Initiated At: {summary.initiated_at or 'Unknown'}",
        ]
        if summary.completed_at:
            lines.append(f"Completed At: {summary.completed_at}")
        if summary.duration:
            lines.append(f"Duration: {summary.duration}")

        lines += [
            "",
            "METRICS",
            "-------",
            f"Total Tasks: {metrics.total_tasks}",
            f"Completed Tasks: {metrics.completed_tasks}",
            f"Failed Tasks: {metrics.failed_tasks}",
            f"Success Rate: {metrics.success_rate}%",
            "",
            "ACTIONS TAKEN",
            "-------------",
        ]
        for action in report.actions:
            title = f"Task: {action.task_type}"
            if action.app_name:
                title += f" - {action.app_name}"
            lines += [title, f"Status: {action.status}"]
            if action.started_at:
                lines.append(f"Started: {action.started_at}")
            if action.completed_at:
                lines.append(f"Completed: {action.completed_at}")
            if action.error:
                lines.append(f"Error: {action.error}")
            lines.append("")

        lines += [
            "",
            "COMPLIANCE CHECKLIST",
            "--------------------",
            f"SSO Revoked: {yes_no(compliance.sso_revoked)}",
            f"OAuth Revoked: {yes_no(compliance.oauth_revoked)}",
            f"Ownership Transferred: {yes_no(compliance.ownership_transferred)}",
            f"Data Archived: {yes_no(compliance.data_archived)}",
            f"Audit Trail Complete: {yes_no(compliance.audit_trail_complete)}",
            "",
            "RECOMMENDATIONS",
            "---------------",
        ]
        lines += [f"{i}. {rec}" for i, rec in enumerate(report.recommendations, 1)]
        lines += ["", "---", f"Report ID: {report.request_id}"]

        return "\n".join(lines)

    def save(self, report: AuditReport) -> List[Path]:
        """Write the JSON and text renderings into ``report_dir``."""
        if self.report_dir is None:
            return []

        self.report_dir.mkdir(parents=True, exist_ok=True)
        json_path = self.report_dir / f"{report.request_id}.json"
        text_path = self.report_dir / f"{report.request_id}.txt"

        with open(json_path, "w") as f:
            json.dump(report.to_dict(), f, indent=2, default=str)
        with open(text_path, "w") as f:
            f.write(self.render_text(report))

        return [json_path, text_path]

    def generate_report(self, request_id: str) -> str:
        """Build and store the report for a request.

        Returns:
            URL under which the report is served
        """
        report = self.build_report(request_id)
        paths = self.save(report)
        url = REPORT_URL_TEMPLATE.format(request_id=request_id)

        logger.info(
            "audit_report_generated",
            request_id=request_id,
            url=url,
            files=[str(p) for p in paths],
        )
        return url
