"""Offboarding CLI commands."""

import asyncio
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from saasguard.cli.context import get_app_settings, open_cipher, open_storage, tenant_option
from saasguard.core.exceptions import NotFoundError, ValidationError
from saasguard.core.lifecycle.audit_report import AuditReportGenerator
from saasguard.core.lifecycle.orchestrator import OffboardingOrchestrator, OffboardingStatus
from saasguard.storage.queries import get_user_by_email

console = Console()

STATUS_STYLES = {
    "completed": "green",
    "partial": "yellow",
    "failed": "red",
    "cancelled": "dim",
    "in_progress": "cyan",
    "pending": "white",
}


def _orchestrator(ctx, tenant_id: str) -> OffboardingOrchestrator:
    return OffboardingOrchestrator(
        tenant_id,
        open_storage(ctx),
        open_cipher(ctx),
        report_dir=get_app_settings(ctx).report_dir,
    )


def _resolve_user(ctx, tenant_id: str, email: str) -> dict:
    user = get_user_by_email(open_storage(ctx), tenant_id, email)
    if user is None:
        console.print(f"[red]User not found: {email}[/red]")
        raise click.Abort()
    return user


def _print_status(status: OffboardingStatus) -> None:
    style = STATUS_STYLES.get(status.status, "white")

    table = Table(title="Offboarding Status")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Request", status.request_id)
    table.add_row("Status", f"[{style}]{status.status.upper()}[/{style}]")
    table.add_row("Progress", f"{status.progress}%")
    table.add_row("Tasks", f"{status.completed_tasks}/{status.total_tasks} completed")
    table.add_row("Failed", str(status.failed_tasks))
    if status.current_task:
        table.add_row("Current Task", status.current_task)
    console.print(table)

    for error in status.errors:
        console.print(f"[red]✗ {error}[/red]")


@click.group(name="offboard")
def offboard_group():
    """Employee offboarding commands."""
    pass


@offboard_group.command(name="preview")
@tenant_option
@click.argument("user_email")
@click.pass_context
def preview(ctx, tenant_id: str, user_email: str):
    """Show what offboarding a user would revoke."""
    user = _resolve_user(ctx, tenant_id, user_email)
    result = _orchestrator(ctx, tenant_id).preview_offboarding(user["id"])

    console.print(
        Panel(
            f"User: {result.user_name or 'Unknown'} ({result.email})\n"
            f"Apps: {len(result.apps)}\n"
            f"OAuth tokens: {result.oauth_tokens}\n"
            f"Estimated time: {result.estimated_time_minutes} minutes",
            title="Offboarding Preview",
            border_style="cyan",
        )
    )

    if result.apps:
        table = Table()
        table.add_column("App", style="cyan")
        table.add_column("Access Type")
        table.add_column("Last Used")
        for app in result.apps:
            table.add_row(app.app_name, app.access_type, app.last_used or "unknown")
        console.print(table)


@offboard_group.command(name="run")
@tenant_option
@click.argument("user_email")
@click.option("--initiated-by", required=True, help="Email of the operator starting the offboarding")
@click.option("--playbook", "playbook_id", help="Playbook id (defaults to the standard playbook)")
@click.option("--transfer-to", help="Email of the user who receives owned resources")
@click.option("--reason", help="Reason for offboarding")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def run(
    ctx,
    tenant_id: str,
    user_email: str,
    initiated_by: str,
    playbook_id: Optional[str],
    transfer_to: Optional[str],
    reason: Optional[str],
    yes: bool,
):
    """Offboard a user: revoke access, transfer ownership and write the audit report.

    Example:
        saasguard offboard run --tenant acme jane@acme.com --initiated-by it@acme.com
    """
    user = _resolve_user(ctx, tenant_id, user_email)
    initiator = _resolve_user(ctx, tenant_id, initiated_by)
    transfer_user = _resolve_user(ctx, tenant_id, transfer_to) if transfer_to else None

    if not yes:
        console.print(
            Panel(
                "[bold red]Changes will be made at your identity providers![/bold red]\n\n"
                f"User: {user_email}\n"
                f"Transfer to: {transfer_to or 'nobody'}",
                title="Offboarding Confirmation",
                border_style="red",
            )
        )
        if not click.confirm("Do you want to proceed?"):
            console.print("[yellow]Offboarding cancelled[/yellow]")
            return

    orchestrator = _orchestrator(ctx, tenant_id)
    try:
        request = orchestrator.create_request(
            user["id"],
            initiated_by=initiator["id"],
            playbook_id=playbook_id,
            reason=reason,
            transfer_to_user_id=transfer_user["id"] if transfer_user else None,
        )
    except NotFoundError as e:
        console.print(f"[red]{e}. Run 'saasguard playbooks seed' first.[/red]")
        raise click.Abort()

    with console.status("[bold green]Processing offboarding..."):
        status = asyncio.run(orchestrator.execute_offboarding(request["id"]))

    _print_status(status)
    if status.status != "completed":
        raise SystemExit(1)


@offboard_group.command(name="status")
@tenant_option
@click.argument("request_id")
@click.pass_context
def status(ctx, tenant_id: str, request_id: str):
    """Show progress of an offboarding request."""
    try:
        _print_status(_orchestrator(ctx, tenant_id).get_status(request_id))
    except NotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise click.Abort()


@offboard_group.command(name="cancel")
@tenant_option
@click.argument("request_id")
@click.pass_context
def cancel(ctx, tenant_id: str, request_id: str):
    """Cancel an offboarding request and skip its pending tasks."""
    try:
        skipped = _orchestrator(ctx, tenant_id).cancel_offboarding(request_id)
    except (NotFoundError, ValidationError) as e:
        console.print(f"[red]{e}[/red]")
        raise click.Abort()

    console.print(f"[yellow]Request cancelled, {skipped} pending task(s) skipped[/yellow]")


@click.command()
@tenant_option
@click.argument("request_id")
@click.option("--save", is_flag=True, help="Also write JSON and text files to the report directory")
@click.pass_context
def report(ctx, tenant_id: str, request_id: str, save: bool):
    """Print the audit report of an offboarding request."""
    generator = AuditReportGenerator(tenant_id, open_storage(ctx), get_app_settings(ctx).report_dir)

    try:
        audit = generator.build_report(request_id)
    except NotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise click.Abort()

    console.print(generator.render_text(audit))

    if save:
        paths = generator.save(audit)
        if not paths:
            console.print("[yellow]No report directory configured (SAASGUARD_REPORT_DIR)[/yellow]")
        for path in paths:
            console.print(f"[green]✓ Saved {path}[/green]")
