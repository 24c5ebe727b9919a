"""Auto-revocation commands."""

import asyncio

import click
from rich.console import Console
from rich.table import Table

from saasguard.cli.context import get_app_settings, open_cipher, open_storage, tenant_option
from saasguard.core.access.auto_revoke import AutoRevokeConfig, AutoRevokeService
from saasguard.core.lifecycle.sso_revocation import SSORevocationService

console = Console()


def _service(ctx, tenant_id: str, dry_run: bool) -> AutoRevokeService:
    storage = open_storage(ctx)
    config = AutoRevokeConfig.from_settings(get_app_settings(ctx))
    config.dry_run = config.dry_run or dry_run

    return AutoRevokeService(
        tenant_id,
        storage,
        SSORevocationService(tenant_id, storage, open_cipher(ctx)),
        config=config,
    )


@click.group(name="auto-revoke")
def auto_revoke_group():
    """Detect and revoke unapproved application access."""
    pass


@auto_revoke_group.command(name="scan")
@tenant_option
@click.pass_context
def scan(ctx, tenant_id: str):
    """List access that violates the approval policy."""
    violations = _service(ctx, tenant_id, dry_run=True).scan_for_unapproved_access()
    if not violations:
        console.print("[green]✓ No unapproved access found[/green]")
        return

    table = Table(title=f"Unapproved Access ({len(violations)})")
    table.add_column("User", style="cyan")
    table.add_column("App")
    table.add_column("Violation")
    table.add_column("Risk")
    table.add_column("Details")

    for item in violations:
        table.add_row(
            item.user_email or item.user_name,
            item.app_name,
            item.violation_type.value,
            item.risk_level,
            item.violation_details,
        )
    console.print(table)


@auto_revoke_group.command(name="run")
@tenant_option
@click.option("--dry-run", is_flag=True, help="Report revocations without performing them")
@click.pass_context
def run(ctx, tenant_id: str, dry_run: bool):
    """Apply grace periods, approvals and revocations to current violations."""
    service = _service(ctx, tenant_id, dry_run)

    async def process():
        advanced = await service.process_expired_grace_periods()
        return advanced, await service.process_auto_revocation()

    advanced, result = asyncio.run(process())

    table = Table(title="Auto-Revocation")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Expired Grace Periods", str(advanced))
    table.add_row("Violations", str(result.processed))
    table.add_row("Revoked", str(result.revoked))
    table.add_row("Pending Approval", str(result.pending_approval))
    table.add_row("In Grace Period", str(result.pending_grace))
    table.add_row("Exempted", str(result.exempted))
    table.add_row("Failed", str(result.failed))
    console.print(table)

    for error in result.errors:
        console.print(f"[red]✗ {error}[/red]")
    for warning in result.warnings:
        console.print(f"[yellow]! {warning}[/yellow]")
