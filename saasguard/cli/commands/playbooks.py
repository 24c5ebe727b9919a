"""Offboarding playbook commands."""

import click
from rich.console import Console
from rich.table import Table

from saasguard.cli.context import open_storage, tenant_option
from saasguard.core.lifecycle.playbooks import PlaybookEngine

console = Console()


@click.group(name="playbooks")
def playbooks_group():
    """Offboarding playbook management."""
    pass


@playbooks_group.command(name="seed")
@tenant_option
@click.pass_context
def seed(ctx, tenant_id: str):
    """Create the built-in playbooks for types that have no default yet."""
    created = PlaybookEngine(open_storage(ctx)).seed_default_playbooks(tenant_id)

    if not created:
        console.print("[yellow]Every playbook type already has a default[/yellow]")
        return
    for playbook in created:
        console.print(f"[green]✓ Created {playbook['name']} ({playbook['type']})[/green]")


@playbooks_group.command(name="list")
@tenant_option
@click.option("--type", "playbook_type", help="Only show playbooks of this type")
@click.option("--steps", "show_steps", is_flag=True, help="Show each playbook's steps")
@click.pass_context
def list_playbooks(ctx, tenant_id: str, playbook_type: str, show_steps: bool):
    """List playbooks."""
    playbooks = PlaybookEngine(open_storage(ctx)).list_playbooks(tenant_id, playbook_type)
    if not playbooks:
        console.print("[yellow]No playbooks found[/yellow]")
        return

    table = Table(title="Offboarding Playbooks")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Default")
    table.add_column("Steps", justify="right")

    for playbook in playbooks:
        table.add_row(
            playbook["id"],
            playbook["name"],
            playbook["type"],
            "✓" if playbook.get("is_default") else "",
            str(len(playbook.get("steps") or [])),
        )
    console.print(table)

    if show_steps:
        for playbook in playbooks:
            console.print(f"\n[bold]{playbook['name']}[/bold]")
            for step in sorted(playbook.get("steps") or [], key=lambda s: s["priority"]):
                marker = "" if step["enabled"] else " [dim](disabled)[/dim]"
                console.print(f"  {step['priority']}. {step['type']}: {step['description']}{marker}")
