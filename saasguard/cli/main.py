"""Main CLI entry point for saasguard."""

import sys
from pathlib import Path
from typing import Optional, Tuple

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from saasguard import __version__
from saasguard.config.settings import get_settings
from saasguard.core.analyzers.oauth_risk import assess_permissions, explain_risk
from saasguard.logger import configure_logging

console = Console()
logger = structlog.get_logger(__name__)

RISK_STYLES = {"low": "green", "medium": "yellow", "high": "red", "critical": "bold red"}


@click.group()
@click.version_option(version=__version__, prog_name="saasguard")
@click.option(
    "--config",
    "-c",
    type=click.Path(path_type=Path),
    envvar="SAASGUARD_CONFIG",
    help="Path to identity provider configuration (default: saasguard.yaml)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config: Optional[Path], verbose: bool, debug: bool) -> None:
    """saasguard: third-party application access governance.

    Discovers SaaS apps through your identity providers, scores their OAuth
    permissions and revokes access when employees leave.
    """
    ctx.ensure_object(dict)

    settings = get_settings()
    ctx.obj["settings"] = settings
    ctx.obj["config_path"] = config or Path("saasguard.yaml")

    level = "DEBUG" if debug else "INFO" if verbose else settings.log_level
    configure_logging(level, json_output=settings.log_json)

    logger.debug("cli_initialized", config=str(config), verbose=verbose, debug=debug)


@cli.command()
def version() -> None:
    """Show version information."""
    console.print(
        Panel(
            f"[bold cyan]saasguard[/bold cyan] v{__version__}\n\n"
            "Shadow IT discovery and access revocation",
            title="Version Info",
            border_style="cyan",
        )
    )


@cli.command()
@click.argument("scopes", nargs=-1, required=True)
@click.option("--explain", is_flag=True, help="Print the numbered risk explanation")
def risk(scopes: Tuple[str, ...], explain: bool) -> None:
    """Score a set of OAuth scopes.

    Example:
        saasguard risk Mail.ReadWrite.All Directory.ReadWrite.All
    """
    assessment = assess_permissions(list(scopes))
    style = RISK_STYLES[assessment.risk_level.value]

    table = Table(title="OAuth Risk Assessment")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Risk Level", f"[{style}]{assessment.risk_level.value.upper()}[/{style}]")
    table.add_row("Risk Score", f"{assessment.risk_score}/100")
    table.add_row("Critical Scopes", ", ".join(assessment.critical_scopes) or "None")
    console.print(table)

    if explain:
        console.print(explain_risk(assessment))
    else:
        for reason in assessment.reasons:
            console.print(f"  • {reason}")


from saasguard.cli.commands.access import auto_revoke_group
from saasguard.cli.commands.offboard import offboard_group, report
from saasguard.cli.commands.playbooks import playbooks_group
from saasguard.cli.commands.sync import providers_group, sync

cli.add_command(providers_group)
cli.add_command(sync)
cli.add_command(offboard_group)
cli.add_command(report)
cli.add_command(playbooks_group)
cli.add_command(auto_revoke_group)


def main() -> None:
    """Main entry point."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        logger.exception("unhandled_exception")
        sys.exit(1)
