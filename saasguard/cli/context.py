"""Shared state for CLI commands."""

import click

from saasguard.config.settings import SaasGuardSettings
from saasguard.security.credentials import get_cipher
from saasguard.storage import SQLiteStorage, Storage

tenant_option = click.option(
    "--tenant",
    "tenant_id",
    required=True,
    envvar="SAASGUARD_TENANT_ID",
    help="Tenant to operate on",
)


def get_app_settings(ctx: click.Context) -> SaasGuardSettings:
    return ctx.obj["settings"]


def open_storage(ctx: click.Context) -> Storage:
    """SQLite store at the configured path, opened once per invocation."""
    if "storage" not in ctx.obj:
        ctx.obj["storage"] = SQLiteStorage(str(get_app_settings(ctx).database_path))
    return ctx.obj["storage"]


def open_cipher(ctx: click.Context):
    if "cipher" not in ctx.obj:
        ctx.obj["cipher"] = get_cipher(get_app_settings(ctx).encryption_key)
    return ctx.obj["cipher"]
