"""Command line interface for saasguard."""

from saasguard.cli.main import cli, main

__all__ = ["cli", "main"]
