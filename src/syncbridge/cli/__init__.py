"""Command-line interface for SyncBridge.

This module provides the main CLI entry point and assembles all commands.

Commands:
- serve: Run the webhook server with the bridge attached
- poll-once: Run one polling tick against the canonical store
- sync: Ingest changed legacy clients through the getAll feed
- verify-audit: Verify a persisted audit chain range
- dead-letters: List dead-lettered queue messages
"""

from __future__ import annotations

import click

from syncbridge.cli.audit import verify_audit
from syncbridge.cli.poll import poll_once
from syncbridge.cli.queue import dead_letters
from syncbridge.cli.serve import serve
from syncbridge.cli.sync import sync


@click.group()
@click.version_option(package_name="syncbridge")
def cli() -> None:
    """SyncBridge - Resilient legacy/FHIR bidirectional synchronization."""


# Server command
cli.add_command(serve)

# Operations commands
cli.add_command(poll_once)
cli.add_command(sync)
cli.add_command(verify_audit)
cli.add_command(dead_letters)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = ["cli", "main"]
