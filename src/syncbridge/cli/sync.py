"""Sync command for SyncBridge CLI.

Commands:
- sync: Pull changed clients from the legacy system and ingest them
"""

from __future__ import annotations

import sys

import click


@click.command("sync")
@click.option("--bulk", is_flag=True, help="Ingest every client, ignoring the stored watermark.")
@click.option(
    "--timeout",
    type=float,
    default=30.0,
    show_default=True,
    help="Seconds to wait for shutdown after the run.",
)
def sync(bulk: bool, timeout: float) -> None:
    """Ingest legacy clients through the getAll feed.

    By default only clients changed since the stored serverVersion are
    fetched. Set SYNCBRIDGE_SERVER_VERSION_FILE to keep the watermark
    between runs.

    Examples:

        # Ingest clients changed since the last run
        syncbridge sync

        # Ingest everything from serverVersion 0
        syncbridge sync --bulk
    """
    from syncbridge.bridge import SyncBridge
    from syncbridge.clients.base import ClientError
    from syncbridge.core.config import BridgeConfig
    from syncbridge.resilience.circuit_breaker import CircuitOpenError
    from syncbridge.resilience.retry import RetriesExhaustedError

    bridge = SyncBridge.from_config(BridgeConfig.from_env())
    service = bridge.bulk_sync

    try:
        summary = service.bulk_sync() if bulk else service.incremental_sync()
    except (ClientError, CircuitOpenError, RetriesExhaustedError) as e:
        click.echo(f"Error: Legacy system unavailable: {e}", err=True)
        sys.exit(1)
    finally:
        bridge.stop(timeout)

    if summary is None:
        click.echo("Error: A sync run is already in progress", err=True)
        sys.exit(1)
    click.echo(
        f"{summary.mode.capitalize()} sync from serverVersion={summary.start_version}: "
        f"{summary.success} success, {summary.errors} errors, "
        f"serverVersion={summary.server_version}"
    )
