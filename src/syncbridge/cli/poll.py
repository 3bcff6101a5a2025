"""Polling command for SyncBridge CLI.

Commands:
- poll-once: Run one polling tick and reverse-sync what changed
"""

from __future__ import annotations

import click


@click.command("poll-once")
@click.option(
    "--resource-type",
    "-t",
    "resource_types",
    multiple=True,
    default=("Patient",),
    show_default=True,
    help="Resource type to poll (repeatable).",
)
@click.option("--dry-run", is_flag=True, help="List changed resources without syncing them.")
@click.option(
    "--timeout",
    type=float,
    default=30.0,
    show_default=True,
    help="Seconds to wait for reverse sync to finish.",
)
def poll_once(resource_types: tuple[str, ...], dry_run: bool, timeout: float) -> None:
    """Poll the canonical store once for changed resources.

    Changes since the beginning of time are fetched (a fresh process has
    no polling high-water mark). Without --dry-run, changed patients are
    written to the legacy system.

    Examples:

        # Reverse-sync all changed patients
        syncbridge poll-once

        # Only show what changed
        syncbridge poll-once --dry-run
    """
    from syncbridge.bridge import SyncBridge
    from syncbridge.core.config import BridgeConfig

    bridge = SyncBridge.from_config(BridgeConfig.from_env())
    detector = bridge.detector

    try:
        if dry_run:
            for resource_type in resource_types:
                detector.register_listener(
                    resource_type,
                    lambda r: click.echo(f"{r.resource_type}/{r.id} lastUpdated={r.last_updated}"),
                )
        else:
            bridge.orchestrator.initialize_reverse_sync()

        detector.enable_polling(bridge.config.polling.interval_ms)
        total = 0
        for resource_type in resource_types:
            count = detector.poll(resource_type)
            click.echo(f"{resource_type}: {count} changed")
            total += count
    finally:
        bridge.stop(timeout)

    click.echo(f"Polled {len(resource_types)} resource types, {total} changes dispatched.")
