"""Queue command for SyncBridge CLI.

Commands:
- dead-letters: List dead-lettered messages
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import click


@click.command("dead-letters")
@click.option(
    "--db-path",
    type=click.Path(),
    default=None,
    help="Path to queue database (default: SYNCBRIDGE_QUEUE_DB or ./syncbridge-queue.db).",
)
def dead_letters(db_path: str | None) -> None:
    """List messages that exhausted their retries.

    Dead letters are never reprocessed automatically and need manual
    intervention.
    """
    from syncbridge.queue.reliable_queue import ReliableQueue

    db_file = Path(db_path or os.environ.get("SYNCBRIDGE_QUEUE_DB", "syncbridge-queue.db"))
    if not db_file.exists():
        click.echo(f"Error: Queue database not found: {db_file}", err=True)
        sys.exit(1)

    queue = ReliableQueue(persistence_path=db_file)
    try:
        messages = queue.dead_letters()
        if not messages:
            click.echo("No dead-lettered messages.")
            return

        click.echo(f"{len(messages)} dead-lettered messages:")
        for message in messages:
            click.echo(
                f"  {message.id}  type={message.message_type}  "
                f"retries={message.retry_count}/{message.max_retries}  "
                f"error={message.error_message or '-'}"
            )
    finally:
        queue.close()
