"""Audit command for SyncBridge CLI.

Commands:
- verify-audit: Verify a persisted audit chain range
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import click


@click.command("verify-audit")
@click.option(
    "--db-path",
    type=click.Path(),
    default=None,
    help="Path to audit database (default: SYNCBRIDGE_AUDIT_DB or ./syncbridge-audit.db).",
)
@click.option("--start", type=int, default=1, show_default=True, help="First sequence number.")
@click.option("--end", type=int, default=None, help="Last sequence number (default: latest).")
def verify_audit(db_path: str | None, start: int, end: int | None) -> None:
    """Verify integrity of the persisted audit chain.

    Recomputes every hash in the range from the stored entries and checks
    each link to its predecessor. Exits with status 1 on any violation.
    """
    from syncbridge.audit.store import AuditStore

    db_file = Path(db_path or os.environ.get("SYNCBRIDGE_AUDIT_DB", "syncbridge-audit.db"))
    if not db_file.exists():
        click.echo(f"Error: Audit database not found: {db_file}", err=True)
        sys.exit(1)

    store = AuditStore(db_file)
    try:
        last = store.count() if end is None else end
        if last == 0:
            click.echo("Audit chain is empty.")
            return

        click.echo(f"Verifying audit entries {start} to {last}...")
        if store.verify_stored_range(start, last):
            click.echo("Audit chain intact.")
        else:
            click.echo("Audit chain integrity violation detected.", err=True)
            sys.exit(1)
    finally:
        store.close()
