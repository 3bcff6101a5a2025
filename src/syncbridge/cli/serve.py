"""Serve command for SyncBridge CLI.

Commands:
- serve: Run the webhook server
"""

from __future__ import annotations

import os

import click


@click.command()
@click.option("--host", default="0.0.0.0", show_default=True, help="Interface to bind.")
@click.option("--port", "-p", type=int, default=8000, show_default=True, help="Port to bind.")
@click.option(
    "--log-path",
    type=click.Path(),
    default=None,
    help="Log file (default: SYNCBRIDGE_LOG_PATH or ./syncbridge.log).",
)
def serve(host: str, port: int, log_path: str | None) -> None:
    """Run the webhook server with the sync bridge attached.

    Configuration is read from SYNCBRIDGE_* environment variables.
    """
    import uvicorn

    if log_path:
        os.environ["SYNCBRIDGE_LOG_PATH"] = log_path

    click.echo(f"Starting SyncBridge on {host}:{port}")
    uvicorn.run("syncbridge.server.app:app_factory", factory=True, host=host, port=port)
