"""Serve mode: run the FastAPI webhook server (SMS, Gmail push, OAuth and admin routes)."""

import sys

import typer
import uvicorn

from family_events.config import SCHEDULER_ENABLED, WEBHOOK_PORT
from family_events.db import init_db
from family_events.webhook.server import create_app

from .shared import console, logger


def serve(
    port: int = typer.Option(WEBHOOK_PORT, "--port", "-p", help="Port for the webhook server"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Bind host"),
    scheduler: bool = typer.Option(
        SCHEDULER_ENABLED, "--scheduler/--no-scheduler", help="Run the reminder/timeout sweep in-process"
    ),
) -> None:
    """Start the webhook server."""
    init_db()
    log = logger.bind(command="serve", port=port)
    log.info("serve.start", scheduler=scheduler)
    app = create_app(start_scheduler=scheduler)
    console.print(f"[green]Starting webhook server on http://{host}:{port}[/green]")
    console.print("[dim]Endpoints: POST /webhook/sms, POST /webhook/gmail/notifications, /oauth/*, GET /health[/dim]")
    try:
        uvicorn.run(app, host=host, port=port, log_level="info", timeout_graceful_shutdown=15)
    except KeyboardInterrupt:
        console.print("\n[dim]Shutting down...[/dim]")
        sys.exit(0)
