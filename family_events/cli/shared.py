"""Shared CLI helpers: console, logger, service wiring and status tables."""

from typing import Any

from rich.console import Console
from rich.table import Table

from family_events.services import Services, build_services
from family_events.utils.logger import get_logger

console = Console()
logger = get_logger("family_events.cli")


def get_services(**overrides: Any) -> Services:
    """Services from configuration; push verification is never needed outside the server."""
    return build_services(verify_push=False, **overrides)


def print_oauth_statuses(statuses: list[dict[str, Any]]) -> None:
    table = Table(title="Google OAuth status")
    table.add_column("User", justify="right", style="cyan")
    table.add_column("Email")
    table.add_column("Role")
    table.add_column("Authenticated", justify="center")
    table.add_column("Refresh token", justify="center")
    table.add_column("Expires at")
    table.add_column("Last updated")
    table.add_column("Error", style="red")
    for s in statuses:
        table.add_row(
            str(s["user_id"]),
            s["email"],
            s["role"],
            "[green]yes[/green]" if s["authenticated"] else "[red]no[/red]",
            "yes" if s["has_refresh_token"] else "no",
            str(s["expires_at"] or "-"),
            str(s["last_updated"] or "-"),
            s.get("error") or "",
        )
    console.print(table)
