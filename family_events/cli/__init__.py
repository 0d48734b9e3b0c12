"""CLI commands: one module per concern (serve, approvals, oauth, admin)."""

from typer import Typer

from family_events.cli import admin, approvals, oauth_mode, serve_mode, validate_config as validate_config_module
from family_events.utils.tracing import init_tracing

init_tracing()

app = Typer(help="Family event approvals")


def register_commands() -> None:
    """Register all CLI commands on the global app."""
    app.command()(serve_mode.serve)
    app.command()(approvals.propose)
    app.command()(approvals.sweep)
    app.command(name="oauth-start")(oauth_mode.oauth_start)
    app.command(name="oauth-complete")(oauth_mode.oauth_complete)
    app.command(name="oauth-status")(oauth_mode.oauth_status)
    app.command()(oauth_mode.watch)
    app.command(name="add-user")(admin.add_user)
    app.command(name="init-db")(admin.init_db_command)
    app.command(name="validate-config")(validate_config_module.validate_config)


register_commands()
