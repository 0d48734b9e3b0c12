"""Admin commands: create users, create or reset the database."""

import typer
from sqlalchemy.exc import IntegrityError

from family_events.db import init_db, reset_db
from family_events.db.repositories import user_repo
from family_events.webhook.family_config import is_valid_email

from .shared import console, logger


def add_user(
    email: str = typer.Argument(...),
    name: str = typer.Option("", "--name", "-n"),
    admin: bool = typer.Option(False, "--admin", help="Owner of the sending mailbox"),
) -> None:
    """Create a user who can connect a Gmail mailbox."""
    init_db()
    if not is_valid_email(email):
        console.print(f"[red]Invalid email: {email!r}[/red]")
        raise typer.Exit(1)
    role = user_repo.ROLE_ADMIN if admin else user_repo.ROLE_USER
    try:
        user = user_repo.create_user(email, name=name, role=role)
    except IntegrityError as e:
        console.print(f"[red]User already exists: {email}[/red]")
        raise typer.Exit(1) from e
    console.print(f"[green]Created user {user.id}[/green] {user.email} ({user.role})")
    logger.info("add_user.created", user_id=user.id, role=user.role)


def init_db_command(
    reset: bool = typer.Option(False, "--reset", help="Drop and recreate all tables (destroys data)"),
) -> None:
    """Create database tables."""
    if reset:
        typer.confirm("Drop all tables and data?", abort=True)
        reset_db()
        console.print("[yellow]Database reset.[/yellow]")
        logger.warning("init_db.reset")
        return
    init_db()
    console.print("[green]Database ready.[/green]")
