"""OAuth commands: start and complete the Google flow, show status, start the Gmail watch."""

import asyncio

import typer

from family_events.auth.credential_manager import CredentialManager
from family_events.config import GMAIL_PUBSUB_TOPIC
from family_events.db import init_db
from family_events.db.repositories import history_cursor_repo, user_repo
from family_events.errors import AuthenticationError, ProviderError, UserNotFoundError
from family_events.mail_provider.gmail_real import GmailProvider

from .shared import console, logger, print_oauth_statuses


def oauth_start(user_id: int = typer.Argument(..., help="User whose mailbox is being connected")) -> None:
    """Print the Google consent URL for a user."""
    init_db()
    user = user_repo.get_user(user_id)
    if user is None:
        console.print(f"[red]User not found: {user_id}[/red]")
        raise typer.Exit(1)
    manager = CredentialManager()
    if not manager.oauth.configured:
        console.print("[red]GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set[/red]")
        asyncio.run(manager.aclose())
        raise typer.Exit(1)
    url = manager.authorization_url(user_id, login_hint=user.email)
    asyncio.run(manager.aclose())
    console.print(f"Open this URL as [cyan]{user.email}[/cyan]:\n{url}")
    logger.info("oauth_start.url_printed", user_id=user_id)


def oauth_complete(
    user_id: int = typer.Argument(...),
    code: str = typer.Argument(..., help="Authorization code from the redirect"),
) -> None:
    """Exchange an authorization code and store the user's tokens."""
    init_db()

    async def _run():
        manager = CredentialManager()
        try:
            return await manager.complete_authorization(user_id, code)
        finally:
            await manager.aclose()

    try:
        result = asyncio.run(_run())
    except UserNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e
    if not result.success:
        console.print(f"[red]Authorization failed: {result.error}[/red]")
        raise typer.Exit(1)
    console.print(
        f"[green]Authorized user {user_id}[/green] (refresh token: {'yes' if result.has_refresh_token else 'no'})"
    )


def oauth_status() -> None:
    """Show per-user credential status."""
    init_db()

    async def _run():
        manager = CredentialManager()
        try:
            return await manager.all_statuses()
        finally:
            await manager.aclose()

    statuses = asyncio.run(_run())
    if not statuses:
        console.print("[yellow]No users. Add one with add-user.[/yellow]")
        return
    print_oauth_statuses(statuses)


def watch(
    user_id: int = typer.Argument(...),
    topic: str = typer.Option(GMAIL_PUBSUB_TOPIC, "--topic", "-t", help="projects/<project>/topics/<topic>"),
) -> None:
    """Start (or renew) Gmail push for a user's INBOX and seed the history cursor."""
    init_db()
    if not topic:
        console.print("[red]Pass --topic or set GMAIL_PUBSUB_TOPIC[/red]")
        raise typer.Exit(1)
    user = user_repo.get_user(user_id)
    if user is None:
        console.print(f"[red]User not found: {user_id}[/red]")
        raise typer.Exit(1)

    async def _run():
        manager = CredentialManager()
        try:
            return await GmailProvider(manager).watch(user_id, topic)
        finally:
            await manager.aclose()

    try:
        response = asyncio.run(_run())
    except (AuthenticationError, ProviderError) as e:
        console.print(f"[red]Watch failed: {e}[/red]")
        logger.error("watch.failed", user_id=user_id, error=str(e))
        raise typer.Exit(1) from e
    seeded = history_cursor_repo.advance_cursor(user.email, response.historyId)
    console.print(
        f"[green]Watching {user.email}[/green] historyId={response.historyId} "
        f"expiration={response.expiration} cursor_seeded={seeded}"
    )
