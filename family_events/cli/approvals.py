"""Approval commands: send a proposal, run one reminder/timeout sweep."""

import asyncio
from typing import Optional

import typer

from family_events.db import init_db
from family_events.errors import (
    DailyProposalLimitError,
    DeliveryError,
    EventNotFoundError,
    EventNotProposableError,
)
from family_events.scheduler.timeouts import sweep as run_sweep

from .shared import console, get_services, logger


def propose(
    event_id: int = typer.Argument(..., help="Event to propose"),
    channel: str = typer.Option("sms", "--channel", "-c", help="sms or email"),
    recipient: Optional[str] = typer.Option(None, "--to", help="Phone or email (default: first family member)"),
) -> None:
    """Send a proposal for one event and open an approval request."""
    init_db()
    log = logger.bind(command="propose", event_id=event_id, channel=channel)

    async def _run():
        services = get_services()
        try:
            return await services.notifier.send_proposal(event_id, channel=channel, recipient=recipient)
        finally:
            await services.aclose()

    try:
        approval = asyncio.run(_run())
    except (EventNotFoundError, EventNotProposableError, DailyProposalLimitError, DeliveryError) as e:
        console.print(f"[red]{e}[/red]")
        log.error("propose.failed", error=str(e))
        raise typer.Exit(1) from e
    console.print(
        f"[green]Proposal sent[/green] approval={approval.id} channel={approval.channel} to={approval.recipient}"
    )
    log.info("propose.done", approval_id=approval.id)


def sweep() -> None:
    """Run one reminder/timeout sweep (for cron)."""
    init_db()
    log = logger.bind(command="sweep")

    async def _run():
        services = get_services()
        try:
            return await run_sweep(services.notifier)
        finally:
            await services.aclose()

    result = asyncio.run(_run())
    console.print(f"Expired: {result.expired}  Reminded: {result.reminded}  Errors: {len(result.errors)}")
    for err in result.errors:
        console.print(f"[red]{err}[/red]")
    log.info("sweep.done", **result.as_dict())
