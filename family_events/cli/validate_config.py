"""Validate configuration: required settings per channel, family members, provider selection."""

from rich.table import Table

from family_events import config
from family_events.webhook.family_config import get_family_config_path, load_family_members

from .shared import console, logger

_REQUIRED = {
    "gmail": ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "GOOGLE_REDIRECT_URI"),
    "gmail push": ("GMAIL_PUBSUB_TOPIC", "GMAIL_PUSH_AUDIENCE"),
    "twilio": ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN"),
}


def missing_settings(section: str) -> list[str]:
    missing = [name for name in _REQUIRED[section] if not getattr(config, name)]
    if section == "twilio" and not (config.TWILIO_PHONE_NUMBER or config.TWILIO_MESSAGING_SERVICE_SID):
        missing.append("TWILIO_PHONE_NUMBER or TWILIO_MESSAGING_SERVICE_SID")
    return missing


def validate_config() -> None:
    """Check the settings the selected providers need and print a summary table."""
    log = logger.bind(command="validate-config")
    log.info("validate_config.start")

    sections = []
    if config.MAIL_PROVIDER == "gmail":
        sections.append("gmail")
        if config.GMAIL_PUSH_VERIFY:
            sections.append("gmail push")
    if config.SMS_PROVIDER == "twilio":
        sections.append("twilio")

    errors = []
    for section in sections:
        for name in missing_settings(section):
            errors.append(f"{section}: {name} is not set")
    if config.DEFAULT_CHANNEL not in ("sms", "email"):
        errors.append(f"DEFAULT_CHANNEL must be sms or email, got {config.DEFAULT_CHANNEL!r}")
    if config.REMINDER_AFTER_HOURS >= config.EXPIRE_AFTER_HOURS:
        errors.append("REMINDER_AFTER_HOURS must be less than EXPIRE_AFTER_HOURS")

    members = load_family_members()
    if not members:
        errors.append(f"No family members in {get_family_config_path()}")

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Mail provider", config.MAIL_PROVIDER)
    table.add_row("SMS provider", config.SMS_PROVIDER)
    table.add_row("Default channel", config.DEFAULT_CHANNEL)
    table.add_row("Proposals per day", str(config.EVENTS_PER_DAY_MAX))
    table.add_row("Remind / expire after (h)", f"{config.REMINDER_AFTER_HOURS} / {config.EXPIRE_AFTER_HOURS}")
    table.add_row("Family members", str(len(members)))
    table.add_row("Database", config.DATABASE_URL.split("://", 1)[0])
    console.print(table)

    if errors:
        for msg in errors:
            console.print(f"[red]{msg}[/red]")
        log.error("validate_config.validation_failed", errors=errors)
        raise SystemExit(1)

    console.print("[green]Config valid.[/green]")
    log.info("validate_config.ok", members=len(members))
