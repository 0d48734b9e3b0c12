"""Outbound notifier: message rendering and dispatch over SMS or email."""

from family_events.notifier.outbound import Notifier
from family_events.notifier.templates import RenderedMessage

__all__ = ["Notifier", "RenderedMessage"]
