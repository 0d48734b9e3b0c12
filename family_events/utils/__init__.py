"""Utility modules."""

from family_events.utils.aio import maybe_await
from family_events.utils.body_sanitizer import clean_reply_body, html_to_text, sanitize
from family_events.utils.logger import get_logger, mask_address, reply_context
from family_events.utils.phone import normalize_phone
from family_events.utils.tracing import get_tracer, init_tracing, shutdown_tracing

__all__ = [
    "maybe_await",
    "clean_reply_body",
    "html_to_text",
    "sanitize",
    "get_logger",
    "mask_address",
    "reply_context",
    "normalize_phone",
    "get_tracer",
    "init_tracing",
    "shutdown_tracing",
]
