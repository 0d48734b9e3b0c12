"""Webhook service: inbound SMS and Gmail reply handling."""

from family_events.webhook.models import (
    InboundSms,
    PubSubMessage,
    PubSubPushEnvelope,
    decode_push,
)

__all__ = [
    "InboundSms",
    "PubSubMessage",
    "PubSubPushEnvelope",
    "decode_push",
]
