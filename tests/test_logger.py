"""Tests for log masking and per-reply log context."""

import unittest

import helpers  # noqa: F401
import structlog

from family_events.utils.logger import mask_address, mask_contact_fields, reply_context


class TestLogMasking(unittest.TestCase):
    def test_mask_address(self):
        self.assertEqual(mask_address("+14155550101"), "***0101")
        self.assertEqual(mask_address("alex@example.com"), "al***@example.com")
        self.assertEqual(mask_address(None), "")

    def test_processor_masks_contact_keys_once(self):
        event = mask_contact_fields(
            None,
            "info",
            {"event": "notifier.sent", "recipient": "+14155550101", "to": "alex@example.com", "channel": "sms"},
        )
        self.assertEqual(event["recipient"], "***0101")
        self.assertEqual(event["to"], "al***@example.com")
        self.assertEqual(event["channel"], "sms")
        # Already-masked values pass through unchanged
        self.assertEqual(mask_contact_fields(None, "info", dict(event)), event)


class TestReplyContext(unittest.TestCase):
    def test_binds_and_restores(self):
        structlog.contextvars.clear_contextvars()
        with reply_context("sms", "SM1", approval_id=7):
            bound = structlog.contextvars.get_contextvars()
            self.assertEqual(bound["reply_channel"], "sms")
            self.assertEqual(bound["reply_message_id"], "SM1")
            self.assertEqual(bound["approval_id"], 7)
        self.assertNotIn("reply_channel", structlog.contextvars.get_contextvars())


if __name__ == "__main__":
    unittest.main()
