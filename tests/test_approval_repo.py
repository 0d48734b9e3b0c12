"""Tests for the approval ledger repository."""

import unittest
from datetime import timedelta

from helpers import NOW, PARENT_PHONE, fresh_db, make_event

from family_events.db.repositories import approval_repo


class TestApprovalLedger(unittest.TestCase):
    def setUp(self):
        fresh_db()
        self.event = make_event()

    def _open(self, channel="sms", recipient=PARENT_PHONE, sent_at=NOW, **kw):
        return approval_repo.create_request(self.event.id, channel, recipient, "body", sent_at=sent_at, **kw)

    def test_new_request_supersedes_open_one_on_same_channel(self):
        first = self._open()
        second = self._open(sent_at=NOW + timedelta(minutes=5))
        self.assertEqual(approval_repo.get_request(first.id).status, approval_repo.STATUS_SUPERSEDED)
        self.assertEqual(approval_repo.get_request(second.id).status, approval_repo.STATUS_SENT)
        self.assertEqual(len(approval_repo.find_open_for_event(self.event.id, "sms")), 1)

    def test_other_channel_stays_open(self):
        self._open()
        self._open(channel="email", recipient="alex@example.com", message_id="abc@family-events.local")
        self.assertEqual(len(approval_repo.find_open_for_event(self.event.id)), 2)

    def test_unknown_channel_rejected(self):
        with self.assertRaises(ValueError):
            self._open(channel="fax")

    def test_record_response_applies_once(self):
        row = self._open()
        self.assertTrue(approval_repo.record_response(row.id, "approved", "yes", "high", NOW))
        self.assertFalse(approval_repo.record_response(row.id, "rejected", "no", "high", NOW))
        stored = approval_repo.get_request(row.id)
        self.assertEqual(stored.status, "approved")
        self.assertEqual(stored.response_text, "yes")
        self.assertIsNotNone(stored.closed_at)

    def test_find_open_for_recipient_respects_window(self):
        self._open(sent_at=NOW - timedelta(hours=30))
        self.assertIsNone(approval_repo.find_open_for_recipient(PARENT_PHONE, "sms", 24, NOW))
        self.assertIsNotNone(approval_repo.find_open_for_recipient(PARENT_PHONE, "sms", 48, NOW))

    def test_most_recent_open_request_wins(self):
        other = make_event("Pumpkin Patch")
        self._open(sent_at=NOW - timedelta(hours=2))
        latest = approval_repo.create_request(other.id, "sms", PARENT_PHONE, "body", sent_at=NOW - timedelta(hours=1))
        found = approval_repo.find_open_for_recipient(PARENT_PHONE, "sms", 24, NOW)
        self.assertEqual(found.id, latest.id)

    def test_reminder_flag_set_once(self):
        row = self._open()
        self.assertTrue(approval_repo.mark_reminded(row.id, NOW))
        self.assertFalse(approval_repo.mark_reminded(row.id, NOW))
        self.assertEqual(approval_repo.list_open(unreminded_only=True), [])

    def test_expire_only_open(self):
        row = self._open()
        approval_repo.record_response(row.id, "rejected", "no")
        self.assertFalse(approval_repo.expire_request(row.id, NOW))

    def test_failed_sends_do_not_count_toward_daily_cap(self):
        row = self._open()
        approval_repo.mark_failed(row.id, "carrier down")
        self.assertEqual(approval_repo.count_proposals_since(NOW - timedelta(hours=1)), 0)
        self._open()
        self.assertEqual(approval_repo.count_proposals_since(NOW - timedelta(hours=1)), 1)

    def test_lookup_by_message_ids_and_thread(self):
        row = self._open(channel="email", recipient="alex@example.com", message_id="m1@family-events.local")
        approval_repo.mark_delivered(row.id, "gmail-1", "thread-1")
        self.assertEqual(approval_repo.find_by_message_ids(["other", "m1@family-events.local"]).id, row.id)
        self.assertIsNone(approval_repo.find_by_message_ids([]))
        self.assertEqual(approval_repo.find_by_thread_id("thread-1", "alex@example.com").id, row.id)
        self.assertIsNone(approval_repo.find_by_thread_id("thread-1", "sam@example.com"))

    def test_counts_by_status(self):
        row = self._open()
        approval_repo.record_response(row.id, "approved", "yes")
        self._open(channel="email", recipient="alex@example.com")
        counts = approval_repo.counts_by_status()
        self.assertEqual(counts, {"sms": {"approved": 1}, "email": {"sent": 1}})


if __name__ == "__main__":
    unittest.main()
