"""Tests for the reminder and timeout sweep."""

import unittest
from datetime import timedelta

from helpers import NOW, PARENT_PHONE, fresh_db, make_event, make_notifier, run

from family_events.db.repositories import approval_repo, event_repo
from family_events.scheduler import sweep
from family_events.sms_provider.mock import MockSmsProvider
from family_events.state_machine import EventStatus, request_transition


class TestSweep(unittest.TestCase):
    def setUp(self):
        fresh_db()
        self.sms = MockSmsProvider()
        self.notifier = make_notifier(sms=self.sms)
        self.event = make_event(days_ahead=10)
        self.approval = run(self.notifier.send_proposal(self.event.id, channel="sms", now=NOW))

    def test_nothing_due(self):
        result = run(sweep(self.notifier, now=NOW + timedelta(hours=1)))
        self.assertEqual((result.expired, result.reminded), (0, 0))
        self.assertEqual(len(self.sms.sent), 1)

    def test_reminder_sent_once(self):
        later = NOW + timedelta(hours=13)
        first = run(sweep(self.notifier, now=later))
        second = run(sweep(self.notifier, now=later + timedelta(hours=1)))
        self.assertEqual(first.reminded, 1)
        self.assertEqual(second.reminded, 0)
        reminders = [m for m in self.sms.messages_to(PARENT_PHONE) if m.startswith("Reminder:")]
        self.assertEqual(len(reminders), 1)
        self.assertEqual(approval_repo.get_request(self.approval.id).status, "sent")

    def test_expiry_closes_request_and_event(self):
        result = run(sweep(self.notifier, now=NOW + timedelta(hours=25)))
        self.assertEqual(result.expired, 1)
        # Expired requests are not also reminded
        self.assertEqual(result.reminded, 0)
        self.assertEqual(approval_repo.get_request(self.approval.id).status, "timeout")
        self.assertEqual(event_repo.get_event(self.event.id).status, "timeout_expired")
        self.assertTrue(self.sms.messages_to(PARENT_PHONE)[-1].startswith("⏰ No reply received"))

    def test_answered_request_is_left_alone(self):
        approval_repo.record_response(self.approval.id, "approved", "yes")
        result = run(sweep(self.notifier, now=NOW + timedelta(hours=25)))
        self.assertEqual(result.as_dict(), {"expired": 0, "reminded": 0, "errors": []})

    def test_payment_requests_are_reminded_not_expired(self):
        approval_repo.record_response(self.approval.id, "approved", "yes")
        payment = approval_repo.create_request(
            self.event.id, "sms", PARENT_PHONE, "pay link", kind="payment", sent_at=NOW
        )
        result = run(sweep(self.notifier, now=NOW + timedelta(hours=30)))
        self.assertEqual(result.expired, 0)
        self.assertEqual(result.reminded, 1)
        self.assertEqual(approval_repo.get_request(payment.id).status, "sent")

    def test_reminder_failure_is_reported(self):
        self.sms.fail = True
        result = run(sweep(self.notifier, now=NOW + timedelta(hours=13)))
        self.assertEqual(result.reminded, 0)
        self.assertEqual(len(result.errors), 1)

    def test_no_timeout_notice_once_event_moved_on(self):
        request_transition(self.event.id, EventStatus.APPROVED, "approved_elsewhere")
        request_transition(self.event.id, EventStatus.READY_FOR_REGISTRATION, "free_event_approved")
        result = run(sweep(self.notifier, now=NOW + timedelta(hours=25)))
        self.assertEqual(result.expired, 1)
        self.assertEqual(approval_repo.get_request(self.approval.id).status, "timeout")
        self.assertEqual(event_repo.get_event(self.event.id).status, "ready_for_registration")
        self.assertFalse(any(m.startswith("⏰") for m in self.sms.messages_to(PARENT_PHONE)))


if __name__ == "__main__":
    unittest.main()
