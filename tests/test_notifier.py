"""Tests for outbound proposals and the approval ledger rows they open."""

import unittest
from datetime import timedelta

from helpers import FAMILY, NOW, PARENT_EMAIL, PARENT_PHONE, fresh_db, make_event, make_notifier, run

from family_events.db.repositories import approval_repo, event_repo
from family_events.errors import DailyProposalLimitError, DeliveryError, EventNotProposableError
from family_events.mail_provider.gmail_mock import GmailMockProvider
from family_events.sms_provider.mock import MockSmsProvider
from family_events.state_machine import EventStatus, request_transition


class TestSendProposal(unittest.TestCase):
    def setUp(self):
        fresh_db()
        self.sms = MockSmsProvider()
        self.mail = GmailMockProvider()
        self.notifier = make_notifier(sms=self.sms, mail=self.mail)

    def test_sms_proposal_opens_request_and_moves_event(self):
        event = make_event()
        row = run(self.notifier.send_proposal(event.id, channel="sms", now=NOW))
        self.assertEqual(row.recipient, PARENT_PHONE)
        self.assertEqual(row.kind, "proposal")
        self.assertEqual(approval_repo.get_request(row.id).provider_message_id, self.sms.sent[0]["sid"])
        self.assertEqual(event_repo.get_event(event.id).status, "proposed")
        body = self.sms.messages_to(PARENT_PHONE)[0]
        self.assertTrue(body.startswith("New family event found!"))
        self.assertIn("Cost: FREE", body)

    def test_email_proposal_records_message_and_thread_ids(self):
        event = make_event(cost=25)
        row = run(self.notifier.send_proposal(event, channel="email", now=NOW))
        sent = self.mail.sent[0]
        self.assertEqual(sent["to"], PARENT_EMAIL)
        self.assertTrue(sent["subject"].startswith("URGENT: New Family Event: Kids Science Fair ($25)"))
        stored = approval_repo.get_request(row.id)
        self.assertEqual(stored.message_id, sent["message_id"].strip("<>"))
        self.assertEqual(stored.thread_id, sent["threadId"])
        self.assertIn("Hi Alex!", sent["body"])

    def test_explicit_recipient_is_normalized(self):
        event = make_event()
        row = run(self.notifier.send_proposal(event.id, channel="sms", recipient="(415) 555-0199", now=NOW))
        self.assertEqual(row.recipient, "+14155550199")

    def test_reproposal_supersedes_previous_request(self):
        event = make_event()
        first = run(self.notifier.send_proposal(event.id, channel="sms", now=NOW))
        second = run(self.notifier.send_proposal(event.id, channel="sms", now=NOW + timedelta(minutes=1)))
        self.assertEqual(approval_repo.get_request(first.id).status, "superseded")
        self.assertEqual(approval_repo.get_request(second.id).status, "sent")

    def test_closed_event_cannot_be_proposed(self):
        event = make_event()
        request_transition(event.id, EventStatus.PROPOSED)
        request_transition(event.id, EventStatus.REJECTED)
        with self.assertRaises(EventNotProposableError):
            run(self.notifier.send_proposal(event.id, channel="sms", now=NOW))
        self.assertEqual(self.sms.sent, [])

    def test_daily_limit(self):
        notifier = make_notifier(sms=self.sms, daily_limit=2)
        for i in range(2):
            run(notifier.send_proposal(make_event(f"Event {i}").id, channel="sms", now=NOW))
        with self.assertRaises(DailyProposalLimitError):
            run(notifier.send_proposal(make_event("One too many").id, channel="sms", now=NOW))
        # A new UTC day resets the count
        run(notifier.send_proposal(make_event("Tomorrow").id, channel="sms", now=NOW + timedelta(days=1)))

    def test_failed_dispatch_leaves_no_open_request(self):
        notifier = make_notifier(sms=MockSmsProvider(fail=True))
        event = make_event()
        with self.assertRaises(DeliveryError):
            run(notifier.send_proposal(event.id, channel="sms", now=NOW))
        rows = approval_repo.list_requests(event_id=event.id)
        self.assertEqual([r.status for r in rows], ["failed"])
        self.assertEqual(event_repo.get_event(event.id).status, "discovered")

    def test_no_reachable_member(self):
        notifier = make_notifier(members=[m.model_copy(update={"phone": None}) for m in FAMILY])
        with self.assertRaises(DeliveryError):
            run(notifier.send_proposal(make_event().id, channel="sms", now=NOW))


class TestFollowUps(unittest.TestCase):
    def setUp(self):
        fresh_db()
        self.mail = GmailMockProvider()
        self.notifier = make_notifier(mail=self.mail)

    def test_follow_up_email_threads_under_proposal(self):
        event = make_event()
        row = run(self.notifier.send_proposal(event.id, channel="email", now=NOW))
        stored = approval_repo.get_request(row.id)
        run(self.notifier.send_reminder(stored, now=NOW + timedelta(hours=12)))
        reminder = self.mail.sent[-1]
        self.assertEqual(reminder["in_reply_to"], f"<{stored.message_id}>")
        self.assertEqual(reminder["threadId"], stored.thread_id)
        self.assertTrue(reminder["body"].startswith("Reminder: You have a pending event approval."))

    def test_payment_link_opens_payment_request_on_same_channel(self):
        event = make_event(cost=25, registration_url="https://example.com/pay")
        proposal = run(self.notifier.send_proposal(event.id, channel="email", now=NOW))
        approval_repo.record_response(proposal.id, "approved", "yes")
        payment = run(self.notifier.send_payment_link(event.id, proposal.id, now=NOW))
        self.assertEqual(payment.kind, "payment")
        self.assertEqual(payment.recipient, PARENT_EMAIL)
        self.assertEqual(self.mail.sent[-1]["subject"], "💳 Payment Required: Kids Science Fair")
        self.assertIn("https://example.com/pay", self.mail.sent[-1]["body"])


if __name__ == "__main__":
    unittest.main()
