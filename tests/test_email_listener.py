"""Tests for Gmail push handling: history diff, correlation, idempotence and the cursor."""

import base64
import json
import unittest
from datetime import timedelta
from typing import Optional
from unittest.mock import patch

from helpers import NOW, PARENT_EMAIL, fresh_db, make_event, make_notifier, run

from family_events.auth.push_verifier import PushVerifier
from family_events.db.repositories import approval_repo, event_repo, history_cursor_repo, user_repo
from family_events.errors import MalformedPushError, ProviderError, PushVerificationError
from family_events.mail_provider.gmail_mock import GmailMockProvider
from family_events.mail_provider.gmail_models import GmailHeader, GmailMessage, GmailMessagePart, GmailPartBody
from family_events.webhook.dedup_store import ProcessedMessageCache
from family_events.webhook.email_listener import (
    MSG_DUPLICATE,
    MSG_HANDLED,
    MSG_NOT_A_REPLY,
    MSG_NOT_FAMILY,
    PUSH_PROCESSED,
    PUSH_UNKNOWN_MAILBOX,
    EmailReplyListener,
    is_reply_subject,
)

MAILBOX = "assistant@example.com"
REPLY_AT = NOW + timedelta(hours=1)


def b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def push_body(history_id, mailbox: str = MAILBOX) -> dict:
    data = base64.b64encode(json.dumps({"emailAddress": mailbox, "historyId": history_id}).encode()).decode()
    return {"message": {"data": data, "messageId": "pubsub-1"}, "subscription": "projects/p/subscriptions/s"}


def reply_message(
    message_id: str,
    text: str,
    sender: str = f"Alex <{PARENT_EMAIL}>",
    subject: str = "Re: New Family Event: Kids Science Fair (FREE)",
    in_reply_to: Optional[str] = None,
    thread_id: Optional[str] = None,
    mime_type: str = "text/plain",
) -> GmailMessage:
    headers = [GmailHeader(name="From", value=sender), GmailHeader(name="Subject", value=subject)]
    if in_reply_to:
        headers.append(GmailHeader(name="In-Reply-To", value=f"<{in_reply_to}>"))
        headers.append(GmailHeader(name="References", value=f"<{in_reply_to}>"))
    return GmailMessage(
        id=message_id,
        threadId=thread_id,
        internalDate=str(int(REPLY_AT.timestamp() * 1000)),
        payload=GmailMessagePart(mimeType=mime_type, headers=headers, body=GmailPartBody(data=b64url(text))),
    )


def fake_verify(token: str, audience: str) -> dict:
    if token != "good-token":
        raise ValueError("bad signature")
    return {"iss": "https://accounts.google.com", "aud": audience, "email": "push@example.iam.gserviceaccount.com", "email_verified": True}


class TestEmailReplyListener(unittest.TestCase):
    def setUp(self):
        fresh_db()
        self.user = user_repo.create_user(MAILBOX, name="Assistant", role=user_repo.ROLE_ADMIN)
        self.mail = GmailMockProvider()
        self.notifier = make_notifier(mail=self.mail, mail_user_id=self.user.id)
        self.cache = ProcessedMessageCache(max_size=100)
        self.listener = EmailReplyListener(self.notifier, self.mail, self.cache)

    def propose(self, **event_fields):
        event = make_event(**event_fields)
        approval = run(self.notifier.send_proposal(event.id, channel="email", now=NOW))
        return event, approval_repo.get_request(approval.id)

    def deliver(self, message: GmailMessage):
        delivered = self.mail.add_message(message)
        return run(self.listener.handle_push(None, push_body(delivered.historyId), now=REPLY_AT))

    def test_reply_by_message_id_approves_and_sets_cursor(self):
        event, approval = self.propose()
        result = self.deliver(reply_message("r1", "Yes!\n\nOn Wed, Oct 1 Assistant wrote:\n> Reply NO to skip", in_reply_to=approval.message_id))
        self.assertEqual(result.status, PUSH_PROCESSED)
        self.assertTrue(result.used_fallback)
        self.assertEqual(result.count(MSG_HANDLED), 1)
        self.assertEqual(event_repo.get_event(event.id).status, "ready_for_registration")
        self.assertEqual(approval_repo.get_request(approval.id).response_text, "Yes!")
        self.assertEqual(history_cursor_repo.get_cursor(MAILBOX), result.history_id)
        confirmation = self.mail.sent[-1]
        self.assertEqual(confirmation["in_reply_to"], f"<{approval.message_id}>")

    def test_next_push_uses_history_from_cursor(self):
        event, approval = self.propose()
        self.deliver(reply_message("r1", "hello there", subject="Unrelated"))
        result = self.deliver(reply_message("r2", "no thanks", in_reply_to=approval.message_id))
        self.assertFalse(result.used_fallback)
        self.assertEqual([m.message_id for m in result.messages], ["r2"])
        self.assertEqual(event_repo.get_event(event.id).status, "rejected")

    def test_redelivered_message_is_duplicate(self):
        _, approval = self.propose()
        self.deliver(reply_message("r1", "yes", in_reply_to=approval.message_id))
        sent = len(self.mail.sent)
        again = run(self.listener.process_message(self.user.id, "r1", REPLY_AT))
        self.assertEqual(again.status, MSG_DUPLICATE)
        self.assertEqual(len(self.mail.sent), sent)

    def test_non_family_sender_is_ignored(self):
        _, approval = self.propose()
        result = self.deliver(reply_message("r1", "yes", sender="stranger@example.org", in_reply_to=approval.message_id))
        self.assertEqual(result.messages[0].status, MSG_NOT_FAMILY)
        self.assertEqual(approval_repo.get_request(approval.id).status, "sent")

    def test_thread_id_correlates_without_headers(self):
        event, approval = self.propose()
        result = self.deliver(reply_message("r1", "sounds good", subject="about saturday", thread_id=approval.thread_id))
        self.assertEqual(result.messages[0].status, MSG_HANDLED)
        self.assertEqual(event_repo.get_event(event.id).status, "ready_for_registration")

    def test_subject_fallback_only_without_threading(self):
        event, _ = self.propose()
        result = self.deliver(reply_message("r1", "yes"))
        self.assertEqual(result.messages[0].status, MSG_HANDLED)
        self.assertEqual(event_repo.get_event(event.id).status, "ready_for_registration")

    def test_plain_email_is_not_a_reply(self):
        self.propose()
        result = self.deliver(reply_message("r1", "yes", subject="Dinner tonight?"))
        self.assertEqual(result.messages[0].status, MSG_NOT_A_REPLY)

    def test_payment_reply_to_original_thread_reaches_payment_request(self):
        event, approval = self.propose(cost=25, title="Pottery Class")
        self.deliver(reply_message("r1", "yes", in_reply_to=approval.message_id))
        self.assertEqual(event_repo.get_event(event.id).status, "payment_pending")
        self.deliver(reply_message("r2", "Paid, thanks", in_reply_to=approval.message_id))
        self.assertEqual(event_repo.get_event(event.id).status, "ready_for_registration")
        payments = [r for r in approval_repo.list_requests(event_id=event.id) if r.kind == "payment"]
        self.assertEqual(payments[0].status, "payment_confirmed")

    def test_html_reply_drops_quoted_original(self):
        event, approval = self.propose()
        html = '<div dir="ltr">No</div><div class="gmail_quote">Reply YES to book it</div>'
        self.deliver(reply_message("r1", html, in_reply_to=approval.message_id, mime_type="text/html"))
        self.assertEqual(event_repo.get_event(event.id).status, "rejected")

    def test_expired_history_falls_back_to_recent_inbox(self):
        event, approval = self.propose()
        history_cursor_repo.advance_cursor(MAILBOX, "1")
        self.mail.oldest_history_id = 100
        result = self.deliver(reply_message("r1", "yes", in_reply_to=approval.message_id))
        self.assertTrue(result.used_fallback)
        self.assertEqual(event_repo.get_event(event.id).status, "ready_for_registration")

    def test_failed_batch_keeps_cursor(self):
        event, approval = self.propose()
        self.deliver(reply_message("r0", "hello there", subject="Unrelated"))
        cursor = history_cursor_repo.get_cursor(MAILBOX)
        self.mail.add_message(reply_message("r1", "yes", in_reply_to=approval.message_id))
        last = self.mail.add_message(reply_message("r2", "hi again", subject="Unrelated"))
        fetch = self.mail.get_message

        def get_message(user_id, message_id):
            if message_id == "r2":
                raise ProviderError("Gmail unavailable", status_code=503)
            return fetch(user_id, message_id)

        with patch.object(self.mail, "get_message", side_effect=get_message):
            with self.assertRaises(ProviderError):
                run(self.listener.handle_push(None, push_body(last.historyId), now=REPLY_AT))

        self.assertEqual(history_cursor_repo.get_cursor(MAILBOX), cursor)
        self.assertTrue(run(self.cache.contains("r1")))
        self.assertFalse(run(self.cache.contains("r2")))
        self.assertEqual(event_repo.get_event(event.id).status, "ready_for_registration")

    def test_unknown_mailbox(self):
        result = run(self.listener.handle_push(None, push_body(10, mailbox="other@example.com"), now=REPLY_AT))
        self.assertEqual(result.status, PUSH_UNKNOWN_MAILBOX)
        self.assertIsNone(history_cursor_repo.get_cursor("other@example.com"))

    def test_malformed_push(self):
        for body in (None, {}, {"message": {"data": "%%%"}}, {"message": {"data": b64url('{"historyId": 1}')}}):
            with self.assertRaises(MalformedPushError):
                run(self.listener.handle_push(None, body, now=REPLY_AT))

    def test_push_verification(self):
        verifier = PushVerifier(audience="https://hooks.example.com/webhook/gmail/notifications", verify_token=fake_verify)
        listener = EmailReplyListener(self.notifier, self.mail, self.cache, verifier=verifier)
        for header in (None, "Basic abc", "Bearer bad-token"):
            with self.assertRaises(PushVerificationError):
                run(listener.handle_push(header, push_body(5), now=REPLY_AT))
        result = run(listener.handle_push("Bearer good-token", push_body(5), now=REPLY_AT))
        self.assertEqual(result.status, PUSH_PROCESSED)


class TestReplySubject(unittest.TestCase):
    def test_reply_subjects(self):
        self.assertTrue(is_reply_subject("Re: URGENT: New Family Event: Zoo Day (FREE) - tomorrow!"))
        self.assertTrue(is_reply_subject("RE: 💳 Payment Required: Zoo Day"))
        self.assertFalse(is_reply_subject("New Family Event: Zoo Day"))
        self.assertFalse(is_reply_subject("Re: lunch"))
        self.assertFalse(is_reply_subject(None))


if __name__ == "__main__":
    unittest.main()
