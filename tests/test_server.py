"""Tests for the FastAPI app: webhooks, OAuth, family and approval routes."""

import base64
import json
import os
import tempfile
import unittest
from datetime import timedelta
from pathlib import Path

from fastapi.testclient import TestClient
from helpers import FAMILY, PARENT_PHONE, fresh_db, run

from family_events.auth.credential_manager import CredentialManager
from family_events.auth.google_oauth import GoogleOAuthClient
from family_events.auth.push_verifier import PushVerifier
from family_events.config import SMS_WEBHOOK_URL
from family_events.db.base import utcnow
from family_events.db.repositories import event_repo, user_repo
from family_events.mail_provider.gmail_mock import GmailMockProvider
from family_events.services import build_services
from family_events.sms_provider.mock import MockSmsProvider
from family_events.webhook.security import compute_twilio_signature
from family_events.webhook.server import EMPTY_TWIML, create_app

AUDIENCE = "https://hooks.example.com/webhook/gmail/notifications"
TWILIO_TOKEN = "twilio-secret"


def fake_verify(token: str, audience: str) -> dict:
    if token != "good-token":
        raise ValueError("bad signature")
    return {"iss": "accounts.google.com", "aud": audience}


def push_body(mailbox: str, history_id: int) -> dict:
    data = base64.b64encode(json.dumps({"emailAddress": mailbox, "historyId": history_id}).encode()).decode()
    return {"message": {"data": data}}


class TestServer(unittest.TestCase):
    def setUp(self):
        fresh_db()
        self.tmp = tempfile.TemporaryDirectory()
        self.family_path = Path(self.tmp.name) / "family.json"
        self.family_path.write_text(json.dumps({"members": [m.model_dump() for m in FAMILY]}), encoding="utf-8")
        self._old_family_path = os.environ.get("FAMILY_CONFIG_PATH")
        os.environ["FAMILY_CONFIG_PATH"] = str(self.family_path)

        self.user = user_repo.create_user("assistant@example.com", role=user_repo.ROLE_ADMIN)
        self.sms = MockSmsProvider()
        self.mail = GmailMockProvider()
        credentials = CredentialManager(oauth=GoogleOAuthClient(client_id="cid", client_secret="secret"))
        self.services = build_services(
            credentials=credentials,
            mail_provider=self.mail,
            sms_provider=self.sms,
            members=list(FAMILY),
            verifier=PushVerifier(audience=AUDIENCE, service_account="", verify_token=fake_verify),
            mail_user_id=self.user.id,
        )

    def tearDown(self):
        if self._old_family_path is None:
            os.environ.pop("FAMILY_CONFIG_PATH", None)
        else:
            os.environ["FAMILY_CONFIG_PATH"] = self._old_family_path
        self.tmp.cleanup()

    def client(self, **kwargs) -> TestClient:
        kwargs.setdefault("verify_sms_signature", False)
        app = create_app(services=self.services, start_scheduler=False, **kwargs)
        return TestClient(app)

    def propose(self, cost: float = 0.0):
        event = event_repo.create_event("Kids Science Fair", utcnow() + timedelta(days=3), cost=cost)
        run(self.services.notifier.send_proposal(event.id, channel="sms"))
        return event

    def test_health(self):
        with self.client() as client:
            self.assertEqual(client.get("/health").json(), {"status": "ok"})

    def test_sms_reply_applies_and_returns_empty_twiml(self):
        event = self.propose()
        with self.client() as client:
            response = client.post("/webhook/sms", data={"From": PARENT_PHONE, "Body": "YES", "MessageSid": "SM1"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, EMPTY_TWIML)
        self.assertEqual(event_repo.get_event(event.id).status, "ready_for_registration")

    def test_sms_missing_fields(self):
        with self.client() as client:
            response = client.post("/webhook/sms", data={"Body": "YES"})
        self.assertEqual(response.status_code, 400)

    def test_sms_signature(self):
        params = {"From": PARENT_PHONE, "Body": "no", "MessageSid": "SM2"}
        url = SMS_WEBHOOK_URL or "http://testserver/webhook/sms"
        with self.client(verify_sms_signature=True, twilio_auth_token=TWILIO_TOKEN) as client:
            bad = client.post("/webhook/sms", data=params, headers={"X-Twilio-Signature": "nope"})
            good = client.post(
                "/webhook/sms",
                data=params,
                headers={"X-Twilio-Signature": compute_twilio_signature(TWILIO_TOKEN, url, params)},
            )
        self.assertEqual(bad.status_code, 403)
        self.assertEqual(good.status_code, 200)

    def test_gmail_push_statuses(self):
        with self.client() as client:
            unauthorized = client.post("/webhook/gmail/notifications", json=push_body("assistant@example.com", 5))
            malformed = client.post(
                "/webhook/gmail/notifications",
                json={"message": {}},
                headers={"Authorization": "Bearer good-token"},
            )
            ok = client.post(
                "/webhook/gmail/notifications",
                json=push_body("assistant@example.com", 5),
                headers={"Authorization": "Bearer good-token"},
            )
            unknown = client.post(
                "/webhook/gmail/notifications",
                json=push_body("nobody@example.com", 5),
                headers={"Authorization": "Bearer good-token"},
            )
        self.assertEqual(unauthorized.status_code, 401)
        self.assertEqual(malformed.status_code, 400)
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.json(), {"status": "processed", "messages": 0})
        self.assertEqual(unknown.json()["status"], "unknown_mailbox")

    def test_approval_routes(self):
        event = self.propose()
        with self.client() as client:
            counts = client.get("/approvals/counts").json()
            recent = client.get("/approvals/recent", params={"limit": 5}).json()
            detail = client.get(f"/approvals/events/{event.id}").json()
            missing = client.get("/approvals/events/999")
        self.assertEqual(counts["by_channel"], {"sms": {"sent": 1}})
        self.assertEqual(counts["totals"], {"sent": 1})
        self.assertEqual(recent["items"][0]["recipient"], PARENT_PHONE)
        self.assertEqual(detail["status"], "proposed")
        self.assertEqual(len(detail["requests"]), 1)
        self.assertEqual(missing.status_code, 404)

    def test_oauth_routes(self):
        with self.client() as client:
            start = client.get("/oauth/google/start", params={"user_id": self.user.id})
            unknown = client.get("/oauth/google/start", params={"user_id": 999})
            status = client.get("/oauth/status").json()
            one = client.get(f"/oauth/status/{self.user.id}").json()
            empty_code = client.post("/oauth/google/complete", json={"user_id": self.user.id, "code": " "})
            denied = client.get("/oauth/google/callback", params={"error": "access_denied", "state": str(self.user.id)})
        self.assertEqual(start.status_code, 200)
        self.assertIn("login_hint=assistant%40example.com", start.json()["authorization_url"])
        self.assertEqual(unknown.status_code, 404)
        self.assertEqual((status["total"], status["authenticated"]), (1, 0))
        self.assertFalse(one["authenticated"])
        self.assertEqual(empty_code.status_code, 400)
        self.assertEqual(denied.status_code, 400)

    def test_family_routes(self):
        with self.client() as client:
            listed = client.get("/family/members").json()
            added = client.post("/family/members", json={"name": "Sam", "email": "Sam@Example.com", "phone": "415-555-0102"})
            invalid = client.post("/family/members", json={"email": "not-an-email"})
            removed = client.delete("/family/members", params={"email": "alex@example.com"})
            missing = client.delete("/family/members", params={"email": "alex@example.com"})
        self.assertEqual(len(listed["members"]), 1)
        self.assertEqual(added.status_code, 200)
        self.assertEqual(added.json()["members"][1]["phone"], "+14155550102")
        self.assertEqual(invalid.status_code, 400)
        self.assertEqual([m["email"] for m in removed.json()["members"]], ["sam@example.com"])
        self.assertEqual(missing.status_code, 404)
        saved = json.loads(self.family_path.read_text(encoding="utf-8"))
        self.assertEqual([m["email"] for m in saved["members"]], ["sam@example.com"])
        # The listener sees the same list
        self.assertEqual([m.email for m in self.services.email_listener.members], ["sam@example.com"])


if __name__ == "__main__":
    unittest.main()
