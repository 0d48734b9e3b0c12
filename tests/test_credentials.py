"""Tests for the credential store, audit trail and per-user client lifecycle."""

import asyncio
import time
import unittest
from datetime import timedelta
from unittest.mock import patch
from urllib.parse import parse_qs

import httpx
from helpers import fresh_db, run

from family_events.auth.credential_manager import CredentialManager
from family_events.auth.google_oauth import GoogleOAuthClient, OAuthError
from family_events.db.base import utcnow
from family_events.db.repositories import credential_repo, user_repo
from family_events.errors import AuthenticationError, UserNotFoundError

API_URL = "https://gmail.googleapis.com/gmail/v1/users/me/profile"


class FakeGoogle:
    """Token endpoint plus one API endpoint that accepts a single valid token."""

    def __init__(self, valid_token="fresh-token", token_error=None):
        self.valid_token = valid_token
        self.token_error = token_error
        self.token_calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "oauth2.googleapis.com":
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            self.token_calls.append(form)
            if self.token_error:
                return httpx.Response(400, json={"error": self.token_error})
            body = {"access_token": self.valid_token, "expires_in": 3600, "token_type": "Bearer"}
            if form.get("grant_type") == "authorization_code":
                body["refresh_token"] = "refresh-1"
            return httpx.Response(200, json=body)
        if request.headers.get("Authorization") == f"Bearer {self.valid_token}":
            return httpx.Response(200, json={"emailAddress": "alex@example.com"})
        return httpx.Response(401, json={"error": {"code": 401}})


def make_manager(google: FakeGoogle, **kwargs) -> tuple[CredentialManager, httpx.AsyncClient]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(google))
    oauth = GoogleOAuthClient(client_id="cid", client_secret="secret", http_client=http)
    return CredentialManager(oauth=oauth, http_client=http, **kwargs), http


class TestCredentialRepo(unittest.TestCase):
    def setUp(self):
        fresh_db()
        self.user = user_repo.create_user("alex@example.com", name="Alex")

    def test_upsert_keeps_refresh_token(self):
        credential_repo.upsert_credential(self.user.id, "a1", "r1", utcnow() + timedelta(hours=1), "scope")
        credential_repo.upsert_credential(self.user.id, "a2", None, utcnow() + timedelta(hours=2))
        stored = credential_repo.get_credential(self.user.id)
        self.assertEqual(stored.access_token, "a2")
        self.assertEqual(stored.refresh_token, "r1")
        self.assertEqual(stored.scope, "scope")

    def test_expired_token_with_refresh_is_authenticated(self):
        credential_repo.upsert_credential(self.user.id, "a1", "r1", utcnow() - timedelta(hours=1))
        status = credential_repo.user_status(self.user.id)
        self.assertTrue(status["authenticated"])
        self.assertTrue(status["access_token_expired"])

    def test_expired_token_without_refresh_is_not_authenticated(self):
        credential_repo.upsert_credential(self.user.id, "a1", None, utcnow() - timedelta(hours=1))
        self.assertFalse(credential_repo.user_status(self.user.id)["authenticated"])

    def test_statuses_include_users_without_tokens(self):
        user_repo.create_user("sam@example.com")
        statuses = credential_repo.all_user_statuses()
        self.assertEqual([s["email"] for s in statuses], ["alex@example.com", "sam@example.com"])
        self.assertFalse(any(s["authenticated"] for s in statuses))
        self.assertIsNone(credential_repo.user_status(999))

    def test_audit_failure_is_swallowed(self):
        with patch("family_events.db.repositories.credential_repo.get_session", side_effect=RuntimeError("db down")):
            credential_repo.append_audit(self.user.id, credential_repo.ACTION_TOKEN_UPDATED)
        self.assertEqual(credential_repo.list_audit(self.user.id), [])

    def test_recent_error_shows_in_status(self):
        credential_repo.upsert_credential(self.user.id, "a1", "r1", utcnow() + timedelta(hours=1))
        time.sleep(0.01)
        credential_repo.append_audit(self.user.id, credential_repo.ACTION_REFRESH_FAILED, False, "invalid_grant")
        self.assertEqual(credential_repo.user_status(self.user.id)["error"], "invalid_grant")


class TestCredentialManager(unittest.TestCase):
    def setUp(self):
        fresh_db()
        self.user = user_repo.create_user("alex@example.com", name="Alex")

    def test_concurrent_acquire_initializes_once(self):
        credential_repo.upsert_credential(self.user.id, "fresh-token", "r1", utcnow() + timedelta(hours=1))
        loads = []

        def slow_loader(user_id):
            loads.append(user_id)
            time.sleep(0.05)
            return credential_repo.get_credential(user_id)

        async def scenario():
            manager, http = make_manager(FakeGoogle(), credential_loader=slow_loader)
            try:
                clients = await asyncio.gather(*(manager.acquire(self.user.id) for _ in range(10)))
                again = await manager.acquire(self.user.id)
            finally:
                await http.aclose()
            return clients, again

        clients, again = run(scenario())
        self.assertEqual(loads, [self.user.id])
        self.assertTrue(all(c is clients[0] for c in clients))
        self.assertIs(again, clients[0])

    def test_missing_credential_raises(self):
        async def scenario():
            manager, http = make_manager(FakeGoogle())
            try:
                await manager.acquire(self.user.id)
            finally:
                await http.aclose()

        with self.assertRaises(AuthenticationError):
            run(scenario())

    def test_expired_token_refreshed_and_persisted(self):
        credential_repo.upsert_credential(self.user.id, "old-token", "r1", utcnow() - timedelta(minutes=1))
        google = FakeGoogle()

        async def scenario():
            manager, http = make_manager(google)
            try:
                client = await manager.acquire(self.user.id)
                return await client.request("GET", API_URL)
            finally:
                await http.aclose()

        response = run(scenario())
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(google.token_calls), 1)
        stored = credential_repo.get_credential(self.user.id)
        self.assertEqual(stored.access_token, "fresh-token")
        self.assertEqual(stored.refresh_token, "r1")
        actions = [a.action for a in credential_repo.list_audit(self.user.id)]
        self.assertIn(credential_repo.ACTION_TOKEN_UPDATED, actions)

    def test_unauthorized_response_refreshes_once_and_retries(self):
        credential_repo.upsert_credential(self.user.id, "revoked-token", "r1", utcnow() + timedelta(hours=1))
        google = FakeGoogle()

        async def scenario():
            manager, http = make_manager(google)
            try:
                client = await manager.acquire(self.user.id)
                responses = await asyncio.gather(*(client.request("GET", API_URL) for _ in range(3)))
            finally:
                await http.aclose()
            return responses

        responses = run(scenario())
        self.assertTrue(all(r.status_code == 200 for r in responses))
        self.assertEqual(len(google.token_calls), 1)

    def test_invalid_grant_marks_client_revoked(self):
        credential_repo.upsert_credential(self.user.id, "old-token", "r1", utcnow() - timedelta(minutes=1))

        async def scenario():
            manager, http = make_manager(FakeGoogle(token_error="invalid_grant"))
            try:
                client = await manager.acquire(self.user.id)
                with self.assertRaises(OAuthError):
                    await client.request("GET", API_URL)
                return client
            finally:
                await http.aclose()

        client = run(scenario())
        self.assertTrue(client.revoked)
        self.assertEqual(credential_repo.user_status(self.user.id)["error"], "Token endpoint returned 400: invalid_grant")

    def test_complete_authorization(self):
        google = FakeGoogle()

        async def scenario():
            manager, http = make_manager(google)
            try:
                return await manager.complete_authorization(self.user.id, "auth-code")
            finally:
                await http.aclose()

        result = run(scenario())
        self.assertTrue(result.success)
        self.assertTrue(result.has_refresh_token)
        self.assertEqual(google.token_calls[0]["code"], "auth-code")
        stored = credential_repo.get_credential(self.user.id)
        self.assertEqual((stored.access_token, stored.refresh_token), ("fresh-token", "refresh-1"))
        actions = [a.action for a in credential_repo.list_audit(self.user.id)]
        self.assertEqual(actions, [credential_repo.ACTION_OAUTH_COMPLETED])

    def test_failed_authorization_is_audited(self):
        async def scenario():
            manager, http = make_manager(FakeGoogle(token_error="invalid_grant"))
            try:
                return await manager.complete_authorization(self.user.id, "bad-code")
            finally:
                await http.aclose()

        result = run(scenario())
        self.assertFalse(result.success)
        self.assertIsNone(credential_repo.get_credential(self.user.id))
        self.assertEqual(credential_repo.list_audit(self.user.id)[0].action, credential_repo.ACTION_OAUTH_FAILED)

    def test_unknown_user(self):
        async def scenario():
            manager, http = make_manager(FakeGoogle())
            try:
                await manager.complete_authorization(999, "code")
            finally:
                await http.aclose()

        with self.assertRaises(UserNotFoundError):
            run(scenario())

    def test_authorization_url(self):
        manager, _ = make_manager(FakeGoogle())
        url = manager.authorization_url(self.user.id, login_hint="alex@example.com")
        self.assertIn("access_type=offline", url)
        self.assertIn(f"state={self.user.id}", url)
        self.assertIn("login_hint=alex%40example.com", url)


if __name__ == "__main__":
    unittest.main()
