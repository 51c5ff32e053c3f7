"""Tests for the token refresh sweep."""

import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from broker.models import ConnectionStatus, OAuthState, OperationLog
from broker.providers import TokenGrant
from broker.services.cipher import CredentialCipher
from broker.services.refresh_sweeper import merge_bundle
from tests.base import SERVICE_ROLE_KEY, TEST_NEXT_ENCRYPTION_KEY, AsyncTestCase, as_utc, make_settings

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
HUBSPOT_TOKEN_URL = "https://api.hubapi.com/oauth/v1/token"

SERVICE_HEADERS = {"Authorization": f"Bearer {SERVICE_ROLE_KEY}"}


def in_minutes(minutes: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


class TestMergeBundle(unittest.TestCase):
    def test_keeps_refresh_token_when_not_rotated(self):
        existing = {"access_token": "old", "refresh_token": "r1", "scope": "email"}
        grant = TokenGrant(access_token="new", expires_in=3600)

        merged = merge_bundle(existing, grant)

        self.assertEqual(merged["access_token"], "new")
        self.assertEqual(merged["refresh_token"], "r1")
        self.assertEqual(merged["expires_in"], 3600)
        self.assertEqual(merged["scope"], "email")

    def test_takes_rotated_refresh_token(self):
        merged = merge_bundle(
            {"access_token": "old", "refresh_token": "r1"},
            TokenGrant(access_token="new", refresh_token="r2"),
        )
        self.assertEqual(merged["refresh_token"], "r2")


class TestRefreshAuth(AsyncTestCase):
    """Only the service role key may trigger a sweep."""

    async def test_no_credentials(self):
        response = await self.client.post("/maintenance/refresh-tokens")
        self.assertEqual(response.status_code, 401)

    async def test_user_session_rejected(self):
        response = await self.auth_client.post("/maintenance/refresh-tokens")
        self.assertEqual(response.status_code, 401)

    async def test_admin_session_rejected(self):
        response = await self.admin_client.post("/maintenance/refresh-tokens")
        self.assertEqual(response.status_code, 401)

    async def test_wrong_key(self):
        response = await self.client.post(
            "/maintenance/refresh-tokens", headers={"X-Admin-Key": "nope"}
        )
        self.assertEqual(response.status_code, 401)

    async def test_bearer_service_key(self):
        response = await self.client.post("/maintenance/refresh-tokens", headers=SERVICE_HEADERS)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json()["summary"],
            {"total": 0, "refreshed": 0, "expired": 0, "errors": 0},
        )

    async def test_admin_key_header(self):
        response = await self.client.post(
            "/maintenance/refresh-tokens", headers={"X-Admin-Key": SERVICE_ROLE_KEY}
        )
        self.assertEqual(response.status_code, 200)


class TestRefreshSweep(AsyncTestCase):
    """Tests for selecting and refreshing near-expiry connections."""

    async def sweep(self) -> dict:
        response = await self.client.post("/maintenance/refresh-tokens", headers=SERVICE_HEADERS)
        self.assertEqual(response.status_code, 200)
        self.session.expire_all()
        return response.json()

    async def test_refreshes_only_connections_inside_window(self):
        self.fake_http.on(
            "POST", GOOGLE_TOKEN_URL, json_body={"access_token": "new", "expires_in": 3600}
        )
        soon = await self.store_connection(
            "google",
            {"access_token": "old", "refresh_token": "r1"},
            expires_at=in_minutes(30),
        )
        later = await self.store_connection(
            "google",
            {"access_token": "later", "refresh_token": "r2"},
            user=self.admin_user,
            expires_at=in_minutes(180),
        )

        data = await self.sweep()

        self.assertEqual(data["summary"], {"total": 1, "refreshed": 1, "expired": 0, "errors": 0})
        self.assertEqual(data["results"][0]["id"], soon.id)

        await self.session.refresh(soon)
        bundle = self.cipher.decrypt_bundle(
            soon.encrypted_payload, soon.encryption_iv, soon.encryption_tag
        )
        self.assertEqual(bundle["access_token"], "new")
        self.assertEqual(bundle["refresh_token"], "r1")
        self.assertGreater(as_utc(soon.expires_at), in_minutes(50))

        await self.session.refresh(later)
        bundle = self.cipher.decrypt_bundle(
            later.encrypted_payload, later.encryption_iv, later.encryption_tag
        )
        self.assertEqual(bundle["access_token"], "later")

        form = self.fake_http.form(self.fake_http.requests_to(GOOGLE_TOKEN_URL)[0])
        self.assertEqual(form["grant_type"], "refresh_token")
        self.assertEqual(form["refresh_token"], "r1")
        self.assertEqual(form["client_id"], "google-client-id")

    async def test_already_expired_connection_is_refreshed(self):
        self.fake_http.on(
            "POST", HUBSPOT_TOKEN_URL, json_body={"access_token": "new", "expires_in": 1800}
        )
        await self.store_connection(
            "hubspot", {"access_token": "old", "refresh_token": "r"}, expires_at=in_minutes(-5)
        )

        data = await self.sweep()

        self.assertEqual(data["summary"]["refreshed"], 1)

    async def test_provider_rejection_marks_expired(self):
        self.fake_http.on("POST", GOOGLE_TOKEN_URL, status_code=400, json_body={"error": "invalid_grant"})
        connection = await self.store_connection(
            "google", {"access_token": "old", "refresh_token": "dead"}, expires_at=in_minutes(10)
        )

        data = await self.sweep()

        self.assertEqual(data["summary"]["expired"], 1)
        self.assertEqual(data["results"][0]["reason"], "http_400")
        await self.session.refresh(connection)
        self.assertEqual(connection.status, ConnectionStatus.EXPIRED.value)

        # Expired connections are not retried on the next sweep
        data = await self.sweep()
        self.assertEqual(data["summary"]["total"], 0)

    async def test_network_error_leaves_connection_for_next_sweep(self):
        self.fake_http.fail("POST", GOOGLE_TOKEN_URL)
        connection = await self.store_connection(
            "google", {"access_token": "old", "refresh_token": "r"}, expires_at=in_minutes(10)
        )

        data = await self.sweep()

        self.assertEqual(data["summary"]["errors"], 1)
        self.assertEqual(data["results"][0]["reason"], "network_error")
        await self.session.refresh(connection)
        self.assertEqual(connection.status, ConnectionStatus.CONNECTED.value)

    async def test_one_failure_does_not_stop_the_batch(self):
        self.fake_http.on("POST", GOOGLE_TOKEN_URL, status_code=401)
        self.fake_http.on(
            "POST", HUBSPOT_TOKEN_URL, json_body={"access_token": "new", "expires_in": 1800}
        )
        await self.store_connection(
            "google", {"access_token": "a", "refresh_token": "r"}, expires_at=in_minutes(5)
        )
        await self.store_connection(
            "hubspot", {"access_token": "b", "refresh_token": "r"}, expires_at=in_minutes(15)
        )

        data = await self.sweep()

        self.assertEqual(data["summary"], {"total": 2, "refreshed": 1, "expired": 1, "errors": 0})

    async def test_skip_reasons(self):
        await self.store_connection("notion", {"access_token": "n"}, expires_at=in_minutes(5))
        await self.store_connection("google", {"access_token": "g"}, expires_at=in_minutes(5))

        data = await self.sweep()

        reasons = {r["provider"]: (r["status"], r["reason"]) for r in data["results"]}
        self.assertEqual(reasons["notion"], ("skipped", "no_refresh_support"))
        self.assertEqual(reasons["google"], ("skipped", "no_refresh_token"))
        self.assertEqual(self.fake_http.requests, [])

    async def test_undecryptable_payload_is_an_error(self):
        other_cipher = CredentialCipher(TEST_NEXT_ENCRYPTION_KEY)
        connection = await self.store_connection(
            "google", {"access_token": "g", "refresh_token": "r"}, expires_at=in_minutes(5)
        )
        payload = other_cipher.encrypt_bundle({"access_token": "x", "refresh_token": "y"})
        connection.set_payload(payload.ciphertext, payload.iv, payload.tag)
        await self.session.commit()

        data = await self.sweep()

        self.assertEqual(data["results"][0]["status"], "error")
        self.assertEqual(data["results"][0]["reason"], "decrypt_failed")
        await self.session.refresh(connection)
        self.assertEqual(connection.status, ConnectionStatus.CONNECTED.value)

    async def test_cycle_summary_logged(self):
        self.fake_http.on("POST", GOOGLE_TOKEN_URL, status_code=400)
        await self.store_connection(
            "google", {"access_token": "secret-a", "refresh_token": "secret-r"}, expires_at=in_minutes(5)
        )

        await self.sweep()

        log = await self.session.scalar(
            select(OperationLog).where(OperationLog.function_name == "refresh-oauth-tokens")
        )
        self.assertEqual(log.level, "warn")
        self.assertEqual(log.message, "TOKEN_REFRESH_CYCLE: 0 refreshed, 1 expired, 0 errors")
        self.assertEqual(log.details["expired"], 1)
        self.assertNotIn("secret-r", str(log.details))

    async def test_purges_expired_state_tokens(self):
        self.session.add_all(
            [
                OAuthState(
                    state_token="stale",
                    user_id=self.test_user.id,
                    provider="slack",
                    expires_at=in_minutes(-1),
                ),
                OAuthState(
                    state_token="fresh",
                    user_id=self.test_user.id,
                    provider="slack",
                    expires_at=in_minutes(5),
                ),
            ]
        )
        await self.session.commit()

        data = await self.sweep()

        self.assertEqual(data["purged_states"], 1)
        tokens = (await self.session.execute(select(OAuthState.state_token))).scalars().all()
        self.assertEqual(tokens, ["fresh"])


class TestRefreshProviderUnconfigured(AsyncTestCase):
    def get_test_settings(self):
        return make_settings(google_client_secret=None)

    async def test_skipped_without_client_registration(self):
        await self.store_connection(
            "google", {"access_token": "g", "refresh_token": "r"}, expires_at=in_minutes(5)
        )

        response = await self.client.post("/maintenance/refresh-tokens", headers=SERVICE_HEADERS)

        result = response.json()["results"][0]
        self.assertEqual(result["status"], "skipped")
        self.assertEqual(result["reason"], "provider_not_configured")
        count = await self.session.scalar(select(func.count()).select_from(OperationLog))
        self.assertEqual(count, 1)


if __name__ == "__main__":
    unittest.main()
