"""Tests for runtime credential resolution."""

import unittest
from uuid import uuid4

from broker.api.dependencies import constant_time_equals
from broker.models import ActivationStatus
from broker.services.cipher import CredentialCipher
from tests.base import RUNTIME_API_KEY, TEST_NEXT_ENCRYPTION_KEY, AsyncTestCase, make_settings

RUNTIME_HEADERS = {"Authorization": f"Bearer {RUNTIME_API_KEY}"}


class TestConstantTimeEquals(unittest.TestCase):
    def test_equal(self):
        self.assertTrue(constant_time_equals("abc123", "abc123"))

    def test_different_same_length(self):
        self.assertFalse(constant_time_equals("abc123", "abc124"))

    def test_different_length(self):
        self.assertFalse(constant_time_equals("abc", "abc123"))

    def test_empty_values_never_match(self):
        self.assertFalse(constant_time_equals("", ""))
        self.assertFalse(constant_time_equals(None, "abc"))
        self.assertFalse(constant_time_equals("abc", None))


class RuntimeTestCase(AsyncTestCase):
    async def fetch(self, activation_id: str | None, headers: dict | None = None):
        params = {"activation_id": activation_id} if activation_id is not None else {}
        return await self.client.get(
            "/runtime/credentials",
            params=params,
            headers=RUNTIME_HEADERS if headers is None else headers,
        )

    def assertNoCache(self, response):
        self.assertEqual(response.headers["cache-control"], "no-store, no-cache, must-revalidate")
        self.assertEqual(response.headers["pragma"], "no-cache")


class TestRuntimeAuth(RuntimeTestCase):
    """Authentication and request validation."""

    async def test_missing_authorization(self):
        activation = await self.create_activation()
        response = await self.fetch(activation.id, headers={})
        self.assertEqual(response.status_code, 401)
        self.assertNoCache(response)

    async def test_wrong_key(self):
        activation = await self.create_activation()
        response = await self.fetch(activation.id, headers={"Authorization": "Bearer wrong"})
        self.assertEqual(response.status_code, 403)
        self.assertNoCache(response)

    async def test_user_session_is_not_the_runtime_key(self):
        activation = await self.create_activation()
        response = await self.auth_client.get(
            "/runtime/credentials", params={"activation_id": activation.id}
        )
        self.assertEqual(response.status_code, 403)

    async def test_missing_activation_id(self):
        response = await self.fetch(None)
        self.assertEqual(response.status_code, 400)

    async def test_malformed_activation_id(self):
        response = await self.fetch("not-a-uuid")
        self.assertEqual(response.status_code, 404)

    async def test_unknown_activation(self):
        response = await self.fetch(str(uuid4()))
        self.assertEqual(response.status_code, 404)
        self.assertNoCache(response)


class TestRuntimeUnconfigured(RuntimeTestCase):
    def get_test_settings(self):
        return make_settings(runtime_api_key=None)

    async def test_missing_runtime_key_is_server_error(self):
        response = await self.fetch(str(uuid4()), headers={"Authorization": "Bearer "})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["detail"], "Server configuration error")


class TestRuntimeMissingMasterKey(RuntimeTestCase):
    def get_test_settings(self):
        return make_settings(credential_encryption_key=None)

    async def test_missing_master_key(self):
        activation = await self.create_activation()
        response = await self.fetch(activation.id)
        self.assertEqual(response.status_code, 500)
        self.assertNoCache(response)


class TestRuntimeResolution(RuntimeTestCase):
    """Tests for the resolved credential map."""

    async def test_resolves_account_connections(self):
        activation = await self.create_activation(
            required_providers=["slack"], config={"channel": "#leads"}
        )
        await self.store_connection("slack", {"access_token": "xoxb-1"})

        response = await self.fetch(activation.id)

        self.assertEqual(response.status_code, 200)
        self.assertNoCache(response)
        data = response.json()
        self.assertEqual(data["activation_id"], activation.id)
        self.assertEqual(data["automation_slug"], "lead-follow-up")
        self.assertEqual(data["tenant_id"], self.test_user.id)
        self.assertEqual(data["tenant_email"], "test@example.com")
        self.assertEqual(data["status"], ActivationStatus.LIVE.value)
        self.assertEqual(data["credentials"], {"slack": {"access_token": "xoxb-1"}})
        self.assertEqual(data["config"], {"channel": "#leads"})

    async def test_inactive_activation(self):
        for activation_status in (ActivationStatus.PAUSED, ActivationStatus.PENDING):
            activation = await self.create_activation(status=activation_status.value)
            response = await self.fetch(activation.id)
            self.assertEqual(response.status_code, 403)
            self.assertEqual(response.json()["status"], activation_status.value)
            self.assertNoCache(response)

    async def test_operational_statuses(self):
        for activation_status in (
            ActivationStatus.LIVE,
            ActivationStatus.ACTIVE,
            ActivationStatus.IN_BUILD,
            ActivationStatus.TESTING,
        ):
            activation = await self.create_activation(status=activation_status.value)
            response = await self.fetch(activation.id)
            self.assertEqual(response.status_code, 200, activation_status)

    async def test_required_providers_filter(self):
        activation = await self.create_activation(required_providers=["google"])
        await self.store_connection("google", {"access_token": "g"})
        await self.store_connection("slack", {"access_token": "s"})

        data = (await self.fetch(activation.id)).json()

        self.assertEqual(list(data["credentials"]), ["google"])

    async def test_no_required_providers_returns_all(self):
        activation = await self.create_activation()
        await self.store_connection("google", {"access_token": "g"})
        await self.store_connection("slack", {"access_token": "s"})

        data = (await self.fetch(activation.id)).json()

        self.assertEqual(set(data["credentials"]), {"google", "slack"})

    async def test_scoped_connection_wins_over_account(self):
        activation = await self.create_activation(required_providers=["slack"])
        await self.store_connection("slack", {"access_token": "account"})
        await self.store_connection("slack", {"access_token": "scoped"}, activation_id=activation.id)

        data = (await self.fetch(activation.id)).json()

        self.assertEqual(data["credentials"]["slack"], {"access_token": "scoped"})

    async def test_other_activations_scoped_rows_excluded(self):
        mine = await self.create_activation(required_providers=["slack"])
        other = await self.create_activation(required_providers=["slack"])
        await self.store_connection("slack", {"access_token": "other"}, activation_id=other.id)

        data = (await self.fetch(mine.id)).json()

        self.assertEqual(data["credentials"], {})

    async def test_other_tenants_connections_excluded(self):
        activation = await self.create_activation()
        await self.store_connection("slack", {"access_token": "admin"}, user=self.admin_user)

        data = (await self.fetch(activation.id)).json()

        self.assertEqual(data["credentials"], {})

    async def test_revoked_connections_excluded(self):
        activation = await self.create_activation()
        await self.store_connection("slack", {"access_token": "s"})
        await self.auth_client.delete("/connections/slack")

        data = (await self.fetch(activation.id)).json()

        self.assertEqual(data["credentials"], {})

    async def test_decrypt_failure_is_isolated(self):
        activation = await self.create_activation()
        await self.store_connection("google", {"access_token": "g"})
        broken = await self.store_connection("slack", {"access_token": "s"})
        payload = CredentialCipher(TEST_NEXT_ENCRYPTION_KEY).encrypt_bundle({"access_token": "x"})
        broken.set_payload(payload.ciphertext, payload.iv, payload.tag)
        await self.session.commit()

        response = await self.fetch(activation.id)

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["credentials"]["google"], {"access_token": "g"})
        self.assertEqual(data["credentials"]["slack"], {"error": "decryption_failed"})


if __name__ == "__main__":
    unittest.main()
