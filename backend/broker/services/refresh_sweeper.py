"""Refreshes OAuth tokens before they expire."""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from broker.config import Settings
from broker.models import CredentialConnection
from broker.providers import (
    ProviderClient,
    ProviderHTTPError,
    ProviderNetworkError,
    ProviderNotConfiguredError,
    ProviderResponseError,
    TokenGrant,
    client_credentials,
    get_provider_spec,
)
from broker.services.cipher import CipherError, CredentialCipher
from broker.services.operation_log import record_operation
from broker.services.retry_policy import Outcome, RetryPolicy, Verdict
from broker.services.vault import CredentialVault, expiry_from

logger = logging.getLogger(__name__)

FUNCTION_NAME = "refresh-oauth-tokens"


def merge_bundle(existing: dict[str, Any], grant: TokenGrant) -> dict[str, Any]:
    """Overlay a refresh grant on the stored bundle.

    The old refresh token survives when the provider did not rotate it.
    """
    return {
        **existing,
        "access_token": grant.access_token or existing.get("access_token"),
        "refresh_token": grant.refresh_token or existing.get("refresh_token"),
        "expires_in": grant.expires_in,
        "token_type": grant.token_type or existing.get("token_type"),
    }


@dataclass
class SweepEntry:
    id: str
    provider: str
    status: str  # refreshed | expired | skipped | error
    reason: str | None = None

    def to_dict(self) -> dict:
        data = {"id": self.id, "provider": self.provider, "status": self.status}
        if self.reason is not None:
            data["reason"] = self.reason
        return data


@dataclass
class SweepReport:
    entries: list[SweepEntry] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for entry in self.entries if entry.status == status)

    @property
    def summary(self) -> dict[str, int]:
        return {
            "total": len(self.entries),
            "refreshed": self.count("refreshed"),
            "expired": self.count("expired"),
            "errors": self.count("error"),
        }


class RefreshSweeper:
    """Scans the vault for near-expiry tokens and refreshes them.

    A provider rejection marks the connection expired so a dead refresh
    token is never retried forever; network errors are left for the next
    sweep. Failures on one connection never stop the batch.
    """

    # Retries are the next scheduled sweep; there is no in-request loop
    policy = RetryPolicy(max_attempts=None)

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        client: ProviderClient,
        cipher: CredentialCipher,
    ):
        self.db = db
        self.settings = settings
        self.client = client
        self.vault = CredentialVault(db, cipher)

    async def run(self) -> SweepReport:
        lookahead = timedelta(minutes=self.settings.refresh_lookahead_minutes)
        connections = await self.vault.due_for_refresh(lookahead)
        logger.info(f"Found {len(connections)} connection(s) due for refresh")

        report = SweepReport()
        for connection in connections:
            report.entries.append(await self._refresh_one(connection))

        summary = report.summary
        await record_operation(
            self.db,
            FUNCTION_NAME,
            "warn" if summary["errors"] or summary["expired"] else "info",
            f"TOKEN_REFRESH_CYCLE: {summary['refreshed']} refreshed, "
            f"{summary['expired']} expired, {summary['errors']} errors",
            details={**summary, "results": [entry.to_dict() for entry in report.entries]},
            status_code=200,
        )
        return report

    async def _refresh_one(self, connection: CredentialConnection) -> SweepEntry:
        def entry(status: str, reason: str | None = None) -> SweepEntry:
            return SweepEntry(connection.id, connection.provider, status, reason)

        spec = get_provider_spec(connection.provider)
        if spec is None or not spec.supports_refresh:
            return entry("skipped", "no_refresh_support")
        try:
            client_credentials(self.settings, spec, require_redirect=False)
        except ProviderNotConfiguredError:
            return entry("skipped", "provider_not_configured")

        try:
            existing = self.vault.decrypt(connection)
        except CipherError:
            logger.error(f"Failed to decrypt tokens for connection {connection.id}")
            return entry("error", "decrypt_failed")

        refresh_token = existing.get("refresh_token")
        if not refresh_token:
            return entry("skipped", "no_refresh_token")

        grant = None
        try:
            grant = await self.client.refresh(spec, refresh_token)
            outcome, reason = Outcome.SUCCEEDED, None
        except ProviderNetworkError:
            outcome, reason = Outcome.TRANSIENT_FAILURE, "network_error"
        except ProviderHTTPError as e:
            outcome, reason = Outcome.PERMANENT_FAILURE, f"http_{e.status_code}"
        except ProviderResponseError as e:
            outcome, reason = Outcome.PERMANENT_FAILURE, e.reason

        decision = self.policy.decide(outcome, 1)
        if decision.verdict == Verdict.RETRY:
            logger.warning(f"Network error refreshing {connection.provider} connection {connection.id}")
            return entry("error", reason)
        if decision.verdict == Verdict.FAIL:
            logger.warning(f"Token refresh failed for {connection.provider}: {reason}")
            self.vault.mark_expired(connection)
            await self.db.flush()
            return entry("expired", reason)

        self.vault.store_bundle(
            connection,
            merge_bundle(existing, grant),
            expiry_from(grant.expires_in),
        )
        await self.db.flush()
        logger.info(f"Refreshed token for connection {connection.id} ({connection.provider})")
        return entry("refreshed")
