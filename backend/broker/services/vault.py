"""Credential vault: encrypted connection rows and their lifecycle."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from broker.models import (
    ConnectionStatus,
    CredentialConnection,
    RETIRED_STATUSES,
)
from broker.services.cipher import CipherError, CredentialCipher

logger = logging.getLogger(__name__)


class ConnectionNotFoundError(Exception):
    """Raised when no live connection matches a lookup."""

    pass


def expiry_from(expires_in: int | None, now: datetime | None = None) -> datetime | None:
    """Absolute expiry for an ``expires_in`` seconds value, or None."""
    if not expires_in:
        return None
    now = now or datetime.now(timezone.utc)
    return now + timedelta(seconds=expires_in)


class CredentialVault:
    """Reads and writes credential connections.

    Every write of secret material goes through the cipher, and the
    ciphertext, IV and tag are always replaced together.
    """

    def __init__(self, db: AsyncSession, cipher: CredentialCipher | None = None):
        self.db = db
        self.cipher = cipher

    def _require_cipher(self) -> CredentialCipher:
        if self.cipher is None:
            raise RuntimeError("CredentialVault was built without a cipher")
        return self.cipher

    async def find_live(
        self,
        user_id: str,
        provider: str,
        activation_id: str | None = None,
        any_scope: bool = False,
    ) -> list[CredentialConnection]:
        """Non-revoked, non-archived connections for a key, newest first."""
        query = select(CredentialConnection).where(
            CredentialConnection.user_id == user_id,
            CredentialConnection.provider == provider,
            CredentialConnection.status.not_in(sorted(RETIRED_STATUSES)),
        )
        if not any_scope:
            if activation_id is None:
                query = query.where(CredentialConnection.activation_id.is_(None))
            else:
                query = query.where(CredentialConnection.activation_id == activation_id)
        query = query.order_by(CredentialConnection.updated_at.desc())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def upsert(
        self,
        user_id: str,
        provider: str,
        bundle: dict[str, Any],
        *,
        activation_id: str | None = None,
        any_scope: bool = False,
        granted_scopes: list[str] | None = None,
        connected_email: str | None = None,
        expires_at: datetime | None = None,
    ) -> CredentialConnection:
        """Encrypt a bundle and store it as the live connection for a key.

        The newest live row for the key is overwritten; older duplicates are
        archived so at most one connected row remains. With ``any_scope`` the
        key is (user, provider) regardless of activation scope.
        """
        payload = self._require_cipher().encrypt_bundle(bundle)
        existing = await self.find_live(user_id, provider, activation_id, any_scope)

        if existing:
            connection = existing[0]
            for duplicate in existing[1:]:
                duplicate.status = ConnectionStatus.ARCHIVED.value
                duplicate.clear_payload()
            connection.activation_id = activation_id
            logger.info(f"Updating {provider} connection {connection.id} for user {user_id}")
        else:
            connection = CredentialConnection(
                user_id=user_id,
                provider=provider,
                activation_id=activation_id,
            )
            self.db.add(connection)
            logger.info(f"Creating {provider} connection for user {user_id}")

        connection.status = ConnectionStatus.CONNECTED.value
        connection.set_payload(payload.ciphertext, payload.iv, payload.tag)
        connection.granted_scopes = granted_scopes
        connection.connected_email = connected_email
        connection.expires_at = expires_at
        await self.db.flush()
        return connection

    async def revoke(self, user_id: str, provider: str) -> int:
        """Mark every live connection for (user, provider) revoked.

        Returns:
            The number of connections revoked.

        Raises:
            ConnectionNotFoundError: If there was nothing to revoke.
        """
        connections = await self.find_live(user_id, provider, any_scope=True)
        if not connections:
            raise ConnectionNotFoundError(f"No {provider} connection for user")
        for connection in connections:
            connection.status = ConnectionStatus.REVOKED.value
            connection.clear_payload()
        await self.db.flush()
        logger.info(f"Revoked {len(connections)} {provider} connection(s) for user {user_id}")
        return len(connections)

    async def list_for_user(self, user_id: str) -> list[CredentialConnection]:
        """Every non-revoked connection the user owns."""
        result = await self.db.execute(
            select(CredentialConnection)
            .where(
                CredentialConnection.user_id == user_id,
                CredentialConnection.status != ConnectionStatus.REVOKED.value,
            )
            .order_by(CredentialConnection.provider)
        )
        return list(result.scalars().all())

    async def connected_providers(self, user_id: str, activation_id: str | None = None) -> set[str]:
        """Providers with a connected row usable by an activation."""
        query = select(CredentialConnection.provider).where(
            CredentialConnection.user_id == user_id,
            CredentialConnection.status == ConnectionStatus.CONNECTED.value,
        )
        if activation_id is None:
            query = query.where(CredentialConnection.activation_id.is_(None))
        else:
            query = query.where(
                (CredentialConnection.activation_id.is_(None))
                | (CredentialConnection.activation_id == activation_id)
            )
        result = await self.db.execute(query)
        return {provider.lower() for provider in result.scalars().all()}

    async def due_for_refresh(self, lookahead: timedelta) -> list[CredentialConnection]:
        """Connected rows with a payload expiring within ``lookahead`` of now."""
        horizon = datetime.now(timezone.utc) + lookahead
        result = await self.db.execute(
            select(CredentialConnection)
            .where(
                CredentialConnection.status == ConnectionStatus.CONNECTED.value,
                CredentialConnection.encrypted_payload.is_not(None),
                CredentialConnection.expires_at.is_not(None),
                CredentialConnection.expires_at <= horizon,
            )
            .order_by(CredentialConnection.expires_at)
        )
        return list(result.scalars().all())

    def decrypt(self, connection: CredentialConnection) -> dict[str, Any]:
        """Decrypt a connection's bundle.

        Raises:
            CipherError: If the payload is missing, tampered or under another key.
        """
        if not connection.has_payload:
            raise CipherError("Connection has no encrypted payload")
        return self._require_cipher().decrypt_bundle(
            connection.encrypted_payload,
            connection.encryption_iv,
            connection.encryption_tag,
        )

    def store_bundle(
        self,
        connection: CredentialConnection,
        bundle: dict[str, Any],
        expires_at: datetime | None,
    ) -> None:
        """Re-encrypt a connection's bundle under a fresh IV."""
        payload = self._require_cipher().encrypt_bundle(bundle)
        connection.set_payload(payload.ciphertext, payload.iv, payload.tag)
        connection.expires_at = expires_at

    def mark_expired(self, connection: CredentialConnection) -> None:
        """Force the user back through authorization."""
        connection.status = ConnectionStatus.EXPIRED.value
