"""Resolves an activation's decrypted credential set for the automation runtime."""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from broker.models import Activation, ConnectionStatus, CredentialConnection
from broker.services.cipher import CipherError, CredentialCipher
from broker.services.vault import CredentialVault

logger = logging.getLogger(__name__)

DECRYPTION_FAILED = {"error": "decryption_failed"}


class ActivationNotFoundError(Exception):
    """Raised when the activation does not exist."""

    pass


class ActivationInactiveError(Exception):
    """Raised when the activation is not in an operational status."""

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Activation not active: {status}")


@dataclass
class ResolvedCredentials:
    activation_id: str
    automation_slug: str
    tenant_id: str
    tenant_email: str
    status: str
    credentials: dict[str, Any] = field(default_factory=dict)
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "activation_id": self.activation_id,
            "automation_slug": self.automation_slug,
            "tenant_id": self.tenant_id,
            "tenant_email": self.tenant_email,
            "status": self.status,
            "credentials": self.credentials,
            "config": self.config,
        }


class CredentialResolver:
    """Decrypts exactly the credentials one operational activation needs."""

    def __init__(self, db: AsyncSession, cipher: CredentialCipher):
        self.db = db
        self.vault = CredentialVault(db, cipher)

    async def resolve(self, activation_id: str) -> ResolvedCredentials:
        """Build the credential map for an activation.

        Raises:
            ActivationNotFoundError: Unknown activation.
            ActivationInactiveError: Activation exists but is not operational.
        """
        activation = await self.db.get(Activation, activation_id)
        if activation is None:
            raise ActivationNotFoundError(activation_id)
        if not activation.is_operational:
            raise ActivationInactiveError(activation.status)

        required = set(activation.required_provider_names())
        result = await self.db.execute(
            select(CredentialConnection).where(
                CredentialConnection.user_id == activation.user_id,
                CredentialConnection.status == ConnectionStatus.CONNECTED.value,
                (CredentialConnection.activation_id.is_(None))
                | (CredentialConnection.activation_id == activation.id),
            )
        )
        # Account-level rows first so activation-scoped rows overwrite them
        connections = sorted(
            result.scalars().all(),
            key=lambda c: c.activation_id is not None,
        )

        credentials: dict[str, Any] = {}
        for connection in connections:
            if required and connection.provider.lower() not in required:
                continue
            if not connection.has_payload:
                continue
            try:
                credentials[connection.provider] = self.vault.decrypt(connection)
            except CipherError:
                logger.error(f"Failed to decrypt credentials for {connection.provider}")
                credentials[connection.provider] = dict(DECRYPTION_FAILED)

        logger.info(
            f"Runtime credentials accessed: activation={activation.id} "
            f"user={activation.user_id} providers=[{','.join(sorted(credentials))}]"
        )
        return ResolvedCredentials(
            activation_id=activation.id,
            automation_slug=activation.automation_slug,
            tenant_id=activation.user_id,
            tenant_email=activation.email,
            status=activation.status,
            credentials=credentials,
            config=dict(activation.config or {}),
        )
