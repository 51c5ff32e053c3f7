"""Activation readiness and the all-connections-satisfied trigger."""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from broker.models import (
    AWAITING_CONNECTION_STATUSES,
    Activation,
    ActivationStatus,
    JobAction,
)
from broker.services.operation_log import record_operation
from broker.services.provisioning_queue import ProvisioningQueue
from broker.services.vault import CredentialVault

logger = logging.getLogger(__name__)


@dataclass
class Readiness:
    activation_id: str
    required: list[str]
    connected: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return not self.missing


async def get_owned_activation(db: AsyncSession, activation_id: str, user_id: str) -> Activation | None:
    """Fetch an activation only if ``user_id`` owns it."""
    result = await db.execute(
        select(Activation).where(
            Activation.id == activation_id,
            Activation.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def check_readiness(db: AsyncSession, activation: Activation) -> Readiness:
    """Compare an activation's required providers with the owner's connections."""
    required = activation.required_provider_names()
    connected = await CredentialVault(db).connected_providers(activation.user_id, activation.id)
    return Readiness(
        activation_id=activation.id,
        required=required,
        connected=sorted(p for p in required if p in connected),
        missing=[p for p in required if p not in connected],
    )


async def advance_ready_activations(
    db: AsyncSession,
    user_id: str,
    default_max_attempts: int = 3,
) -> list[str]:
    """Move fully connected activations into the build and enqueue provisioning.

    Called after any connect. Only activations still waiting for
    credentials are touched, so repeat connects never enqueue twice.

    Returns:
        Ids of the activations that advanced.
    """
    result = await db.execute(
        select(Activation).where(
            Activation.user_id == user_id,
            Activation.status.in_(sorted(AWAITING_CONNECTION_STATUSES)),
        )
    )
    advanced = []
    queue = ProvisioningQueue(db, default_max_attempts)
    for activation in result.scalars().all():
        readiness = await check_readiness(db, activation)
        if not readiness.required or not readiness.ready:
            continue

        activation.status = ActivationStatus.IN_BUILD.value
        await queue.enqueue(
            user_id=user_id,
            action=JobAction.PROVISION_VPS.value,
            payload={"automation_slug": activation.automation_slug},
            activation_id=activation.id,
        )
        await record_operation(
            db,
            "connections",
            "info",
            f"ACTIVATION_READY: {activation.automation_slug} moved to in_build",
            details={"activation_id": activation.id, "providers": readiness.required},
            user_id=user_id,
        )
        advanced.append(activation.id)
        logger.info(f"Activation {activation.id} has all connections; provisioning enqueued")
    return advanced
