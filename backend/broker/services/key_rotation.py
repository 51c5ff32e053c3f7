"""Master key rotation for stored credential payloads."""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from broker.models import CredentialConnection
from broker.services import cipher
from broker.services.operation_log import record_operation

logger = logging.getLogger(__name__)


class RotationConfigurationError(Exception):
    """Raised when the keys needed for a rotation are missing or invalid."""

    def __init__(self, message: str, setting: str):
        self.setting = setting
        super().__init__(message)


@dataclass
class RotationResult:
    dry_run: bool
    from_version: int
    to_version: int
    rotated: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.dry_run:
            return (
                f"DRY_RUN: {self.rotated} records would be rotated from "
                f"key_version={self.from_version} to key_version={self.to_version}"
            )
        return f"ROTATION_COMPLETE: {self.rotated} records re-encrypted. {len(self.errors)} errors."


async def rotate_master_key(
    db: AsyncSession,
    current_key: str | None,
    next_key: str | None,
    from_version: int = 1,
    dry_run: bool = True,
    actor_id: str | None = None,
) -> RotationResult:
    """Re-encrypt every payload on ``from_version`` under the next key.

    A dry run only counts the rows. Rows that fail to decrypt are reported
    by id and left untouched.

    Raises:
        RotationConfigurationError: If a required key is unset or malformed.
    """
    if not current_key:
        raise RotationConfigurationError(
            "Current encryption key not configured", "CREDENTIAL_ENCRYPTION_KEY"
        )
    if not dry_run and not next_key:
        raise RotationConfigurationError(
            "Next encryption key not configured", "CREDENTIAL_ENCRYPTION_KEY_NEXT"
        )
    for setting, value in (
        ("CREDENTIAL_ENCRYPTION_KEY", current_key),
        ("CREDENTIAL_ENCRYPTION_KEY_NEXT", next_key),
    ):
        if value:
            try:
                cipher.load_key(value)
            except cipher.CipherConfigurationError as e:
                raise RotationConfigurationError(str(e), setting) from None

    result = await db.execute(
        select(CredentialConnection).where(
            CredentialConnection.key_version == from_version,
            CredentialConnection.encrypted_payload.is_not(None),
        )
    )
    rows = list(result.scalars().all())
    logger.info(f"Found {len(rows)} credential connection(s) on key_version={from_version}")

    outcome = RotationResult(dry_run=dry_run, from_version=from_version, to_version=from_version + 1)
    if dry_run:
        outcome.rotated = len(rows)
    else:
        for row in rows:
            try:
                plaintext = cipher.decrypt(
                    row.encrypted_payload, row.encryption_iv, row.encryption_tag, current_key
                )
            except cipher.CipherError as e:
                outcome.errors.append(f"row {row.id}: {e}")
                continue
            sealed = cipher.encrypt(plaintext, next_key)
            row.set_payload(sealed.ciphertext, sealed.iv, sealed.tag)
            row.key_version = outcome.to_version
            outcome.rotated += 1
        await db.flush()

    await record_operation(
        db,
        "rotate-encryption-key",
        "warn" if outcome.errors else "info",
        outcome.message,
        details={
            "dry_run": dry_run,
            "from_version": outcome.from_version,
            "to_version": outcome.to_version,
            "rotated": outcome.rotated,
            "errors": len(outcome.errors),
        },
        user_id=actor_id,
    )
    logger.info(
        f"Key rotation by {actor_id}: dry_run={dry_run} rotated={outcome.rotated} "
        f"errors={len(outcome.errors)}"
    )
    return outcome
