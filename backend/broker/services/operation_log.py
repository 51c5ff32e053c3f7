"""Helpers for writing to the append-only operation log."""

from typing import Any, Literal
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from broker.models import OperationLog

LogLevel = Literal["debug", "info", "warn", "error"]

SENSITIVE_KEY_FRAGMENTS = ("password", "token", "secret", "key", "authorization", "cookie")
REDACTED = "[REDACTED]"

# Free-form text stored in the log is cut to this length
MAX_MESSAGE_LENGTH = 500


def truncate(text: str, limit: int = 200) -> str:
    """Cut text to ``limit`` characters, marking the cut."""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def sanitize_details(details: dict[str, Any] | None) -> dict[str, Any] | None:
    """Redact sensitive values from log details.

    Keys naming a secret are replaced wholesale; a bare ``email`` key is
    reduced to its domain. Nested dicts and lists of dicts are walked.
    """
    if details is None:
        return None

    sanitized: dict[str, Any] = {}
    for key, value in details.items():
        lowered = key.lower()
        if any(fragment in lowered for fragment in SENSITIVE_KEY_FRAGMENTS):
            sanitized[key] = REDACTED
        elif lowered == "email" and isinstance(value, str) and "@" in value:
            sanitized[key] = "***@" + value.split("@", 1)[1]
        elif isinstance(value, dict):
            sanitized[key] = sanitize_details(value)
        elif isinstance(value, list):
            sanitized[key] = [
                sanitize_details(item) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            sanitized[key] = value
    return sanitized


async def record_operation(
    db: AsyncSession,
    function_name: str,
    level: LogLevel,
    message: str,
    details: dict[str, Any] | None = None,
    user_id: str | None = None,
    status_code: int | None = None,
) -> OperationLog:
    """Append an entry to the operation log."""
    entry = OperationLog(
        id=str(uuid4()),
        function_name=function_name,
        level=level,
        message=truncate(message, MAX_MESSAGE_LENGTH),
        details=sanitize_details(details),
        user_id=user_id,
        status_code=status_code,
    )
    db.add(entry)
    await db.flush()
    return entry
