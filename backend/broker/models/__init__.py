"""SQLAlchemy models."""

from broker.models.base import Base
from broker.models.user import User, UserRole
from broker.models.activation import (
    Activation,
    ActivationStatus,
    AWAITING_CONNECTION_STATUSES,
    OPERATIONAL_STATUSES,
)
from broker.models.credential_connection import (
    ConnectionStatus,
    CredentialConnection,
    RETIRED_STATUSES,
)
from broker.models.oauth_state import OAuthState
from broker.models.provisioning_job import (
    CLAIMABLE_STATUSES,
    JobAction,
    JobStatus,
    ProvisioningJob,
)
from broker.models.operation_log import OperationLog

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Activation",
    "ActivationStatus",
    "AWAITING_CONNECTION_STATUSES",
    "OPERATIONAL_STATUSES",
    "ConnectionStatus",
    "CredentialConnection",
    "RETIRED_STATUSES",
    "OAuthState",
    "CLAIMABLE_STATUSES",
    "JobAction",
    "JobStatus",
    "ProvisioningJob",
    "OperationLog",
]
