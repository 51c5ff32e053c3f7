"""Application services."""

from broker.services.cipher import (
    CipherConfigurationError,
    CipherError,
    CredentialCipher,
    EncryptedPayload,
    decrypt,
    encrypt,
)
from broker.services.state_tokens import StateClaims, StateTokenStore
from broker.services.vault import ConnectionNotFoundError, CredentialVault
from broker.services.oauth_callback import OAuthCallbackHandler, validate_redirect_path
from broker.services.refresh_sweeper import RefreshSweeper, SweepReport
from broker.services.credential_resolver import (
    ActivationInactiveError,
    ActivationNotFoundError,
    CredentialResolver,
)
from broker.services.retry_policy import Decision, Outcome, RetryPolicy, Verdict
from broker.services.provisioning_queue import ProvisioningQueue, UnknownActionError
from broker.services.action_dispatcher import ActionDispatcher, DispatchError
from broker.services.queue_processor import QueueProcessor
from broker.services.key_rotation import RotationConfigurationError, rotate_master_key

__all__ = [
    "CipherConfigurationError",
    "CipherError",
    "CredentialCipher",
    "EncryptedPayload",
    "decrypt",
    "encrypt",
    "StateClaims",
    "StateTokenStore",
    "ConnectionNotFoundError",
    "CredentialVault",
    "OAuthCallbackHandler",
    "validate_redirect_path",
    "RefreshSweeper",
    "SweepReport",
    "ActivationInactiveError",
    "ActivationNotFoundError",
    "CredentialResolver",
    "Decision",
    "Outcome",
    "RetryPolicy",
    "Verdict",
    "ProvisioningQueue",
    "UnknownActionError",
    "ActionDispatcher",
    "DispatchError",
    "QueueProcessor",
    "RotationConfigurationError",
    "rotate_master_key",
]
