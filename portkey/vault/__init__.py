"""
Server vault - encrypted credential storage.

The PyQt6 manager window lives in portkey.vault.manager_ui and is not
imported here, so the core works without a display.
"""

from .errors import (
    VaultError,
    NotFoundError,
    AlreadyExistsError,
    AuthError,
    PasswordRequiredError,
    PasswordNotRequiredError,
    FormatError,
    LockedError,
    IoError,
    KeyDerivationError,
)
from .crypto import MasterKey, generate_salt
from .models import Server, ServerList
from .vault_file import (
    VaultEnvelope,
    PlaintextPayload,
    EncryptedPayload,
    read_envelope,
    write_envelope,
)
from .store import Vault, VaultState, VaultInfo
from .resolver import ServerResolver, NoServerError, AmbiguousServerError
from .keychain import KeychainIntegration

__all__ = [
    # Errors
    "VaultError",
    "NotFoundError",
    "AlreadyExistsError",
    "AuthError",
    "PasswordRequiredError",
    "PasswordNotRequiredError",
    "FormatError",
    "LockedError",
    "IoError",
    "KeyDerivationError",
    # Crypto
    "MasterKey",
    "generate_salt",
    # Models
    "Server",
    "ServerList",
    # File
    "VaultEnvelope",
    "PlaintextPayload",
    "EncryptedPayload",
    "read_envelope",
    "write_envelope",
    # Store
    "Vault",
    "VaultState",
    "VaultInfo",
    # Resolver
    "ServerResolver",
    "NoServerError",
    "AmbiguousServerError",
    # Keychain
    "KeychainIntegration",
]
