"""
Cross-platform keychain integration for master password caching.

Supports:
- macOS: Keychain
- Windows: Credential Locker
- Linux: Secret Service (GNOME Keyring / KWallet)
"""

from __future__ import annotations
import logging
from pathlib import Path
from typing import Optional

import keyring
from keyring.backends import fail, null
from keyring.errors import KeyringError, PasswordDeleteError

logger = logging.getLogger(__name__)


class KeychainIntegration:
    """
    Optional system keychain caching of the vault master password.

    This doesn't replace the vault's encryption - it just remembers the
    master password so users don't have to type it every session. One
    entry per vault file, keyed by its absolute path.
    """

    SERVICE_NAME = "portkey-vault"

    def __init__(self, vault_path: Path):
        self.account = str(Path(vault_path).expanduser().resolve())

    @staticmethod
    def get_backend_name() -> Optional[str]:
        """Name of the active keyring backend."""
        try:
            backend = type(keyring.get_keyring())
            return f"{backend.__module__}.{backend.__name__}"
        except KeyringError as e:
            logger.debug(f"Keyring probe failed: {e}")
            return None

    @staticmethod
    def is_available() -> bool:
        """Check if a usable keychain backend is configured."""
        try:
            backend = keyring.get_keyring()
        except KeyringError as e:
            logger.debug(f"Keyring probe failed: {e}")
            return False
        # The fail/null backends mean nothing will be stored
        if isinstance(backend, (fail.Keyring, null.Keyring)):
            logger.debug(f"Keyring backend not usable: {type(backend).__module__}")
            return False
        return True

    def store_master_password(self, password: str) -> bool:
        """
        Store master password in system keychain.

        Returns:
            True if stored successfully
        """
        if not self.is_available():
            logger.warning("Keychain not available")
            return False

        try:
            keyring.set_password(self.SERVICE_NAME, self.account, password)
            logger.info("Master password stored in system keychain")
            return True
        except KeyringError as e:
            logger.error(f"Failed to store password in keychain: {e}")
            return False

    def get_master_password(self) -> Optional[str]:
        """Retrieve master password from system keychain, if any."""
        if not self.is_available():
            return None

        try:
            password = keyring.get_password(self.SERVICE_NAME, self.account)
            if password:
                logger.debug("Retrieved master password from keychain")
            return password
        except KeyringError as e:
            logger.debug(f"Failed to get password from keychain: {e}")
            return None

    def clear_master_password(self) -> bool:
        """
        Remove master password from system keychain.

        Returns:
            True if removed (or wasn't present)
        """
        if not self.is_available():
            return False

        try:
            keyring.delete_password(self.SERVICE_NAME, self.account)
            logger.info("Master password removed from system keychain")
            return True
        except PasswordDeleteError:
            # Password wasn't stored - that's fine
            return True
        except KeyringError as e:
            logger.error(f"Failed to remove password from keychain: {e}")
            return False

    def has_stored_password(self) -> bool:
        return self.get_master_password() is not None
