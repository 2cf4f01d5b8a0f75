"""
Vault error taxonomy.

Messages never carry secret material. AuthError deliberately uses one
message for "wrong password" and "corrupted file".
"""


class VaultError(Exception):
    """Base class for every vault failure."""
    pass


class NotFoundError(VaultError):
    """Vault file is absent."""

    def __init__(self, path=None):
        self.path = path
        super().__init__(f"No vault found at {path}" if path else "No vault found")


class AlreadyExistsError(VaultError):
    """A vault file is already present at the target path."""

    def __init__(self, path=None):
        self.path = path
        super().__init__(f"Vault already exists at {path}" if path else "Vault already exists")


class AuthError(VaultError):
    """Authentication failed - wrong password or corrupted data."""

    MESSAGE = "Failed to decrypt vault - invalid password or corrupted data"

    def __init__(self, message: str = None):
        super().__init__(message or self.MESSAGE)


class PasswordRequiredError(AuthError):
    """Encrypted vault was unlocked without a password."""

    def __init__(self):
        super().__init__("Vault is password protected - a master password is required")


class PasswordNotRequiredError(VaultError):
    """A password was supplied for a vault stored without encryption."""

    def __init__(self):
        super().__init__("Vault is not password protected - unlock it without a password")


class FormatError(VaultError):
    """Malformed envelope or record schema."""
    pass


class LockedError(VaultError):
    """Operation attempted before the vault was unlocked."""

    def __init__(self):
        super().__init__("Vault is locked")


class IoError(VaultError):
    """Filesystem failure reading or writing the vault."""
    pass


class KeyDerivationError(VaultError):
    """The key derivation primitive failed."""
    pass
