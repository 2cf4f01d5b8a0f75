"""
Encrypted server vault - a single envelope file + Argon2id/AES-GCM.
"""

from __future__ import annotations
import copy
import logging
import os
import stat
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from .crypto import MasterKey, generate_salt
from .errors import (
    AlreadyExistsError, FormatError, IoError, LockedError,
    PasswordNotRequiredError, PasswordRequiredError,
)
from .models import Server, ServerList, utcnow
from .vault_file import (
    EncryptedPayload, PlaintextPayload, VaultEnvelope,
    read_envelope, write_envelope,
)

logger = logging.getLogger(__name__)

DEFAULT_VAULT_PATH = Path.home() / ".portkey" / "vault.dat"


class VaultState(Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


@dataclass
class VaultInfo:
    """Diagnostic snapshot of the vault file (no secrets)."""
    path: Path
    exists: bool
    size: Optional[int] = None
    mode: Optional[int] = None
    modified: Optional[datetime] = None
    encrypted: Optional[bool] = None
    readable: bool = False
    error: Optional[str] = None

    @property
    def private(self) -> bool:
        """True if group/other have no access to the file."""
        return self.mode is not None and not (self.mode & 0o077)


class Vault:
    """
    Server credential vault.

    Locked until unlock() or create() succeeds. Every mutation is applied
    to a working copy, encrypted (or serialized as plaintext for vaults
    created without a password), written atomically, and only then
    committed in memory. A failed save leaves both disk and memory as
    they were.
    """

    def __init__(self, path: Path = None):
        """
        Initialize vault.

        Args:
            path: Vault file location (default ~/.portkey/vault.dat)
        """
        self.path = Path(path) if path else DEFAULT_VAULT_PATH

        self._state = VaultState.LOCKED
        self._key: Optional[MasterKey] = None
        self._data: Optional[ServerList] = None
        self._salt: Optional[bytes] = None
        self._created_at: Optional[datetime] = None
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> VaultState:
        return self._state

    @property
    def is_unlocked(self) -> bool:
        return self._state is VaultState.UNLOCKED

    @property
    def is_encrypted(self) -> bool:
        """Whether the unlocked vault holds a key. Requires unlock."""
        self._ensure_unlocked()
        return self._key is not None

    def exists(self) -> bool:
        """Check if a vault file is present."""
        return self.path.exists()

    def _ensure_unlocked(self) -> None:
        if self._state is not VaultState.UNLOCKED:
            raise LockedError()

    def _set_unlocked(
        self,
        key: Optional[MasterKey],
        data: ServerList,
        salt: bytes,
        created_at: datetime,
    ) -> None:
        if self._key is not None and self._key is not key:
            self._key.wipe()
        self._key = key
        self._data = data
        self._salt = salt
        self._created_at = created_at
        self._state = VaultState.UNLOCKED

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def create(self, password: Optional[str] = None) -> None:
        """
        Create a new vault.

        With a password the server list is encrypted; with None (or an
        empty string) it is stored as plaintext. The salt is generated
        either way.

        Raises:
            AlreadyExistsError: A vault file is already present
        """
        with self._lock:
            if self.exists():
                raise AlreadyExistsError(self.path)

            salt = generate_salt()
            key = MasterKey.derive(password, salt) if password else None
            data = ServerList()
            now = utcnow()

            try:
                self._write(data, key, salt, created_at=now, updated_at=now, exclusive=True)
            except Exception:
                if key is not None:
                    key.wipe()
                raise

            self._set_unlocked(key, data, salt, now)
            mode = "with password protection" if key else "without password protection"
            logger.info(f"Vault created at {self.path} {mode}")

    def unlock(self, password: Optional[str] = None) -> None:
        """
        Unlock the vault.

        Raises:
            NotFoundError: No vault file
            PasswordRequiredError: Encrypted vault, no password given
            PasswordNotRequiredError: Plaintext vault, password given
            AuthError: Wrong password or corrupted ciphertext
            FormatError: Malformed envelope or server data
        """
        with self._lock:
            envelope = read_envelope(self.path)
            payload = envelope.payload

            if isinstance(payload, PlaintextPayload):
                if password:
                    raise PasswordNotRequiredError()
                data = ServerList.from_json(payload.data)
                self._set_unlocked(None, data, payload.salt, envelope.created_at)
                logger.info("Vault unlocked (no password required)")
                return

            if not password:
                raise PasswordRequiredError()

            key = MasterKey.derive(password, payload.salt)
            try:
                plaintext = key.decrypt(payload.nonce, payload.ciphertext)
                data = ServerList.from_json(plaintext)
            except Exception:
                key.wipe()
                raise

            self._set_unlocked(key, data, payload.salt, envelope.created_at)
            logger.info("Vault unlocked")

    def change_password(self, new_password: Optional[str]) -> None:
        """
        Re-save the whole vault under a new password.

        A new salt is generated and a new key derived; None (or empty)
        converts the vault to plaintext storage. The old key is wiped.
        """
        with self._lock:
            self._ensure_unlocked()

            salt = generate_salt()
            key = MasterKey.derive(new_password, salt) if new_password else None
            try:
                self._write(self._data, key, salt, created_at=self._created_at)
            except Exception:
                if key is not None:
                    key.wipe()
                raise

            self._set_unlocked(key, self._data, salt, self._created_at)
            logger.info("Master password changed" if key else "Vault password protection removed")

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _write(
        self,
        data: ServerList,
        key: Optional[MasterKey],
        salt: bytes,
        created_at: datetime,
        updated_at: datetime = None,
        exclusive: bool = False,
    ) -> None:
        serialized = data.to_json()
        if key is not None:
            nonce, ciphertext = key.encrypt(serialized)
            payload = EncryptedPayload(salt=salt, nonce=nonce, ciphertext=ciphertext)
        else:
            payload = PlaintextPayload(salt=salt, data=serialized)

        envelope = VaultEnvelope(
            payload=payload,
            created_at=created_at,
            updated_at=updated_at or utcnow(),
        )
        write_envelope(self.path, envelope, exclusive=exclusive)

    def _save(self, data: ServerList) -> None:
        """Persist data with the held key and original salt, then commit."""
        self._write(data, self._key, self._salt, created_at=self._created_at)
        self._data = data

    # -------------------------------------------------------------------------
    # Server operations
    # -------------------------------------------------------------------------

    def add_server(self, server: Server) -> Server:
        """
        Add a server and save.

        Returns:
            Copy of the stored record, with its new id
        """
        with self._lock:
            self._ensure_unlocked()
            data = self._data.copy()
            stored = data.add(server)
            self._save(data)
            logger.info(f"Server '{stored.name}' added ({stored.short_id})")
            return copy.deepcopy(stored)

    def remove_server(self, server_id: str) -> bool:
        """
        Remove a server by id. Saves only if something was removed.

        Returns:
            True if removed
        """
        with self._lock:
            self._ensure_unlocked()
            data = self._data.copy()
            if not data.remove(server_id):
                return False
            self._save(data)
            logger.info(f"Server {server_id[:8]} removed")
            return True

    def replace_server(self, server: Server) -> bool:
        """
        Overwrite an existing server (matched by id) and save.

        Returns:
            False if no server has that id (nothing is saved)
        """
        with self._lock:
            self._ensure_unlocked()
            data = self._data.copy()
            if not data.replace(server):
                return False
            self._save(data)
            logger.info(f"Server {server.short_id} updated")
            return True

    def list_servers(self) -> list[Server]:
        """All servers in insertion order (copies)."""
        with self._lock:
            self._ensure_unlocked()
            return [copy.deepcopy(s) for s in self._data.list()]

    def find_server(self, server_id: str) -> Optional[Server]:
        """Server with the given id (a copy), or None."""
        with self._lock:
            self._ensure_unlocked()
            server = self._data.find(server_id)
            return copy.deepcopy(server) if server else None

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def info(self) -> VaultInfo:
        """Describe the vault file without unlocking it."""
        info = VaultInfo(path=self.path, exists=self.exists())
        if not info.exists:
            return info

        try:
            st = os.stat(self.path)
            info.size = st.st_size
            info.mode = stat.S_IMODE(st.st_mode)
            info.modified = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)
            info.encrypted = read_envelope(self.path).encrypted
            info.readable = True
        except (IoError, FormatError, OSError) as e:
            info.error = str(e)
        return info
