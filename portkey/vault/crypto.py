"""
Vault cryptography - Argon2id key derivation + AES-256-GCM.

Flow:
1. User enters master password
2. Argon2id derives a 256-bit key from password + per-vault salt
3. AES-256-GCM encrypts the serialized server list
4. Every encryption gets a fresh random nonce
"""

from __future__ import annotations
import logging
import os
import weakref
from typing import Tuple

from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import AuthError, KeyDerivationError

logger = logging.getLogger(__name__)

# Argon2id "interactive" profile (libsodium OPSLIMIT/MEMLIMIT_INTERACTIVE)
ARGON2_TIME_COST = 2
ARGON2_MEMORY_COST = 65536  # 64 MiB in KiB
ARGON2_PARALLELISM = 1

KEY_LENGTH = 32    # AES-256
SALT_LENGTH = 16
NONCE_LENGTH = 12  # 96-bit GCM nonce


def generate_salt() -> bytes:
    """Generate a random per-vault salt."""
    return os.urandom(SALT_LENGTH)


def _zero(buf: bytearray) -> None:
    for i in range(len(buf)):
        buf[i] = 0


class MasterKey:
    """
    Symmetric key derived from the master password.

    The key bytes live in a bytearray that is zeroed by wipe(), on exit
    from a ``with`` block, and when the object is garbage collected.
    A wiped key refuses to encrypt or decrypt.
    """

    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise KeyDerivationError(f"Key must be {KEY_LENGTH} bytes")
        self._key = bytearray(key)
        self._finalizer = weakref.finalize(self, _zero, self._key)

    @classmethod
    def derive(cls, password: str | bytes, salt: bytes) -> MasterKey:
        """
        Derive a key from password + salt with Argon2id.

        Deterministic: the same password and salt always give the same key.
        A wrong password still yields a key; only decrypt() can tell.

        Raises:
            KeyDerivationError: Invalid parameters or primitive failure
        """
        if isinstance(password, str):
            password = password.encode("utf-8")
        if len(salt) != SALT_LENGTH:
            raise KeyDerivationError(f"Salt must be {SALT_LENGTH} bytes, got {len(salt)}")

        try:
            raw = hash_secret_raw(
                secret=password,
                salt=salt,
                time_cost=ARGON2_TIME_COST,
                memory_cost=ARGON2_MEMORY_COST,
                parallelism=ARGON2_PARALLELISM,
                hash_len=KEY_LENGTH,
                type=Type.ID,
            )
        except (HashingError, MemoryError, ValueError) as e:
            logger.error(f"Argon2id key derivation failed: {type(e).__name__}")
            raise KeyDerivationError("Failed to derive key from password") from e

        return cls(raw)

    @property
    def wiped(self) -> bool:
        return not self._finalizer.alive

    def wipe(self) -> None:
        """Zero the key bytes. Safe to call more than once."""
        self._finalizer()

    def _cipher(self) -> AESGCM:
        if self.wiped:
            raise KeyDerivationError("Key material has been wiped")
        return AESGCM(self._key)

    def encrypt(self, plaintext: bytes) -> Tuple[bytes, bytes]:
        """
        Encrypt with AES-256-GCM under a fresh nonce.

        Returns:
            Tuple of (nonce, ciphertext)
        """
        nonce = os.urandom(NONCE_LENGTH)
        ciphertext = self._cipher().encrypt(nonce, plaintext, None)
        return nonce, ciphertext

    def decrypt(self, nonce: bytes, ciphertext: bytes) -> bytes:
        """
        Decrypt and authenticate.

        Raises:
            AuthError: Wrong key, tampered or truncated data
        """
        cipher = self._cipher()
        if len(nonce) != NONCE_LENGTH:
            raise AuthError()
        try:
            return cipher.decrypt(nonce, ciphertext, None)
        except InvalidTag:
            raise AuthError() from None

    def __enter__(self) -> MasterKey:
        return self

    def __exit__(self, *exc) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return f"<MasterKey {'wiped' if self.wiped else 'active'}>"
