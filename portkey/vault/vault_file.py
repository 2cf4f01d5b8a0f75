"""
On-disk vault envelope and its atomic, owner-only write.

The envelope is a small JSON document. The payload is a tagged variant:
either the plain serialized server list, or AES-GCM ciphertext plus the
nonce it was sealed under. Both variants carry the per-vault salt.
"""

from __future__ import annotations
import base64
import binascii
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Union

from .crypto import NONCE_LENGTH, SALT_LENGTH
from .errors import AlreadyExistsError, FormatError, IoError, NotFoundError

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

KIND_PLAINTEXT = "plaintext"
KIND_ENCRYPTED = "encrypted"

FILE_MODE = 0o600
DIR_MODE = 0o700


@dataclass(frozen=True)
class PlaintextPayload:
    """Server list stored without encryption."""
    salt: bytes
    data: bytes

    kind = KIND_PLAINTEXT


@dataclass(frozen=True)
class EncryptedPayload:
    """Server list sealed with AES-256-GCM."""
    salt: bytes
    nonce: bytes
    ciphertext: bytes

    kind = KIND_ENCRYPTED


Payload = Union[PlaintextPayload, EncryptedPayload]


@dataclass(frozen=True)
class VaultEnvelope:
    """Persisted unit: payload plus timestamps."""
    payload: Payload
    created_at: datetime
    updated_at: datetime

    @property
    def encrypted(self) -> bool:
        return isinstance(self.payload, EncryptedPayload)

    @property
    def salt(self) -> bytes:
        return self.payload.salt

    def to_dict(self) -> dict:
        d = {
            "format": FORMAT_VERSION,
            "kind": self.payload.kind,
            "salt": _b64encode(self.payload.salt),
        }
        if isinstance(self.payload, EncryptedPayload):
            d["nonce"] = _b64encode(self.payload.nonce)
            d["ciphertext"] = _b64encode(self.payload.ciphertext)
        else:
            d["data"] = _b64encode(self.payload.data)
        d["created_at"] = self.created_at.isoformat()
        d["updated_at"] = self.updated_at.isoformat()
        return d

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2).encode("utf-8")

    @classmethod
    def from_dict(cls, data: dict) -> VaultEnvelope:
        """
        Deserialize an envelope.

        Raises:
            FormatError: Missing fields, wrong types, unknown kind
        """
        if not isinstance(data, dict):
            raise FormatError("Vault envelope must be an object")

        version = data.get("format")
        if version != FORMAT_VERSION:
            raise FormatError(f"Unsupported vault format: {version!r}")

        kind = data.get("kind")
        salt = _b64field(data, "salt", length=SALT_LENGTH)
        if kind == KIND_ENCRYPTED:
            payload = EncryptedPayload(
                salt=salt,
                nonce=_b64field(data, "nonce", length=NONCE_LENGTH),
                ciphertext=_b64field(data, "ciphertext"),
            )
        elif kind == KIND_PLAINTEXT:
            payload = PlaintextPayload(salt=salt, data=_b64field(data, "data"))
        else:
            raise FormatError(f"Unknown vault payload kind: {kind!r}")

        return cls(
            payload=payload,
            created_at=_timestamp_field(data, "created_at"),
            updated_at=_timestamp_field(data, "updated_at"),
        )

    @classmethod
    def from_bytes(cls, raw: bytes) -> VaultEnvelope:
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise FormatError("Vault file is not valid JSON") from None
        return cls.from_dict(data)


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64field(data: dict, name: str, length: int = None) -> bytes:
    value = data.get(name)
    if not isinstance(value, str):
        raise FormatError(f"Vault envelope field '{name}' missing or not a string")
    try:
        raw = base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError):
        raise FormatError(f"Vault envelope field '{name}' is not valid base64") from None
    if length is not None and len(raw) != length:
        raise FormatError(f"Vault envelope field '{name}' must be {length} bytes")
    return raw


def _timestamp_field(data: dict, name: str) -> datetime:
    value = data.get(name)
    if not isinstance(value, str):
        raise FormatError(f"Vault envelope field '{name}' missing or not a string")
    try:
        ts = datetime.fromisoformat(value)
    except ValueError:
        raise FormatError(f"Vault envelope field '{name}' is not an ISO timestamp") from None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def read_envelope(path: Path) -> VaultEnvelope:
    """
    Read and parse the vault file.

    Raises:
        NotFoundError: File does not exist
        IoError: Any other filesystem failure
        FormatError: Content is not a valid envelope
    """
    path = Path(path)
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        raise NotFoundError(path) from None
    except OSError as e:
        raise IoError(f"Failed to read vault {path}: {e.strerror or e}") from e

    return VaultEnvelope.from_bytes(raw)


def write_envelope(path: Path, envelope: VaultEnvelope, exclusive: bool = False) -> None:
    """
    Atomically replace the vault file.

    Content goes to a temp file in the same directory, created 0600
    before anything is written, then renamed over the target. A failed
    write leaves the previous file untouched.

    With exclusive=True the temp file is hard-linked into place instead,
    which fails if the target already exists.

    Raises:
        AlreadyExistsError: exclusive and the target exists
        IoError: Filesystem failure (the target is unchanged)
    """
    path = Path(path)
    content = envelope.to_bytes()

    try:
        path.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
        )
    except OSError as e:
        raise IoError(f"Failed to write vault {path}: {e.strerror or e}") from e

    try:
        with os.fdopen(fd, "wb") as f:
            os.fchmod(f.fileno(), FILE_MODE)
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if exclusive:
            os.link(tmp_name, path)
            os.unlink(tmp_name)
        else:
            os.replace(tmp_name, path)
    except FileExistsError:
        _discard(tmp_name)
        raise AlreadyExistsError(path) from None
    except OSError as e:
        _discard(tmp_name)
        raise IoError(f"Failed to write vault {path}: {e.strerror or e}") from e

    logger.debug(f"Vault written to {path} ({len(content)} bytes)")


def _discard(tmp_name: str) -> None:
    try:
        os.unlink(tmp_name)
    except FileNotFoundError:
        pass
