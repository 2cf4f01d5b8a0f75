"""
Server records and the in-memory server list.

Pure data: no I/O and no knowledge of encryption.
"""

from __future__ import annotations
import copy
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .errors import FormatError

logger = logging.getLogger(__name__)

DATA_VERSION = "1.0.0"

# Fields replace() is allowed to overwrite
MUTABLE_FIELDS = ("name", "host", "port", "username", "password", "description", "tags")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_port(port) -> int:
    """Return port as int, or raise ValueError if outside 1-65535."""
    if isinstance(port, bool) or (isinstance(port, float) and not port.is_integer()):
        raise ValueError(f"Invalid port: {port!r}")
    try:
        value = int(port)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid port: {port!r}") from None
    if not 1 <= value <= 65535:
        raise ValueError(f"Port must be between 1 and 65535, got {value}")
    return value


@dataclass
class Server:
    """Credentials for one SSH server."""
    name: str
    host: str
    username: str
    password: str = field(default="", repr=False)
    port: int = 22
    description: Optional[str] = None
    tags: list[str] = field(default_factory=list)

    # Assigned by ServerList.add()
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.port = validate_port(self.port)
        self.tags = list(self.tags or [])

    @property
    def short_id(self) -> str:
        return (self.id or "")[:8]

    @property
    def has_password(self) -> bool:
        return bool(self.password)

    def ssh_command(self) -> str:
        """Plain ssh command line (no password)."""
        return f"ssh {self.username}@{self.host} -p {self.port}"

    def to_dict(self) -> dict:
        """Serialize, including the password (vault payload only)."""
        return {
            "id": self.id,
            "name": self.name,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "password": self.password,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Server:
        """
        Deserialize a stored record.

        Raises:
            FormatError: Missing fields, wrong types, or bad values
        """
        if not isinstance(data, dict):
            raise FormatError("Server record must be an object")

        for key in ("id", "name", "host", "username", "password"):
            if not isinstance(data.get(key), str):
                raise FormatError(f"Server record field '{key}' missing or not a string")

        description = data.get("description")
        if description is not None and not isinstance(description, str):
            raise FormatError("Server record field 'description' must be a string")

        tags = data.get("tags", [])
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise FormatError("Server record field 'tags' must be a list of strings")

        port = data.get("port")
        if not isinstance(port, int) or isinstance(port, bool):
            raise FormatError("Server record field 'port' must be an integer")
        try:
            port = validate_port(port)
        except ValueError as e:
            raise FormatError(str(e)) from None

        created_at = _parse_timestamp(data.get("created_at"), "created_at")
        updated_at = _parse_timestamp(data.get("updated_at"), "updated_at")
        if updated_at < created_at:
            raise FormatError("Server record updated_at precedes created_at")

        return cls(
            id=data["id"],
            name=data["name"],
            host=data["host"],
            port=port,
            username=data["username"],
            password=data["password"],
            description=description,
            tags=tags,
            created_at=created_at,
            updated_at=updated_at,
        )


def _parse_timestamp(value, name: str) -> datetime:
    if not isinstance(value, str):
        raise FormatError(f"Server record field '{name}' missing or not a string")
    try:
        ts = datetime.fromisoformat(value)
    except ValueError:
        raise FormatError(f"Server record field '{name}' is not an ISO timestamp") from None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class ServerList:
    """
    Ordered collection of servers keyed by id.

    Insertion order is display order. Records are copied on the way in
    so callers can't mutate stored state behind the list's back.
    """

    def __init__(self, servers: list[Server] = None, version: str = DATA_VERSION):
        self.version = version
        self._servers: list[Server] = []
        for server in servers or []:
            if server.id is None:
                raise ValueError("Stored servers must already have an id")
            if self.find(server.id) is not None:
                raise ValueError(f"Duplicate server id {server.id}")
            self._servers.append(copy.deepcopy(server))

    def __len__(self) -> int:
        return len(self._servers)

    def __iter__(self):
        return iter(self.list())

    def __contains__(self, server_id: str) -> bool:
        return self.find(server_id) is not None

    def _new_id(self) -> str:
        while True:
            server_id = str(uuid.uuid4())
            if self.find(server_id) is None:
                return server_id

    def add(self, server: Server) -> Server:
        """
        Append a server under a freshly assigned id and timestamps.

        Any id or timestamps on the incoming record are ignored.

        Returns:
            The stored record
        """
        stored = copy.deepcopy(server)
        stored.id = self._new_id()
        stored.created_at = stored.updated_at = utcnow()
        self._servers.append(stored)
        logger.debug(f"Added server {stored.short_id} ({stored.name})")
        return stored

    def remove(self, server_id: str) -> bool:
        """Remove by id. Returns True if a record was removed."""
        for i, server in enumerate(self._servers):
            if server.id == server_id:
                del self._servers[i]
                logger.debug(f"Removed server {server.short_id}")
                return True
        return False

    def find(self, server_id: str) -> Optional[Server]:
        for server in self._servers:
            if server.id == server_id:
                return server
        return None

    def list(self) -> tuple[Server, ...]:
        return tuple(self._servers)

    def replace(self, server: Server) -> bool:
        """
        Overwrite the mutable fields of the record with the same id.

        id and created_at are kept; updated_at is refreshed. A miss
        returns False and leaves the list untouched.
        """
        existing = self.find(server.id) if server.id else None
        if existing is None:
            return False

        port = validate_port(server.port)
        for name in MUTABLE_FIELDS:
            setattr(existing, name, copy.deepcopy(getattr(server, name)))
        existing.port = port
        existing.updated_at = max(utcnow(), existing.created_at)
        logger.debug(f"Replaced server {existing.short_id}")
        return True

    def copy(self) -> ServerList:
        return ServerList(list(self._servers), version=self.version)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "servers": [s.to_dict() for s in self._servers],
        }

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")

    @classmethod
    def from_dict(cls, data: dict) -> ServerList:
        if not isinstance(data, dict):
            raise FormatError("Vault data must be an object")
        servers = data.get("servers")
        if not isinstance(servers, list):
            raise FormatError("Vault data field 'servers' missing or not a list")
        version = data.get("version", DATA_VERSION)
        if not isinstance(version, str):
            raise FormatError("Vault data field 'version' must be a string")

        records = [Server.from_dict(s) for s in servers]
        try:
            return cls(records, version=version)
        except ValueError as e:
            raise FormatError(str(e)) from None

    @classmethod
    def from_json(cls, raw: bytes) -> ServerList:
        """
        Parse serialized vault data.

        Raises:
            FormatError: Not JSON or not the expected schema
        """
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise FormatError("Vault data is not valid JSON") from None
        return cls.from_dict(data)
