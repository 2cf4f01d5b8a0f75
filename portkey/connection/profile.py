"""
Connection profiles - everything needed to open an SSH session to a server.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional
import yaml

from ..vault.models import Server


@dataclass
class ConnectionProfile:
    """
    Resolved connection to one server.

    Built from a vault record just before connecting; the password only
    ever lives here in memory and is never serialized.
    """
    name: str
    hostname: str
    username: str
    port: int = 22
    password: Optional[str] = field(default=None, repr=False)

    # Terminal / behavior
    term_type: str = "xterm-256color"
    connect_timeout: float = 30.0
    strict_host_key_checking: bool = False

    # Metadata
    description: str = ""
    tags: list[str] = field(default_factory=list)

    @classmethod
    def from_server(
        cls,
        server: Server,
        strict_host_key_checking: bool = False,
        connect_timeout: float = 30.0,
    ) -> ConnectionProfile:
        """Create a profile from a vault record."""
        return cls(
            name=server.name,
            hostname=server.host,
            username=server.username,
            port=server.port,
            password=server.password or None,
            connect_timeout=connect_timeout,
            strict_host_key_checking=strict_host_key_checking,
            description=server.description or "",
            tags=list(server.tags),
        )

    @property
    def display_name(self) -> str:
        return f"{self.username}@{self.hostname}:{self.port}"

    @property
    def ssh_alias(self) -> str:
        """Host alias for ssh_config - whitespace is not allowed there."""
        return "-".join(self.name.split()) or self.hostname

    def ssh_args(self, ssh_binary: str = "ssh") -> list[str]:
        """ssh argv for an interactive session (never includes the password)."""
        return [
            ssh_binary,
            "-tt",
            f"{self.username}@{self.hostname}",
            "-p", str(self.port),
            "-o", f"StrictHostKeyChecking={'yes' if self.strict_host_key_checking else 'no'}",
            "-o", f"ConnectTimeout={int(self.connect_timeout)}",
        ]

    def ssh_command(self) -> str:
        return f"ssh {self.username}@{self.hostname} -p {self.port}"

    def to_ssh_config(self) -> str:
        """Render an ~/.ssh/config Host block (no password)."""
        return (
            f"Host {self.ssh_alias}\n"
            f"  HostName {self.hostname}\n"
            f"  User {self.username}\n"
            f"  Port {self.port}\n"
        )

    def to_dict(self) -> dict:
        """Serialize, excluding secrets."""
        return {
            'name': self.name,
            'hostname': self.hostname,
            'port': self.port,
            'username': self.username,
            'term_type': self.term_type,
            'connect_timeout': self.connect_timeout,
            'strict_host_key_checking': self.strict_host_key_checking,
            'description': self.description,
            'tags': self.tags,
        }

    def to_yaml(self) -> str:
        """Serialize to YAML string (no password)."""
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)


def render_ssh_config(profiles: list[ConnectionProfile]) -> str:
    """Render Host blocks for several profiles, blank-line separated."""
    return "\n".join(p.to_ssh_config() for p in profiles)
