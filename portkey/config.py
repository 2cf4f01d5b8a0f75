"""
Application settings - YAML file plus environment overrides.

Lookup order for the vault path:
    PORTKEY_VAULT  >  vault_path in config.yaml  >  $PORTKEY_HOME/vault.dat
"""

from __future__ import annotations
import logging
import os
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

ENV_HOME = "PORTKEY_HOME"
ENV_VAULT = "PORTKEY_VAULT"

CONFIG_FILENAME = "config.yaml"
VAULT_FILENAME = "vault.dat"


def default_home() -> Path:
    """Per-user data directory (~/.portkey unless PORTKEY_HOME is set)."""
    env = os.environ.get(ENV_HOME)
    return Path(env).expanduser() if env else Path.home() / ".portkey"


@dataclass
class AppSettings:
    """User-editable settings."""
    vault_path: Optional[str] = None
    use_keychain: bool = True
    ssh_binary: str = "ssh"
    sshpass_binary: str = "sshpass"
    strict_host_key_checking: bool = False
    connect_timeout: float = 30.0
    log_level: str = "WARNING"

    def resolved_vault_path(self) -> Path:
        env = os.environ.get(ENV_VAULT)
        if env:
            return Path(env).expanduser()
        if self.vault_path:
            return Path(self.vault_path).expanduser()
        return default_home() / VAULT_FILENAME

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> AppSettings:
        """Deserialize, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown settings: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if k in known})


def settings_path() -> Path:
    return default_home() / CONFIG_FILENAME


def get_settings(path: Path = None) -> AppSettings:
    """Load settings, falling back to defaults if the file is absent or broken."""
    path = path or settings_path()
    if not path.exists():
        return AppSettings()

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to read settings from {path}: {e}")
        return AppSettings()

    if not isinstance(data, dict):
        logger.warning(f"Settings file {path} is not a mapping - using defaults")
        return AppSettings()

    return AppSettings.from_dict(data)


def save_settings(settings: AppSettings, path: Path = None) -> None:
    """Write settings as YAML."""
    path = path or settings_path()
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    path.write_text(yaml.dump(settings.to_dict(), default_flow_style=False, sort_keys=False))
    logger.info(f"Settings saved to {path}")
