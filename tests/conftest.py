"""Shared fixtures: isolated home directory, in-memory keyring, cheap KDF."""

import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

from portkey.vault import Server, Vault
from portkey.vault import crypto


class MemoryKeyring(KeyringBackend):
    """Keyring backend that keeps passwords in a dict."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.passwords = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        try:
            del self.passwords[(service, username)]
        except KeyError:
            raise PasswordDeleteError("not found") from None


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point PORTKEY_HOME at a temp dir so no test touches ~/.portkey."""
    home = tmp_path / "home"
    monkeypatch.setenv("PORTKEY_HOME", str(home))
    monkeypatch.delenv("PORTKEY_VAULT", raising=False)
    return home


@pytest.fixture(autouse=True)
def memory_keyring():
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture(autouse=True)
def fast_kdf(monkeypatch):
    """Keep Argon2id but at a tiny cost so the suite stays quick."""
    monkeypatch.setattr(crypto, "ARGON2_TIME_COST", 1)
    monkeypatch.setattr(crypto, "ARGON2_MEMORY_COST", 1024)


@pytest.fixture
def vault_path(tmp_path):
    return tmp_path / "data" / "vault.dat"


@pytest.fixture
def vault(vault_path):
    """Encrypted vault, already created and unlocked."""
    v = Vault(vault_path)
    v.create("correct-horse")
    return v


@pytest.fixture
def make_server():
    def _make(name="db1", host="10.0.0.5", port=5432, username="admin", password="p@ss", **kwargs):
        return Server(name=name, host=host, port=port, username=username, password=password, **kwargs)
    return _make
