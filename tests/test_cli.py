"""Tests for portkey.cli against a temporary vault."""

import pytest

from portkey import cli
from portkey.connection import SshLauncher
from portkey.vault import Vault, read_envelope
from portkey.vault.keychain import KeychainIntegration


@pytest.fixture
def vault_file(isolated_home):
    return isolated_home / "vault.dat"


@pytest.fixture
def feed(monkeypatch):
    """Script the answers to getpass() and input() prompts."""
    def _feed(passwords=(), answers=()):
        pw = iter(passwords)
        it = iter(answers)
        monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": next(pw))
        monkeypatch.setattr("builtins.input", lambda prompt="": next(it))
    return _feed


def add_db1(feed, password=None):
    passwords = [password, "p@ss"] if password else ["p@ss"]
    feed(passwords=passwords)
    return cli.main([
        "add", "--name", "db1", "--host", "10.0.0.5", "--port", "5432",
        "--user", "admin", "--description", "primary", "--tag", "prod,db",
    ])


class TestInit:
    def test_no_password(self, vault_file, capsys):
        assert cli.main(["init", "--no-password"]) == 0
        assert not read_envelope(vault_file).encrypted
        assert "without password protection" in capsys.readouterr().out

    def test_with_password(self, vault_file, feed):
        feed(passwords=["correct-horse", "correct-horse"], answers=[""])
        assert cli.main(["init"]) == 0
        assert read_envelope(vault_file).encrypted
        assert not KeychainIntegration(vault_file).has_stored_password()

    def test_mismatched_confirmation_reprompts(self, vault_file, feed):
        feed(passwords=["one", "two", "pw", "pw"], answers=["y"])
        assert cli.main(["init"]) == 0
        Vault(vault_file).unlock("pw")

    def test_remember(self, vault_file, feed):
        feed(passwords=["pw", "pw"], answers=["y"])
        assert cli.main(["init", "--remember"]) == 0
        assert KeychainIntegration(vault_file).get_master_password() == "pw"

    def test_declined_password(self, vault_file, feed):
        feed(answers=["n"])
        assert cli.main(["init"]) == 0
        assert not read_envelope(vault_file).encrypted

    def test_existing_vault(self, vault_file, capsys):
        cli.main(["init", "--no-password"])
        assert cli.main(["init", "--no-password"]) == 1
        assert "already exists" in capsys.readouterr().err


class TestServerCommands:
    @pytest.fixture(autouse=True)
    def plain_vault(self, vault_file):
        cli.main(["init", "--no-password"])

    def test_add_and_list(self, feed, capsys):
        assert add_db1(feed) == 0
        capsys.readouterr()

        assert cli.main(["list"]) == 0
        out = capsys.readouterr().out
        assert "Name: db1" in out
        assert "Host: 10.0.0.5:5432" in out
        assert "Tags: prod, db" in out
        assert "p@ss" not in out

    def test_add_prompts_for_missing(self, vault_file, feed):
        feed(passwords=["secret"], answers=["web", "web.example.com", "", "deploy", ""])
        assert cli.main(["add"]) == 0
        v = Vault(vault_file)
        v.unlock()
        server = v.list_servers()[0]
        assert (server.name, server.port, server.username) == ("web", 22, "deploy")
        assert server.description is None

    def test_add_invalid_port(self, feed, capsys):
        feed(passwords=["x"])
        code = cli.main(["add", "--name", "a", "--host", "h", "--port", "70000", "--user", "u",
                         "--description", ""])
        assert code == 1
        assert "65535" in capsys.readouterr().err

    def test_list_empty(self, capsys):
        assert cli.main(["list"]) == 0
        assert "No servers configured." in capsys.readouterr().out

    def test_list_by_tag(self, feed, capsys):
        add_db1(feed)
        capsys.readouterr()
        cli.main(["list", "--tag", "staging"])
        assert "No servers configured." in capsys.readouterr().out

    def test_show(self, feed, capsys):
        add_db1(feed)
        capsys.readouterr()
        assert cli.main(["show", "db1", "--show-password"]) == 0
        assert "Password: p@ss" in capsys.readouterr().out

    def test_show_yaml(self, feed, capsys):
        add_db1(feed)
        capsys.readouterr()
        assert cli.main(["show", "db1", "--yaml"]) == 0
        out = capsys.readouterr().out
        assert "hostname: 10.0.0.5" in out
        assert "p@ss" not in out

    def test_show_unknown(self, capsys):
        assert cli.main(["show", "nope"]) == 1
        assert "not found" in capsys.readouterr().err

    def test_edit_with_flags(self, vault_file, feed):
        add_db1(feed)
        assert cli.main(["edit", "db1", "--host", "10.0.0.9", "--port", "2222"]) == 0
        v = Vault(vault_file)
        v.unlock()
        server = v.list_servers()[0]
        assert (server.host, server.port, server.password) == ("10.0.0.9", 2222, "p@ss")

    def test_edit_interactive(self, vault_file, feed):
        add_db1(feed)
        feed(passwords=[""], answers=["db1-renamed", "", "", "", ""])
        assert cli.main(["edit", "db1"]) == 0
        v = Vault(vault_file)
        v.unlock()
        server = v.list_servers()[0]
        assert server.name == "db1-renamed"
        assert server.port == 5432
        assert server.password == "p@ss"
        assert server.description == "primary"

    def test_remove(self, vault_file, feed, capsys):
        add_db1(feed)
        assert cli.main(["remove", "db1", "-y"]) == 0
        v = Vault(vault_file)
        v.unlock()
        assert v.list_servers() == []

    def test_remove_cancelled(self, vault_file, feed, capsys):
        add_db1(feed)
        feed(answers=["n"])
        assert cli.main(["remove", "db1"]) == 0
        assert "cancelled" in capsys.readouterr().out
        v = Vault(vault_file)
        v.unlock()
        assert len(v.list_servers()) == 1

    def test_search(self, feed, capsys):
        add_db1(feed)
        capsys.readouterr()
        cli.main(["search", "prod"])
        assert "Name: db1" in capsys.readouterr().out
        cli.main(["search", "web-*"])
        assert "No servers match" in capsys.readouterr().out

    def test_ssh_config_preview(self, feed, capsys):
        add_db1(feed)
        capsys.readouterr()
        assert cli.main(["ssh-config"]) == 0
        out = capsys.readouterr().out
        assert "Host db1\n  HostName 10.0.0.5" in out
        assert "p@ss" not in out

    def test_ssh_config_write(self, feed, tmp_path):
        add_db1(feed)
        target = tmp_path / "ssh" / "config"
        target.parent.mkdir()
        target.write_text("Host existing\n  HostName old.example.com\n")
        assert cli.main(["ssh-config", "--write", "--path", str(target)]) == 0
        content = target.read_text()
        assert content.startswith("Host existing\n")
        assert "Host db1" in content

    def test_connect(self, feed, monkeypatch):
        add_db1(feed)
        connected = []
        monkeypatch.setattr(SshLauncher, "connect", lambda self, server: connected.append(server) or True)
        assert cli.main(["connect", "db1"]) == 0
        assert connected[0].password == "p@ss"

    def test_connect_menu(self, feed, monkeypatch):
        add_db1(feed)
        monkeypatch.setattr(SshLauncher, "connect", lambda self, server: False)
        feed(answers=["1"])
        assert cli.main(["connect"]) == 1

    def test_connect_menu_bad_choice(self, feed, capsys):
        add_db1(feed)
        feed(answers=["0"])
        assert cli.main(["connect"]) == 1
        assert "Invalid selection" in capsys.readouterr().err

    def test_check(self, feed, monkeypatch, capsys):
        add_db1(feed)
        monkeypatch.setattr(cli, "check_login", lambda server, **kwargs: True)
        assert cli.main(["check", "db1"]) == 0
        assert "login OK" in capsys.readouterr().out


class TestEncryptedVault:
    @pytest.fixture(autouse=True)
    def encrypted_vault(self, vault_file):
        Vault(vault_file).create("correct-horse")

    def test_prompts_for_password(self, feed, capsys):
        assert add_db1(feed, password="correct-horse") == 0

    def test_retries_then_fails(self, feed, capsys):
        feed(passwords=["a", "b", "c"])
        assert cli.main(["list"]) == 1
        assert "invalid password" in capsys.readouterr().err

    def test_retry_succeeds(self, feed, capsys):
        feed(passwords=["wrong", "correct-horse"])
        assert cli.main(["list"]) == 0

    def test_keychain_unlock(self, vault_file, feed):
        KeychainIntegration(vault_file).store_master_password("correct-horse")
        feed()
        assert cli.main(["list"]) == 0

    def test_stale_keychain_falls_back_to_prompt(self, vault_file, feed):
        KeychainIntegration(vault_file).store_master_password("old")
        feed(passwords=["correct-horse"])
        assert cli.main(["list"]) == 0

    def test_passwd(self, vault_file, feed):
        KeychainIntegration(vault_file).store_master_password("correct-horse")
        feed(passwords=["battery-staple", "battery-staple"])
        assert cli.main(["passwd"]) == 0
        Vault(vault_file).unlock("battery-staple")
        assert KeychainIntegration(vault_file).get_master_password() == "battery-staple"

    def test_passwd_remove_protection(self, vault_file, feed):
        feed(passwords=["correct-horse"])
        assert cli.main(["passwd", "--no-password"]) == 0
        assert not read_envelope(vault_file).encrypted

    def test_forget(self, vault_file, capsys):
        KeychainIntegration(vault_file).store_master_password("correct-horse")
        assert cli.main(["forget"]) == 0
        assert KeychainIntegration(vault_file).get_master_password() is None

    def test_debug(self, capsys):
        assert cli.main(["debug"]) == 0
        out = capsys.readouterr().out
        assert "Vault exists: True" in out
        assert "Permissions: 600 (private)" in out
        assert "Encrypted: yes" in out


class TestMisc:
    def test_no_vault(self, capsys):
        assert cli.main(["list"]) == 1
        assert "portkey init" in capsys.readouterr().err

    def test_no_command(self, capsys):
        assert cli.main([]) == 0
        assert "usage" in capsys.readouterr().out

    def test_vault_flag(self, tmp_path):
        path = tmp_path / "other.dat"
        assert cli.main(["--vault", str(path), "init", "--no-password"]) == 0
        assert path.exists()

    def test_config_set(self, isolated_home, capsys):
        assert cli.main(["config", "--set", "use_keychain=false", "--set", "connect_timeout=5"]) == 0
        out = capsys.readouterr().out
        assert "use_keychain: False" in out
        assert "connect_timeout: 5.0" in out
        assert (isolated_home / "config.yaml").exists()

    def test_config_bad_key(self, capsys):
        assert cli.main(["config", "--set", "nope=1"]) == 1
        assert "Invalid setting" in capsys.readouterr().err
