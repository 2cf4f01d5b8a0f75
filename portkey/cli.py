"""
Line-mode interface.

Usage:
    portkey init
    portkey add --name db1 --host 10.0.0.5 --port 5432 --user admin
    portkey list
    portkey connect db1
"""

from __future__ import annotations
import argparse
import getpass
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .config import AppSettings, get_settings, save_settings
from .connection import SshLauncher, check_login, render_ssh_config
from .vault import (
    AuthError, KeychainIntegration, PasswordRequiredError,
    Server, ServerResolver, Vault, VaultError,
)
from .vault.resolver import AmbiguousServerError, NoServerError

logger = logging.getLogger(__name__)

MAX_UNLOCK_ATTEMPTS = 3
RULE = "-" * 60


class CommandError(Exception):
    """User-facing failure that ends the command with exit status 1."""
    pass


def prompt_text(label: str, default: Optional[str] = None, required: bool = True) -> str:
    suffix = f" [{default}]" if default else ""
    while True:
        value = input(f"{label}{suffix}: ").strip()
        if not value and default is not None:
            return default
        if value or not required:
            return value
        print(f"{label} is required.")


def prompt_yes_no(question: str, default: bool = False) -> bool:
    hint = "Y/n" if default else "y/N"
    answer = input(f"{question} [{hint}] ").strip().lower()
    if not answer:
        return default
    return answer in ("y", "yes")


def prompt_new_password() -> str:
    """Ask for a new master password twice."""
    while True:
        password = getpass.getpass("Enter master password: ")
        if not password:
            print("Password must not be empty.")
            continue
        if password != getpass.getpass("Confirm master password: "):
            print("Passwords don't match.")
            continue
        return password


def parse_tags(values: Optional[list[str]]) -> Optional[list[str]]:
    """Flatten repeated/comma-separated --tag values."""
    if values is None:
        return None
    tags = []
    for value in values:
        tags.extend(t.strip() for t in value.split(",") if t.strip())
    return tags


def print_server(server: Server, show_password: bool = False) -> None:
    print(f"ID: {server.id}")
    print(f"Name: {server.name}")
    print(f"Host: {server.host}:{server.port}")
    print(f"User: {server.username}")
    if show_password:
        print(f"Password: {server.password}")
    if server.description:
        print(f"Description: {server.description}")
    if server.tags:
        print(f"Tags: {', '.join(server.tags)}")


class CliHandler:
    """Runs one parsed command against the vault."""

    def __init__(
        self,
        settings: AppSettings = None,
        vault: Vault = None,
        launcher: SshLauncher = None,
    ):
        self.settings = settings or get_settings()
        self.vault = vault or Vault(self.settings.resolved_vault_path())
        self.launcher = launcher or SshLauncher(
            ssh_binary=self.settings.ssh_binary,
            sshpass_binary=self.settings.sshpass_binary,
            strict_host_key_checking=self.settings.strict_host_key_checking,
            connect_timeout=self.settings.connect_timeout,
        )
        self.keychain = KeychainIntegration(self.vault.path)
        self.resolver = ServerResolver(self.vault)

    # -------------------------------------------------------------------------
    # Unlock
    # -------------------------------------------------------------------------

    def ensure_unlocked(self) -> None:
        """Unlock via no-password, keychain, then interactive prompt."""
        if self.vault.is_unlocked:
            return
        if not self.vault.exists():
            raise CommandError("No vault found. Run 'portkey init' to create one.")

        try:
            self.vault.unlock(None)
            return
        except PasswordRequiredError:
            pass

        if self.settings.use_keychain:
            cached = self.keychain.get_master_password()
            if cached:
                try:
                    self.vault.unlock(cached)
                    return
                except AuthError:
                    logger.warning("Keychain password no longer unlocks the vault")

        for attempt in range(1, MAX_UNLOCK_ATTEMPTS + 1):
            password = getpass.getpass("Enter master password: ")
            try:
                self.vault.unlock(password)
                return
            except PasswordRequiredError:
                print("A master password is required.")
            except AuthError as e:
                if attempt == MAX_UNLOCK_ATTEMPTS:
                    raise
                print(f"{e}. Try again.")

        raise CommandError("Too many failed unlock attempts")

    def find(self, name_or_id: str) -> Server:
        try:
            return self.resolver.resolve(name_or_id)
        except (NoServerError, AmbiguousServerError) as e:
            raise CommandError(str(e)) from None

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def cmd_init(self, args) -> None:
        if self.vault.exists():
            raise CommandError(f"Vault already exists at {self.vault.path}")

        if args.no_password:
            use_password = False
        else:
            use_password = prompt_yes_no(
                "Would you like to protect your vault with a master password?", default=True
            )

        password = prompt_new_password() if use_password else None
        if not use_password:
            print("Creating vault without password protection...")

        self.vault.create(password)

        if password:
            if args.remember and self.settings.use_keychain:
                self.keychain.store_master_password(password)
            print(f"Vault created with password protection at {self.vault.path}")
        else:
            print(f"Vault created without password protection at {self.vault.path}")

    def cmd_add(self, args) -> None:
        self.ensure_unlocked()

        name = args.name or prompt_text("Server name")
        host = args.host or prompt_text("Host/IP")
        port = args.port if args.port is not None else prompt_text("Port", default="22")
        username = args.user or prompt_text("Username")
        password = getpass.getpass("Password: ")
        if args.description is not None:
            description = args.description
        else:
            description = prompt_text("Description (optional)", required=False)

        server = Server(
            name=name,
            host=host,
            port=port,
            username=username,
            password=password,
            description=description or None,
            tags=parse_tags(args.tag) or [],
        )
        stored = self.vault.add_server(server)
        print(f"Server '{stored.name}' added ({stored.short_id}).")

    def cmd_list(self, args) -> None:
        self.ensure_unlocked()
        servers = self.vault.list_servers()
        if args.tag:
            servers = [s for s in servers if args.tag in s.tags]

        if not servers:
            print("No servers configured.")
            return

        print("\nConfigured servers:")
        print(RULE)
        for server in servers:
            print_server(server)
            print(RULE)

    def cmd_show(self, args) -> None:
        self.ensure_unlocked()
        server = self.find(args.server)
        if args.yaml:
            print(self.launcher.profile_for(server).to_yaml(), end="")
        else:
            print_server(server, show_password=args.show_password)

    def cmd_edit(self, args) -> None:
        self.ensure_unlocked()
        server = self.find(args.server)

        flags_given = any(
            v is not None for v in (args.name, args.host, args.port, args.user, args.description, args.tag)
        ) or args.password
        if flags_given:
            server.name = args.name or server.name
            server.host = args.host or server.host
            if args.port is not None:
                server.port = args.port
            server.username = args.user or server.username
            if args.description is not None:
                server.description = args.description or None
            if args.tag is not None:
                server.tags = parse_tags(args.tag)
            if args.password:
                server.password = getpass.getpass("New password: ")
        else:
            server.name = prompt_text("Server name", default=server.name)
            server.host = prompt_text("Host/IP", default=server.host)
            server.port = prompt_text("Port", default=str(server.port))
            server.username = prompt_text("Username", default=server.username)
            new_password = getpass.getpass("Password (leave blank to keep): ")
            if new_password:
                server.password = new_password
            description = prompt_text(
                "Description (optional)", default=server.description or "", required=False
            )
            server.description = description or None

        if not self.vault.replace_server(server):
            raise CommandError(f"Server '{args.server}' no longer exists")
        print(f"Server '{server.name}' updated.")

    def cmd_remove(self, args) -> None:
        self.ensure_unlocked()
        server = self.find(args.server)

        if not args.yes and not prompt_yes_no(f"Remove server '{server.name}' ({server.host})?"):
            print("Operation cancelled.")
            return

        if self.vault.remove_server(server.id):
            print("Server removed successfully!")
        else:
            raise CommandError(f"Server '{args.server}' no longer exists")

    def cmd_connect(self, args) -> int:
        self.ensure_unlocked()

        if args.server:
            server = self.find(args.server)
        else:
            servers = self.vault.list_servers()
            if not servers:
                print("No servers available.")
                return 0
            for i, s in enumerate(servers, 1):
                print(f"  {i}) {s.name} ({s.host})")
            choice = prompt_text("Select server")
            try:
                index = int(choice) - 1
                if index < 0:
                    raise IndexError(choice)
                server = servers[index]
            except (ValueError, IndexError):
                raise CommandError(f"Invalid selection: {choice}") from None

        print(f"Connecting to {server.username}@{server.host}:{server.port}...")
        return 0 if self.launcher.connect(server) else 1

    def cmd_search(self, args) -> None:
        self.ensure_unlocked()
        matches = self.resolver.search(args.query)
        if not matches:
            print("No servers match your search.")
            return

        print("Search results:")
        print(RULE)
        for server in matches:
            print_server(server)
            print(RULE)

    def cmd_ssh_config(self, args) -> None:
        self.ensure_unlocked()
        profiles = [self.launcher.profile_for(s) for s in self.vault.list_servers()]
        output = render_ssh_config(profiles)

        if args.write:
            path = Path(args.path).expanduser() if args.path else Path.home() / ".ssh" / "config"
            path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            # Append only - never clobber unrelated entries
            with open(path, "a") as f:
                f.write("\n# Portkey managed entries\n")
                f.write(output)
            print(f"Written SSH config entries to {path}")
        else:
            print(f"# Preview: add these to ~/.ssh/config\n\n{output}")

        print("Note: SSH config does not store passwords. Consider setting up SSH keys.")

    def cmd_passwd(self, args) -> None:
        self.ensure_unlocked()
        new_password = None if args.no_password else prompt_new_password()
        self.vault.change_password(new_password)

        if self.settings.use_keychain and self.keychain.has_stored_password():
            if new_password:
                self.keychain.store_master_password(new_password)
            else:
                self.keychain.clear_master_password()

        if new_password:
            print("Master password changed.")
        else:
            print("Password protection removed.")

    def cmd_check(self, args) -> int:
        self.ensure_unlocked()
        server = self.find(args.server)
        ok = check_login(
            server,
            timeout=self.settings.connect_timeout,
            strict_host_key_checking=self.settings.strict_host_key_checking,
        )
        print(f"{server.name}: {'login OK' if ok else 'login FAILED'}")
        return 0 if ok else 1

    def cmd_forget(self, args) -> None:
        if self.keychain.clear_master_password():
            print("Keychain password cleared.")
        else:
            raise CommandError("Failed to clear keychain password")

    def cmd_debug(self, args) -> None:
        info = self.vault.info()
        print("Vault Debug Information")
        print("=" * 26)
        print(f"Vault path: {info.path}")
        print(f"Vault exists: {info.exists}")
        if not info.exists:
            return
        if info.size is not None:
            print(f"File size: {info.size} bytes")
        if info.mode is not None:
            print(f"Permissions: {info.mode:o} ({'private' if info.private else 'NOT private'})")
        if info.modified is not None:
            print(f"Modified: {info.modified.isoformat()}")
        print(f"File readable: {'yes' if info.readable else 'no'}")
        if info.encrypted is not None:
            print(f"Encrypted: {'yes' if info.encrypted else 'no'}")
        if info.error:
            print(f"Error: {info.error}")
        print(f"Keychain backend: {KeychainIntegration.get_backend_name() or 'none'}")

    def cmd_config(self, args) -> None:
        if args.set:
            data = self.settings.to_dict()
            for item in args.set:
                key, sep, value = item.partition("=")
                if not sep or key not in data:
                    raise CommandError(f"Invalid setting: {item}")
                data[key] = _coerce_setting(value, data[key])
            self.settings = AppSettings.from_dict(data)
            save_settings(self.settings)

        for key, value in self.settings.to_dict().items():
            print(f"{key}: {value}")
        print(f"(vault: {self.settings.resolved_vault_path()})")

    def cmd_ui(self, args) -> int:
        from .vault.manager_ui import run_standalone
        return run_standalone(self.vault, self.launcher, use_keychain=self.settings.use_keychain)


def _coerce_setting(value: str, current):
    if isinstance(current, bool):
        return value.lower() in ("1", "true", "yes", "on")
    if isinstance(current, float):
        return float(value)
    if value.lower() in ("", "none", "null"):
        return None
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="portkey", description="Secure SSH credential manager")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--vault", default=None, help="Vault file (overrides settings)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("init", help="Initialize a new vault")
    p.add_argument("--no-password", action="store_true", help="Store servers without encryption")
    p.add_argument("--remember", action="store_true", help="Cache the master password in the system keychain")

    def server_fields(p):
        p.add_argument("--name", default=None, help="Display name")
        p.add_argument("--host", default=None, help="Hostname or IP")
        p.add_argument("--port", type=int, default=None, help="SSH port")
        p.add_argument("--user", default=None, help="SSH username")
        p.add_argument("--description", default=None, help="Free-text description")
        p.add_argument("--tag", action="append", default=None, help="Tag (repeatable, comma-separated)")

    p = sub.add_parser("add", help="Add a new server")
    server_fields(p)

    p = sub.add_parser("list", help="List all servers")
    p.add_argument("--tag", default=None, help="Only servers with this tag")

    p = sub.add_parser("show", help="Show one server")
    p.add_argument("server", help="Server name or ID")
    p.add_argument("--show-password", action="store_true", help="Print the stored password")
    p.add_argument("--yaml", action="store_true", help="Print the connection profile as YAML")

    p = sub.add_parser("edit", help="Edit a server")
    p.add_argument("server", help="Server name or ID")
    server_fields(p)
    p.add_argument("--password", action="store_true", help="Prompt for a new password")

    p = sub.add_parser("remove", help="Remove a server")
    p.add_argument("server", help="Server name or ID")
    p.add_argument("-y", "--yes", action="store_true", help="Don't ask for confirmation")

    p = sub.add_parser("connect", help="Connect to a server")
    p.add_argument("server", nargs="?", default=None, help="Server name or ID")

    p = sub.add_parser("search", help="Search servers")
    p.add_argument("query")

    p = sub.add_parser("ssh-config", help="Export SSH config entries for servers")
    p.add_argument("--write", action="store_true", help="Append to ~/.ssh/config instead of printing")
    p.add_argument("--path", default=None, help="SSH config file to append to")

    p = sub.add_parser("passwd", help="Change the master password")
    p.add_argument("--no-password", action="store_true", help="Remove password protection")

    p = sub.add_parser("check", help="Test the stored login against the server")
    p.add_argument("server", help="Server name or ID")

    sub.add_parser("forget", help="Remove the cached master password from the keychain")
    sub.add_parser("debug", help="Show vault file diagnostics")

    p = sub.add_parser("config", help="Show or change settings")
    p.add_argument("--set", action="append", default=None, metavar="KEY=VALUE")

    sub.add_parser("ui", help="Open the credential manager window")

    return parser


COMMANDS = {
    "init": CliHandler.cmd_init,
    "add": CliHandler.cmd_add,
    "list": CliHandler.cmd_list,
    "show": CliHandler.cmd_show,
    "edit": CliHandler.cmd_edit,
    "remove": CliHandler.cmd_remove,
    "connect": CliHandler.cmd_connect,
    "search": CliHandler.cmd_search,
    "ssh-config": CliHandler.cmd_ssh_config,
    "passwd": CliHandler.cmd_passwd,
    "check": CliHandler.cmd_check,
    "forget": CliHandler.cmd_forget,
    "debug": CliHandler.cmd_debug,
    "config": CliHandler.cmd_config,
    "ui": CliHandler.cmd_ui,
}


def main(argv: list[str] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    if args.vault:
        settings.vault_path = args.vault

    # Logging
    level = logging.DEBUG if args.debug else getattr(logging, settings.log_level.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.command is None:
        parser.print_help()
        return 0

    handler = CliHandler(settings)
    try:
        result = COMMANDS[args.command](handler, args)
    except (CommandError, VaultError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (KeyboardInterrupt, EOFError):
        print("\nOperation cancelled.", file=sys.stderr)
        return 1

    return result or 0
