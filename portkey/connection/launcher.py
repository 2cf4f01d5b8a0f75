"""
Connection launcher - hands a resolved server to ssh.

Interactive sessions run the system ssh client through sshpass, with the
password passed only via the SSHPASS environment variable (never in argv
and never logged). check_login() authenticates with paramiko and closes.
"""

from __future__ import annotations
import logging
import os
import shutil
import subprocess
from typing import Optional

import paramiko

from ..vault.models import Server
from .profile import ConnectionProfile

logger = logging.getLogger(__name__)

SSHPASS_INSTALL_HINT = """\
Install sshpass to use password authentication:
  macOS: brew install hudochenkov/sshpass/sshpass
  Ubuntu/Debian: sudo apt-get install sshpass
  CentOS/RHEL: sudo yum install sshpass
  Arch: sudo pacman -S sshpass"""


class SshLauncher:
    """
    Starts interactive ssh sessions for vault servers.

    connect() returns success/failure only; nothing flows back into the
    vault.
    """

    def __init__(
        self,
        ssh_binary: str = "ssh",
        sshpass_binary: str = "sshpass",
        strict_host_key_checking: bool = False,
        connect_timeout: float = 30.0,
    ):
        self.ssh_binary = ssh_binary
        self.sshpass_binary = sshpass_binary
        self.strict_host_key_checking = strict_host_key_checking
        self.connect_timeout = connect_timeout

    def profile_for(self, server: Server) -> ConnectionProfile:
        return ConnectionProfile.from_server(
            server,
            strict_host_key_checking=self.strict_host_key_checking,
            connect_timeout=self.connect_timeout,
        )

    def sshpass_available(self) -> bool:
        return shutil.which(self.sshpass_binary) is not None

    def build_command(self, profile: ConnectionProfile) -> tuple[list[str], dict]:
        """
        Build argv and environment for the session.

        Returns:
            (argv, env) - the password, if any, is only in env
        """
        env = dict(os.environ)
        env["TERM"] = os.environ.get("TERM", profile.term_type)

        argv = profile.ssh_args(self.ssh_binary)
        if profile.password:
            env["SSHPASS"] = profile.password
            argv = [self.sshpass_binary, "-e"] + argv
        return argv, env

    def connect(self, server: Server) -> bool:
        """
        Open an interactive ssh session and wait for it to end.

        Returns:
            True if ssh exited successfully
        """
        profile = self.profile_for(server)
        logger.info(f"Connecting to {profile.display_name}")

        if profile.password and not self.sshpass_available():
            logger.error(f"sshpass is not installed or not in PATH.\n{SSHPASS_INSTALL_HINT}")
            logger.error(f"Alternatively, connect manually: {profile.ssh_command()}")
            return False

        argv, env = self.build_command(profile)
        try:
            result = subprocess.run(argv, env=env)
        except OSError as e:
            logger.error(f"Failed to start {argv[0]}: {e}")
            return False

        if result.returncode != 0:
            logger.error(
                f"SSH connection to {profile.display_name} failed (exit {result.returncode}). "
                "Possible causes: server unreachable, invalid credentials, "
                "SSH service not running, port blocked by firewall"
            )
            return False
        return True


def check_login(
    server: Server,
    timeout: float = 10.0,
    strict_host_key_checking: bool = False,
) -> bool:
    """
    Try password authentication against the server and disconnect.

    Returns:
        True if the server accepted the stored credentials
    """
    client = paramiko.SSHClient()
    if strict_host_key_checking:
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.RejectPolicy())
    else:
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    target = f"{server.username}@{server.host}:{server.port}"
    logger.debug(f"Checking login for {target}")
    try:
        client.connect(
            hostname=server.host,
            port=server.port,
            username=server.username,
            password=server.password or None,
            timeout=timeout,
            allow_agent=False,
            look_for_keys=False,
        )
        logger.info(f"Login to {target} succeeded")
        return True
    except paramiko.AuthenticationException:
        logger.warning(f"Authentication failed for {target}")
        return False
    except (paramiko.SSHException, OSError) as e:
        logger.warning(f"Could not connect to {target}: {e}")
        return False
    finally:
        client.close()
