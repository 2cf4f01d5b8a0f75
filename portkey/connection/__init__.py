"""
Connection profiles and the ssh launcher.
"""

from .profile import ConnectionProfile, render_ssh_config
from .launcher import SshLauncher, check_login

__all__ = [
    "ConnectionProfile",
    "render_ssh_config",
    "SshLauncher",
    "check_login",
]
