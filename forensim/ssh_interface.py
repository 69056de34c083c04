"""Paramiko-based SSH server interface for Forensim.

Learners log in with any password; the SSH username becomes their learner
id. The interactive shell channel then carries the training console.
"""

from __future__ import annotations

import logging
import socket
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import paramiko

LOGGER = logging.getLogger(__name__)


def get_or_create_host_key(path: Path) -> paramiko.PKey:
    """Load the SSH host key from disk, generating it if missing.

    Keeping the key stable between runs spares learners host-key warnings.
    """
    if path.exists():
        try:
            return paramiko.RSAKey(filename=str(path))
        except (paramiko.SSHException, OSError) as exc:
            LOGGER.error("Failed to load host key %s, regenerating: %s", path, exc)

    key = paramiko.RSAKey.generate(4096)
    path.parent.mkdir(parents=True, exist_ok=True)
    key.write_private_key_file(str(path))
    LOGGER.info("Generated new 4096-bit RSA host key at %s", path)
    return key


class SSHServer(paramiko.ServerInterface):
    """Paramiko ServerInterface that accepts all passwords.

    There is no account database: the username typed at login identifies
    the learner, and progress is keyed on it.
    """

    def __init__(self) -> None:
        super().__init__()
        self.username: Optional[str] = None
        self.pty_info: Dict[str, Any] = {}
        self.exec_command: Optional[str] = None
        self.event = threading.Event()

    def check_channel_request(self, kind: str, chanid: int) -> int:
        if kind == "session":
            return paramiko.OPEN_SUCCEEDED
        return paramiko.OPEN_FAILED_ADMINISTRATIVELY_PROHIBITED

    def check_auth_password(self, username: str, password: str) -> int:
        """Accept any password and remember who logged in."""
        if not username:
            return paramiko.AUTH_FAILED
        self.username = username
        LOGGER.info("Learner %s logged in", username)
        return paramiko.AUTH_SUCCESSFUL

    def get_allowed_auths(self, username: str) -> str:
        return "password"

    def check_channel_pty_request(
        self,
        channel: paramiko.Channel,
        term: bytes,
        width: int,
        height: int,
        pixelwidth: int,
        pixelheight: int,
        modes: bytes,
    ) -> bool:
        term_str = term.decode("utf-8", errors="replace") if isinstance(term, bytes) else str(term)
        self.pty_info = {"term": term_str, "width": width, "height": height}
        LOGGER.debug("PTY request: term=%s size=%dx%d", term_str, width, height)
        return True

    def check_channel_shell_request(self, channel: paramiko.Channel) -> bool:
        self.event.set()
        return True

    def check_channel_exec_request(self, channel: paramiko.Channel, command: bytes) -> bool:
        """Accept exec requests; the command runs as a single console line."""
        self.exec_command = command.decode("utf-8", errors="replace")
        LOGGER.debug("Exec request: %s", self.exec_command)
        self.event.set()
        return True


def create_listening_socket(host: str, port: int) -> socket.socket:
    """Create, bind, and listen on a TCP socket for SSH.

    Caller is responsible for closing the socket.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
    # Interactive traffic: disable Nagle
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

    sock.bind((host, port))
    sock.listen(100)
    return sock


__all__ = [
    "SSHServer",
    "get_or_create_host_key",
    "create_listening_socket",
]
