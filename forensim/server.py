"""SSH front-end for the Forensim training console.

This module wires together:
- SSH transport (Paramiko)
- One ConsoleSession per connection, keyed on the SSH username
- Session metrics and a per-session JSON transcript in the logs directory
"""

from __future__ import annotations

import json
import logging
import socket
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import paramiko

from .config import Config, get_config
from .console import ConsoleSession
from .engine import TrainingEngine
from .errors import ForensimError
from .ssh_interface import SSHServer, create_listening_socket, get_or_create_host_key

LOGGER = logging.getLogger(__name__)

CTRL_C = 0x03
CTRL_D = 0x04
BACKSPACE = (0x08, 0x7F)


class LineBuffer:
    """Turns raw terminal bytes into complete input lines.

    ``feed`` returns the lines finished by this chunk and the bytes to echo
    back. Ctrl+C drops the pending line; Ctrl+D on an empty line is
    reported as ``None`` in the line list.
    """

    def __init__(self):
        self._chars: List[str] = []
        self._pending = bytearray()
        self._last_cr = False

    @property
    def text(self) -> str:
        return "".join(self._chars)

    def feed(self, data: bytes) -> Tuple[List[Optional[str]], bytes]:
        lines: List[Optional[str]] = []
        echo = bytearray()
        for byte in data:
            if byte == 0x0A and self._last_cr:
                # CRLF from clients that send both
                self._last_cr = False
                continue
            self._last_cr = byte == 0x0D

            if byte in (0x0D, 0x0A):
                echo += b"\r\n"
                lines.append(self.text)
                self._chars = []
            elif byte in BACKSPACE:
                if self._chars:
                    self._chars.pop()
                    echo += b"\b \b"
            elif byte == CTRL_C:
                self._chars = []
                echo += b"^C\r\n"
                lines.append("")
            elif byte == CTRL_D:
                if not self._chars:
                    lines.append(None)
            elif byte >= 0x20:
                self._pending.append(byte)
                try:
                    char = self._pending.decode("utf-8")
                except UnicodeDecodeError:
                    if len(self._pending) < 4:
                        continue
                    char = self._pending.decode("utf-8", errors="replace")
                self._pending.clear()
                self._chars.append(char)
                echo += char.encode("utf-8")
        return lines, bytes(echo)


def _to_terminal(text: str) -> bytes:
    """Normalize LF to CRLF for SSH terminals, ending with a newline."""
    if not text:
        return b""
    text = text.replace("\r\n", "\n").replace("\n", "\r\n")
    if not text.endswith("\r\n"):
        text += "\r\n"
    return text.encode("utf-8")


def _new_session_log(user_id: str, addr) -> Dict[str, Any]:
    return {
        "session_id": f"session_{int(time.time() * 1000)}_{threading.get_ident()}",
        "user_id": user_id,
        "client_ip": addr[0],
        "client_port": addr[1],
        "login_time": datetime.now(timezone.utc).isoformat(),
        "logout_time": None,
        "duration_seconds": None,
        "commands": [],
    }


def _save_session_log(logs_dir: Path, session_log: Dict[str, Any]) -> None:
    """Persist a session transcript to a JSON file."""
    path = logs_dir / f"{session_log['session_id']}.json"
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(session_log, indent=2), encoding="utf-8")
    except OSError as exc:
        LOGGER.error("Failed to write session log %s: %s", path, exc)


def _handle_client(
    client: socket.socket,
    addr,
    host_key: paramiko.PKey,
    engine: TrainingEngine,
    config: Config,
) -> None:
    client_ip, client_port = addr[0], addr[1]
    LOGGER.info("New connection from %s:%s", client_ip, client_port)

    try:
        client.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        client.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        client.settimeout(60)
    except OSError as exc:
        LOGGER.warning("Failed to configure client socket: %s", exc)

    transport = paramiko.Transport(client)
    transport.set_keepalive(30)
    transport.local_version = config.ssh.banner
    transport.add_server_key(host_key)

    server = SSHServer()
    try:
        transport.start_server(server=server)
    except paramiko.SSHException as exc:
        LOGGER.error("SSH negotiation failed with %s:%s - %s", client_ip, client_port, exc)
        transport.close()
        return

    chan = transport.accept(20)
    if chan is None:
        LOGGER.warning("No channel received from %s:%s within 20 seconds", client_ip, client_port)
        transport.close()
        return
    if not server.event.wait(10):
        LOGGER.warning("Client %s never requested a shell", client_ip)
        chan.close()
        transport.close()
        return

    user_id = server.username or "anonymous"
    metrics = engine.metrics
    if metrics.active_sessions >= config.ssh.max_sessions:
        LOGGER.warning("Rejecting %s: %d sessions already active", user_id, config.ssh.max_sessions)
        chan.send(b"Too many active sessions, try again later.\r\n")
        chan.close()
        transport.close()
        return

    metrics.record_session_start("ssh")
    start_time = time.time()
    session_log = _new_session_log(user_id, addr)

    try:
        console = ConsoleSession(engine, user_id)

        if server.exec_command is not None:
            output = console.handle_line(server.exec_command)
            session_log["commands"].append({"command": server.exec_command, "response": output})
            chan.send(_to_terminal(output))
            chan.send_exit_status(0)
            return

        chan.settimeout(None)
        chan.send(_to_terminal(console.banner()))
        chan.send(console.prompt().encode("utf-8"))
        buffer = LineBuffer()

        while not console.closed:
            data = chan.recv(1024)
            if not data:
                break
            lines, echo = buffer.feed(data)
            if echo:
                chan.send(echo)
            for line in lines:
                if line is None:
                    console.handle_line("exit")
                    chan.send(b"logout\r\n")
                    break
                if line.strip() == "clear":
                    chan.send(b"\x1b[2J\x1b[H")
                    chan.send(console.prompt().encode("utf-8"))
                    continue

                output = console.handle_line(line)
                if line.strip():
                    session_log["commands"].append(
                        {
                            "timestamp": datetime.now(timezone.utc).isoformat(),
                            "command": line,
                            "response": output,
                        }
                    )
                chan.send(_to_terminal(output))
                if console.closed:
                    break
                chan.send(console.prompt().encode("utf-8"))

    except ForensimError as exc:
        LOGGER.error("Console for %s failed: %s", user_id, exc)
        chan.send(_to_terminal(str(exc)))
    except (OSError, EOFError, paramiko.SSHException) as exc:
        LOGGER.info("Session with %s closed: %s", user_id, exc)
    finally:
        duration = time.time() - start_time
        metrics.record_session_end(duration)
        session_log["logout_time"] = datetime.now(timezone.utc).isoformat()
        session_log["duration_seconds"] = round(duration, 2)
        _save_session_log(config.logs_dir, session_log)

        chan.close()
        transport.close()
        LOGGER.info(
            "Session of %s from %s ended (duration: %.1fs, commands: %d)",
            user_id,
            client_ip,
            duration,
            len(session_log["commands"]),
        )


class TrainingServer:
    """Accepts SSH connections and serves each on its own thread."""

    def __init__(
        self,
        engine: TrainingEngine,
        host: Optional[str] = None,
        port: Optional[int] = None,
        config: Optional[Config] = None,
    ):
        """Initialize the training server.

        Args:
            engine: Engine shared by every connection
            host: Address to bind to (default from config)
            port: Port to listen on (default from config)
        """
        self.engine = engine
        self.config = config or get_config()
        self.host = host or self.config.ssh.host
        self.port = port or self.config.ssh.port
        self._socket: Optional[socket.socket] = None
        self._running = False
        self._host_key = get_or_create_host_key(self.config.ssh.host_key_path)
        self._threads: list = []

    def run(self) -> None:
        """Start the server and block until stopped."""
        try:
            self._socket = create_listening_socket(self.host, self.port)
        except OSError as exc:
            LOGGER.error("Failed to bind to %s:%d - %s", self.host, self.port, exc)
            raise

        self._running = True
        LOGGER.info("Forensim listening on %s:%d", self.host, self.port)

        cleanup_thread = threading.Thread(target=self._cleanup_threads, daemon=True)
        cleanup_thread.start()

        try:
            while self._running:
                try:
                    self._socket.settimeout(1.0)
                    client, addr = self._socket.accept()
                    thread = threading.Thread(
                        target=_handle_client,
                        args=(client, addr, self._host_key, self.engine, self.config),
                        daemon=True,
                    )
                    thread.start()
                    LOGGER.debug("Started handler thread for %s:%s", addr[0], addr[1])
                    self._threads.append(thread)
                except socket.timeout:
                    continue
        except KeyboardInterrupt:
            LOGGER.info("Received interrupt signal")
        finally:
            self.shutdown()

    def _cleanup_threads(self) -> None:
        """Periodically drop finished handler threads."""
        while self._running:
            time.sleep(30)
            if not self._threads:
                continue
            active_threads = [t for t in self._threads if t.is_alive()]
            removed = len(self._threads) - len(active_threads)
            self._threads = active_threads
            if removed > 0:
                LOGGER.debug("Cleaned up %d finished thread(s)", removed)

    def shutdown(self) -> None:
        """Stop accepting connections."""
        self._running = False
        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
        LOGGER.info("Forensim server stopped")
