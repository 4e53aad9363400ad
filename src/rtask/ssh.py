"""Async SSH transports for rtask.

Provides the SSH and OpenSSH connection types using asyncssh.

- SSH: connects with exactly the credentials the task resolved
- OpenSSH: additionally reads ~/.ssh/config (host aliases, ports, users,
  identity files) like the ``ssh`` command line client does

An authentication failure leaves the transport connected but not
authenticated so the task can fall back to other credential sets. Any
other failure (unreachable host, timeout, host key mismatch) is raised.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import asyncssh

from rtask.auth import Credentials
from rtask.config import get_config
from rtask.connection import Connection, ConnectionType, register_connection_type
from rtask.server import Server

logger = logging.getLogger(__name__)

OPENSSH_CONFIG = Path.home() / ".ssh" / "config"


@dataclass
class SSHConfig:
    """SSH connection configuration.

    Attributes:
        hostname: Remote hostname or IP
        port: SSH port (default 22)
        username: SSH username (default: asyncssh picks the local user)
        password: Password for authentication (optional)
        client_keys: List of private key paths (optional)
        known_hosts: Path to known_hosts file (() = default file, None = no checking)
        connect_timeout: Connection timeout in seconds
        keepalive_interval: Keepalive interval (0 to disable)
    """

    hostname: str
    port: int = 22
    username: str | None = None
    password: str | None = None
    client_keys: list[str] | None = None
    known_hosts: Any = ()
    connect_timeout: float = 30.0
    keepalive_interval: float = 30.0

    @classmethod
    def for_server(cls, server: Server, auth: Credentials) -> "SSHConfig":
        """Build the options for one server from resolved credentials."""
        config = get_config()
        if not config.host_key_checking:
            known_hosts: Any = None
        elif config.known_hosts:
            known_hosts = config.known_hosts
        else:
            known_hosts = ()
        return cls(
            hostname=server.get_var("host", server.name),
            port=int(server.get_var("port", 22)),
            username=auth.user,
            password=auth.password,
            client_keys=[auth.private_key] if auth.private_key else None,
            known_hosts=known_hosts,
            connect_timeout=config.connect_timeout,
        )

    def to_asyncssh_options(self) -> dict[str, Any]:
        """Convert to asyncssh.connect() kwargs."""
        options: dict[str, Any] = {
            "host": self.hostname,
            "port": self.port,
            "connect_timeout": self.connect_timeout,
            "keepalive_interval": self.keepalive_interval,
        }

        if self.username:
            options["username"] = self.username
        if self.password:
            options["password"] = self.password
        if self.client_keys:
            options["client_keys"] = self.client_keys
        if self.known_hosts is None:
            options["known_hosts"] = None
        elif self.known_hosts != ():
            options["known_hosts"] = self.known_hosts

        return options


class SSHConnection(Connection):
    """SSH transport backed by an asyncssh client connection.

    Example:
        conn = SSHConnection()
        await conn.connect(Server("web01"), Credentials(user="deploy"))
        if conn.is_authenticated:
            stdout, stderr, rc = await conn.run("uptime")
        await conn.disconnect()
    """

    connection_type = ConnectionType.SSH

    def __init__(self) -> None:
        super().__init__()
        self.config: SSHConfig | None = None
        self._conn: asyncssh.SSHClientConnection | None = None

    @property
    def handle(self) -> asyncssh.SSHClientConnection | None:
        return self._conn

    def _options(self) -> dict[str, Any]:
        assert self.config is not None
        return self.config.to_asyncssh_options()

    async def connect(self, server: Server, auth: Credentials) -> None:
        self.server = server
        self.config = SSHConfig.for_server(server, auth)
        self._connected = False
        self._authenticated = False

        logger.debug(f"Connecting to {self.config.hostname}:{self.config.port}")
        try:
            self._conn = await asyncssh.connect(**self._options())
        except asyncssh.PermissionDenied as e:
            logger.debug(f"Authentication rejected by {self.config.hostname}: {e}")
            self._connected = True
            return

        self._connected = True
        self._authenticated = True
        logger.info(f"Connected to {self.config.hostname}")

    async def disconnect(self) -> None:
        if self._conn is not None and not self._conn.is_closed():
            self._conn.close()
            await self._conn.wait_closed()
            logger.debug(f"Disconnected from {self.server}")
        self._conn = None
        self._connected = False
        self._authenticated = False

    async def run(self, command: str, stdin: str = "", timeout: int = 300) -> tuple[str, str, int]:
        if self._conn is None:
            return "", f"not connected to {self.server}", -1

        logger.debug(f"Running on {self.server}: {command[:100]}")

        try:
            result = await asyncio.wait_for(
                self._conn.run(command, input=stdin, check=False),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Command timed out after {timeout}s: {command[:50]}")
            return "", f"Command timed out after {timeout}s", -1

        stdout = result.stdout or ""
        stderr = result.stderr or ""
        return_code = result.returncode or 0

        logger.debug(
            f"Command completed: rc={return_code}, "
            f"stdout={len(stdout)} bytes, stderr={len(stderr)} bytes"
        )
        return str(stdout), str(stderr), return_code


class OpenSSHConnection(SSHConnection):
    """SSH transport that also applies the user's OpenSSH client config."""

    connection_type = ConnectionType.OPENSSH

    def _options(self) -> dict[str, Any]:
        options = super()._options()
        if OPENSSH_CONFIG.exists():
            options["config"] = [str(OPENSSH_CONFIG)]
        return options


register_connection_type(ConnectionType.SSH, SSHConnection)
register_connection_type(ConnectionType.OPENSSH, OpenSSHConnection)
