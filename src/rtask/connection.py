"""Connection interfaces and the local/fake implementations.

Every transport a task can use is a Connection subclass registered under
one of the ConnectionType names. The task picks a type name from its flags
(see ``Task.get_connection_type``) and ``create_connection`` builds the
matching implementation.

This follows the strategy pattern: the driver only uses the common
interface (connect, disconnect, is_connected, is_authenticated, handle,
run) and never branches on the transport kind itself.
"""

import asyncio
import logging
import shutil
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any

from rtask.auth import Credentials
from rtask.exceptions import ConfigurationError

if TYPE_CHECKING:
    from rtask.server import Server

logger = logging.getLogger(__name__)


class ConnectionType(str, Enum):
    """Names of the built-in transports.

    Attributes:
        LOCAL: Run on this machine, no connection
        FAKE: Remote host metadata only, no transport is established
        SSH: asyncssh connection (the default remote transport)
        OPENSSH: asyncssh connection honoring ~/.ssh/config and the agent
        HTTP: Remote agent over HTTP
        HTTPS: Remote agent over HTTPS
    """

    LOCAL = "Local"
    FAKE = "Fake"
    SSH = "SSH"
    OPENSSH = "OpenSSH"
    HTTP = "HTTP"
    HTTPS = "HTTPS"

    def __str__(self) -> str:
        return self.value


class Connection(ABC):
    """Abstract base class for transports.

    Implementations must set ``_connected`` and ``_authenticated`` in
    ``connect``. A transport that reached the host but had its credentials
    rejected is connected but not authenticated; ``connect`` must not raise
    in that case.
    """

    connection_type: str = ""

    def __init__(self) -> None:
        self.server: "Server | None" = None
        self._connected = False
        self._authenticated = False

    @abstractmethod
    async def connect(self, server: "Server", auth: Credentials) -> None:
        """Open the transport to ``server`` with ``auth``.

        Raises:
            Exception: Transport-level failures (host unreachable, timeouts)
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the transport. Safe to call when not connected."""

    @abstractmethod
    async def run(self, command: str, stdin: str = "", timeout: int = 300) -> tuple[str, str, int]:
        """Run a shell command on the host.

        Returns:
            Tuple of (stdout, stderr, return_code)
        """

    @property
    def is_connected(self) -> bool:
        """Whether the host was reached."""
        return self._connected

    @property
    def is_authenticated(self) -> bool:
        """Whether the host accepted the credentials."""
        return self._authenticated

    @property
    def handle(self) -> Any:
        """The underlying transport object (None when there is none)."""
        return None

    async def has_interpreter(self, interpreter: str) -> bool:
        """Check that ``interpreter`` can be found on the host."""
        _, _, rc = await self.run(f"command -v {interpreter}")
        return rc == 0

    def __repr__(self) -> str:
        server = self.server.name if self.server is not None else None
        return f"{type(self).__name__}(server={server!r}, connected={self._connected})"


class LocalConnection(Connection):
    """Runs commands on the local machine through subprocesses."""

    connection_type = ConnectionType.LOCAL

    async def connect(self, server: "Server", auth: Credentials) -> None:
        self.server = server
        self._connected = True
        self._authenticated = True

    async def disconnect(self) -> None:
        self._connected = False
        self._authenticated = False

    async def run(self, command: str, stdin: str = "", timeout: int = 300) -> tuple[str, str, int]:
        logger.debug(f"Running locally: {command[:100]}")
        process = await asyncio.create_subprocess_shell(
            command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(stdin.encode()), timeout=timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.error(f"Command timed out after {timeout}s: {command[:50]}")
            return "", f"Command timed out after {timeout}s", -1
        return stdout.decode(), stderr.decode(), process.returncode or 0

    async def has_interpreter(self, interpreter: str) -> bool:
        return shutil.which(interpreter) is not None


class FakeConnection(Connection):
    """Populates connection metadata without establishing a transport.

    Used for tasks with ``no_ssh`` set: the task iterates over remote hosts
    while the work callable talks to them through some other channel.
    """

    connection_type = ConnectionType.FAKE

    async def connect(self, server: "Server", auth: Credentials) -> None:
        self.server = server
        self._connected = True
        self._authenticated = True

    async def disconnect(self) -> None:
        self._connected = False
        self._authenticated = False

    async def run(self, command: str, stdin: str = "", timeout: int = 300) -> tuple[str, str, int]:
        logger.debug(f"Fake connection to {self.server} cannot run: {command[:50]}")
        return "", "fake connection has no transport", 127

    async def has_interpreter(self, interpreter: str) -> bool:
        return True


_CONNECTION_TYPES: dict[str, type[Connection]] = {
    ConnectionType.LOCAL.value.lower(): LocalConnection,
    ConnectionType.FAKE.value.lower(): FakeConnection,
}


def register_connection_type(name: str, cls: type[Connection]) -> None:
    """Register a transport implementation under a type name.

    Names are case-insensitive. Registering an existing name replaces it.
    """
    _CONNECTION_TYPES[str(name).lower()] = cls


def _load_builtin_types() -> None:
    """Import the modules that register the network transports."""
    import rtask.http  # noqa: F401
    import rtask.ssh  # noqa: F401


def create_connection(connection_type: str) -> Connection:
    """Create a transport for the given type name.

    Args:
        connection_type: A ConnectionType or a registered custom name

    Returns:
        New, unconnected Connection

    Raises:
        ConfigurationError: If no transport is registered under the name
    """
    key = str(connection_type).lower()
    if key not in _CONNECTION_TYPES:
        _load_builtin_types()
    try:
        cls = _CONNECTION_TYPES[key]
    except KeyError:
        known = ", ".join(sorted(_CONNECTION_TYPES))
        raise ConfigurationError(
            f"Unknown connection type: {connection_type}. Known types: {known}"
        )
    logger.debug(f"Creating {cls.__name__} for connection type {connection_type}")
    return cls()
