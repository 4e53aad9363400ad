"""HTTP(S) transports for rtask.

These transports talk to an rtask agent running on the target host. The
agent exposes two JSON endpoints:

- ``POST /login``   {"user", "password"} -> 200 on success, 401/403 on rejection
- ``POST /execute`` {"cmd", "stdin"}    -> {"stdout", "stderr", "retval"}

Requests are made asynchronously with httpx.
"""

import logging
from typing import Any

import httpx

from rtask.auth import Credentials
from rtask.config import get_config
from rtask.connection import Connection, ConnectionType, register_connection_type
from rtask.server import Server

logger = logging.getLogger(__name__)

AUTH_REJECTED = (401, 403)


class HTTPConnection(Connection):
    """Agent transport over plain HTTP.

    Attributes:
        transport: httpx transport for new clients (None uses the network)
    """

    connection_type = ConnectionType.HTTP
    scheme = "http"
    transport: httpx.AsyncBaseTransport | None = None

    def __init__(self) -> None:
        super().__init__()
        self._client: httpx.AsyncClient | None = None

    @property
    def handle(self) -> httpx.AsyncClient | None:
        return self._client

    def _default_port(self) -> int:
        return get_config().http_port

    def base_url(self, server: Server) -> str:
        """URL of the agent on ``server``."""
        host = server.get_var("host", server.name)
        port = int(server.get_var("port", self._default_port()))
        return f"{self.scheme}://{host}:{port}"

    async def connect(self, server: Server, auth: Credentials) -> None:
        self.server = server
        self._connected = False
        self._authenticated = False

        client_auth = (auth.user, auth.password or "") if auth.user else None
        self._client = httpx.AsyncClient(
            base_url=self.base_url(server),
            auth=client_auth,
            timeout=get_config().connect_timeout,
            transport=self.transport,
        )

        try:
            response = await self._client.post(
                "/login", json={"user": auth.user, "password": auth.password}
            )
        except httpx.HTTPError:
            await self._close_client()
            raise

        self._connected = True
        if response.status_code in AUTH_REJECTED:
            logger.debug(f"Agent on {server} rejected login: HTTP {response.status_code}")
            return

        response.raise_for_status()
        self._authenticated = True
        logger.info(f"Connected to agent at {self._client.base_url}")

    async def _close_client(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        self._client = None

    async def disconnect(self) -> None:
        await self._close_client()
        self._connected = False
        self._authenticated = False

    async def run(self, command: str, stdin: str = "", timeout: int = 300) -> tuple[str, str, int]:
        if self._client is None:
            return "", f"not connected to {self.server}", -1

        logger.debug(f"Running via agent on {self.server}: {command[:100]}")
        try:
            response = await self._client.post(
                "/execute", json={"cmd": command, "stdin": stdin}, timeout=timeout
            )
            response.raise_for_status()
        except httpx.TimeoutException:
            logger.error(f"Command timed out after {timeout}s: {command[:50]}")
            return "", f"Command timed out after {timeout}s", -1

        data: dict[str, Any] = response.json()
        return data.get("stdout", ""), data.get("stderr", ""), int(data.get("retval", 0))


class HTTPSConnection(HTTPConnection):
    """Agent transport over HTTPS."""

    connection_type = ConnectionType.HTTPS
    scheme = "https"

    def _default_port(self) -> int:
        return get_config().https_port


register_connection_type(ConnectionType.HTTP, HTTPConnection)
register_connection_type(ConnectionType.HTTPS, HTTPSConnection)
