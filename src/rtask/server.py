"""Server references for task targeting.

A Server identifies one target host by name, or the local machine through
the ``<local>`` sentinel. Server names may contain range expressions that
expand to several hosts:

- ``web[1..3]``    -> web1, web2, web3
- ``web[01..03]``  -> web01, web02, web03 (zero padding kept)
- ``db[1,4,7]``    -> db1, db4, db7
- ``app[1..2,9]``  -> app1, app2, app9
"""

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from rtask.auth import Credentials
from rtask.cache import gather_facts

if TYPE_CHECKING:
    from rtask.connection import Connection
    from rtask.context import ConnectionFrame

logger = logging.getLogger(__name__)

LOCAL = "<local>"

_RANGE_RE = re.compile(r"\[([^\]]+)\]")


def expand_host_pattern(pattern: str) -> list[str]:
    """Expand range expressions in a host name.

    Args:
        pattern: Host name, optionally containing ``[a..b]`` / ``[a,b]`` parts

    Returns:
        Expanded host names in order; the pattern itself if it has no ranges

    Example:
        >>> expand_host_pattern("web[01..03].example.com")
        ['web01.example.com', 'web02.example.com', 'web03.example.com']
    """
    match = _RANGE_RE.search(pattern)
    if match is None:
        return [pattern]

    prefix = pattern[: match.start()]
    suffix = pattern[match.end():]

    values: list[str] = []
    for part in match.group(1).split(","):
        part = part.strip()
        if ".." in part:
            start, end = (p.strip() for p in part.split("..", 1))
            if not (start.isdigit() and end.isdigit()):
                raise ValueError(f"Invalid host range: [{part}] in {pattern}")
            width = len(start) if start.startswith("0") else 0
            for number in range(int(start), int(end) + 1):
                values.append(str(number).zfill(width))
        elif part:
            values.append(part)

    expanded: list[str] = []
    for value in values:
        expanded.extend(expand_host_pattern(f"{prefix}{value}{suffix}"))
    return expanded


@dataclass(eq=False)
class Server:
    """A target host.

    Servers compare equal to other servers and to plain strings by name, so
    ``server == "<local>"`` works the same as ``server.is_local``.

    Attributes:
        name: Host name, range expression, or the LOCAL sentinel
        auth: Per-server credentials (lower precedence than the task's)
        vars: Free-form host variables

    Example:
        >>> Server("web01", auth=Credentials(user="deploy"))
        >>> Server(LOCAL).is_local
        True
    """

    name: str = LOCAL
    auth: Credentials | None = None
    vars: dict[str, Any] = field(default_factory=dict)

    @property
    def is_local(self) -> bool:
        """Check if this is the local sentinel."""
        return self.name == LOCAL

    def get_servers(self) -> list["Server"]:
        """Expand range expressions into concrete servers."""
        names = expand_host_pattern(self.name)
        if names == [self.name]:
            return [self]
        return [Server(name, auth=self.auth, vars=dict(self.vars)) for name in names]

    def merge_auth(self, task_auth: Credentials | None) -> Credentials:
        """Merge task credentials over this server's credentials.

        Args:
            task_auth: Credentials of the task (higher precedence)

        Returns:
            New merged Credentials
        """
        server_auth = self.auth or Credentials()
        if task_auth is None:
            return server_auth.merge(None)
        return task_auth.merge(server_auth)

    def get_var(self, key: str, default: Any = None) -> Any:
        """Get a host variable by key with optional default."""
        return self.vars.get(key, default)

    async def test_interpreter(self, connection: "Connection", interpreter: str) -> bool:
        """Check that the host has a usable command interpreter.

        Args:
            connection: Live connection to this server
            interpreter: Interpreter executable name (e.g. "python3")
        """
        return await connection.has_interpreter(interpreter)

    async def gather_information(self, frame: "ConnectionFrame") -> None:
        """Collect host facts into the frame's cache."""
        facts = await gather_facts(frame.connection)
        frame.cache.update(facts)
        logger.debug(f"Gathered {len(facts)} fact(s) from {self.name}")

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Server):
            return self.name == other.name
        if isinstance(other, str):
            return self.name == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.name)

    def __str__(self) -> str:
        return self.name


def to_server(value: "Server | str") -> Server:
    """Coerce a host name into a Server."""
    if isinstance(value, Server):
        return value
    return Server(str(value))
