"""Shared fixtures for rtask tests."""

import pytest

from rtask.auth import Credentials
from rtask.config import Config, set_config
from rtask.connection import Connection, register_connection_type
from rtask.tasklist import set_default_tasklist


class ScriptedConnection(Connection):
    """In-memory transport whose behavior is driven by class attributes.

    Attributes:
        accepted_users: Users that authenticate (empty accepts everyone)
        unreachable: Server names whose connect raises OSError
        missing_interpreter: Report every interpreter as missing
        attempts: (server, user) of every connect call
        closed: Number of disconnect calls
        commands: Commands run through any instance
    """

    connection_type = "Scripted"

    accepted_users: set[str] = set()
    unreachable: set[str] = set()
    missing_interpreter = False
    attempts: list[tuple[str, str | None]] = []
    closed = 0
    commands: list[str] = []

    @classmethod
    def reset(cls) -> None:
        cls.accepted_users = set()
        cls.unreachable = set()
        cls.missing_interpreter = False
        cls.attempts = []
        cls.closed = 0
        cls.commands = []

    @property
    def handle(self):
        return self

    async def connect(self, server, auth: Credentials) -> None:
        self.server = server
        type(self).attempts.append((server.name, auth.user))
        if server.name in self.unreachable:
            raise OSError(f"{server.name} is unreachable")
        self._connected = True
        self._authenticated = not self.accepted_users or auth.user in self.accepted_users

    async def disconnect(self) -> None:
        type(self).closed += 1
        self._connected = False
        self._authenticated = False

    async def run(self, command: str, stdin: str = "", timeout: int = 300):
        type(self).commands.append(command)
        return f"{command} on {self.server}", "", 0

    async def has_interpreter(self, interpreter: str) -> bool:
        return not self.missing_interpreter


register_connection_type("Scripted", ScriptedConnection)


@pytest.fixture(autouse=True)
def config(tmp_path):
    """Isolated process configuration using the scripted transport."""
    cfg = Config(
        connection_type="Scripted",
        report_dir=tmp_path / "reports",
        cache_dir=tmp_path / "cache",
        interpreter_pause=0,
    )
    set_config(cfg)
    set_default_tasklist(None)
    yield cfg
    set_config(None)
    set_default_tasklist(None)


@pytest.fixture
def scripted():
    """The scripted transport class, reset for each test."""
    ScriptedConnection.reset()
    yield ScriptedConnection
    ScriptedConnection.reset()
