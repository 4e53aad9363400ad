"""The Task object and its execution driver.

A Task is a named unit of work plus everything needed to run it on a set
of hosts: the server source, credentials, connection type overrides and
lifecycle hooks. ``Task.run`` drives one run on one server:

    before hooks -> connect (with fallback credentials) -> around(open)
    -> fact cache -> executor -> postponed notifications -> report
    -> around(close) + disconnect -> after hooks

Example:
    >>> async def deploy(opts, args):
    ...     return f"deploying {opts['version']}"
    >>> task = Task(name="deploy", func=deploy, server=["web01", "web02"])
    >>> await task.run("web01", params={"version": "1.2"})
    'deploying 1.2'
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable

from rtask.auth import Credentials
from rtask.cache import HostCache
from rtask.config import get_config
from rtask.connection import Connection, ConnectionType, create_connection
from rtask.context import (
    ConnectionFrame,
    current_connection,
    pop_connection,
    push_connection,
    require_connection,
)
from rtask.exceptions import AuthenticationError, ConfigurationError, ConnectionError
from rtask.executor import Executor
from rtask.hooks import ServerSlot, run_after_hooks, run_around_hooks, run_before_hooks
from rtask.logging import deprecated
from rtask.notify import Notifier
from rtask.profiler import Profiler
from rtask.report import create_reporter
from rtask.server import LOCAL, Server, to_server

logger = logging.getLogger(__name__)

# Server value for calling a task from inside another task's connection
FUNC_CALL = "<func>"

LIST_FIELDS = ("before", "after", "around", "args")

DATA_FIELDS = (
    "func",
    "server",
    "desc",
    "no_ssh",
    "hidden",
    "auth",
    "before",
    "after",
    "around",
    "name",
    "executor",
    "connection_type",
    "opts",
    "args",
    "parallelism",
    "exit_on_connect_fail",
)


def _noop(opts: dict[str, Any], args: list[Any]) -> None:
    return None


def _server_source(server: Any) -> Any:
    """Normalize a server source: a single server becomes a one-element list."""
    if server is None or isinstance(server, list):
        return server
    if isinstance(server, tuple):
        return list(server)
    if callable(server) and not isinstance(server, Server):
        return server
    return [server]


@dataclass
class ConnectAttempt:
    """Outcome of a single connection attempt.

    Attributes:
        server: Server the attempt targeted
        auth: Credentials that were used
        error: ConnectionError/AuthenticationError on failure, None on success
    """

    server: Server
    auth: Credentials
    error: ConnectionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Task:
    """A named unit of work and its targeting configuration.

    Attributes:
        name: Task name, unique within a task list
        func: Work callable, called as ``func(opts, args)``
        server: Server source: list of names/Servers/Groups/callables,
            a callable returning servers, or None for local execution
        desc: Description shown in task listings
        no_ssh: Iterate over servers without connecting to them
        hidden: Hide from task listings
        auth: Task credentials (take precedence over server credentials)
        before, after, around: Hook lists (see rtask.hooks)
        executor: Executor invoking the work callable
        connection_type: Transport override ("http", "https", "openssh")
        opts: Options bound to the task
        args: Positional arguments bound to the task
        parallelism: Maximum number of servers to run on at once
        exit_on_connect_fail: Abort the whole fan-out on a connect failure
        current_server: Server of the run in progress
        was_authenticated: Whether the last connect authenticated
        connect_failed: Whether the last connect could not reach or
            authenticate to its server
    """

    def __init__(
        self,
        name: str | None = None,
        func: Callable[..., Any] | None = None,
        server: Any = None,
        desc: str | None = None,
        no_ssh: bool = False,
        hidden: bool = False,
        auth: Credentials | dict[str, Any] | None = None,
        before: list[Callable[..., Any]] | None = None,
        after: list[Callable[..., Any]] | None = None,
        around: list[Callable[..., Any]] | None = None,
        executor: Executor | None = None,
        connection_type: str | None = None,
        opts: dict[str, Any] | None = None,
        args: list[Any] | None = None,
        parallelism: int | None = None,
        exit_on_connect_fail: bool = True,
    ) -> None:
        if not name:
            raise ConfigurationError("You have to define a task name.")
        if parallelism is not None and parallelism < 1:
            raise ConfigurationError(f"Parallelism of task {name} must be a positive integer")

        self.name = name
        self.func = func or _noop
        self.server = _server_source(server)
        self.desc = desc
        self.no_ssh = bool(no_ssh)
        self.hidden = bool(hidden)
        self.auth = auth if isinstance(auth, Credentials) else Credentials.from_dict(auth)
        self.before = list(before or [])
        self.after = list(after or [])
        self.around = list(around or [])
        self.executor = executor or Executor()
        self.connection_type = connection_type
        self.opts = dict(opts or {})
        self.args = list(args or [])
        self.parallelism = parallelism
        self.exit_on_connect_fail = exit_on_connect_fail

        self.current_server: Server | None = None
        self.was_authenticated = False
        self.connect_failed = False
        self._connection: Connection | None = None

    def __repr__(self) -> str:
        return f"Task(name={self.name!r}, server={self.server!r})"

    # -- accessors ---------------------------------------------------------

    @property
    def code(self) -> Callable[..., Any]:
        """The work callable."""
        return self.func

    @code.setter
    def code(self, func: Callable[..., Any] | None) -> None:
        self.func = func or _noop

    @property
    def user(self) -> str | None:
        """User the task logs in with."""
        return self.auth.user or None

    def set_user(self, user: str | None) -> None:
        self.auth.user = user

    @property
    def password(self) -> str | None:
        """Password the task logs in with."""
        return self.auth.password or None

    def set_password(self, password: str | None) -> None:
        self.auth.password = password

    def set_auth(self, key: str | None = None, value: Any = None, **credentials: Any) -> None:
        """Set one credential field, or replace all credentials.

        Example:
            >>> task.set_auth("user", "deploy")
            >>> task.set_auth(user="root", password="secret")  # replaces all fields
        """
        if key is None:
            self.auth = Credentials.from_dict(credentials)
        else:
            self.auth.set(key, value)

    def merge_auth(self, server: Server) -> Credentials:
        """Credentials for ``server``; the task's values take precedence."""
        return server.merge_auth(self.auth)

    def get_sudo_password(self) -> str | None:
        """Sudo password for the current server."""
        frame = current_connection()
        server = frame.server if frame is not None else self.get_current_server()
        return self.merge_auth(server).sudo_password

    def get_args(self) -> list[Any]:
        return list(self.args)

    def set_args(self, *args: Any) -> None:
        self.args = list(args)

    def get_opts(self) -> dict[str, Any]:
        return dict(self.opts)

    def set_opt(self, key: str, value: Any) -> None:
        self.opts[key] = value

    def set_opts(self, **opts: Any) -> None:
        self.opts = dict(opts)

    def get_current_server(self) -> Server:
        """Server of the run in progress, or the local sentinel."""
        return self.current_server or Server(LOCAL)

    # -- server resolution -------------------------------------------------

    def set_server(self, *servers: Any) -> None:
        """Replace the servers the task runs on."""
        self.server = list(servers)

    def delete_server(self) -> None:
        """Remove all servers; the task runs locally afterwards."""
        self.current_server = None
        self.server = None
        self.rethink_connection()

    def _pop_legacy_credentials(self) -> None:
        """Handle credentials given as a trailing dict in the server list."""
        data = self.server.pop()
        deprecated(
            "Defining extra credentials within the task creation",
            "0.40",
            "Please set the task's auth instead.",
        )
        self.set_auth("user", data.get("user"))
        self.set_auth("password", data.get("password"))
        if "private_key" in data:
            self.set_auth("private_key", data.get("private_key"))
            self.set_auth("public_key", data.get("public_key"))

    def servers(self) -> list[Server]:
        """Resolve the server source into a flat, ordered list of servers."""
        if isinstance(self.server, list) and self.server and isinstance(self.server[-1], dict):
            self._pop_legacy_credentials()

        resolved: list[Any] = []
        if isinstance(self.server, list) and self.server:
            for entry in self.server:
                if callable(entry) and not isinstance(entry, Server):
                    produced = entry()
                    resolved.extend(produced if isinstance(produced, (list, tuple)) else [produced])
                else:
                    if isinstance(entry, str):
                        entry = Server(entry)
                    if hasattr(entry, "get_servers"):
                        resolved.extend(entry.get_servers())
                    else:
                        resolved.append(entry)
        elif callable(self.server):
            produced = self.server()
            resolved.extend(produced if isinstance(produced, (list, tuple)) else [produced])
        else:
            resolved.append(Server(LOCAL))

        return [to_server(s) for s in resolved]

    # -- connection type ---------------------------------------------------

    def _connection_type_is(self, kind: str) -> bool:
        return bool(self.connection_type) and str(self.connection_type).lower() == kind

    @property
    def is_remote(self) -> bool:
        """Whether the task runs against remote servers."""
        if self.current_server is not None:
            return self.current_server != LOCAL
        if callable(self.server):
            return True
        return bool(self.server)

    @property
    def is_local(self) -> bool:
        return not self.is_remote

    @property
    def is_http(self) -> bool:
        return self._connection_type_is("http")

    @property
    def is_https(self) -> bool:
        return self._connection_type_is("https")

    @property
    def is_openssh(self) -> bool:
        return self._connection_type_is("openssh")

    @property
    def want_connect(self) -> bool:
        """Whether the task establishes a transport to remote servers."""
        return not self.no_ssh

    def get_connection_type(self) -> str:
        """Pick the transport for the next connect.

        Returns:
            HTTP, HTTPS, OpenSSH, the configured default remote type, Fake
            (remote but ``no_ssh``) or Local
        """
        if self.is_http:
            return ConnectionType.HTTP
        if self.is_https:
            return ConnectionType.HTTPS
        if self.is_remote and self.is_openssh and self.want_connect:
            return ConnectionType.OPENSSH
        if self.is_remote and self.want_connect:
            return get_config().connection_type
        if self.is_remote:
            return ConnectionType.FAKE
        return ConnectionType.LOCAL

    @property
    def connection(self) -> Connection:
        """The cached transport, created for the current connection type on demand."""
        if self._connection is None:
            self._connection = create_connection(self.get_connection_type())
        return self._connection

    def rethink_connection(self) -> None:
        """Drop the cached transport so the next connect picks a new one."""
        self._connection = None

    def modify(self, key: str, value: Any) -> None:
        """Modify a task field.

        List fields (hooks, args) get ``value`` appended; all other fields
        are replaced. The cached transport is always dropped.

        Raises:
            ConfigurationError: If ``key`` is not a task field
        """
        if key not in DATA_FIELDS:
            raise ConfigurationError(f"Task {self.name} has no field {key}")

        current = getattr(self, key)
        if isinstance(current, list) and (key in LIST_FIELDS or key == "server"):
            current.append(value)
        elif key == "auth":
            self.auth = value if isinstance(value, Credentials) else Credentials.from_dict(value)
        elif key == "server":
            self.server = _server_source(value)
        else:
            setattr(self, key, value)

        self.rethink_connection()

    # -- connect / disconnect ----------------------------------------------

    def _rebind(self, server: Server, new_server: Server) -> Server:
        if new_server != server:
            logger.debug(f"Hook moved task {self.name} from {server} to {new_server}")
            self.current_server = new_server
        return new_server

    async def _release(self, frame: ConnectionFrame) -> None:
        """Close the frame's transport and pop it, without running hooks."""
        try:
            await frame.connection.disconnect()
        finally:
            self._connection = None
            if current_connection() is frame:
                pop_connection()

    async def _attempt_connect(self, server: Server, override: Credentials | None) -> ConnectAttempt:
        self.current_server = server
        self.rethink_connection()

        config = get_config()
        auth = replace(override) if override is not None else self.merge_auth(server)
        auth.log_debug()
        auth = auth.resolve_key_paths()

        connection = self.connection
        frame = ConnectionFrame(
            connection=connection,
            server=server,
            cache=HostCache(server.name, config.cache_dir),
            profiler=Profiler(),
            reporter=create_reporter(config.report_type, server.name, config.report_dir),
            notifier=Notifier(),
        )
        push_connection(frame)

        transport_error: Exception | None = None
        frame.profiler.start("connect")
        try:
            await connection.connect(server, auth)
        except Exception as e:
            if not config.fallback_auth:
                frame.profiler.end("connect")
                self.connect_failed = True
                await self._release(frame)
                raise
            logger.debug(f"Connecting to {server} failed: {e}")
            transport_error = e
        frame.profiler.end("connect")

        if not connection.is_connected:
            await self._release(frame)
            message = f"Couldn't connect to {server}."
            if transport_error is not None:
                message += f" {transport_error}"
            error = ConnectionError(message, server=server)
            error.__cause__ = transport_error
            return ConnectAttempt(server, auth, error)

        if not connection.is_authenticated:
            await self._release(frame)
            message = f"Wrong username/password or wrong key on {server}."
            if auth.user == "root":
                message += " Or root is not permitted to login over SSH."
            return ConnectAttempt(server, auth, AuthenticationError(message, server=server, user=auth.user))

        return ConnectAttempt(server, auth)

    async def connect(self, server: Server | str, auth: Credentials | None = None) -> bool:
        """Connect and authenticate to ``server``.

        Pushes a new connection frame. When the credentials are rejected and
        no explicit ``auth`` was given, the configured fallback credential
        sets are tried in order; the first that succeeds wins.

        Args:
            server: Server or host name
            auth: Credentials to use instead of the merged task/server ones

        Returns:
            True once connected and authenticated

        Raises:
            ConnectionError: The server could not be reached
            AuthenticationError: All credentials were rejected
        """
        server = to_server(server)
        self.connect_failed = False
        attempt = await self._attempt_connect(server, auth)

        if not attempt.ok:
            error = attempt.error
            if isinstance(error, AuthenticationError) and auth is None:
                for fallback in get_config().fallback_auth:
                    logger.info(f"Trying fallback credentials for {server} (user {fallback.user})")
                    try:
                        return await self.connect(server, auth=fallback)
                    except ConnectionError as e:
                        logger.debug(f"Fallback credentials failed on {server}: {e}")
            self.connect_failed = True
            raise error

        if self.connection.connection_type != ConnectionType.LOCAL:
            logger.info(f"Successfully authenticated on {server}.")
        self.was_authenticated = True

        slot = ServerSlot(server)
        try:
            new_server = await run_around_hooks(self.around, slot, self.get_opts(), closing=False)
        except BaseException:
            await self._release(require_connection())
            raise
        self._rebind(server, new_server)
        return True

    async def disconnect(self, server: Server | str | None = None) -> None:
        """Run closing ``around`` hooks, close the transport and pop the frame."""
        server = to_server(server) if server is not None else self.get_current_server()
        frame = require_connection()
        try:
            slot = ServerSlot(server)
            self._rebind(server, await run_around_hooks(self.around, slot, self.get_opts(), closing=True))
        finally:
            if get_config().debug > 2:
                frame.profiler.report()
            await self._release(frame)

    # -- execution ---------------------------------------------------------

    def _report_failure(self, frame: ConnectionFrame, start_time: float, error: Exception) -> None:
        message = str(error)
        frame.reporter.report_resource_failed(message=message)
        frame.reporter.report_task_execution(
            failed=True,
            start_time=start_time,
            end_time=time.time(),
            message=message,
        )
        frame.reporter.write_report()

    async def _execute(
        self,
        frame: ConnectionFrame,
        params: dict[str, Any] | None,
        args: list[Any],
    ) -> Any:
        if isinstance(params, dict):
            self.set_opts(**params)
        result = await self.executor.execute(self, params, args)
        await frame.notifier.run_postponed()
        return result

    @staticmethod
    def _shape(result: Any, many: bool) -> Any:
        if not many:
            return result
        if isinstance(result, (list, tuple)):
            return list(result)
        return [] if result is None else [result]

    async def run(
        self,
        server: Server | str | None = None,
        *,
        opts: dict[str, Any] | None = None,
        args: list[Any] | None = None,
        params: dict[str, Any] | None = None,
        in_transaction: bool = False,
        many: bool = False,
    ) -> Any:
        """Run the task.

        Args:
            server: Target server; None runs on every resolved server through
                the task list, ``"<func>"`` calls the task inside the current
                connection without connecting
            opts: Options (default: the task's options)
            args: Positional arguments (default: the task's arguments)
            params: Options passed to the work callable (default: ``opts``)
            in_transaction: Leave the connection open after a successful run
            many: Return the result as a list

        Returns:
            The work callable's result (a list when ``many`` is set)
        """
        if opts is None:
            opts = self.get_opts()
        if args is None:
            args = self.get_args()
        if params is None:
            params = opts

        if server is None or server == "":
            from rtask.tasklist import default_tasklist

            return await default_tasklist().run(
                self, opts=opts, args=args, params=params, many=many
            )

        start_time = time.time()

        if server == FUNC_CALL:
            frame = require_connection()
            frame.tasks.append(self)
            try:
                result = await self._execute(frame, params, args)
            except Exception as e:
                self._report_failure(frame, start_time, e)
                raise
            finally:
                frame.tasks.pop()
            return self._shape(result, many)

        server = to_server(server)
        config = get_config()

        slot = ServerSlot(server)
        server = self._rebind(server, await run_before_hooks(self.before, slot, self.get_opts()))

        try:
            await self.connect(server)
        except Exception:
            self.was_authenticated = False
            await run_after_hooks(self.after, server, False, self.get_opts())
            raise

        server = self.get_current_server()
        frame = require_connection()
        frame.tasks.append(self)

        try:
            if config.collect_facts and not frame.cache.load():
                logger.debug("No cache found, need to collect new data.")
                await server.gather_information(frame)

            if not await server.test_interpreter(frame.connection, config.interpreter):
                logger.warning(
                    f"There is no {config.interpreter} interpreter found on {server}. "
                    "Some commands may not work."
                )
                await asyncio.sleep(config.interpreter_pause)

            result = await self._execute(frame, params, args)
        except Exception as e:
            self._report_failure(frame, start_time, e)
            frame.tasks.pop()
            if not in_transaction:
                await self._release(frame)
            raise

        if config.collect_facts:
            frame.cache.save()

        frame.reporter.report_task_execution(
            failed=False,
            start_time=start_time,
            end_time=time.time(),
        )
        frame.reporter.write_report()
        frame.tasks.pop()

        if not in_transaction:
            await self.disconnect(server)
        await run_after_hooks(self.after, server, self.was_authenticated, self.get_opts())

        return self._shape(result, many)

    # -- data / cloning ----------------------------------------------------

    def get_data(self) -> dict[str, Any]:
        """Snapshot of all configuration fields.

        Containers and credentials are shallow copies; changing the returned
        values leaves the task alone.
        """
        data = {key: getattr(self, key) for key in DATA_FIELDS}
        for key in (*LIST_FIELDS, "server"):
            if isinstance(data[key], list):
                data[key] = list(data[key])
        data["opts"] = dict(self.opts)
        data["auth"] = replace(self.auth)
        return data

    def clone(self) -> "Task":
        """Create an independent task from this task's configuration.

        The executor is shared; executors hold no per-task state.
        """
        return Task(**self.get_data())

    # -- legacy class-level entry points -----------------------------------

    @classmethod
    async def run_task(
        cls,
        name: str,
        server_override: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Run a registered task by name (deprecated, use the task list)."""
        from rtask.tasklist import default_tasklist

        deprecated("Task.run_task()", "0.40")
        tasklist = default_tasklist()
        if server_override:
            servers = server_override if isinstance(server_override, (list, tuple)) else [server_override]
            tasklist.get_task(name).set_server(*servers)
        return await tasklist.run(name, params=params)

    @classmethod
    def modify_task(cls, name: str, key: str, value: Any) -> None:
        """Modify a registered task by name."""
        from rtask.tasklist import default_tasklist

        default_tasklist().get_task(name).modify(key, value)

    @classmethod
    def is_task(cls, name: str) -> bool:
        from rtask.tasklist import default_tasklist

        return default_tasklist().is_task(name)

    @classmethod
    def get_tasks(cls) -> list[str]:
        from rtask.tasklist import default_tasklist

        return default_tasklist().get_tasks()

    @classmethod
    def get_desc(cls, name: str) -> str | None:
        from rtask.tasklist import default_tasklist

        return default_tasklist().get_desc(name)
