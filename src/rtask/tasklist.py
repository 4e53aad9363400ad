"""Task registry and per-host fan-out.

The TaskList holds the named tasks of a run, their registry-level
start/finish hooks, and runs a task on every server it resolves to.

Fan-out clones the task once per server and runs each clone in its own
asyncio task, so every host gets an isolated task object and an isolated
connection stack. Servers are processed in chunks of the task's
``parallelism`` (all at once when unset).

Example:
    tasklist = TaskList()

    @task(tasklist=tasklist, server=["web01", "web02"])
    async def uptime(opts, args):
        frame = require_connection()
        stdout, _, _ = await frame.connection.run("uptime")
        return stdout

    results = await tasklist.run("uptime")
    # {"web01": "...", "web02": "..."}
"""

import asyncio
import importlib.util
import inspect
import logging
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar

from rtask.exceptions import ConfigurationError
from rtask.logging import log_scope
from rtask.server import Server
from rtask.task import Task

logger = logging.getLogger(__name__)

T = TypeVar("T")

TaskHook = Callable[[Task], Any]


def chunk(items: list[T], size: int) -> Iterator[list[T]]:
    """Split ``items`` into consecutive lists of at most ``size`` items."""
    for i in range(0, len(items), size):
        yield items[i:i + size]


async def _call_hook(hook: TaskHook, task: Task) -> None:
    result = hook(task)
    if inspect.isawaitable(result):
        await result


class TaskList:
    """Registry of named tasks.

    Attributes:
        tasks: Registered tasks by name, in registration order
    """

    def __init__(self) -> None:
        self.tasks: dict[str, Task] = {}
        self._before_start: dict[str, list[TaskHook]] = {}
        self._after_finish: dict[str, list[TaskHook]] = {}

    def create_task(self, name: str, func: Callable[..., Any] | None = None, **kwargs: Any) -> Task:
        """Create a task and register it.

        Keyword arguments are passed to the Task constructor.
        """
        task = Task(name=name, func=func, **kwargs)
        self.add_task(task)
        return task

    def add_task(self, task: Task) -> None:
        """Register a task, replacing any task with the same name."""
        if task.name in self.tasks:
            logger.warning(f"Task {task.name} already exists, replacing it")
        self.tasks[task.name] = task
        logger.debug(f"Registered task {task.name}")

    def get_task(self, name: str) -> Task:
        """Look up a task by name.

        Raises:
            ConfigurationError: If no task is registered under ``name``
        """
        try:
            return self.tasks[name]
        except KeyError:
            raise ConfigurationError(f"Task {name} not found")

    def is_task(self, name: str) -> bool:
        return name in self.tasks

    def get_tasks(self) -> list[str]:
        """Names of all registered tasks, sorted."""
        return sorted(self.tasks)

    def get_visible_tasks(self) -> list[Task]:
        """Tasks that are not hidden, sorted by name."""
        return [self.tasks[name] for name in self.get_tasks() if not self.tasks[name].hidden]

    def get_desc(self, name: str) -> str | None:
        return self.get_task(name).desc

    def modify(self, name: str, key: str, value: Any) -> None:
        """Modify a field of a registered task (see ``Task.modify``)."""
        self.get_task(name).modify(key, value)

    def before_task_start(self, name: str, hook: TaskHook) -> None:
        """Register a hook run once before a task's fan-out starts."""
        self._before_start.setdefault(name, []).append(hook)

    def after_task_finished(self, name: str, hook: TaskHook) -> None:
        """Register a hook run once after a task's fan-out finished."""
        self._after_finish.setdefault(name, []).append(hook)

    async def _run_on_chunk(
        self,
        task: Task,
        servers: list[Server],
        options: dict[str, Any],
    ) -> list[tuple[Server, Task, asyncio.Task[Any]]]:
        runs = []
        for server in servers:
            clone = task.clone()
            runs.append((server, clone, asyncio.create_task(clone.run(server, **options))))
        await asyncio.gather(*[run for _, _, run in runs], return_exceptions=True)
        return runs

    async def run(
        self,
        task_or_name: Task | str,
        *,
        opts: dict[str, Any] | None = None,
        args: list[Any] | None = None,
        params: dict[str, Any] | None = None,
        many: bool = False,
    ) -> dict[str, Any]:
        """Run a task on every server it resolves to.

        Args:
            task_or_name: Task object or registered task name
            opts: Options for every per-host run
            args: Positional arguments for every per-host run
            params: Options passed to the work callable
            many: Collect list results per host

        Returns:
            Dictionary mapping server names to results. Hosts that could
            not be reached are left out when ``exit_on_connect_fail`` is off.

        Raises:
            Exception: The first error raised by a per-host run. A connect
                failure is only raised when the task has ``exit_on_connect_fail``
                set; no further chunks are started after an error
        """
        task = task_or_name if isinstance(task_or_name, Task) else self.get_task(task_or_name)
        options = {"opts": opts, "args": args, "params": params, "many": many}
        servers = task.servers()
        size = task.parallelism or len(servers) or 1

        results: dict[str, Any] = {}
        with log_scope(logger, f"Task {task.name}", servers=len(servers), parallelism=size):
            for hook in self._before_start.get(task.name, []):
                await _call_hook(hook, task)

            try:
                for servers_chunk in chunk(servers, size):
                    runs = await self._run_on_chunk(task, servers_chunk, options)
                    first_error: BaseException | None = None
                    for server, clone, run in runs:
                        error = run.exception()
                        if error is None:
                            results[server.name] = run.result()
                        elif clone.connect_failed and not task.exit_on_connect_fail:
                            logger.warning(f"Skipping {server}, connecting failed: {error}")
                        else:
                            logger.error(f"Task {task.name} failed on {server}: {error}")
                            first_error = first_error or error
                    if first_error is not None:
                        raise first_error
            finally:
                for hook in self._after_finish.get(task.name, []):
                    await _call_hook(hook, task)

        return results


_default_tasklist: TaskList | None = None


def default_tasklist() -> TaskList:
    """The process-wide task list used by ``Task.run`` and the ``task`` decorator."""
    global _default_tasklist
    if _default_tasklist is None:
        _default_tasklist = TaskList()
    return _default_tasklist


def set_default_tasklist(tasklist: TaskList | None) -> None:
    """Replace the process-wide task list (None resets it)."""
    global _default_tasklist
    _default_tasklist = tasklist


def task(
    name: str | None = None,
    *,
    tasklist: TaskList | None = None,
    **kwargs: Any,
) -> Callable[[Callable[..., Any]], Task]:
    """Decorator registering a function as a task.

    The task name defaults to the function name and the description to the
    first line of its docstring.

    Example:
        >>> @task(server=["web[01..03]"], parallelism=2)
        ... async def restart(opts, args):
        ...     '''Restart the web service.'''
    """

    def decorator(func: Callable[..., Any]) -> Task:
        if "desc" not in kwargs and func.__doc__:
            kwargs["desc"] = func.__doc__.strip().splitlines()[0]
        return (tasklist or default_tasklist()).create_task(name or func.__name__, func, **kwargs)

    return decorator


def load_taskfile(path: str | Path) -> None:
    """Import a Python task file so its ``@task`` definitions register.

    Raises:
        ConfigurationError: If the file does not exist or cannot be imported
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Task file not found: {path}")
    spec = importlib.util.spec_from_file_location(f"rtask_taskfile_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise ConfigurationError(f"Cannot load task file: {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    logger.debug(f"Loaded task file {path}")
