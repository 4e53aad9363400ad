"""Task executor.

The executor invokes a task's work callable. It is the seam where other
execution strategies (sandboxing, dry-run, remote agents) can be plugged
in by passing a different executor to the Task.

Executors receive the task on every call instead of being bound to one, so
a single executor can be shared by a task and its clones running
concurrently on different hosts.
"""

import inspect
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from rtask.task import Task

logger = logging.getLogger(__name__)


class Executor:
    """Default executor: calls ``task.code(opts, args)``.

    Coroutine functions are awaited. The callable's return value is passed
    back unchanged.

    Example:
        >>> executor = Executor()
        >>> result = await executor.execute(task, {"env": "prod"}, ["web"])
    """

    async def execute(
        self,
        task: "Task",
        opts: dict[str, Any] | None = None,
        args: list[Any] | None = None,
    ) -> Any:
        """Run the task's work callable.

        Args:
            task: Task whose code is run
            opts: Options passed as the first argument (defaults to the task's options)
            args: Positional arguments passed as the second argument

        Returns:
            Whatever the work callable returned

        Raises:
            Exception: Anything the work callable raises, unchanged
        """
        if opts is None:
            opts = task.get_opts()
        if args is None:
            args = []

        logger.debug(f"Executing {task.name}")
        result = task.code(opts, args)
        if inspect.isawaitable(result):
            result = await result
        return result
