"""Connection context stack.

While a task is connected to a server, the state of that connection lives
in a ConnectionFrame: the transport, its fact cache, profiler, reporter,
notifier and the tasks currently running inside it. Frames form a stack so
a task can call other tasks (which connect again and push their own
frame); the current connection is always the top of the stack.

The stack is held in a ContextVar as an immutable tuple. Every asyncio
task gets a copy of its parent's context, so concurrent per-host runs each
see their own stack and never observe each other's frames.

Example:
    frame = ConnectionFrame(connection=conn, server=server, ...)
    with connection_scope(frame):
        current_connection().reporter.report_task_execution(...)
    # frame popped here, also when the body raised
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generator

from rtask.cache import HostCache
from rtask.connection import Connection
from rtask.exceptions import TaskError
from rtask.notify import Notifier
from rtask.profiler import Profiler
from rtask.report import Reporter

if TYPE_CHECKING:
    from rtask.server import Server
    from rtask.task import Task

logger = logging.getLogger(__name__)


@dataclass
class ConnectionFrame:
    """State of one active connection.

    Attributes:
        connection: The live transport
        server: The server the transport is connected to
        cache: Fact cache for the server
        profiler: Timing spans for this connection
        reporter: Reporter for task executions on this connection
        notifier: Postponed notifications for this connection
        tasks: Tasks currently executing in this frame, innermost last
    """

    connection: Connection
    server: "Server"
    cache: HostCache
    profiler: Profiler
    reporter: Reporter
    notifier: Notifier = field(default_factory=Notifier)
    tasks: list["Task"] = field(default_factory=list)

    @property
    def handle(self) -> Any:
        """The transport's underlying raw handle."""
        return self.connection.handle

    @property
    def current_task(self) -> "Task | None":
        """Innermost task running in this frame."""
        return self.tasks[-1] if self.tasks else None


_stack: ContextVar[tuple[ConnectionFrame, ...]] = ContextVar("rtask_connection_stack", default=())


def push_connection(frame: ConnectionFrame) -> None:
    """Push a frame, making it the current connection."""
    _stack.set(_stack.get() + (frame,))
    logger.debug(f"Pushed connection to {frame.server} (depth {len(_stack.get())})")


def pop_connection() -> ConnectionFrame:
    """Pop and return the current frame.

    Raises:
        TaskError: If the stack is empty
    """
    stack = _stack.get()
    if not stack:
        raise TaskError("No active connection to pop")
    _stack.set(stack[:-1])
    logger.debug(f"Popped connection to {stack[-1].server} (depth {len(stack) - 1})")
    return stack[-1]


def current_connection() -> ConnectionFrame | None:
    """Return the current frame, or None when not connected."""
    stack = _stack.get()
    return stack[-1] if stack else None


def require_connection() -> ConnectionFrame:
    """Return the current frame.

    Raises:
        TaskError: If no connection is active
    """
    frame = current_connection()
    if frame is None:
        raise TaskError("No active connection")
    return frame


def connection_depth() -> int:
    """Number of frames on the current stack."""
    return len(_stack.get())


@contextmanager
def connection_scope(frame: ConnectionFrame) -> Generator[ConnectionFrame, None, None]:
    """Push ``frame`` for the duration of the block; always pops it."""
    push_connection(frame)
    try:
        yield frame
    finally:
        pop_connection()
