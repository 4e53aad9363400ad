"""Task lifecycle hooks.

Hooks are callables registered on a task and run at fixed points of a
task run. Each class has its own calling convention:

- before(server, slot, opts, *extra)            before connecting
- around(server, slot, opts, *extra, closing)   after authenticating
                                                (closing=False) and when
                                                disconnecting (closing=True)
- after(server, was_authenticated, opts, *extra) after the run, also when
                                                connecting failed

``before`` and ``around`` hooks may retarget the run: assigning
``slot.server`` or returning a Server makes that server the task's current
server. Hooks run in registration order; an exception aborts the remaining
hooks of that invocation and propagates.

Hooks may be plain functions or coroutine functions.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Protocol

from rtask.server import Server

logger = logging.getLogger(__name__)


@dataclass
class ServerSlot:
    """Mutable holder for the server a run targets.

    Attributes:
        server: The server the run currently targets
    """

    server: Server


class BeforeHook(Protocol):
    """Signature of ``before`` hooks."""

    def __call__(self, server: Server, slot: ServerSlot, opts: dict[str, Any], *extra: Any) -> Any:
        ...


class AroundHook(Protocol):
    """Signature of ``around`` hooks; the last positional argument is ``closing``."""

    def __call__(self, server: Server, slot: ServerSlot, opts: dict[str, Any], *extra: Any) -> Any:
        ...


class AfterHook(Protocol):
    """Signature of ``after`` hooks."""

    def __call__(self, server: Server, was_authenticated: int, opts: dict[str, Any], *extra: Any) -> Any:
        ...


async def _call(hook: Any, *args: Any) -> Any:
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def _run_rebinding_hooks(
    hooks: Iterable[Any],
    slot: ServerSlot,
    opts: dict[str, Any],
    extra: tuple[Any, ...],
) -> Server:
    for hook in hooks:
        result = await _call(hook, slot.server, slot, dict(opts), *extra)
        if isinstance(result, Server):
            slot.server = result
    return slot.server


async def run_before_hooks(
    hooks: Iterable[BeforeHook],
    slot: ServerSlot,
    opts: dict[str, Any],
    *extra: Any,
) -> Server:
    """Run ``before`` hooks.

    Returns:
        The server the run should target after all hooks ran
    """
    return await _run_rebinding_hooks(hooks, slot, opts, extra)


async def run_around_hooks(
    hooks: Iterable[AroundHook],
    slot: ServerSlot,
    opts: dict[str, Any],
    *extra: Any,
    closing: bool = False,
) -> Server:
    """Run ``around`` hooks with ``closing`` as the trailing argument.

    Returns:
        The server the run should target after all hooks ran
    """
    return await _run_rebinding_hooks(hooks, slot, opts, extra + (closing,))


async def run_after_hooks(
    hooks: Iterable[AfterHook],
    server: Server,
    was_authenticated: bool,
    opts: dict[str, Any],
    *extra: Any,
) -> None:
    """Run ``after`` hooks; ``was_authenticated`` is passed as 0 or 1."""
    flag = 1 if was_authenticated else 0
    for hook in hooks:
        await _call(hook, server, flag, dict(opts), *extra)
