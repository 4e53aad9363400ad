"""Postponed notifications.

Work callables can queue notifications (e.g. "restart nginx after the
config changed") on the current connection's notifier. They run once the
task's work has finished, in the order they were queued, and each
notification key runs at most once per run.
"""

import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class Notifier:
    """Queue of callbacks run after a task's work completes.

    Example:
        >>> notifier = Notifier()
        >>> notifier.postpone("restart-nginx", restart_nginx)
        >>> notifier.postpone("restart-nginx", restart_nginx)  # deduplicated
        >>> await notifier.run_postponed()
    """

    def __init__(self) -> None:
        self._postponed: dict[str, Callable[[], Any]] = {}

    def postpone(self, key: str, callback: Callable[[], Any]) -> None:
        """Queue a callback under ``key``; re-queuing an existing key is a no-op."""
        if key in self._postponed:
            logger.debug(f"Notification already queued: {key}")
            return
        self._postponed[key] = callback

    @property
    def pending(self) -> list[str]:
        """Keys of queued notifications, in order."""
        return list(self._postponed)

    async def run_postponed(self) -> None:
        """Run and clear all queued notifications."""
        while self._postponed:
            key = next(iter(self._postponed))
            callback = self._postponed.pop(key)
            logger.debug(f"Running postponed notification: {key}")
            result = callback()
            if inspect.isawaitable(result):
                await result
