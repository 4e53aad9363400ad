"""Per-connection profiler.

Records named spans (e.g. "connect") while a connection frame is active.
With debug verbosity above 2 the task prints the report on disconnect.
"""

import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class ProfileSpan:
    """One timed span.

    Attributes:
        name: Span name
        start: perf_counter() value at start
        end: perf_counter() value at end (None while running)
    """

    name: str
    start: float
    end: float | None = None

    @property
    def duration(self) -> float:
        """Span duration in seconds (up to now for running spans)."""
        end = self.end if self.end is not None else time.perf_counter()
        return end - self.start


@dataclass
class Profiler:
    """Collects timing spans for one connection.

    Example:
        >>> profiler = Profiler()
        >>> profiler.start("connect")
        >>> profiler.end("connect")
        >>> profiler.report()
    """

    spans: list[ProfileSpan] = field(default_factory=list)
    _running: dict[str, ProfileSpan] = field(default_factory=dict, repr=False)

    def start(self, name: str) -> None:
        """Start timing a span."""
        span = ProfileSpan(name=name, start=time.perf_counter())
        self._running[name] = span
        self.spans.append(span)

    def end(self, name: str) -> None:
        """Stop timing a span. Unknown names are ignored."""
        span = self._running.pop(name, None)
        if span is None:
            logger.debug(f"Profiler span not running: {name}")
            return
        span.end = time.perf_counter()

    def report(self) -> str:
        """Log and return a summary of all recorded spans."""
        lines = [f"{span.name}: {span.duration:.3f}s" for span in self.spans]
        for line in lines:
            logger.info(f"Profiler: {line}")
        return "\n".join(lines)
