"""Task execution reporting.

Each connection frame owns a Reporter. The execution driver records a
"task_execution" event for every run and an additional "resource_failed"
event when the work callable raises, then calls ``write_report`` to flush.

Supported report types:
- none: keep events in memory only
- yaml: one YAML document per flush under <report_dir>/<server>/
- json: NDJSON lines appended to <report_dir>/<server>.ndjson
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from rtask.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class ReportEvent:
    """A reported event.

    Attributes:
        event_type: "task_execution" or "resource_failed"
        server: Server name the event belongs to
        timestamp: When the event was recorded (ISO 8601, UTC)
        details: Event-specific fields
    """

    event_type: str
    server: str
    timestamp: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        result = {
            "event": self.event_type,
            "server": self.server,
            "timestamp": self.timestamp,
        }
        result.update(self.details)
        return result

    def to_json(self) -> str:
        """Convert to JSON string (NDJSON format)."""
        return json.dumps(self.to_dict(), default=str)


class Reporter(ABC):
    """Base class for reporters.

    Attributes:
        server: Name of the server this reporter belongs to
        report_dir: Directory reports are written to
        events: Every event recorded by this reporter
    """

    def __init__(self, server: str, report_dir: Path | None = None) -> None:
        self.server = server
        self.report_dir = report_dir or Path("reports")
        self.events: list[ReportEvent] = []
        self._pending: list[ReportEvent] = []

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _record(self, event_type: str, details: dict[str, Any]) -> ReportEvent:
        event = ReportEvent(
            event_type=event_type,
            server=self.server,
            timestamp=self._now(),
            details=details,
        )
        self.events.append(event)
        self._pending.append(event)
        return event

    def report_resource_failed(self, message: str) -> None:
        """Record that a resource managed by the task failed."""
        self._record("resource_failed", {"message": message})

    def report_task_execution(
        self,
        failed: bool,
        start_time: float,
        end_time: float,
        message: str | None = None,
    ) -> None:
        """Record the outcome of one task execution.

        Args:
            failed: Whether the execution failed
            start_time: Epoch seconds when the run started
            end_time: Epoch seconds when the run ended
            message: Error message for failed executions
        """
        details: dict[str, Any] = {
            "failed": 1 if failed else 0,
            "start_time": start_time,
            "end_time": end_time,
            "duration": round(end_time - start_time, 3),
        }
        if message:
            details["message"] = message
        self._record("task_execution", details)

    def events_of(self, event_type: str) -> list[ReportEvent]:
        """All recorded events of one type."""
        return [e for e in self.events if e.event_type == event_type]

    def write_report(self) -> None:
        """Flush events recorded since the last flush."""
        if not self._pending:
            return
        pending, self._pending = self._pending, []
        self._write(pending)

    @abstractmethod
    def _write(self, events: list[ReportEvent]) -> None:
        """Persist a batch of events."""


class NullReporter(Reporter):
    """Keeps events in memory and writes nothing."""

    def _write(self, events: list[ReportEvent]) -> None:
        pass


class YamlReporter(Reporter):
    """Writes each flush as a YAML file named after the flush time."""

    def _write(self, events: list[ReportEvent]) -> None:
        safe_name = "".join(c if c.isalnum() or c in "-_." else "_" for c in self.server)
        directory = self.report_dir / safe_name
        directory.mkdir(parents=True, exist_ok=True)

        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        path = directory / f"{stamp}.yml"
        with path.open("w") as f:
            yaml.safe_dump([e.to_dict() for e in events], f, sort_keys=False)
        logger.debug(f"Report written to {path}")


class JsonReporter(Reporter):
    """Appends events as NDJSON lines, one file per server."""

    def _write(self, events: list[ReportEvent]) -> None:
        safe_name = "".join(c if c.isalnum() or c in "-_." else "_" for c in self.server)
        self.report_dir.mkdir(parents=True, exist_ok=True)

        path = self.report_dir / f"{safe_name}.ndjson"
        with path.open("a") as f:
            for event in events:
                f.write(event.to_json() + "\n")
        logger.debug(f"Report appended to {path}")


REPORTERS: dict[str, type[Reporter]] = {
    "none": NullReporter,
    "yaml": YamlReporter,
    "json": JsonReporter,
}


def create_reporter(report_type: str | None, server: str, report_dir: Path | None = None) -> Reporter:
    """Create a reporter.

    Args:
        report_type: One of the REPORTERS keys (None means "none")
        server: Server name the reporter belongs to
        report_dir: Output directory for file-based reporters

    Returns:
        Reporter instance

    Raises:
        ConfigurationError: If the report type is unknown
    """
    key = (report_type or "none").lower()
    if key not in REPORTERS:
        raise ConfigurationError(
            f"Unknown report type: {report_type}. Valid types: {', '.join(REPORTERS)}"
        )
    return REPORTERS[key](server, report_dir)
