"""Logging utilities for rtask.

This module provides:
- A TRACE level below DEBUG
- Verbosity (-d/-v count) to level mapping
- Root logger configuration for the CLI
- Scoped logging around task runs
- Secret masking and deprecation notices
"""

import logging
import warnings
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

DEFAULT_FORMAT = "%(levelname)s [%(name)s] %(message)s"
DEBUG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s"

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

VERBOSITY_LEVELS = {
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
    3: TRACE,  # -ddd also dumps credentials (masked) and profiler reports
}

logger = logging.getLogger(__name__)


def get_level_from_verbosity(verbosity: int) -> int:
    """Convert verbosity count to logging level.

    Args:
        verbosity: Number of -d flags (0-3+)

    Returns:
        Logging level constant
    """
    return VERBOSITY_LEVELS.get(min(verbosity, 3), TRACE)


def configure_logging(
    level: int = logging.WARNING,
    log_file: str | Path | None = None,
) -> None:
    """Configure the root logger for rtask.

    Args:
        level: Logging level for the console handler
        log_file: Optional path to also write logs to

    Example:
        >>> configure_logging(level=logging.INFO)
        >>> configure_logging(level=logging.DEBUG, log_file="/tmp/rtask.log")
    """
    format_string = DEBUG_FORMAT if level <= logging.DEBUG else DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(format_string))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(DEBUG_FORMAT))
        root_logger.addHandler(file_handler)


@contextmanager
def log_scope(
    logger: logging.Logger,
    message: str,
    level: int = logging.DEBUG,
    **context: Any,
) -> Generator[None, None, None]:
    """Log entry and exit of a scope with optional context data.

    Args:
        logger: Logger instance to use
        message: Message describing the scope
        level: Log level to use
        **context: Additional context to include in logs

    Example:
        >>> with log_scope(logger, "Running task", task="deploy", server="web01"):
        ...     pass
        DEBUG: Entering: Running task (task=deploy, server=web01)
        DEBUG: Exiting: Running task (task=deploy, server=web01)
    """
    context_str = ", ".join(f"{k}={v}" for k, v in context.items())
    full_message = f"{message} ({context_str})" if context else message

    logger.log(level, f"Entering: {full_message}")
    try:
        yield
    finally:
        logger.log(level, f"Exiting: {full_message}")


def masq(value: Any) -> str:
    """Mask a secret for log output.

    Args:
        value: Secret value (None and empty values stay empty)

    Returns:
        A string of asterisks of the same length, or "" for unset values
    """
    if not value:
        return ""
    return "*" * len(str(value))


def deprecated(feature: str, version: str, *hints: str) -> None:
    """Signal use of a deprecated code path.

    Logs a warning and emits a DeprecationWarning so callers running with
    ``-W error`` can turn legacy usage into failures.

    Args:
        feature: Description of the deprecated feature
        version: Version the feature was deprecated in
        *hints: Extra lines suggesting the replacement
    """
    message = f"{feature} is deprecated since {version}."
    if hints:
        message += " " + " ".join(hints)
    logger.warning(message)
    warnings.warn(message, DeprecationWarning, stacklevel=3)
