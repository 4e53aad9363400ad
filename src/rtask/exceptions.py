"""Exceptions raised by the rtask execution core."""

from typing import Any


class TaskError(Exception):
    """Base class for all rtask errors.

    Attributes:
        message: Human-readable error message
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ConfigurationError(TaskError):
    """Raised when a task or the runtime configuration is invalid.

    Example:
        raise ConfigurationError("You have to define a task name.")
    """


class ConnectionError(TaskError):
    """Raised when a host could not be reached.

    Attributes:
        server: The server (name or Server object) that failed
    """

    def __init__(self, message: str, server: Any = None) -> None:
        super().__init__(message)
        self.server = server


class AuthenticationError(ConnectionError):
    """Raised when a host was reached but rejected the credentials.

    Attributes:
        server: The server that rejected the login
        user: The user that was tried
    """

    def __init__(self, message: str, server: Any = None, user: str | None = None) -> None:
        super().__init__(message, server=server)
        self.user = user
