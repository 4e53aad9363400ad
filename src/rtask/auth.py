"""Credential sets for task and server authentication.

Tasks and servers both carry a Credentials object. When a task connects to
a server the two are merged field by field, with the task's values taking
precedence.
"""

import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from rtask.logging import masq

logger = logging.getLogger(__name__)

AUTH_FIELDS = ("user", "password", "private_key", "public_key", "sudo_password")


@dataclass
class Credentials:
    """User, password and key material used to log into a host.

    Attributes:
        user: Login user name
        password: Login password
        private_key: Path to the private key file
        public_key: Path to the public key file
        sudo_password: Password used for privilege escalation

    Example:
        >>> task_auth = Credentials(user="deploy")
        >>> server_auth = Credentials(user="root", password="secret")
        >>> task_auth.merge(server_auth)
        Credentials(user='deploy', password='secret', ...)
    """

    user: str | None = None
    password: str | None = None
    private_key: str | None = None
    public_key: str | None = None
    sudo_password: str | None = None

    def merge(self, other: "Credentials | None") -> "Credentials":
        """Combine with another set, this set winning per field.

        Args:
            other: Lower precedence credentials (may be None)

        Returns:
            A new Credentials instance; neither input is modified
        """
        if other is None:
            return replace(self)
        values = {}
        for f in fields(self):
            mine = getattr(self, f.name)
            values[f.name] = mine if mine else getattr(other, f.name)
        return Credentials(**values)

    def set(self, key: str, value: Any) -> None:
        """Set a single field, overwriting any existing value.

        Raises:
            KeyError: If key is not a credential field
        """
        if key not in AUTH_FIELDS:
            raise KeyError(f"Unknown credential field: {key}")
        setattr(self, key, value)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a single field by name."""
        if key not in AUTH_FIELDS:
            return default
        value = getattr(self, key)
        return default if value is None else value

    def resolve_key_paths(self, base: Path | None = None) -> "Credentials":
        """Return a copy with key paths made absolute.

        ``~`` is expanded and relative paths are resolved against ``base``
        (the current working directory by default).
        """
        base = base or Path.cwd()
        resolved = replace(self)
        for key in ("private_key", "public_key"):
            value = getattr(resolved, key)
            if value:
                path = Path(value).expanduser()
                if not path.is_absolute():
                    path = base / path
                setattr(resolved, key, str(path))
        return resolved

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary, dropping unset fields."""
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name)}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Credentials":
        """Create from a dictionary, ignoring unknown keys."""
        data = data or {}
        return cls(**{k: data[k] for k in AUTH_FIELDS if k in data})

    def log_debug(self) -> None:
        """Dump the credentials at DEBUG level with secrets masked."""
        logger.debug("Auth-Information inside Task:")
        for key in AUTH_FIELDS:
            value = getattr(self, key)
            if key in ("password", "sudo_password"):
                value = masq(value)
            logger.debug(f"{key} => [[{value or ''}]]")

    def __repr__(self) -> str:
        return (
            f"Credentials(user={self.user!r}, password={masq(self.password)!r}, "
            f"private_key={self.private_key!r}, public_key={self.public_key!r})"
        )
