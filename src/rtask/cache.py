"""Per-connection host fact cache.

Each connection frame owns a HostCache. When fact collection is enabled
(``-c``), the driver loads previously saved facts for the host and falls
back to gathering them over the live connection, then saves them after a
successful run.
"""

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from rtask.connection import Connection

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path.home() / ".rtask" / "cache"

FACT_COMMANDS = {
    "kernel": "uname -s",
    "kernel_release": "uname -r",
    "architecture": "uname -m",
    "hostname": "hostname",
}


class HostCache:
    """Fact cache for one host, stored as a JSON file.

    Attributes:
        host_name: Name of the host the facts belong to
        cache_dir: Directory holding one JSON file per host
        data: The cached facts

    Example:
        >>> cache = HostCache("web01")
        >>> if not cache.load():
        ...     cache.update({"kernel": "Linux"})
        >>> cache.save()
    """

    def __init__(self, host_name: str, cache_dir: Path | None = None) -> None:
        self.host_name = host_name
        self.cache_dir = cache_dir or DEFAULT_CACHE_DIR
        self.data: dict[str, Any] = {}

    @property
    def path(self) -> Path:
        """Path of this host's cache file."""
        safe_name = "".join(c if c.isalnum() or c in "-_." else "_" for c in self.host_name)
        return self.cache_dir / f"{safe_name}.json"

    def get(self, key: str, default: Any = None) -> Any:
        """Get a cached fact."""
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a cached fact."""
        self.data[key] = value

    def update(self, facts: dict[str, Any]) -> None:
        """Merge several facts into the cache."""
        self.data.update(facts)

    def load(self) -> bool:
        """Load facts from disk.

        Returns:
            True if facts were found and loaded, False otherwise
        """
        path = self.path
        if not path.exists():
            logger.debug(f"Cache file not found: {path}")
            return False

        try:
            with path.open() as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to load cache file {path}: {e}")
            return False

        if not isinstance(data, dict) or not data:
            return False

        self.data = data
        logger.debug(f"Loaded {len(data)} cached fact(s) for {self.host_name}")
        return True

    def save(self) -> Path:
        """Write facts to disk.

        Returns:
            Path the cache was written to
        """
        path = self.path
        path.parent.mkdir(parents=True, exist_ok=True)

        with path.open("w") as f:
            json.dump(self.data, f, indent=2)

        logger.debug(f"Cache saved to {path}")
        return path


async def gather_facts(connection: "Connection") -> dict[str, Any]:
    """Collect basic system facts over a connection.

    Commands that fail are skipped rather than aborting the collection.

    Args:
        connection: Live connection to the host

    Returns:
        Dictionary of fact name to value
    """
    facts: dict[str, Any] = {}
    for name, command in FACT_COMMANDS.items():
        stdout, stderr, rc = await connection.run(command)
        if rc == 0:
            facts[name] = stdout.strip()
        else:
            logger.debug(f"Fact {name} unavailable: {stderr.strip()}")
    return facts
