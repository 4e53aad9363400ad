"""Runtime configuration for rtask.

Holds the process-wide settings the execution core consults: the default
remote transport, fallback credentials, report type, fact caching and
debug verbosity. Settings come from defaults, an optional YAML file and
environment variables (in increasing precedence); the CLI applies its own
flags on top through ``set_config``.

Example rtask.yml:

    connection_type: SSH
    report_type: yaml
    report_dir: ./reports
    fallback_auth:
      - user: deploy
        private_key: ~/.ssh/deploy_ed25519
      - user: root
        password: changeme
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from rtask.auth import Credentials
from rtask.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("rtask.yml")

ENV_CONNECTION_TYPE = "RTASK_CONNECTION_TYPE"
ENV_REPORT_TYPE = "RTASK_REPORT_TYPE"
ENV_DEBUG = "RTASK_DEBUG"


@dataclass
class Config:
    """Process-wide runtime settings.

    Attributes:
        connection_type: Transport used for remote hosts unless a task overrides it
        fallback_auth: Credential sets tried in order after an auth failure
        report_type: Reporter kind ("none", "yaml" or "json")
        report_dir: Directory reporters write to
        cache_dir: Directory for host fact caches (None = ~/.rtask/cache)
        collect_facts: Load/gather/save host facts around each run (-c)
        debug: Debug verbosity (-d count); above 2 prints profiler reports
        interpreter: Interpreter expected on target hosts
        interpreter_pause: Seconds to pause after warning about a missing interpreter
        connect_timeout: Transport connect timeout in seconds
        known_hosts: SSH known_hosts file (None = asyncssh default location)
        host_key_checking: Verify SSH host keys against known_hosts
        http_port: Agent port for HTTP connections
        https_port: Agent port for HTTPS connections
    """

    connection_type: str = "SSH"
    fallback_auth: list[Credentials] = field(default_factory=list)
    report_type: str = "none"
    report_dir: Path = Path("reports")
    cache_dir: Path | None = None
    collect_facts: bool = False
    debug: int = 0
    interpreter: str = "python3"
    interpreter_pause: float = 3.0
    connect_timeout: float = 30.0
    known_hosts: str | None = None
    host_key_checking: bool = True
    http_port: int = 8080
    https_port: int = 8443

    def __post_init__(self) -> None:
        if isinstance(self.report_dir, str):
            self.report_dir = Path(self.report_dir)
        if isinstance(self.cache_dir, str):
            self.cache_dir = Path(self.cache_dir).expanduser()
        self.fallback_auth = [
            a if isinstance(a, Credentials) else Credentials.from_dict(a)
            for a in self.fallback_auth
        ]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        result: dict[str, Any] = {
            "connection_type": self.connection_type,
            "report_type": self.report_type,
            "report_dir": str(self.report_dir),
            "collect_facts": self.collect_facts,
            "debug": self.debug,
            "interpreter": self.interpreter,
            "interpreter_pause": self.interpreter_pause,
            "connect_timeout": self.connect_timeout,
            "host_key_checking": self.host_key_checking,
            "http_port": self.http_port,
            "https_port": self.https_port,
        }
        if self.fallback_auth:
            result["fallback_auth"] = [a.to_dict() for a in self.fallback_auth]
        if self.cache_dir is not None:
            result["cache_dir"] = str(self.cache_dir)
        if self.known_hosts is not None:
            result["known_hosts"] = self.known_hosts
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create from dictionary, ignoring unknown keys."""
        known = {f for f in cls.__dataclass_fields__}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if k in known})


def load_config(path: str | Path | None = None) -> Config:
    """Load configuration from a YAML file and the environment.

    Args:
        path: Config file; defaults to ./rtask.yml when it exists

    Returns:
        Config with file values and environment overrides applied

    Raises:
        ConfigurationError: If the file is not a YAML mapping
    """
    data: dict[str, Any] = {}

    config_path = Path(path) if path else DEFAULT_CONFIG_FILE
    if config_path.exists():
        loaded = yaml.safe_load(config_path.read_text())
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")
        data.update(loaded or {})
        logger.debug(f"Loaded config from {config_path}")
    elif path:
        raise ConfigurationError(f"Config file not found: {config_path}")

    if ENV_CONNECTION_TYPE in os.environ:
        data["connection_type"] = os.environ[ENV_CONNECTION_TYPE]
    if ENV_REPORT_TYPE in os.environ:
        data["report_type"] = os.environ[ENV_REPORT_TYPE]
    if ENV_DEBUG in os.environ:
        try:
            data["debug"] = int(os.environ[ENV_DEBUG])
        except ValueError:
            raise ConfigurationError(f"{ENV_DEBUG} must be an integer")

    return Config.from_dict(data)


_config: Config | None = None


def get_config() -> Config:
    """Get the process-wide configuration, creating defaults on first use."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def set_config(config: Config | None) -> None:
    """Replace the process-wide configuration (None resets to defaults)."""
    global _config
    _config = config
