"""Server groups for rtask.

Groups are named, ordered sets of servers that can be placed in a task's
server list; they expand to their member servers when the task resolves
its targets. Groups are usually loaded from a YAML file:

    webservers:
      auth:
        user: deploy
      hosts:
        web[01..03]:
        web10:
          port: 2222
          user: admin

    databases:
      hosts: [db1, db2]
      vars:
        role: database
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from rtask.auth import AUTH_FIELDS, Credentials
from rtask.exceptions import ConfigurationError
from rtask.server import Server


@dataclass
class Group:
    """A named group of servers.

    Attributes:
        name: Group name (e.g., "webservers")
        servers: Member servers, possibly with range expressions
        vars: Group variables inherited by member servers

    Example:
        >>> group = Group("webservers", [Server("web[1..2]"), Server("web10")])
        >>> [s.name for s in group.get_servers()]
        ['web1', 'web2', 'web10']
    """

    name: str
    servers: list[Server] = field(default_factory=list)
    vars: dict[str, Any] = field(default_factory=dict)

    def add_server(self, server: Server | str) -> None:
        """Add a server to this group."""
        self.servers.append(server if isinstance(server, Server) else Server(server))

    def get_servers(self) -> list[Server]:
        """Expand all member servers, in order, with group vars applied."""
        expanded: list[Server] = []
        for server in self.servers:
            for member in server.get_servers():
                for key, value in self.vars.items():
                    member.vars.setdefault(key, value)
                expanded.append(member)
        return expanded


@dataclass
class Inventory:
    """Collection of groups.

    Attributes:
        groups: Dictionary mapping group names to Group objects
    """

    groups: dict[str, Group] = field(default_factory=dict)

    def add_group(self, group: Group) -> None:
        """Add a group to the inventory."""
        self.groups[group.name] = group

    def get_group(self, name: str) -> Group | None:
        """Get a group by name."""
        return self.groups.get(name)

    def list_groups(self) -> list[Group]:
        """Get all groups."""
        return list(self.groups.values())


def _server_from_vars(name: str, host_data: dict[str, Any], group_auth: Credentials) -> Server:
    """Create a Server from a host variables dictionary.

    Credential keys become the server's auth (over the group's auth); all
    other keys end up in the server's vars.
    """
    host_auth = Credentials.from_dict(host_data)
    return Server(
        name=str(name),
        auth=host_auth.merge(group_auth),
        vars={k: v for k, v in host_data.items() if k not in AUTH_FIELDS},
    )


def load_inventory_data(data: dict[str, Any] | None) -> Inventory:
    """Build an Inventory from parsed YAML data.

    Args:
        data: Mapping of group name to group definition

    Returns:
        Inventory with one Group per top-level key

    Raises:
        ConfigurationError: If a group's hosts are neither a list nor a mapping
    """
    inventory = Inventory()

    for group_name, group_data in (data or {}).items():
        if not isinstance(group_data, dict):
            continue

        group_auth = Credentials.from_dict(group_data.get("auth"))
        group = Group(name=group_name, vars=dict(group_data.get("vars") or {}))

        hosts = group_data.get("hosts") or {}
        if isinstance(hosts, list):
            hosts = {name: {} for name in hosts}
        if not isinstance(hosts, dict):
            raise ConfigurationError(f"Hosts of group {group_name} must be a list or mapping")

        for host_name, host_data in hosts.items():
            if not isinstance(host_data, dict):
                host_data = {}
            group.add_server(_server_from_vars(host_name, host_data, group_auth))

        inventory.add_group(group)

    return inventory


def load_inventory(inventory_file: str | Path) -> Inventory:
    """Load groups from a YAML file.

    Args:
        inventory_file: Path to the YAML group file

    Returns:
        Inventory with the file's groups
    """
    path = Path(inventory_file)
    data = yaml.safe_load(path.read_text())
    if data is not None and not isinstance(data, dict):
        raise ConfigurationError(f"Inventory file {path} must contain a mapping")
    return load_inventory_data(data)
