"""rtask - run named tasks on remote hosts.

Tasks bundle a work callable with the servers it runs on, the credentials
used to reach them and lifecycle hooks. rtask resolves each server,
connects over SSH, HTTP or locally, runs the work and reports the outcome.

Quick Start:
    from rtask import require_connection, task

    @task(server=["web[01..03]"], auth={"user": "deploy"})
    async def uptime(opts, args):
        stdout, _, _ = await require_connection().connection.run("uptime")
        return stdout

    results = await uptime.run()
"""

__version__ = "0.1.0"

from rtask.auth import Credentials
from rtask.config import Config, get_config, load_config, set_config
from rtask.context import current_connection, require_connection
from rtask.inventory import Group, Inventory, load_inventory
from rtask.server import LOCAL, Server
from rtask.task import FUNC_CALL, Task
from rtask.tasklist import TaskList, default_tasklist, task

__all__ = [
    "__version__",
    "Config",
    "Credentials",
    "FUNC_CALL",
    "Group",
    "Inventory",
    "LOCAL",
    "Server",
    "Task",
    "TaskList",
    "current_connection",
    "default_tasklist",
    "get_config",
    "load_config",
    "load_inventory",
    "require_connection",
    "set_config",
    "task",
]
