"""Command-line interface for rtask."""

import asyncio
import json
import logging
from dataclasses import replace
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from rtask import __version__
from rtask.config import load_config, set_config
from rtask.exceptions import TaskError
from rtask.inventory import load_inventory
from rtask.logging import configure_logging, get_level_from_verbosity
from rtask.server import Server
from rtask.tasklist import default_tasklist, load_taskfile

logger = logging.getLogger(__name__)

DEFAULT_TASKFILE = "rtaskfile.py"


def parse_params(params: tuple[str, ...]) -> dict[str, str]:
    """Parse ``key=value`` pairs into a dictionary.

    Raises:
        click.BadParameter: If a pair has no ``=``
    """
    result: dict[str, str] = {}
    for pair in params:
        if "=" not in pair:
            raise click.BadParameter(f"Expected key=value, got: {pair}", param_hint="--param")
        key, value = pair.split("=", 1)
        result[key.strip()] = value
    return result


def format_results(results: dict[str, Any]) -> str:
    """Format per-host results for terminal output."""
    lines = []
    for host, result in results.items():
        if isinstance(result, (dict, list)):
            result = json.dumps(result, indent=2, default=str)
        lines.append(f"{host}: {result}")
    return "\n".join(lines)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """rtask - run tasks on remote hosts."""
    if version:
        click.echo(f"rtask {__version__}")
        ctx.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("run")
@click.argument("task_name")
@click.option("--taskfile", "-f", default=DEFAULT_TASKFILE, show_default=True, help="Python task file")
@click.option("--host", "-H", "hosts", multiple=True, help="Run on these hosts instead of the task's servers")
@click.option("--group", "-G", "groups", multiple=True, help="Run on the hosts of these inventory groups")
@click.option("--inventory", "-i", help="Inventory file (YAML format)")
@click.option("--param", "-p", "params", multiple=True, help="Task option in key=value format")
@click.option("--collect-facts", "-c", is_flag=True, help="Use the fact cache and gather facts on a miss")
@click.option("--debug", "-d", count=True, help="Increase verbosity (-d, -dd, -ddd)")
@click.option("--config", "config_file", type=click.Path(), help="Config file (YAML format)")
def run(
    task_name: str,
    taskfile: str,
    hosts: tuple[str, ...],
    groups: tuple[str, ...],
    inventory: str | None,
    params: tuple[str, ...],
    collect_facts: bool,
    debug: int,
    config_file: str | None,
) -> None:
    """Run TASK_NAME from the task file."""
    configure_logging(level=get_level_from_verbosity(debug + 1))

    try:
        config = load_config(config_file)
        config = replace(config, debug=max(config.debug, debug), collect_facts=config.collect_facts or collect_facts)
        set_config(config)

        load_taskfile(taskfile)
        tasklist = default_tasklist()
        task = tasklist.get_task(task_name)

        targets: list[Any] = [Server(h) for h in hosts]
        if groups:
            if not inventory:
                raise click.UsageError("--group requires --inventory")
            loaded = load_inventory(inventory)
            for name in groups:
                group = loaded.get_group(name)
                if group is None:
                    raise click.UsageError(f"Unknown group: {name}")
                targets.append(group)
        if targets:
            task.set_server(*targets)

        results = asyncio.run(tasklist.run(task, params=parse_params(params) or None))
    except TaskError as e:
        raise click.ClickException(str(e))

    output = format_results(results)
    if output:
        click.echo(output)


@cli.command("list")
@click.option("--taskfile", "-f", default=DEFAULT_TASKFILE, show_default=True, help="Python task file")
@click.option("--all", "-a", "show_all", is_flag=True, help="Include hidden tasks")
def list_tasks(taskfile: str, show_all: bool) -> None:
    """List the tasks defined in the task file."""
    try:
        load_taskfile(taskfile)
    except TaskError as e:
        raise click.ClickException(str(e))

    tasklist = default_tasklist()
    tasks = [tasklist.get_task(n) for n in tasklist.get_tasks()] if show_all else tasklist.get_visible_tasks()

    table = Table(title="Tasks")
    table.add_column("Task", style="cyan")
    table.add_column("Description")
    table.add_column("Servers", style="dim")
    for task in tasks:
        servers = "<dynamic>" if callable(task.server) else ", ".join(str(s) for s in task.server or [])
        table.add_row(task.name, task.desc or "", servers or "<local>")

    Console().print(table)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
