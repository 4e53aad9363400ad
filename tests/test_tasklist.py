"""Tests for the task registry and per-host fan-out."""

import asyncio

import pytest

from rtask.context import connection_depth, require_connection
from rtask.exceptions import ConfigurationError
from rtask.inventory import Group
from rtask.server import Server
from rtask.task import Task
from rtask.tasklist import TaskList, chunk, default_tasklist, load_taskfile, task


class TestChunk:
    """Tests for the chunk helper."""

    def test_chunks(self):
        """Test splitting into fixed-size chunks."""
        assert list(chunk([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        """Test chunking nothing."""
        assert list(chunk([], 3)) == []


class TestRegistry:
    """Tests for task registration and lookup."""

    def test_create_and_lookup(self):
        """Test creating a task and finding it again."""
        tasklist = TaskList()
        created = tasklist.create_task("deploy", desc="Deploy the app")
        assert tasklist.get_task("deploy") is created
        assert tasklist.is_task("deploy")
        assert tasklist.get_desc("deploy") == "Deploy the app"

    def test_unknown_task(self):
        """Test looking up a missing task."""
        with pytest.raises(ConfigurationError, match="not found"):
            TaskList().get_task("missing")

    def test_get_tasks_sorted(self):
        """Test that names are listed sorted."""
        tasklist = TaskList()
        tasklist.create_task("b")
        tasklist.create_task("a")
        assert tasklist.get_tasks() == ["a", "b"]

    def test_hidden_tasks(self):
        """Test that hidden tasks are not visible."""
        tasklist = TaskList()
        tasklist.create_task("shown")
        tasklist.create_task("secret", hidden=True)
        assert [t.name for t in tasklist.get_visible_tasks()] == ["shown"]
        assert tasklist.get_tasks() == ["secret", "shown"]

    def test_modify(self):
        """Test modifying a registered task."""
        tasklist = TaskList()
        tasklist.create_task("deploy")
        tasklist.modify("deploy", "parallelism", 4)
        assert tasklist.get_task("deploy").parallelism == 4

    def test_replace(self):
        """Test that registering the same name replaces the task."""
        tasklist = TaskList()
        tasklist.create_task("deploy", desc="old")
        tasklist.add_task(Task("deploy", desc="new"))
        assert tasklist.get_desc("deploy") == "new"


class TestDecorator:
    """Tests for the task decorator."""

    def test_registers_with_docstring(self):
        """Test that the docstring becomes the description."""
        tasklist = TaskList()

        @task(tasklist=tasklist, server=["web1"])
        def restart(opts, args):
            """Restart the service.

            Longer text.
            """

        assert isinstance(restart, Task)
        assert tasklist.get_desc("restart") == "Restart the service."
        assert restart.server == ["web1"]

    def test_explicit_name_and_default_list(self):
        """Test naming a task and registering it globally."""

        @task("other-name", desc="given")
        def work(opts, args):
            """Ignored."""

        assert default_tasklist().get_desc("other-name") == "given"


class TestFanOut:
    """Tests for TaskList.run."""

    @pytest.mark.asyncio
    async def test_runs_on_every_server(self, scripted):
        """Test that results are keyed by server name."""
        tasklist = TaskList()
        tasklist.create_task(
            "who",
            lambda opts, args: require_connection().server.name,
            server=["a", Group("g", [Server("b[1..2]")])],
        )
        results = await tasklist.run("who")
        assert results == {"a": "a", "b1": "b1", "b2": "b2"}
        assert connection_depth() == 0

    @pytest.mark.asyncio
    async def test_task_run_without_server(self, scripted):
        """Test that Task.run without a server fans out."""
        t = Task("t", server=["a", "b"], func=lambda opts, args: opts["n"])
        assert await t.run(params={"n": 3}) == {"a": 3, "b": 3}

    @pytest.mark.asyncio
    async def test_local_task(self):
        """Test that a task without servers runs once locally."""
        results = await TaskList().run(Task("t", func=lambda opts, args: "here"))
        assert results == {"<local>": "here"}

    @pytest.mark.asyncio
    async def test_clones_per_server(self, scripted):
        """Test that each host gets its own task object."""
        seen = []
        original = Task("t", server=["a", "b"])
        original.code = lambda opts, args: seen.append(require_connection().current_task)
        await TaskList().run(original)
        assert len(seen) == 2
        assert seen[0] is not seen[1]
        assert original not in seen
        assert original.current_server is None

    @pytest.mark.asyncio
    async def test_parallelism_bounds_concurrency(self, scripted):
        """Test that at most `parallelism` hosts run at once."""
        running = 0
        peak = 0

        async def work(opts, args):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        t = Task("t", server=["h[1..5]"], func=work, parallelism=2)
        results = await TaskList().run(t)
        assert len(results) == 5
        assert peak == 2

    @pytest.mark.asyncio
    async def test_exit_on_connect_fail(self, scripted):
        """Test that a connect failure aborts the fan-out by default."""
        scripted.unreachable = {"b"}
        t = Task("t", server=["a", "b", "c"], parallelism=2)
        with pytest.raises(OSError):
            await TaskList().run(t)
        assert "c" not in [name for name, _ in scripted.attempts]

    @pytest.mark.asyncio
    async def test_skip_unreachable(self, scripted):
        """Test that unreachable hosts are skipped when allowed."""
        scripted.unreachable = {"b"}
        t = Task(
            "t",
            server=["a", "b", "c"],
            func=lambda opts, args: "ok",
            exit_on_connect_fail=False,
        )
        assert await TaskList().run(t) == {"a": "ok", "c": "ok"}

    @pytest.mark.asyncio
    async def test_work_failure_raises(self, scripted):
        """Test that work failures are raised even without exit_on_connect_fail."""

        def work(opts, args):
            raise ValueError(require_connection().server.name)

        t = Task("t", server=["a"], func=work, exit_on_connect_fail=False)
        with pytest.raises(ValueError, match="a"):
            await TaskList().run(t)

    @pytest.mark.asyncio
    async def test_start_and_finish_hooks(self, scripted):
        """Test registry hooks run once per fan-out."""
        calls = []
        tasklist = TaskList()
        tasklist.create_task("t", lambda opts, args: calls.append("work"), server=["a", "b"])
        tasklist.before_task_start("t", lambda t: calls.append(("start", t.name)))

        async def finished(t):
            calls.append(("finish", t.name))

        tasklist.after_task_finished("t", finished)

        await tasklist.run("t")
        assert calls == [("start", "t"), "work", "work", ("finish", "t")]

    @pytest.mark.asyncio
    async def test_finish_hook_runs_on_failure(self, scripted):
        """Test that the finish hook also runs when a host fails."""
        calls = []
        tasklist = TaskList()
        tasklist.create_task("t", lambda opts, args: 1 / 0, server=["a"])
        tasklist.after_task_finished("t", lambda t: calls.append("finish"))

        with pytest.raises(ZeroDivisionError):
            await tasklist.run("t")
        assert calls == ["finish"]


class TestTaskfile:
    """Tests for loading task files."""

    def test_load_taskfile(self, tmp_path):
        """Test that a task file registers its tasks."""
        taskfile = tmp_path / "rtaskfile.py"
        taskfile.write_text(
            "from rtask import task\n"
            "\n"
            "@task()\n"
            "def hello(opts, args):\n"
            "    '''Say hello.'''\n"
            "    return 'hello'\n"
        )
        load_taskfile(taskfile)
        assert default_tasklist().get_desc("hello") == "Say hello."

    def test_missing_taskfile(self, tmp_path):
        """Test loading a missing task file."""
        with pytest.raises(ConfigurationError):
            load_taskfile(tmp_path / "nope.py")


class TestFanOutErrors:
    """Tests for telling connect failures from other per-host errors."""

    @pytest.mark.asyncio
    async def test_before_hook_error_is_not_skipped(self, scripted):
        """Test that a failing before hook is raised, not skipped as unreachable."""

        def before(server, slot, opts):
            raise RuntimeError(f"refusing {server}")

        t = Task("t", server=["a"], before=[before], exit_on_connect_fail=False)
        with pytest.raises(RuntimeError, match="refusing a"):
            await TaskList().run(t)

    @pytest.mark.asyncio
    async def test_rejected_credentials_are_skipped(self, scripted):
        """Test that hosts rejecting the credentials are skipped when allowed."""
        scripted.accepted_users = {"deploy"}
        t = Task(
            "t",
            server=["a"],
            func=lambda opts, args: "ok",
            auth={"user": "guest"},
            exit_on_connect_fail=False,
        )
        assert await TaskList().run(t) == {}
