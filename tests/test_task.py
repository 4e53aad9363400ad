"""Tests for Task data, server resolution and connection type selection."""

import pytest

from rtask.auth import Credentials
from rtask.config import Config, set_config
from rtask.connection import ConnectionType, LocalConnection
from rtask.exceptions import ConfigurationError
from rtask.executor import Executor
from rtask.inventory import Group
from rtask.server import LOCAL, Server
from rtask.task import Task


class TestTaskCreation:
    """Tests for Task construction."""

    def test_name_required(self):
        """Test that a task without a name is rejected."""
        with pytest.raises(ConfigurationError, match="task name"):
            Task()
        with pytest.raises(ConfigurationError):
            Task(name="")

    def test_default_code_is_noop(self):
        """Test that an unset work function does nothing."""
        task = Task("noop")
        assert task.code({}, []) is None

    def test_defaults(self):
        """Test default field values."""
        task = Task("deploy")
        assert task.server is None
        assert task.no_ssh is False
        assert task.exit_on_connect_fail is True
        assert task.before == [] and task.after == [] and task.around == []
        assert isinstance(task.executor, Executor)
        assert task.current_server is None
        assert task.was_authenticated is False

    def test_invalid_parallelism(self):
        """Test that parallelism must be positive."""
        with pytest.raises(ConfigurationError):
            Task("deploy", parallelism=0)

    def test_auth_from_dict(self):
        """Test that credentials can be given as a dictionary."""
        task = Task("deploy", auth={"user": "deploy", "password": "secret"})
        assert task.user == "deploy"
        assert task.password == "secret"


class TestServers:
    """Tests for server resolution."""

    def test_no_source_is_local(self):
        """Test that a task without servers runs on exactly one local server."""
        servers = Task("t").servers()
        assert len(servers) == 1
        assert servers[0].is_local

    def test_static_list_order(self):
        """Test that a static list keeps its order."""
        task = Task("t", server=["c", "a", "b"])
        assert [s.name for s in task.servers()] == ["c", "a", "b"]

    def test_expands_in_place(self):
        """Test that callables and groups are spliced in place."""
        group = Group("db", [Server("db1"), Server("db2")])
        task = Task("t", server=["a", lambda: ["b", "c"], group, "d"])
        assert [s.name for s in task.servers()] == ["a", "b", "c", "db1", "db2", "d"]

    def test_range_expressions(self):
        """Test that host ranges expand in place."""
        task = Task("t", server=["lb", "web[01..03]", "db"])
        assert [s.name for s in task.servers()] == ["lb", "web01", "web02", "web03", "db"]

    def test_callable_source(self):
        """Test a single callable as the server source."""
        task = Task("t", server=lambda: [Server("x"), "y"])
        assert [s.name for s in task.servers()] == ["x", "y"]

    def test_single_server_source(self):
        """Test that a single name or Server becomes a one-element list."""
        task = Task("t", server="web01")
        assert task.server == ["web01"]
        assert [s.name for s in task.servers()] == ["web01"]
        assert task.is_remote
        assert Task("t", server=Server("db1")).server == [Server("db1")]

    def test_modify_server_on_local_task(self):
        """Test that setting a single server on a local task makes it remote."""
        task = Task("t")
        task.modify("server", "web01")
        assert [s.name for s in task.servers()] == ["web01"]
        assert task.get_connection_type() == "Scripted"

    def test_legacy_credentials(self):
        """Test the trailing credential dict in a server list."""
        task = Task("t", server=["web1", {"user": "root", "password": "pw"}])
        with pytest.warns(DeprecationWarning):
            servers = task.servers()
        assert [s.name for s in servers] == ["web1"]
        assert task.user == "root"
        assert task.password == "pw"
        assert task.auth.private_key is None

    def test_legacy_credentials_overwrite(self):
        """Test that legacy credentials overwrite rather than merge."""
        task = Task(
            "t",
            server=["web1", {"private_key": "/k", "public_key": "/k.pub"}],
            auth={"user": "deploy", "password": "old", "private_key": "/old"},
        )
        with pytest.warns(DeprecationWarning):
            task.servers()
        assert task.user is None
        assert task.password is None
        assert task.auth.private_key == "/k"
        assert task.auth.public_key == "/k.pub"


class TestConnectionType:
    """Tests for transport selection."""

    def test_http(self):
        """Test that the HTTP flag wins regardless of remoteness."""
        assert Task("t", connection_type="http").get_connection_type() == ConnectionType.HTTP
        assert Task("t", server=["a"], connection_type="HTTP").get_connection_type() == ConnectionType.HTTP

    def test_https(self):
        """Test the HTTPS flag."""
        assert Task("t", server=["a"], connection_type="https").get_connection_type() == ConnectionType.HTTPS

    def test_openssh(self):
        """Test OpenSSH for remote tasks that want a connection."""
        task = Task("t", server=["a"], connection_type="openssh")
        assert task.get_connection_type() == ConnectionType.OPENSSH

    def test_openssh_no_ssh_is_fake(self):
        """Test that no_ssh beats the OpenSSH flag."""
        task = Task("t", server=["a"], connection_type="openssh", no_ssh=True)
        assert task.get_connection_type() == ConnectionType.FAKE

    def test_configured_default(self):
        """Test that remote tasks use the configured transport."""
        set_config(Config())
        assert Task("t", server=["a"]).get_connection_type() == "SSH"
        set_config(Config(connection_type="OpenSSH"))
        assert Task("t", server=["a"]).get_connection_type() == "OpenSSH"

    def test_remote_no_ssh_is_fake(self):
        """Test remote tasks without a connection."""
        assert Task("t", server=["a"], no_ssh=True).get_connection_type() == ConnectionType.FAKE

    def test_local(self):
        """Test local tasks, also with the OpenSSH flag."""
        assert Task("t").get_connection_type() == ConnectionType.LOCAL
        assert Task("t", connection_type="openssh").get_connection_type() == ConnectionType.LOCAL

    def test_callable_source_is_remote(self):
        """Test that a deferred source counts as remote."""
        assert Task("t", server=lambda: ["a"]).is_remote

    def test_current_server_decides(self):
        """Test that a bound current server overrides the source."""
        task = Task("t", server=["a"])
        task.current_server = Server(LOCAL)
        assert task.is_local
        assert task.get_connection_type() == ConnectionType.LOCAL

    def test_connection_is_cached(self):
        """Test that the transport is created once."""
        task = Task("t")
        first = task.connection
        assert isinstance(first, LocalConnection)
        assert task.connection is first
        task.rethink_connection()
        assert task.connection is not first


class TestModify:
    """Tests for Task.modify."""

    def test_append_to_hooks(self):
        """Test that list fields get the value appended."""
        first = lambda *a: None  # noqa: E731
        second = lambda *a: None  # noqa: E731
        task = Task("t", before=[first])
        task.modify("before", second)
        assert task.before == [first, second]

    def test_replace_and_invalidate(self):
        """Test that scalar fields are replaced and the transport dropped."""
        task = Task("t", desc="old")
        connection = task.connection
        task.modify("desc", "x")
        assert task.desc == "x"
        assert task.connection is not connection

    def test_unknown_field(self):
        """Test that unknown fields are rejected."""
        with pytest.raises(ConfigurationError):
            Task("t").modify("colour", "blue")

    def test_delete_server(self):
        """Test that deleting servers makes the task local."""
        task = Task("t", server=["a"])
        task.current_server = Server("a")
        task.delete_server()
        assert task.server is None
        assert task.current_server is None
        assert task.is_local


class TestAccessors:
    """Tests for option, argument and credential accessors."""

    def test_opts_are_copies(self):
        """Test that get_opts returns a copy."""
        task = Task("t", opts={"a": 1})
        opts = task.get_opts()
        opts["b"] = 2
        assert task.get_opts() == {"a": 1}
        task.set_opt("c", 3)
        assert task.get_opts() == {"a": 1, "c": 3}
        task.set_opts(z=0)
        assert task.get_opts() == {"z": 0}

    def test_args(self):
        """Test argument accessors."""
        task = Task("t", args=[1])
        task.set_args(2, 3)
        assert task.get_args() == [2, 3]

    def test_set_auth_single_and_bulk(self):
        """Test setting one credential and replacing all."""
        task = Task("t", auth={"user": "a", "password": "p"})
        task.set_auth("user", "b")
        assert task.user == "b"
        assert task.password == "p"
        task.set_auth(user="c")
        assert task.user == "c"
        assert task.password is None

    def test_user_password_setters(self):
        """Test the user and password setters."""
        task = Task("t")
        task.set_user("deploy")
        task.set_password("secret")
        assert (task.user, task.password) == ("deploy", "secret")

    def test_merge_auth(self):
        """Test that the task's credentials win per field."""
        task = Task("t", auth={"user": "task-user"})
        server = Server("a", auth=Credentials(user="server-user", password="server-pw"))
        merged = task.merge_auth(server)
        assert merged.user == "task-user"
        assert merged.password == "server-pw"

    def test_sudo_password_without_connection(self):
        """Test sudo password lookup for the current server."""
        task = Task("t", server=["a"])
        task.current_server = Server("a", auth=Credentials(sudo_password="s3"))
        assert task.get_sudo_password() == "s3"

    def test_code_setter(self):
        """Test replacing the work callable."""
        task = Task("t")
        task.code = lambda opts, args: "new"
        assert task.code({}, []) == "new"


class TestClone:
    """Tests for Task.clone."""

    def test_clone_equal_data(self):
        """Test that a clone has equal data."""
        task = Task(
            "t",
            server=["a", "b"],
            desc="d",
            auth={"user": "u"},
            before=[print],
            opts={"k": "v"},
            args=[1],
            parallelism=2,
        )
        clone = task.clone()
        assert clone is not task
        assert clone.get_data() == task.get_data()

    def test_clone_is_independent(self):
        """Test that mutating a clone leaves the original alone."""
        task = Task("t", server=["a"], auth={"user": "u"}, opts={"k": "v"})
        clone = task.clone()
        clone.set_opt("k", "changed")
        clone.modify("before", print)
        clone.modify("server", "b")
        clone.set_auth("user", "other")
        assert task.get_opts() == {"k": "v"}
        assert task.before == []
        assert task.server == ["a"]
        assert task.user == "u"

    def test_get_data_is_snapshot(self):
        """Test that changing the data snapshot leaves the task alone."""
        task = Task("t", server=["a"], auth={"user": "u"}, opts={"k": "v"}, args=[1])
        data = task.get_data()
        data["server"].append("b")
        data["opts"]["k"] = "changed"
        data["args"].append(2)
        data["before"].append(print)
        data["auth"].user = "other"
        assert task.server == ["a"]
        assert task.get_opts() == {"k": "v"}
        assert task.args == [1]
        assert task.before == []
        assert task.user == "u"
