"""Tests for the error taxonomy."""

from rtask.exceptions import AuthenticationError, ConfigurationError, ConnectionError, TaskError


def test_hierarchy():
    """Test that all errors derive from TaskError."""
    assert issubclass(ConfigurationError, TaskError)
    assert issubclass(ConnectionError, TaskError)
    assert issubclass(AuthenticationError, ConnectionError)


def test_attributes():
    """Test structured attributes and messages."""
    error = AuthenticationError("Wrong key on web1.", server="web1", user="root")
    assert str(error) == "Wrong key on web1."
    assert error.message == "Wrong key on web1."
    assert error.server == "web1"
    assert error.user == "root"
    assert ConnectionError("down").server is None
