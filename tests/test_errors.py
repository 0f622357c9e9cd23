"""Tests for error hierarchy."""

import pytest
from container_diag.utils.errors import (
    ContainerDiagError,
    ConfigurationError,
    KubectlNotFoundError,
    ArtifactPathConflict,
    ProcfsParseError,
)


class TestErrorHierarchy:
    """Tests for error class hierarchy."""

    def test_all_errors_inherit_from_base(self):
        """All errors should inherit from ContainerDiagError."""
        errors = [
            ConfigurationError("test"),
            KubectlNotFoundError("kubectl"),
            ArtifactPathConflict("test", ("ns", "a", "c"), ("ns", "b", "c")),
            ProcfsParseError("test"),
        ]
        for error in errors:
            assert isinstance(error, ContainerDiagError)

    def test_base_is_catchable_as_exception(self):
        """Callers catching Exception should see every error."""
        with pytest.raises(Exception):
            raise ProcfsParseError("broken")


class TestConfigurationError:
    """Tests for ConfigurationError."""

    def test_captures_field(self):
        """Should capture the offending field name."""
        error = ConfigurationError("Bad timeout", field="command_timeout")
        assert error.field == "command_timeout"
        assert str(error) == "Bad timeout"

    def test_field_defaults_to_none(self):
        """Field should be optional."""
        assert ConfigurationError("Bad").field is None


class TestKubectlNotFoundError:
    """Tests for KubectlNotFoundError."""

    def test_message_names_binary(self):
        """Message should name the missing binary."""
        error = KubectlNotFoundError("oc")
        assert error.binary == "oc"
        assert "Command not found: oc" in str(error)


class TestArtifactPathConflict:
    """Tests for ArtifactPathConflict."""

    def test_captures_both_keys(self):
        """Should capture the claiming key and the current owner."""
        error = ArtifactPathConflict("conflict", ("ns", "p", "b"), ("ns", "p", "a"))
        assert error.key == ("ns", "p", "b")
        assert error.owner == ("ns", "p", "a")


class TestProcfsParseError:
    """Tests for ProcfsParseError."""

    def test_captures_line(self):
        """Should capture the offending input."""
        error = ProcfsParseError("truncated", line="@@pid 12")
        assert error.line == "@@pid 12"
