"""Tests for collector configuration."""

import pytest
from container_diag.config import (
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_GRACE_PERIOD,
    DEFAULT_SEARCH_DIRS,
    CollectorConfig,
)
from container_diag.utils.errors import ConfigurationError

ENV_VARS = [
    "CMD_TIMEOUT",
    "RHDH_WITH_HEAP_DUMPS",
    "HEAP_DUMP_TIMEOUT",
    "HEAP_DUMP_POLL_INTERVAL",
    "HEAP_DUMP_COPY_TIMEOUT",
    "PRIMARY_CONTAINER",
    "PROS",
    "KUBECTL_CMD",
    "CONTAINER_DIAG_SNAPSHOT_SEARCH_DIRS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self):
        """Defaults should match the documented values."""
        config = CollectorConfig()
        assert config.command_timeout == DEFAULT_COMMAND_TIMEOUT == 90.0
        assert config.heap_dump_grace_period == DEFAULT_GRACE_PERIOD == 120.0
        assert config.with_heap_dumps is False
        assert config.primary_container == "backstage-backend"
        assert config.runtime_name == "node"
        assert config.dump_signal == "USR2"
        assert config.snapshot_search_dirs == DEFAULT_SEARCH_DIRS
        assert config.max_parallel_workloads == 5
        assert {"UPSTREAM_REPO", "MIDSTREAM_REPO", "NPM_CONFIG_", "GLOBAL_AGENT_"} <= set(config.app_env_var_prefixes)

    def test_search_dirs_not_shared(self):
        """Each config should own its search directory list."""
        a = CollectorConfig()
        b = CollectorConfig()
        a.snapshot_search_dirs.append("/data")
        assert "/data" not in b.snapshot_search_dirs


class TestValidation:
    """Tests for field validation."""

    @pytest.mark.parametrize("field", ["command_timeout", "heap_dump_grace_period", "copy_timeout"])
    def test_timeouts_must_be_positive(self, field):
        """Zero or negative timeouts should be rejected."""
        with pytest.raises(ValueError):
            CollectorConfig(**{field: 0})

    def test_poll_interval_may_be_none(self):
        """None means a single check after the grace period."""
        assert CollectorConfig(poll_interval=None).poll_interval is None

    def test_poll_interval_must_be_positive(self):
        """A zero poll interval should be rejected."""
        with pytest.raises(ValueError):
            CollectorConfig(poll_interval=0)

    @pytest.mark.parametrize("raw", ["USR2", "SIGUSR2", "sigusr2", " usr2 "])
    def test_signal_name_normalized(self, raw):
        """Signal names should be normalized without the SIG prefix."""
        assert CollectorConfig(dump_signal=raw).dump_signal == "USR2"

    def test_invalid_signal_rejected(self):
        """Signal names with shell metacharacters should be rejected."""
        with pytest.raises(ValueError):
            CollectorConfig(dump_signal="USR2; rm -rf /")

    def test_empty_primary_container_rejected(self):
        """Primary container must be named."""
        with pytest.raises(ValueError):
            CollectorConfig(primary_container="  ")

    def test_empty_search_dirs_rejected(self):
        """At least one search directory is required."""
        with pytest.raises(ValueError):
            CollectorConfig(snapshot_search_dirs=[])


class TestFromEnv:
    """Tests for environment loading."""

    def test_empty_environment_gives_defaults(self):
        """No variables should mean defaults."""
        assert CollectorConfig.from_env() == CollectorConfig()

    def test_reads_variables(self, monkeypatch):
        """Known variables should map onto fields."""
        monkeypatch.setenv("CMD_TIMEOUT", "30")
        monkeypatch.setenv("RHDH_WITH_HEAP_DUMPS", "true")
        monkeypatch.setenv("HEAP_DUMP_TIMEOUT", "45")
        monkeypatch.setenv("HEAP_DUMP_COPY_TIMEOUT", "60")
        monkeypatch.setenv("PRIMARY_CONTAINER", "app")
        monkeypatch.setenv("PROS", "2")
        monkeypatch.setenv("KUBECTL_CMD", "oc")

        config = CollectorConfig.from_env()
        assert config.command_timeout == 30.0
        assert config.with_heap_dumps is True
        assert config.heap_dump_grace_period == 45.0
        assert config.copy_timeout == 60.0
        assert config.primary_container == "app"
        assert config.max_parallel_workloads == 2
        assert config.kubectl == "oc"

    @pytest.mark.parametrize("raw,expected", [("true", True), ("TRUE", True), ("false", False), ("0", False)])
    def test_heap_dump_switch(self, monkeypatch, raw, expected):
        """RHDH_WITH_HEAP_DUMPS should parse as a boolean."""
        monkeypatch.setenv("RHDH_WITH_HEAP_DUMPS", raw)
        assert CollectorConfig.from_env().with_heap_dumps is expected

    def test_empty_variable_ignored(self, monkeypatch):
        """An empty variable should leave the default in place."""
        monkeypatch.setenv("CMD_TIMEOUT", "")
        assert CollectorConfig.from_env().command_timeout == DEFAULT_COMMAND_TIMEOUT

    def test_poll_interval_none(self, monkeypatch):
        """'none' should disable polling."""
        monkeypatch.setenv("HEAP_DUMP_POLL_INTERVAL", "none")
        assert CollectorConfig.from_env().poll_interval is None

    def test_prefixed_list_field(self, monkeypatch):
        """Fields without a short name should load from the prefixed variable."""
        monkeypatch.setenv("CONTAINER_DIAG_SNAPSHOT_SEARCH_DIRS", '["/data"]')
        assert CollectorConfig.from_env().snapshot_search_dirs == ["/data"]

    def test_overrides_win(self, monkeypatch):
        """Explicit overrides should beat the environment."""
        monkeypatch.setenv("CMD_TIMEOUT", "30")
        assert CollectorConfig.from_env(command_timeout=10).command_timeout == 10

    def test_none_overrides_ignored(self, monkeypatch):
        """None overrides should leave environment values in place."""
        monkeypatch.setenv("CMD_TIMEOUT", "30")
        assert CollectorConfig.from_env(command_timeout=None).command_timeout == 30

    def test_invalid_value_raises_configuration_error(self, monkeypatch):
        """Validation failures should surface as ConfigurationError naming the field."""
        monkeypatch.setenv("CMD_TIMEOUT", "-1")
        with pytest.raises(ConfigurationError) as exc_info:
            CollectorConfig.from_env()
        assert exc_info.value.field == "command_timeout"

    def test_invalid_override_names_field(self):
        """Override failures should name the field too."""
        with pytest.raises(ConfigurationError) as exc_info:
            CollectorConfig.from_env(max_parallel_workloads=0)
        assert exc_info.value.field == "max_parallel_workloads"

    def test_unparseable_value_raises_configuration_error(self, monkeypatch):
        """Non-numeric timeouts should surface as ConfigurationError."""
        monkeypatch.setenv("HEAP_DUMP_TIMEOUT", "soon")
        with pytest.raises(ConfigurationError) as exc_info:
            CollectorConfig.from_env()
        assert exc_info.value.field == "heap_dump_grace_period"
