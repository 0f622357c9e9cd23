"""Collector configuration.

A run's behaviour is a pure function of its CollectorConfig: heavy optional
collection (heap dumps) is switched on here and the config object is passed
explicitly into the orchestration loop.

Environment variables (read when a CollectorConfig is built):
- CMD_TIMEOUT: per-command timeout in seconds (default 90)
- RHDH_WITH_HEAP_DUMPS: "true" to enable heap dump collection
- HEAP_DUMP_TIMEOUT: grace period after signaling, in seconds (default 120)
- HEAP_DUMP_POLL_INTERVAL: seconds between snapshot searches, "none" to check once
- HEAP_DUMP_COPY_TIMEOUT: timeout for copying a snapshot out (default 300)
- PRIMARY_CONTAINER: container that runs the managed runtime
- PROS: how many workload collections may run in parallel (default 5)
- KUBECTL_CMD: kubectl-compatible binary (kubectl, oc)

Other fields can be set with a CONTAINER_DIAG_ prefix, e.g.
CONTAINER_DIAG_SNAPSHOT_SEARCH_DIRS='["/tmp", "/data"]'.
"""

from typing import List, Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from container_diag.utils.errors import ConfigurationError

DEFAULT_COMMAND_TIMEOUT = 90.0
DEFAULT_GRACE_PERIOD = 120.0
DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_COPY_TIMEOUT = 300.0
DEFAULT_PRIMARY_CONTAINER = "backstage-backend"
DEFAULT_MAX_PARALLEL_WORKLOADS = 5

# Writable locations where runtimes usually drop snapshots
DEFAULT_SEARCH_DIRS = ["/tmp", "/app", "/opt/app-root/src", "."]

DEFAULT_APP_ENV_VAR_PREFIXES = [
    "BACKSTAGE_",
    "RHDH_",
    "UPSTREAM_REPO",
    "MIDSTREAM_REPO",
    "NODE_",
    "APP_CONFIG_",
    "LOG_LEVEL",
    "PLUGIN_",
    "NO_PROXY",
    "HTTP_PROXY",
    "HTTPS_PROXY",
    "NPM_CONFIG_",
    "GLOBAL_AGENT_",
]


def _env(field_name: str, env_name: str) -> AliasChoices:
    # Keyword construction uses the field name, the environment the short name
    return AliasChoices(field_name, env_name)


class CollectorConfig(BaseSettings):
    """Configuration for one collection run."""

    model_config = SettingsConfigDict(
        env_prefix="CONTAINER_DIAG_",
        env_ignore_empty=True,
        env_parse_none_str="none",
        extra="ignore",
    )

    command_timeout: float = Field(
        DEFAULT_COMMAND_TIMEOUT,
        validation_alias=_env("command_timeout", "CMD_TIMEOUT"),
        description="Timeout for each remote command (seconds)",
    )
    with_heap_dumps: bool = Field(
        False,
        validation_alias=_env("with_heap_dumps", "RHDH_WITH_HEAP_DUMPS"),
        description="Enable heap dump collection",
    )
    heap_dump_grace_period: float = Field(
        DEFAULT_GRACE_PERIOD,
        validation_alias=_env("heap_dump_grace_period", "HEAP_DUMP_TIMEOUT"),
        description="Wait after signaling before giving up (seconds)",
    )
    poll_interval: Optional[float] = Field(
        DEFAULT_POLL_INTERVAL,
        validation_alias=_env("poll_interval", "HEAP_DUMP_POLL_INTERVAL"),
        description="Seconds between snapshot searches; None checks once after the grace period",
    )
    copy_timeout: float = Field(
        DEFAULT_COPY_TIMEOUT,
        validation_alias=_env("copy_timeout", "HEAP_DUMP_COPY_TIMEOUT"),
        description="Timeout for copying a snapshot out (seconds)",
    )
    primary_container: str = Field(
        DEFAULT_PRIMARY_CONTAINER,
        validation_alias=_env("primary_container", "PRIMARY_CONTAINER"),
        description="Container running the managed runtime",
    )
    runtime_name: str = Field("node", description="Process name/cmdline to match")
    runtime_version_command: str = Field(
        "node --version", description="Command printing the runtime version"
    )
    dump_signal: str = Field("USR2", description="Signal that requests a heap snapshot")
    snapshot_pattern: str = Field("*.heapsnapshot", description="Snapshot file glob")
    snapshot_search_dirs: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SEARCH_DIRS),
        description="Directories searched for new snapshots",
    )
    snapshot_search_depth: int = Field(2, description="find -maxdepth for the search")
    env_var_prefixes: List[str] = Field(
        default_factory=lambda: ["NODE_", "PATH="],
        description="Environment variables captured into process metadata",
    )
    app_env_var_prefixes: List[str] = Field(
        default_factory=lambda: list(DEFAULT_APP_ENV_VAR_PREFIXES),
        description="Environment variables captured from the primary container",
    )
    max_parallel_workloads: int = Field(
        DEFAULT_MAX_PARALLEL_WORKLOADS,
        validation_alias=_env("max_parallel_workloads", "PROS"),
        description="Concurrent workload collections",
    )
    kubectl: str = Field(
        "kubectl",
        validation_alias=_env("kubectl", "KUBECTL_CMD"),
        description="kubectl-compatible binary",
    )

    @field_validator("command_timeout", "heap_dump_grace_period", "copy_timeout")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    @field_validator("poll_interval")
    @classmethod
    def _positive_interval(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("poll interval must be positive")
        return v

    @field_validator("primary_container", "runtime_name", "kubectl")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("dump_signal")
    @classmethod
    def _signal_name(cls, v: str) -> str:
        # "SIGUSR2", "sigusr2" and "USR2" all become "USR2"
        name = v.strip().upper()
        if name.startswith("SIG"):
            name = name[3:]
        if not name.isalnum():
            raise ValueError(f"invalid signal name: {v!r}")
        return name

    @field_validator("snapshot_search_dirs", "env_var_prefixes", "app_env_var_prefixes")
    @classmethod
    def _non_empty_list(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("at least one entry is required")
        return v

    @field_validator("max_parallel_workloads", "snapshot_search_depth")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @classmethod
    def _field_name(cls, key) -> str:
        """Map an error location (field name or env alias) to the field name."""
        for name, info in cls.model_fields.items():
            alias = info.validation_alias
            choices = alias.choices if isinstance(alias, AliasChoices) else []
            if key == name or key in choices:
                return name
        return str(key)

    @classmethod
    def from_env(cls, **overrides) -> "CollectorConfig":
        """Build a config from environment variables plus explicit overrides.

        Args:
            **overrides: Field values that win over the environment (None is ignored)

        Raises:
            ConfigurationError: If a value fails validation
        """
        values = {k: v for k, v in overrides.items() if v is not None}
        try:
            return cls(**values)
        except ValidationError as e:
            first = e.errors()[0]
            loc = list(first.get("loc", ()))
            if loc:
                loc[0] = cls._field_name(loc[0])
            field = ".".join(str(p) for p in loc)
            raise ConfigurationError(
                f"Invalid configuration for '{field}': {first.get('msg')}",
                field=field,
            )
