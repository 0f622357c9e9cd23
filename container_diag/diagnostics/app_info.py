"""Application-level metadata from the primary container.

Collected once per workload from the first running pod (the values are
identical across replicas):
- app-container-userid.txt: `id` inside the container
- env-vars.txt: environment variables with configured prefixes
- runtime-version.txt: runtime version
- backstage.json: BACKSTAGE_VERSION if set, else the image's backstage.json
- build-metadata.json: RHDH_VERSION/UPSTREAM_REPO/MIDSTREAM_REPO if any is
  set, else the `card` section of the bundled build-metadata.json
- dynamic-plugins-root.fs.txt: listing of the dynamic plugins directory
- app-config.dynamic-plugins.yaml: generated dynamic plugins config
Each file holds the command output or the executor's failure record.
"""

import json
import logging
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence

from container_diag.config import CollectorConfig
from container_diag.diagnostics.layout import write_text
from container_diag.kube.executor import ContainerExecutor
from container_diag.utils.shell import prefix_pattern

logger = logging.getLogger(__name__)

APP_ROOT = "/opt/app-root/src"
BACKSTAGE_JSON_PATH = f"{APP_ROOT}/backstage.json"
BUILD_METADATA_PATH = f"{APP_ROOT}/packages/app/src/build-metadata.json"
DYNAMIC_PLUGINS_ROOT = f"{APP_ROOT}/dynamic-plugins-root"
DYNAMIC_PLUGINS_CONFIG_PATH = f"{DYNAMIC_PLUGINS_ROOT}/app-config.dynamic-plugins.yaml"

BACKSTAGE_JSON_FILE = "backstage.json"
BUILD_METADATA_FILE = "build-metadata.json"

BUILD_ENV_VARS = ("RHDH_VERSION", "UPSTREAM_REPO", "MIDSTREAM_REPO")
VERSION_ENV_VARS = ("BACKSTAGE_VERSION",) + BUILD_ENV_VARS

ENV_VARS_SCRIPT = """
echo "=== Application Environment Variables ==="
echo ""
env | grep -E "$1" | sort || true
"""

# One NAME=value line per variable; unset variables print an empty value
VERSION_ENV_SCRIPT = "".join(f'echo "{name}=${name}"\n' for name in VERSION_ENV_VARS)

READ_FILE_SCRIPT = 'cat -- "$1"'
LIST_DIR_SCRIPT = 'ls -lhrta -- "$1"'


def parse_env_lines(output: str) -> Dict[str, str]:
    """Parse NAME=value lines, dropping empty values."""
    env = {}
    for line in output.splitlines():
        name, sep, value = line.partition("=")
        if sep and value.strip():
            env[name.strip()] = value.strip()
    return env


def backstage_json_from_env(env: Dict[str, str]) -> Optional[str]:
    version = env.get("BACKSTAGE_VERSION")
    if not version:
        return None
    return json.dumps({"version": version, "source": "BACKSTAGE_VERSION env var"}, indent=2) + "\n"


def build_metadata_from_env(env: Dict[str, str]) -> Optional[str]:
    if not any(env.get(name) for name in BUILD_ENV_VARS):
        return None
    data = {
        "rhdh_version": env.get("RHDH_VERSION", ""),
        "upstream_repo": env.get("UPSTREAM_REPO", ""),
        "midstream_repo": env.get("MIDSTREAM_REPO", ""),
        "source": "environment variables",
    }
    return json.dumps(data, indent=2) + "\n"


def build_metadata_card(raw: str) -> str:
    """Keep the `card` section of a bundled build-metadata.json.

    Anything that is not a JSON object with a `card` key is kept as read.
    """
    try:
        data = json.loads(raw)
    except ValueError:
        return raw
    if isinstance(data, dict) and "card" in data:
        return json.dumps(data["card"], indent=2) + "\n"
    return raw


def _app_commands(config: CollectorConfig) -> Dict[str, tuple]:
    return {
        "app-container-userid.txt": ("id", ()),
        "env-vars.txt": (ENV_VARS_SCRIPT, (prefix_pattern(config.app_env_var_prefixes),)),
        "runtime-version.txt": (config.runtime_version_command, ()),
        "dynamic-plugins-root.fs.txt": (LIST_DIR_SCRIPT, (DYNAMIC_PLUGINS_ROOT,)),
        "app-config.dynamic-plugins.yaml": (READ_FILE_SCRIPT, (DYNAMIC_PLUGINS_CONFIG_PATH,)),
    }


async def _collect_file(
    executor: ContainerExecutor,
    config: CollectorConfig,
    path: Path,
    command: str,
    args: Sequence[str] = (),
    transform: Optional[Callable[[str], str]] = None,
) -> bool:
    logger.info(f"\tCollecting: {path.name} from {executor.target}")
    result = await executor.execute(command, timeout=config.command_timeout, script_args=args)
    output = result.output
    if result.succeeded and transform is not None:
        output = transform(output)
    write_text(path, output)
    return result.succeeded


async def collect_app_info(
    executor: ContainerExecutor,
    config: CollectorConfig,
    output_dir: Path,
) -> Dict[str, bool]:
    """Write the application metadata files.

    Returns:
        Mapping of file name to whether its content was collected
    """
    results = {}
    for file_name, (command, args) in _app_commands(config).items():
        results[file_name] = await _collect_file(
            executor, config, output_dir / file_name, command, args
        )

    env_result = await executor.execute(VERSION_ENV_SCRIPT, timeout=config.command_timeout)
    env = parse_env_lines(env_result.output) if env_result.succeeded else {}

    content = backstage_json_from_env(env)
    if content is not None:
        write_text(output_dir / BACKSTAGE_JSON_FILE, content)
        results[BACKSTAGE_JSON_FILE] = True
    else:
        results[BACKSTAGE_JSON_FILE] = await _collect_file(
            executor, config, output_dir / BACKSTAGE_JSON_FILE, READ_FILE_SCRIPT, (BACKSTAGE_JSON_PATH,)
        )

    content = build_metadata_from_env(env)
    if content is not None:
        write_text(output_dir / BUILD_METADATA_FILE, content)
        results[BUILD_METADATA_FILE] = True
    else:
        results[BUILD_METADATA_FILE] = await _collect_file(
            executor,
            config,
            output_dir / BUILD_METADATA_FILE,
            READ_FILE_SCRIPT,
            (BUILD_METADATA_PATH,),
            transform=build_metadata_card,
        )
    return results
