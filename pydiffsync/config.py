"""Configuration file loading.

A configuration is a YAML mapping. Keys may be written in snake_case or
kebab-case. Every command entry (``upload_file``, ``start_up``...) is a
list of steps; a step is either a list of tokens or a single string.

Example::

    source_dir: ./public
    state_file: $workdir/.state.json
    threads: 4
    file_filters:
      - '\\.git$'
    variables:
      host: example.org
    upload_file:
      - scp $source/$path $host:/www/$path
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from .exceptions import ConfigurationError
from .utils import DEFAULT_STATE_FILE

logger = logging.getLogger(__name__)

COMMAND_FIELDS = (
    "start_up",
    "clean_up",
    "download_state",
    "upload_state",
    "delete_file",
    "delete_dir",
    "upload_dir",
    "upload_file",
)

BOOL_FIELDS = (
    "use_local_state",
    "use_remote_state",
    "fast_comparison",
    "overlay_mode",
)

CommandList = list[list[str]]


def _parse_commands(name: str, value: Any) -> CommandList:
    """Normalize a command entry to a list of token lists."""
    if value is None:
        return []
    if isinstance(value, str):
        return [[value]]
    if not isinstance(value, list):
        raise ConfigurationError(f"'{name}' must be a list of command lines")

    steps: CommandList = []
    for step in value:
        if isinstance(step, str):
            steps.append([step])
        elif isinstance(step, list) and all(
            isinstance(token, (str, int, float)) for token in step
        ):
            steps.append([str(token) for token in step])
        else:
            raise ConfigurationError(f"Invalid command line in '{name}': {step!r}")
    return steps


def _parse_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigurationError(f"'{name}' must be true or false, got {value!r}")


def _parse_int(name: str, value: Any, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"'{name}' must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigurationError(f"'{name}' must be at least {minimum}, got {value}")
    return value


@dataclass
class AppConfig:
    """Parsed configuration of one synchronization target."""

    source_dir: str
    """Root of the tree being diffed"""

    command_workdir: str = ""
    """Working directory of spawned commands (empty for the current directory)"""

    state_file: str = DEFAULT_STATE_FILE
    """Location of the state file, may contain variables"""

    state_indent: int = 0
    """0 for compact JSON, otherwise the indent width"""

    use_local_state: bool = True
    use_remote_state: bool = False
    fast_comparison: bool = True
    overlay_mode: bool = False
    threads: int = 1
    file_filters: list[str] = field(default_factory=list)
    variables: dict[str, str] = field(default_factory=dict)

    start_up: CommandList = field(default_factory=list)
    clean_up: CommandList = field(default_factory=list)
    download_state: CommandList = field(default_factory=list)
    upload_state: CommandList = field(default_factory=list)
    delete_file: CommandList = field(default_factory=list)
    delete_dir: CommandList = field(default_factory=list)
    upload_dir: CommandList = field(default_factory=list)
    upload_file: CommandList = field(default_factory=list)

    def __post_init__(self) -> None:
        # Strip trailing slashes, keeping a bare root intact
        if len(self.source_dir) > 1:
            self.source_dir = self.source_dir.rstrip("/\\") or self.source_dir

    @property
    def persists_state(self) -> bool:
        return self.use_local_state or self.use_remote_state

    @classmethod
    def from_dict(cls, data: dict) -> "AppConfig":
        """Create a configuration from a parsed mapping.

        Raises:
            ConfigurationError: On unknown keys or values of the wrong type
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be a mapping")

        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for raw_key, value in data.items():
            key = str(raw_key).replace("-", "_")
            if key not in known:
                raise ConfigurationError(f"Unknown configuration key: {raw_key}")
            values[key] = value

        source_dir = values.pop("source_dir", None)
        if not source_dir or not isinstance(source_dir, str):
            raise ConfigurationError("'source_dir' is required")

        kwargs: dict[str, Any] = {"source_dir": source_dir}
        for key, value in values.items():
            if key in COMMAND_FIELDS:
                kwargs[key] = _parse_commands(key, value)
            elif key in BOOL_FIELDS:
                kwargs[key] = _parse_bool(key, value)
            elif key == "threads":
                kwargs[key] = _parse_int(key, value, minimum=1)
            elif key == "state_indent":
                kwargs[key] = _parse_int(key, value, minimum=0)
            elif key == "file_filters":
                if value is None:
                    value = []
                if not isinstance(value, list):
                    raise ConfigurationError("'file_filters' must be a list")
                kwargs[key] = [str(pattern) for pattern in value]
            elif key == "variables":
                if value is None:
                    value = {}
                if not isinstance(value, dict):
                    raise ConfigurationError("'variables' must be a mapping")
                kwargs[key] = {str(k): str(v) for k, v in value.items()}
            else:
                kwargs[key] = "" if value is None else str(value)

        return cls(**kwargs)


def load_config(config_file: Union[str, Path]) -> AppConfig:
    """Load a configuration from a YAML file.

    Args:
        config_file: Path to the YAML file

    Returns:
        Parsed AppConfig

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    path = Path(config_file)
    if not path.is_file():
        raise ConfigurationError(f"The config file is not a file: {config_file}")

    try:
        with open(path, encoding="utf-8") as f:
            data: Optional[Any] = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Cannot parse config file {config_file}: {e}") from e

    logger.debug("Loaded configuration from %s", path)
    return AppConfig.from_dict(data or {})
