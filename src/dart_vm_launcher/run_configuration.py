"""Run configuration model.

dart-vm-launcher v0.1.0

A run configuration is everything the user set up for one Dart
application launch: the script, how to run it, VM options, program
arguments and the process environment. It is consumed read-only by the
command line builder.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError

__all__ = [
    "ExecutionMode",
    "ParentEnvironmentType",
    "RunConfiguration",
    "load_run_configuration",
]

logger = logging.getLogger(__name__)


class ExecutionMode(str, Enum):
    """How the application is executed."""

    RUN = "run"
    DEBUG = "debug"


class ParentEnvironmentType(str, Enum):
    """Which parent environment the child process inherits.

    - CONSOLE: the launcher's own environment, user variables on top
    - NONE: only the user variables
    """

    CONSOLE = "console"
    NONE = "none"


class RunConfiguration(BaseModel):
    """Settings for one Dart application launch.

    Attributes:
        dart_file: Script to run (file, or directory for package runs)
        working_directory: Process working directory (None = script's directory)
        envs: User environment variables
        include_parent_envs: Inherit the launcher's environment
        vm_options: Raw VM options string, shell-quoted
        arguments: Raw program arguments string, shell-quoted
        checked_mode: Run the VM in checked mode
        mode: Normal run or debug session
    """

    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
    )

    dart_file: str = ""
    working_directory: str | None = None
    envs: dict[str, str] = Field(default_factory=dict)
    include_parent_envs: bool = True
    vm_options: str | None = None
    arguments: str | None = None
    checked_mode: bool = False
    mode: ExecutionMode = ExecutionMode.RUN

    @property
    def parent_environment_type(self) -> ParentEnvironmentType:
        if self.include_parent_envs:
            return ParentEnvironmentType.CONSOLE
        return ParentEnvironmentType.NONE

    @property
    def is_debug(self) -> bool:
        return self.mode == ExecutionMode.DEBUG

    def dart_file_path(self) -> Path:
        """Return the script path, raising ConfigurationError if it is unusable."""
        if not self.dart_file or not self.dart_file.strip():
            raise ConfigurationError("Dart file is not set")
        path = Path(self.dart_file)
        if not path.exists():
            raise ConfigurationError(f"Dart file not found: {self.dart_file}")
        return path

    def compute_process_working_directory(self) -> Path:
        """Working directory for the child process.

        The configured directory when set, otherwise the directory that
        contains the script (or the script path itself for directories).
        """
        if self.working_directory and self.working_directory.strip():
            return Path(self.working_directory)
        path = Path(self.dart_file)
        return path if path.is_dir() else path.parent

    def check(self) -> None:
        """Validate the configuration before anything is launched.

        Raises:
            ConfigurationError: Script missing, or working directory invalid
        """
        self.dart_file_path()

        if self.working_directory and self.working_directory.strip():
            workdir = Path(self.working_directory)
            if not workdir.exists():
                raise ConfigurationError(
                    f"Working directory does not exist: {workdir}"
                )
            if not workdir.is_dir():
                raise ConfigurationError(
                    f"Working directory is not a directory: {workdir}"
                )


def load_run_configuration(path: str | Path) -> RunConfiguration:
    """Load a run configuration from a JSON file.

    Args:
        path: JSON file with RunConfiguration fields

    Returns:
        The parsed configuration (not yet checked)

    Raises:
        ConfigurationError: File unreadable or content invalid
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Cannot read run configuration {path}: {e}") from e

    try:
        config = RunConfiguration.model_validate_json(text)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid run configuration {path}: {e}") from e

    logger.debug(f"Loaded run configuration from {path}: {config!r}")
    return config
