"""Dart VM command line construction.

Command format:
    <sdk>/bin/dart \\
      [vm options...] \\
      [--checked]                          # if checked mode
      [--pause-isolates-on-start]          # debug sessions only
      [--enable-vm-service:<port>]         # unless the options carry a port
      <script> \\
      [program arguments...]
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigurationError
from .options import tokenize
from .ports import NegotiatedPort, PortAllocator, find_available_port, negotiate_port
from .run_configuration import ParentEnvironmentType, RunConfiguration
from .sdk import DartSdk

__all__ = [
    "CHECKED_MODE_OPTION",
    "PAUSE_ISOLATES_ON_START_OPTION",
    "CommandLineBuilder",
    "CommandSpec",
    "to_system_dependent_name",
]

logger = logging.getLogger(__name__)

CHECKED_MODE_OPTION = "--checked"
PAUSE_ISOLATES_ON_START_OPTION = "--pause-isolates-on-start"

DEFAULT_CHARSET = "utf-8"


def to_system_dependent_name(path: str | Path) -> str:
    """Convert a path to the platform's separator style."""
    return str(path).replace("/", os.sep)


@dataclass(frozen=True)
class CommandSpec:
    """Fully resolved launch of one Dart VM process.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process
        port: Negotiated VM service port
        env: User environment variables
        parent_env_type: Whether the launcher's environment is inherited
        charset: Encoding of the process output
    """

    argv: tuple[str, ...]
    cwd: Path
    port: NegotiatedPort
    env: Mapping[str, str] = field(default_factory=dict)
    parent_env_type: ParentEnvironmentType = ParentEnvironmentType.CONSOLE
    charset: str = DEFAULT_CHARSET

    @property
    def exe_path(self) -> str:
        return self.argv[0]

    @property
    def parameters(self) -> tuple[str, ...]:
        return self.argv[1:]

    def effective_environment(self) -> dict[str, str]:
        """Environment passed to the child process."""
        if self.parent_env_type == ParentEnvironmentType.CONSOLE:
            env = dict(os.environ)
        else:
            env = {}
        env.update(self.env)
        return env


class CommandLineBuilder:
    """Builds the CommandSpec for a run configuration.

    Stateless apart from its inputs; every build() negotiates the service
    port afresh.

    Example:
        builder = CommandLineBuilder(sdk, run_config)
        spec = builder.build()
        spec.port.value  # port the VM service will listen on
    """

    def __init__(
        self,
        sdk: DartSdk | None,
        run_config: RunConfiguration,
        allocate_port: PortAllocator = find_available_port,
    ) -> None:
        self._sdk = sdk
        self._run_config = run_config
        self._allocate_port = allocate_port

    def build(self, overridden_main_file: str | None = None) -> CommandSpec:
        """Build the command line.

        Args:
            overridden_main_file: Script to run instead of the configured one

        Returns:
            The command spec, ready for the supervisor

        Raises:
            ConfigurationError: SDK not configured, or run configuration invalid
            ResourceError: No service port could be allocated
        """
        if self._sdk is None:
            raise ConfigurationError("Dart SDK is not configured")
        self._sdk.check()

        config = self._run_config
        config.check()

        argv = [to_system_dependent_name(self._sdk.exe_path)]

        vm_options = tokenize(config.vm_options)
        argv.extend(vm_options)

        if config.checked_mode:
            argv.append(CHECKED_MODE_OPTION)

        dart_file = config.dart_file_path().as_posix()

        if config.is_debug:
            argv.append(PAUSE_ISOLATES_ON_START_OPTION)

        negotiation = negotiate_port(vm_options, self._allocate_port)
        if negotiation.extra_option is not None:
            argv.append(negotiation.extra_option)

        main_file = overridden_main_file if overridden_main_file is not None else dart_file
        argv.append(to_system_dependent_name(main_file))

        argv.extend(tokenize(config.arguments))

        spec = CommandSpec(
            argv=tuple(argv),
            cwd=config.compute_process_working_directory(),
            port=negotiation.port,
            env=dict(config.envs),
            parent_env_type=config.parent_environment_type,
        )
        logger.debug(
            f"Built command line argv={list(spec.argv)} cwd={spec.cwd} "
            f"port={spec.port.value} explicit={spec.port.explicit}"
        )
        return spec
