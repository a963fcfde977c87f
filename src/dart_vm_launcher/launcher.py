"""Dart application launcher.

Ties the pieces together for one run:

    RunConfiguration -> CommandLineBuilder -> ProcessSupervisor -> ProcessHandle

The command line is built in a worker thread because port allocation may
block on the kernel; the service port is therefore always resolved before
the process is spawned.
"""

from __future__ import annotations

import logging
from functools import partial

import anyio

from .command_line import CommandLineBuilder, CommandSpec
from .ports import LOCAL_HOST, PortAllocator, find_available_port, service_url
from .run_configuration import RunConfiguration
from .runtime.supervisor import OutputCallback, ProcessHandle, ProcessSupervisor
from .sdk import DartSdk

__all__ = ["Launcher", "LOCAL_HOST", "service_url"]

logger = logging.getLogger(__name__)


class Launcher:
    """Launches Dart applications.

    Args:
        sdk: Dart SDK to run with (None = not configured, launches fail
            with ConfigurationError)
        supervisor: Process supervisor (default: ProcessSupervisor())
        allocate_port: Free port allocator
    """

    def __init__(
        self,
        sdk: DartSdk | None,
        supervisor: ProcessSupervisor | None = None,
        allocate_port: PortAllocator = find_available_port,
    ) -> None:
        self.sdk = sdk
        self.supervisor = supervisor or ProcessSupervisor()
        self._allocate_port = allocate_port

    async def build_command(
        self,
        run_config: RunConfiguration,
        overridden_main_file: str | None = None,
    ) -> CommandSpec:
        """Build the command spec off the event loop thread."""
        builder = CommandLineBuilder(self.sdk, run_config, self._allocate_port)
        return await anyio.to_thread.run_sync(
            partial(builder.build, overridden_main_file)
        )

    async def launch(
        self,
        run_config: RunConfiguration,
        *,
        overridden_main_file: str | None = None,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> ProcessHandle:
        """Start the application described by ``run_config``.

        Raises:
            ConfigurationError: SDK missing or run configuration invalid
            ResourceError: Port allocation or process spawn failed
        """
        spec = await self.build_command(run_config, overridden_main_file)
        handle = await self.supervisor.start(spec, on_stdout=on_stdout, on_stderr=on_stderr)
        logger.info(
            f"Launched {overridden_main_file or run_config.dart_file} "
            f"pid={handle.pid} mode={run_config.mode.value} service={handle.service_url}"
        )
        return handle
