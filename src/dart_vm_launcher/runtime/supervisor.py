"""Dart VM process supervision.

dart-vm-launcher runtime module v0.1.0

This module provides:
- Spawning one child process per CommandSpec, isolated in its own
  session/process group
- Stdout/stderr streaming to callbacks
- Exactly-once termination notification via listeners
- Best-effort termination (SIGTERM -> timeout -> SIGKILL)

Handle lifecycle:
    NOT_STARTED -> RUNNING -> TERMINATED
    NOT_STARTED -> FAILED        (spawn failed, ResourceError raised)

Key design points:
- POSIX: start_new_session=True to create new process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- Termination signals go to the process group, not just the main process
- A background monitor task owns the process; callers never block on it
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..command_line import CommandSpec
from ..config import DEFAULT_KILL_TIMEOUT, DEFAULT_TERM_TIMEOUT, Config
from ..errors import ResourceError
from ..ports import UNASSIGNED_PORT, service_url

__all__ = [
    "OutputCallback",
    "ProcessHandle",
    "ProcessState",
    "ProcessSupervisor",
    "TerminationListener",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# StreamReader line limit; VM output can contain long lines (stack traces, JSON)
STREAM_LIMIT = 1024 * 1024

OutputCallback = Callable[[bytes], None]
TerminationListener = Callable[[int | None], None]


class ProcessState(str, Enum):
    """Lifecycle state of a ProcessHandle."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    TERMINATED = "terminated"
    FAILED = "failed"


class ProcessHandle:
    """Live handle of one Dart VM process.

    Created by ProcessSupervisor.start(). Stdout is delivered line by line,
    stderr in chunks, both as raw bytes (decode with ``spec.charset``).

    Example:
        handle = await supervisor.start(spec, on_stdout=console.write)
        handle.add_termination_listener(lambda code: print("exit", code))
        print(handle.service_url)
        ...
        await handle.stop()
    """

    def __init__(
        self,
        spec: CommandSpec,
        *,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
    ) -> None:
        self.spec = spec
        self.term_timeout = term_timeout
        self.kill_timeout = kill_timeout
        self._on_stdout = on_stdout
        self._on_stderr = on_stderr
        self._state = ProcessState.NOT_STARTED
        self._process: asyncio.subprocess.Process | None = None
        self._monitor_task: asyncio.Task[None] | None = None
        self._listeners: list[TerminationListener] = []
        self._returncode: int | None = None
        self._terminated = asyncio.Event()

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> int | None:
        """Exit code once terminated (negative: killed by that signal on POSIX)."""
        return self._returncode

    @property
    def negotiated_port(self) -> int:
        """VM service port, UNASSIGNED_PORT until the process has started."""
        if self._state in (ProcessState.NOT_STARTED, ProcessState.FAILED):
            return UNASSIGNED_PORT
        return self.spec.port.value

    @property
    def service_url(self) -> str | None:
        """VM service URL, None until the process has started."""
        port = self.negotiated_port
        if port == UNASSIGNED_PORT:
            return None
        return service_url(port)

    def is_alive(self) -> bool:
        return self._state == ProcessState.RUNNING

    def is_terminated(self) -> bool:
        return self._state == ProcessState.TERMINATED

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the process and start monitoring it.

        Raises:
            ResourceError: The process could not be spawned
            RuntimeError: The handle was already started
        """
        if self._state != ProcessState.NOT_STARTED:
            raise RuntimeError(f"process handle already used (state={self._state.value})")

        spec = self.spec
        kwargs = self._build_subprocess_kwargs()

        try:
            # stdin=DEVNULL: an inherited stdin would let the VM consume the
            # launcher's own input
            self._process = await asyncio.create_subprocess_exec(
                *spec.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=spec.cwd,
                env=spec.effective_environment(),
                limit=STREAM_LIMIT,
                **kwargs,
            )
        except OSError as e:
            self._state = ProcessState.FAILED
            self._terminated.set()
            logger.warning(f"Failed to start {spec.exe_path} cwd={spec.cwd}: {e}")
            raise ResourceError(f"Cannot start {spec.exe_path}: {e}", "spawn") from e

        self._state = ProcessState.RUNNING
        logger.debug(
            f"Started subprocess pid={self._process.pid} "
            f"argv={spec.argv[0]} cwd={spec.cwd} port={spec.port.value}"
        )
        self._monitor_task = asyncio.create_task(
            self._monitor(self._process),
            name=f"dart-vm-monitor-{self._process.pid}",
        )

    async def wait(self) -> int | None:
        """Wait until the process has terminated and listeners were notified.

        Returns:
            The exit code (None if the spawn failed)
        """
        if self._state == ProcessState.NOT_STARTED:
            raise RuntimeError("process not started")
        await self._terminated.wait()
        return self._returncode

    def add_termination_listener(self, listener: TerminationListener) -> None:
        """Register a callback invoked once with the exit code.

        Listeners added after termination (or to a failed handle) are invoked
        immediately.
        """
        if self._state in (ProcessState.TERMINATED, ProcessState.FAILED):
            self._notify(listener, self._returncode)
            return
        self._listeners.append(listener)

    def remove_termination_listener(self, listener: TerminationListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def terminate(self) -> None:
        """Ask the process to exit (SIGTERM / CTRL_BREAK_EVENT).

        Best effort, returns immediately. No-op unless running.
        """
        process = self._running_process()
        if process is None:
            return
        if IS_WINDOWS:
            self._windows_terminate(process)
        else:
            self._posix_terminate(process)

    def kill(self) -> None:
        """Force the process to exit (SIGKILL). No-op unless running."""
        process = self._running_process()
        if process is None:
            return
        if IS_WINDOWS:
            self._windows_kill(process)
        else:
            self._posix_kill(process)

    async def stop(self) -> int | None:
        """Terminate gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM (or CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout for exit
        3. If still running, send SIGKILL (or kill() on Windows)
        4. Wait up to kill_timeout

        Returns:
            The exit code, or None if the process did not exit in time
        """
        if self._running_process() is None:
            return self._returncode

        pid = self.pid
        logger.debug(f"Stopping subprocess pid={pid}")

        self.terminate()
        try:
            await asyncio.wait_for(self._terminated.wait(), timeout=self.term_timeout)
            logger.debug(f"Subprocess terminated gracefully pid={pid} returncode={self._returncode}")
            return self._returncode
        except asyncio.TimeoutError:
            pass

        logger.debug(f"Force killing subprocess pid={pid}")
        self.kill()
        try:
            await asyncio.wait_for(self._terminated.wait(), timeout=self.kill_timeout)
            logger.debug(f"Subprocess killed pid={pid} returncode={self._returncode}")
        except asyncio.TimeoutError:
            logger.warning(f"Subprocess did not exit after kill pid={pid}")
        return self._returncode

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs."""
        kwargs: dict[str, Any] = {}

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # POSIX: start_new_session (equivalent to setsid)
            kwargs["start_new_session"] = True

        return kwargs

    def _running_process(self) -> asyncio.subprocess.Process | None:
        if self._state != ProcessState.RUNNING or self._process is None:
            return None
        if self._process.returncode is not None:
            return None
        return self._process

    async def _monitor(self, process: asyncio.subprocess.Process) -> None:
        """Pump output until EOF, reap the process, notify listeners."""
        try:
            results = await asyncio.gather(
                self._pump_lines(process.stdout, self._on_stdout),
                self._pump_chunks(process.stderr, self._on_stderr),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Output pump failed pid={process.pid}: {result!r}")
            await process.wait()
        finally:
            try:
                if process.returncode is None:
                    # Monitor cancelled (event loop shutting down): don't orphan the VM
                    await self._safe_kill(process)
            finally:
                self._mark_terminated(process.returncode)

    async def _pump_lines(
        self,
        stream: asyncio.StreamReader | None,
        callback: OutputCallback | None,
    ) -> None:
        if stream is None:
            return
        while True:
            try:
                line = await stream.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                # EOF: last line without a trailing newline
                if e.partial:
                    self._deliver(callback, e.partial)
                break
            except asyncio.LimitOverrunError as e:
                # Line longer than STREAM_LIMIT: pass the buffered part on as a chunk
                chunk = await stream.read(max(e.consumed, 1))
                if not chunk:
                    break
                self._deliver(callback, chunk)
                continue
            self._deliver(callback, line)

    async def _pump_chunks(
        self,
        stream: asyncio.StreamReader | None,
        callback: OutputCallback | None,
    ) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            self._deliver(callback, chunk)

    def _deliver(self, callback: OutputCallback | None, data: bytes) -> None:
        if callback is None:
            return
        try:
            callback(data)
        except Exception:
            logger.exception(f"Output callback failed pid={self.pid}")

    async def _safe_kill(self, process: asyncio.subprocess.Process) -> None:
        """Kill and reap the process, shielded from cancellation."""

        async def _kill_and_reap() -> None:
            try:
                if IS_WINDOWS:
                    self._windows_kill(process)
                else:
                    self._posix_kill(process)
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={process.pid}")

        await asyncio.shield(_kill_and_reap())

    def _mark_terminated(self, returncode: int | None) -> None:
        if self._state == ProcessState.TERMINATED:
            return
        self._state = ProcessState.TERMINATED
        self._returncode = returncode
        listeners, self._listeners = self._listeners, []

        logger.debug(f"Subprocess completed pid={self.pid} returncode={returncode}")

        for listener in listeners:
            self._notify(listener, returncode)
        self._terminated.set()

    def _notify(self, listener: TerminationListener, returncode: int | None) -> None:
        try:
            listener(returncode)
        except Exception:
            logger.exception(f"Termination listener failed pid={self.pid}")

    def _posix_terminate(self, process: asyncio.subprocess.Process) -> None:
        """Send SIGTERM to the process group on POSIX systems."""
        try:
            # Same as pid due to start_new_session
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGTERM)
            logger.debug(f"Sent SIGTERM to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to terminate: {e}")
            process.terminate()

    def _posix_kill(self, process: asyncio.subprocess.Process) -> None:
        """Send SIGKILL to the process group on POSIX systems."""
        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGKILL)
            logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            process.kill()

    def _windows_terminate(self, process: asyncio.subprocess.Process) -> None:
        """Send CTRL_BREAK_EVENT on Windows."""
        try:
            # Works because of CREATE_NEW_PROCESS_GROUP
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()

    def _windows_kill(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.kill()
            logger.debug(f"Called kill() on pid={process.pid}")
        except ProcessLookupError:
            pass


@dataclass
class ProcessSupervisor:
    """Starts Dart VM processes and hands back their handles.

    Holds no per-run state; concurrent runs are independent.

    Example:
        supervisor = ProcessSupervisor()
        spec = CommandLineBuilder(sdk, run_config).build()
        handle = await supervisor.start(spec, on_stdout=print_line)
        await handle.wait()
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT

    @classmethod
    def from_config(cls, config: Config) -> ProcessSupervisor:
        return cls(term_timeout=config.term_timeout, kill_timeout=config.kill_timeout)

    async def start(
        self,
        spec: CommandSpec,
        *,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> ProcessHandle:
        """Spawn the process described by ``spec``.

        Args:
            spec: Command spec from CommandLineBuilder
            on_stdout: Callback for each stdout line
            on_stderr: Callback for stderr chunks

        Returns:
            Handle of the running process

        Raises:
            ResourceError: Spawn failed (executable missing, permission
                denied, invalid working directory)
        """
        handle = ProcessHandle(
            spec,
            on_stdout=on_stdout,
            on_stderr=on_stderr,
            term_timeout=self.term_timeout,
            kill_timeout=self.kill_timeout,
        )
        await handle.start()
        return handle
