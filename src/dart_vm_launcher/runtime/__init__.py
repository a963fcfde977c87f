"""Runtime module for Dart VM process supervision.

Spawns the VM in an isolated process group, streams its output and
reports termination to listeners.
"""

from __future__ import annotations

from .supervisor import ProcessHandle, ProcessState, ProcessSupervisor

__all__ = [
    "ProcessHandle",
    "ProcessState",
    "ProcessSupervisor",
]
