"""Runtime module for supervised subprocess execution.

This module provides single-child process execution with cooperative
cancellation and one typed outcome per run.
"""

from __future__ import annotations

from .errors import ProcessError, ProcessFailedError
from .process_runner import ProcessRunner, run_command
from .types import OutcomeKind, ProcessResult, ProcessSpec, StdioMode

__all__ = [
    "ProcessRunner",
    "ProcessSpec",
    "ProcessResult",
    "OutcomeKind",
    "StdioMode",
    "ProcessError",
    "ProcessFailedError",
    "run_command",
]
