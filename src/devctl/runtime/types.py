"""Process supervision types.

devctl runtime v0.1.0

Defines the process specification passed to ProcessRunner and the single
outcome value it resolves to.
"""

from __future__ import annotations

import shlex
import signal
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from .errors import ProcessFailedError

__all__ = [
    "StdioMode",
    "OutcomeKind",
    "ProcessSpec",
    "ProcessResult",
    "CancelSignal",
]


class StdioMode(str, Enum):
    """How the child's standard streams are connected.

    - inherit: child uses the parent's terminal directly
    - capture: stdout/stderr are piped, collected and passed to callbacks
    """

    INHERIT = "inherit"
    CAPTURE = "capture"


class OutcomeKind(str, Enum):
    """Exactly one of these applies to a completed run."""

    EXITED = "exited"
    SIGNALED = "signaled"
    SPAWN_FAILED = "spawn_failed"
    CANCELLED = "cancelled"


class CancelSignal(Protocol):
    """Anything event-like: asyncio.Event and anyio.Event both fit."""

    def is_set(self) -> bool: ...

    async def wait(self) -> Any: ...


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a subprocess to run.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory (None = inherit)
        env: Environment variables (None = inherit parent)
        stdin_bytes: Optional bytes to write to stdin
        stdio: Standard stream mode
    """

    argv: list[str]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    stdin_bytes: bytes | None = None
    stdio: StdioMode = StdioMode.CAPTURE

    def __post_init__(self) -> None:
        if not self.argv:
            raise ValueError("ProcessSpec.argv must not be empty")
        if isinstance(self.stdio, str) and not isinstance(self.stdio, StdioMode):
            object.__setattr__(self, "stdio", StdioMode(self.stdio))

    @classmethod
    def from_command(cls, command: str, **kwargs: Any) -> "ProcessSpec":
        """Build a ProcessSpec from a command line, split with shell quoting rules."""
        return cls(argv=shlex.split(command), **kwargs)

    @property
    def display(self) -> str:
        return shlex.join(self.argv)


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of one supervised run.

    Only the field matching ``kind`` is populated:
    exit_code for EXITED, signal for SIGNALED, cause for SPAWN_FAILED,
    cancelled=True for CANCELLED.

    Attributes:
        kind: Outcome kind
        exit_code: Exit status of a normal exit
        signal: Signal name (e.g. "SIGKILL") when killed by a signal
        cancelled: True when the caller requested termination
        cause: Reason the process never started
        stdout: Captured stdout (capture mode only)
        stderr: Captured stderr (capture mode only)
        pid: Child pid, None if it never started
    """

    kind: OutcomeKind
    exit_code: int | None = None
    signal: str | None = None
    cancelled: bool = False
    cause: str | None = None
    stdout: bytes = field(default=b"", repr=False)
    stderr: bytes = field(default=b"", repr=False)
    pid: int | None = None

    @classmethod
    def exited(cls, exit_code: int, **kwargs: Any) -> "ProcessResult":
        return cls(kind=OutcomeKind.EXITED, exit_code=exit_code, **kwargs)

    @classmethod
    def signaled(cls, signal_name: str, **kwargs: Any) -> "ProcessResult":
        return cls(kind=OutcomeKind.SIGNALED, signal=signal_name, **kwargs)

    @classmethod
    def spawn_failed(cls, cause: str) -> "ProcessResult":
        return cls(kind=OutcomeKind.SPAWN_FAILED, cause=cause)

    @classmethod
    def was_cancelled(cls, **kwargs: Any) -> "ProcessResult":
        return cls(kind=OutcomeKind.CANCELLED, cancelled=True, **kwargs)

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.EXITED and self.exit_code == 0

    @property
    def signal_number(self) -> int | None:
        if self.signal is None:
            return None
        try:
            return int(signal.Signals[self.signal])
        except KeyError:
            return int(self.signal) if self.signal.isdigit() else None

    def describe(self) -> str:
        if self.kind == OutcomeKind.EXITED:
            return f"exited with code {self.exit_code}"
        if self.kind == OutcomeKind.SIGNALED:
            return f"terminated by {self.signal}"
        if self.kind == OutcomeKind.SPAWN_FAILED:
            return f"could not start: {self.cause}"
        return "cancelled"

    def check(self) -> "ProcessResult":
        """Return self if the run succeeded.

        Raises:
            ProcessFailedError: For any outcome other than exit code 0
        """
        if not self.ok:
            raise ProcessFailedError(self)
        return self
