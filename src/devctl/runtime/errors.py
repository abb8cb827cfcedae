"""Runtime module exceptions.

devctl runtime v0.1.0

Process outcomes are returned as ProcessResult values. These exceptions are
only raised when a caller explicitly asks for it via ProcessResult.check().
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .types import ProcessResult

__all__ = [
    "ProcessError",
    "ProcessFailedError",
]


class ProcessError(Exception):
    """Base exception for process supervision."""
    pass


class ProcessFailedError(ProcessError):
    """Process did not finish with exit code 0.

    Attributes:
        result: The full outcome of the run
    """

    def __init__(self, result: "ProcessResult") -> None:
        self.result = result
        super().__init__(result.describe())
