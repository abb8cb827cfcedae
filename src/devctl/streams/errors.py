"""Stream module exceptions.

devctl streams v0.1.0
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .demux import StreamFrame

__all__ = [
    "StreamError",
    "MalformedFrameError",
]


class StreamError(Exception):
    """Base exception for stream handling."""
    pass


class MalformedFrameError(StreamError):
    """Frame layout violates the multiplexing protocol.

    Attributes:
        frames: Frames completed in the same feed before the violation
            was detected (already valid output, not revoked)
    """

    def __init__(self, message: str, frames: Sequence["StreamFrame"] = ()) -> None:
        self.frames = list(frames)
        super().__init__(message)
