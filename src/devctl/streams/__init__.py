"""Stream handling for container engine output.

Splits the multiplexed stdout/stderr stream produced by exec/attach calls
on non-TTY containers into separate channels.
"""

from __future__ import annotations

from .demux import (
    HEADER_SIZE,
    StreamDemultiplexer,
    StreamFrame,
    StreamType,
    demux_output,
    encode_frame,
    iter_frames,
    pump_frames,
    split_output,
)
from .errors import MalformedFrameError, StreamError

__all__ = [
    "HEADER_SIZE",
    "StreamDemultiplexer",
    "StreamFrame",
    "StreamType",
    "demux_output",
    "encode_frame",
    "iter_frames",
    "pump_frames",
    "split_output",
    "MalformedFrameError",
    "StreamError",
]
