"""Demultiplexer for container engine attach/exec output streams.

devctl streams v0.1.0

When a container runs without a TTY, the engine interleaves the process's
stdout and stderr on one connection. Every chunk is wrapped in a frame:

    byte 0      stream type (0 = stdin, 1 = stdout, 2 = stderr)
    bytes 1-3   reserved, ignored on read
    bytes 4-7   payload length, big-endian unsigned 32-bit
    bytes 8..   payload

Frames follow each other with no padding. The transport delivers bytes in
arbitrary chunk boundaries, so StreamDemultiplexer keeps the unconsumed tail
between feed() calls and only emits complete frames, in arrival order.
"""

from __future__ import annotations

import logging
import struct
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Protocol

from .errors import MalformedFrameError

__all__ = [
    "HEADER_SIZE",
    "StreamType",
    "StreamFrame",
    "StreamDemultiplexer",
    "demux_output",
    "split_output",
    "iter_frames",
    "pump_frames",
    "encode_frame",
]

logger = logging.getLogger(__name__)

HEADER_SIZE = 8
_LENGTH = struct.Struct(">I")


class StreamType(IntEnum):
    """Logical channel tag carried in byte 0 of the frame header."""

    STDIN = 0
    STDOUT = 1
    STDERR = 2


@dataclass(frozen=True)
class StreamFrame:
    """One demultiplexed frame.

    Attributes:
        stream_type: Raw tag from the header
        payload: Channel data
    """

    stream_type: int
    payload: bytes

    @property
    def channel(self) -> StreamType | None:
        """Known channel for the tag, or None for an unrecognised tag."""
        try:
            return StreamType(self.stream_type)
        except ValueError:
            return None


def encode_frame(stream_type: int, payload: bytes) -> bytes:
    """Build one frame (header + payload)."""
    return bytes([stream_type, 0, 0, 0]) + _LENGTH.pack(len(payload)) + payload


class StreamDemultiplexer:
    """Incremental frame parser for one stream.

    Holds a carry-over buffer, so one instance belongs to exactly one stream.

    Args:
        total_size: Optional strict total byte count of the stream. When set,
            a header announcing more payload than the stream can still hold
            is rejected immediately instead of waiting for bytes that will
            never arrive.

    Example:
        demux = StreamDemultiplexer()
        for chunk in transport:
            for frame in demux.feed(chunk):
                handle(frame.channel, frame.payload)
        demux.finish()
    """

    def __init__(self, total_size: int | None = None) -> None:
        if total_size is not None and total_size < 0:
            raise ValueError(f"total_size must be >= 0, got {total_size}")
        self.total_size = total_size
        self._buffer = bytearray()
        self._received = 0
        self._consumed = 0
        self._failed = False

    @property
    def pending(self) -> int:
        """Bytes buffered for the next, not yet complete, frame."""
        return len(self._buffer)

    @property
    def at_boundary(self) -> bool:
        """True when no partial frame is buffered."""
        return not self._buffer

    @property
    def consumed(self) -> int:
        """Bytes that belonged to already emitted frames."""
        return self._consumed

    def _fail(self, message: str, frames: list[StreamFrame]) -> MalformedFrameError:
        self._failed = True
        logger.debug(f"Malformed stream after {self._consumed} bytes: {message}")
        return MalformedFrameError(message, frames)

    def feed(self, data: bytes) -> list[StreamFrame]:
        """Add bytes and return every frame completed by them.

        Raises:
            MalformedFrameError: If the stream violates the total size
                contract, or feed() is called after an earlier error
        """
        if self._failed:
            raise MalformedFrameError("Demultiplexer already failed; stream aborted")

        self._received += len(data)
        self._buffer.extend(data)

        frames: list[StreamFrame] = []
        while len(self._buffer) >= HEADER_SIZE:
            (length,) = _LENGTH.unpack_from(self._buffer, 4)
            frame_size = HEADER_SIZE + length

            if (
                self.total_size is not None
                and self._consumed + frame_size > self.total_size
            ):
                raise self._fail(
                    f"Frame at offset {self._consumed} declares {length} payload "
                    f"bytes, beyond stream size {self.total_size}",
                    frames,
                )

            if len(self._buffer) < frame_size:
                break

            frames.append(
                StreamFrame(
                    stream_type=self._buffer[0],
                    payload=bytes(self._buffer[HEADER_SIZE:frame_size]),
                )
            )
            del self._buffer[:frame_size]
            self._consumed += frame_size

        if self.total_size is not None and self._received > self.total_size:
            raise self._fail(
                f"Received {self._received} bytes, more than stream size "
                f"{self.total_size}",
                frames,
            )

        return frames

    def finish(self) -> None:
        """Declare end of input.

        Raises:
            MalformedFrameError: If the stream stopped inside a frame, or
                before reaching total_size
        """
        if self._failed:
            raise MalformedFrameError("Demultiplexer already failed; stream aborted")

        if self._buffer:
            raise self._fail(
                f"Stream ended mid-frame with {len(self._buffer)} byte(s) pending",
                [],
            )

        if self.total_size is not None and self._consumed != self.total_size:
            raise self._fail(
                f"Stream ended after {self._consumed} bytes, expected "
                f"{self.total_size}",
                [],
            )


def demux_output(buffer: bytes) -> bytes:
    """Concatenate every payload of a fully buffered stream."""
    demux = StreamDemultiplexer(total_size=len(buffer))
    frames = demux.feed(buffer)
    demux.finish()
    return b"".join(frame.payload for frame in frames)


def split_output(buffer: bytes) -> tuple[bytes, bytes]:
    """Split a fully buffered stream into (stdout, stderr).

    Stdin-tagged frames are counted as stdout, the same way the engine's own
    client does it. Frames with an unknown tag are dropped.
    """
    demux = StreamDemultiplexer(total_size=len(buffer))
    frames = demux.feed(buffer)
    demux.finish()

    stdout = b"".join(
        f.payload for f in frames if f.channel in (StreamType.STDIN, StreamType.STDOUT)
    )
    stderr = b"".join(f.payload for f in frames if f.channel == StreamType.STDERR)
    return stdout, stderr


async def iter_frames(
    source: AsyncIterable[bytes],
    *,
    total_size: int | None = None,
) -> AsyncIterator[StreamFrame]:
    """Yield frames from an async byte source as soon as they complete.

    Any async iterable of bytes works: anyio byte streams, memory object
    streams, asyncio StreamReader.

    Raises:
        MalformedFrameError: On protocol violation, or when the source is
            exhausted in the middle of a frame
    """
    demux = StreamDemultiplexer(total_size=total_size)
    async for chunk in source:
        for frame in demux.feed(chunk):
            yield frame
    demux.finish()


class AsyncWriter(Protocol):
    async def write(self, data: bytes) -> Any: ...


async def pump_frames(
    source: AsyncIterable[bytes],
    stdout: AsyncWriter,
    stderr: AsyncWriter,
    *,
    total_size: int | None = None,
) -> dict[StreamType, int]:
    """Forward demultiplexed payloads to two async writers.

    Frames with an unknown tag are dropped with a warning.

    Returns:
        Bytes written per channel
    """
    written = {StreamType.STDOUT: 0, StreamType.STDERR: 0}

    async for frame in iter_frames(source, total_size=total_size):
        channel = frame.channel
        if channel is None:
            logger.warning(
                f"Dropping frame with unknown stream type {frame.stream_type} "
                f"({len(frame.payload)} bytes)"
            )
            continue

        if channel == StreamType.STDERR:
            await stderr.write(frame.payload)
            written[StreamType.STDERR] += len(frame.payload)
        else:
            await stdout.write(frame.payload)
            written[StreamType.STDOUT] += len(frame.payload)

    return written
