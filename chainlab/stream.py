"""
Demultiplexer for container exec output.

Without a TTY the runtime sends stdout and stderr over one channel as a
sequence of frames:

    ┌──────────┬─────────┬──────────────────┬──────────────────┐
    │ stream:1 │ 0 0 0   │ length:4 (BE)    │ payload:length   │
    └──────────┴─────────┴──────────────────┴──────────────────┘

stream 1 = stdout, 2 = stderr, 0 = stdin (never sent back, ignored).
Frames may be split at arbitrary chunk boundaries by the transport, so the
demuxer buffers until a whole frame is available.

Usage:
    demux = StreamDemuxer()
    async for chunk in stream:
        demux.feed(chunk)
    stdout, stderr = demux.finish()
"""
from __future__ import annotations

import struct
from typing import Iterable, List, Tuple

from chainlab.exceptions import TransportError

STDIN = 0
STDOUT = 1
STDERR = 2

HEADER = struct.Struct(">BxxxL")


def encode_frame(stream: int, data: bytes) -> bytes:
    """Build one multiplexed frame (used by runtime doubles and tests)."""
    return HEADER.pack(stream, len(data)) + data


class StreamDemuxer:
    """Incremental splitter of a multiplexed exec stream into stdout and stderr."""

    def __init__(self) -> None:
        self._pending = bytearray()
        self._stdout: List[bytes] = []
        self._stderr: List[bytes] = []
        self._frames = 0

    @property
    def frames(self) -> int:
        return self._frames

    def feed(self, chunk: bytes) -> None:
        """
        Consume a chunk of raw stream data.

        Raises:
            TransportError: On a frame header naming an unknown stream.
        """
        self._pending.extend(chunk)
        while len(self._pending) >= HEADER.size:
            stream, length = HEADER.unpack_from(self._pending)
            if stream not in (STDIN, STDOUT, STDERR):
                raise TransportError(
                    f"Malformed exec stream: unknown stream id {stream}",
                    code="malformed_exec_stream",
                )
            end = HEADER.size + length
            if len(self._pending) < end:
                return
            payload = bytes(self._pending[HEADER.size:end])
            del self._pending[:end]
            self._frames += 1
            if stream == STDOUT:
                self._stdout.append(payload)
            elif stream == STDERR:
                self._stderr.append(payload)

    def finish(self) -> Tuple[bytes, bytes]:
        """
        Return the collected (stdout, stderr) once the stream has ended.

        Raises:
            TransportError: If the stream ended in the middle of a frame.
        """
        if self._pending:
            raise TransportError(
                f"Malformed exec stream: {len(self._pending)} trailing bytes",
                code="malformed_exec_stream",
            )
        return b"".join(self._stdout), b"".join(self._stderr)


def demultiplex(chunks: Iterable[bytes]) -> Tuple[bytes, bytes]:
    """Demultiplex a complete, already-buffered stream."""
    demux = StreamDemuxer()
    for chunk in chunks:
        demux.feed(chunk)
    return demux.finish()
