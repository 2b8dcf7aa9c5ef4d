"""Length-prefixed framing for daemon IPC.

Every request and response travels as one frame:

    Frame := uint32_be length ++ payload[length]

The byte order and MAX_FRAME_LENGTH are part of the wire contract. A
length is valid when 0 < length <= MAX_FRAME_LENGTH. A short read (the
peer closed mid-frame) is a transport failure, reported as
TruncatedFrameError, and is distinct from an invalid length prefix.

Both an asyncio reader (daemon side) and a blocking socket reader (client
side) are provided. Interrupted system calls are retried by Python itself
(PEP 475), so neither reader treats EINTR as an error.
"""

from __future__ import annotations

import asyncio
import socket
import struct

from termnotify.constants import FRAME_HEADER_SIZE, MAX_FRAME_LENGTH

__all__ = [
    "FrameError",
    "FrameTooLargeError",
    "TruncatedFrameError",
    "encode_frame",
    "decode_length",
    "read_frame",
    "recv_frame",
]

_HEADER = struct.Struct(">I")


class FrameError(Exception):
    """Base exception for framing failures."""


class FrameTooLargeError(FrameError):
    """Raised when a length prefix (or payload) is outside the valid range."""


class TruncatedFrameError(FrameError):
    """Raised when the peer closes the stream before a full frame arrives."""


def encode_frame(payload: bytes) -> bytes:
    """Prefix ``payload`` with its 4-byte big-endian length.

    Args:
        payload: Encoded request or response.

    Returns:
        Frame bytes ready to be written to the socket.

    Raises:
        FrameTooLargeError: If the payload is empty or exceeds MAX_FRAME_LENGTH.
    """
    length = len(payload)
    if length == 0 or length > MAX_FRAME_LENGTH:
        raise FrameTooLargeError(
            f"Payload length {length} outside valid range 1..{MAX_FRAME_LENGTH}"
        )
    return _HEADER.pack(length) + payload


def decode_length(header: bytes) -> int:
    """Decode and validate a frame header.

    Args:
        header: Exactly FRAME_HEADER_SIZE bytes.

    Returns:
        Payload length.

    Raises:
        TruncatedFrameError: If fewer than FRAME_HEADER_SIZE bytes were given.
        FrameTooLargeError: If the length is zero or exceeds MAX_FRAME_LENGTH.
    """
    if len(header) != FRAME_HEADER_SIZE:
        raise TruncatedFrameError(
            f"Incomplete frame header ({len(header)} of {FRAME_HEADER_SIZE} bytes)"
        )
    (length,) = _HEADER.unpack(header)
    if length == 0 or length > MAX_FRAME_LENGTH:
        raise FrameTooLargeError(f"Invalid frame length: {length}")
    return length


async def read_frame(reader: asyncio.StreamReader) -> bytes:
    """Read one frame from an asyncio stream.

    Args:
        reader: Stream positioned at a frame boundary.

    Returns:
        The frame payload.

    Raises:
        TruncatedFrameError: If the stream ends before the frame is complete.
        FrameTooLargeError: If the length prefix is invalid.
    """
    try:
        header = await reader.readexactly(FRAME_HEADER_SIZE)
    except asyncio.IncompleteReadError as e:
        raise TruncatedFrameError(
            f"Connection closed after {len(e.partial)} header bytes"
        ) from e

    length = decode_length(header)

    try:
        return await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise TruncatedFrameError(
            f"Connection closed after {len(e.partial)} of {length} payload bytes"
        ) from e


def _recv_exactly(sock: socket.socket, size: int) -> bytes:
    """Receive exactly ``size`` bytes, looping over partial reads."""
    chunks: list[bytes] = []
    remaining = size
    while remaining:
        chunk = sock.recv(remaining)
        if not chunk:
            raise TruncatedFrameError(
                f"Connection closed after {size - remaining} of {size} bytes"
            )
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def recv_frame(sock: socket.socket) -> bytes:
    """Read one frame from a blocking socket.

    Socket timeouts propagate unchanged as TimeoutError.

    Args:
        sock: Connected stream socket.

    Returns:
        The frame payload.

    Raises:
        TruncatedFrameError: If the peer closes before the frame is complete.
        FrameTooLargeError: If the length prefix is invalid.
    """
    length = decode_length(_recv_exactly(sock, FRAME_HEADER_SIZE))
    return _recv_exactly(sock, length)
