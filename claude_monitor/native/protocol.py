"""Browser native-messaging framing.

Each message is a 4-byte little-endian unsigned length followed by that many
bytes of UTF-8 JSON. The browser starts the host once per message, so a host
reads exactly one frame from stdin and writes exactly one frame to stdout.

>>> encode_message({"success": True})
b'\\x10\\x00\\x00\\x00{"success":true}'
>>> decode_payload(b'{"type":"fetch-accounts"}')
{'type': 'fetch-accounts'}
"""

import json
import logging
import struct
from typing import BinaryIO

logger = logging.getLogger(__name__)

HEADER = struct.Struct("<I")

# Chrome caps messages sent to a native host at 64 MiB
MAX_MESSAGE_BYTES = 64 * 1024 * 1024


class MessageError(ValueError):
    """Raised when the incoming frame can't be read or decoded."""


def _read_up_to(stream: BinaryIO, size: int) -> bytes:
    """Read until ``size`` bytes arrive or the stream ends."""
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def decode_payload(payload: bytes) -> dict:
    """Decode a frame body into a message dict.

    Raises:
        MessageError: for invalid UTF-8, invalid JSON, or a non-object body
    """
    try:
        message = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MessageError(f"Malformed message: {e}") from None
    if not isinstance(message, dict):
        raise MessageError("Message must be a JSON object")
    return message


def read_message(stream: BinaryIO) -> dict:
    """Read one framed message, accumulating across short reads.

    If the stream ends before the declared length, whatever arrived is
    decoded as a best effort; a partial body that isn't valid JSON is an
    error.

    Raises:
        MessageError: on empty input, a short header, an oversized length,
            or an undecodable body
    """
    header = _read_up_to(stream, HEADER.size)
    if not header:
        raise MessageError("No message received")
    if len(header) < HEADER.size:
        raise MessageError(f"Truncated length prefix ({len(header)} of {HEADER.size} bytes)")

    (length,) = HEADER.unpack(header)
    if length > MAX_MESSAGE_BYTES:
        raise MessageError(f"Message too large: {length} bytes")

    payload = _read_up_to(stream, length)
    if len(payload) < length:
        logger.warning("Stream ended after %d of %d bytes; using partial message", len(payload), length)
        try:
            return decode_payload(payload)
        except MessageError:
            raise MessageError(
                f"Truncated message: expected {length} bytes, got {len(payload)}"
            ) from None

    return decode_payload(payload)


def encode_message(message: dict) -> bytes:
    """Build a complete frame: length prefix + compact UTF-8 JSON."""
    body = json.dumps(message, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return HEADER.pack(len(body)) + body


def write_message(stream: BinaryIO, message: dict) -> None:
    """Write one frame in a single write and flush."""
    stream.write(encode_message(message))
    stream.flush()
