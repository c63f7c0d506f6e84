"""Newline-delimited JSON-RPC codec.

One message per line, UTF-8, compact JSON.  Standard JSON string escaping
guarantees a serialized message never contains a literal newline, so a line
boundary is always a message boundary.

:class:`MessageStream` works over any reader exposing ``async readline()``
and any writer exposing ``write()`` + ``async drain()`` — ``asyncio``
streams, subprocess pipes, :class:`~toolmesh.server.stdio.StdioStreams`, or
in-memory fakes in tests.
"""

from __future__ import annotations

import json
import logging
from typing import Protocol, runtime_checkable

from toolmesh.protocol.errors import MessageDecodeError, TransportError
from toolmesh.protocol.models import PARSE_ERROR, Message, parse_message

logger = logging.getLogger(__name__)


@runtime_checkable
class LineReader(Protocol):
    async def readline(self) -> bytes: ...


@runtime_checkable
class LineWriter(Protocol):
    def write(self, data: bytes) -> None: ...
    async def drain(self) -> None: ...


def encode_message(message: Message) -> bytes:
    """Serialize *message* as a single newline-terminated JSON line."""
    line = json.dumps(message.to_wire(), separators=(",", ":"), ensure_ascii=False)
    return (line + "\n").encode("utf-8")


def decode_line(line: str) -> Message:
    """Parse one (already stripped) line into a message.

    Raises:
        MessageDecodeError: With ``code`` set to ``-32700`` for invalid JSON or
            ``-32600`` for JSON that is not a valid JSON-RPC message.
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        raise MessageDecodeError(f"Parse error: {exc.msg}", code=PARSE_ERROR, raw=line) from exc
    return parse_message(data, raw=line)


class MessageStream:
    """Reads and writes JSON-RPC messages over a line-oriented byte stream."""

    def __init__(self, reader: LineReader, writer: LineWriter) -> None:
        self._reader = reader
        self._writer = writer

    async def read_message(self) -> Message | None:
        """Read the next message, or return ``None`` once the peer closed the stream.

        Blank lines are skipped.  A malformed line raises
        :class:`MessageDecodeError`; the stream stays usable for the next read.
        """
        while True:
            try:
                raw = await self._reader.readline()
            except ValueError as exc:
                # asyncio.StreamReader: line longer than its buffer limit.
                raise MessageDecodeError(str(exc), code=PARSE_ERROR) from exc
            except (ConnectionResetError, BrokenPipeError):
                logger.debug("Peer reset the connection; treating as EOF")
                return None

            if not raw:
                return None

            try:
                line = raw.decode("utf-8").strip()
            except UnicodeDecodeError as exc:
                raise MessageDecodeError("Parse error: invalid UTF-8", code=PARSE_ERROR) from exc

            if not line:
                continue
            return decode_line(line)

    async def write_message(self, message: Message) -> None:
        """Write *message* as one line and flush it.

        Raises:
            TransportError: If the underlying stream is closed.
        """
        data = encode_message(message)
        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as exc:
            raise TransportError(f"Failed to write message: {exc}") from exc
