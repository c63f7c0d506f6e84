"""Serving a :class:`ProtocolServer` over this process's stdin/stdout."""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING, BinaryIO

if TYPE_CHECKING:
    from toolmesh.server.server import ProtocolServer


class StdioStreams:
    """Adapts blocking binary stdio to the reader/writer the codec expects.

    Reads run in the default executor so the event loop stays responsive
    while the peer is idle; an empty read means the peer closed stdin.
    """

    def __init__(self, stdin: BinaryIO | None = None, stdout: BinaryIO | None = None) -> None:
        self._stdin = stdin if stdin is not None else sys.stdin.buffer
        self._stdout = stdout if stdout is not None else sys.stdout.buffer

    async def readline(self) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._stdin.readline)

    def write(self, data: bytes) -> None:
        self._stdout.write(data)

    async def drain(self) -> None:
        self._stdout.flush()


async def serve_stdio(
    server: ProtocolServer,
    *,
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
) -> None:
    """Run *server* on stdio until stdin reaches EOF.

    Nothing else may write to stdout while this runs; logs belong on stderr.
    """
    streams = StdioStreams(stdin, stdout)
    await server.run(streams, streams)
