"""Client transports — how a :class:`ClientSession` reaches a remote server.

Each transport satisfies the :class:`MCPTransport` protocol, providing
``connect``, ``send_request``, ``send_notification``, and ``close``.

- :class:`StreamTransport` — newline-delimited JSON over any reader/writer.
- :class:`StdioTransport` — spawns a child process and talks over its stdio.
- :class:`HttpTransport` — one HTTP POST per message.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from toolmesh.protocol.codec import MessageStream
from toolmesh.protocol.errors import MessageDecodeError, ProtocolError, TransportError
from toolmesh.protocol.models import (
    METHOD_NOT_FOUND,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from toolmesh.protocol.codec import LineReader, LineWriter

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0
_STREAM_LIMIT = 16 * 1024 * 1024


@runtime_checkable
class MCPTransport(Protocol):
    """Abstract transport for MCP JSON-RPC communication."""

    async def connect(self) -> None: ...
    async def send_request(self, request: JsonRpcRequest) -> JsonRpcResponse: ...
    async def send_notification(self, notification: JsonRpcNotification) -> None: ...
    async def close(self) -> None: ...


class StreamTransport:
    """Request/response correlation over a :class:`MessageStream`.

    Only one request is in flight at a time.  While waiting for its response
    the transport also handles whatever else the server sends:

    - a response whose id matches nothing in flight (e.g. the late answer to a
      request that already timed out) is logged, recorded in
      :attr:`protocol_errors`, and skipped;
    - notifications are passed to *on_notification*;
    - server-initiated requests are answered with ``-32601``.
    """

    def __init__(
        self,
        reader: LineReader,
        writer: LineWriter,
        *,
        timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
        on_notification: Callable[[JsonRpcNotification], None] | None = None,
    ) -> None:
        self._stream = MessageStream(reader, writer)
        self._timeout = timeout
        self._on_notification = on_notification
        self.protocol_errors: list[ProtocolError] = []

    async def connect(self) -> None:
        """Nothing to do: the streams are already open."""

    async def send_request(self, request: JsonRpcRequest) -> JsonRpcResponse:
        """Write *request* and wait for the response carrying its id.

        Raises:
            TimeoutError: If no matching response arrives within the timeout.
            TransportError: If the stream closes first.
        """
        logger.debug("Sending request %s (id=%s)", request.method, request.id)
        await self._stream.write_message(request)
        if self._timeout is None:
            return await self._await_response(request.id)
        return await asyncio.wait_for(self._await_response(request.id), self._timeout)

    async def send_notification(self, notification: JsonRpcNotification) -> None:
        logger.debug("Sending notification %s", notification.method)
        await self._stream.write_message(notification)

    async def close(self) -> None:
        """Nothing to release; the owner of the streams closes them."""

    async def _await_response(self, request_id: int | str) -> JsonRpcResponse:
        while True:
            try:
                message = await self._stream.read_message()
            except MessageDecodeError as exc:
                logger.warning("Skipping undecodable line from server: %s", exc.detail)
                self.protocol_errors.append(exc)
                continue

            if message is None:
                msg = "Transport closed before a response was received"
                raise TransportError(msg)

            if isinstance(message, JsonRpcResponse):
                if message.id == request_id:
                    return message
                err = ProtocolError(
                    f"Response id {message.id!r} matches no request in flight "
                    f"(waiting for {request_id!r})"
                )
                logger.warning("%s", err)
                self.protocol_errors.append(err)
            elif isinstance(message, JsonRpcNotification):
                if self._on_notification is not None:
                    self._on_notification(message)
                else:
                    logger.debug("Ignoring server notification %s", message.method)
            else:
                await self._stream.write_message(
                    JsonRpcResponse.failure(
                        message.id,
                        METHOD_NOT_FOUND,
                        f"Method not found: {message.method}",
                    )
                )


class StdioTransport:
    """Communicates with an MCP server via subprocess stdin/stdout.

    Sends and receives newline-delimited JSON.  The child's stderr is
    discarded so its logging cannot interleave with ours.
    """

    def __init__(
        self,
        command: str,
        env: dict[str, str] | None = None,
        *,
        timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
        on_notification: Callable[[JsonRpcNotification], None] | None = None,
    ) -> None:
        self._command = command
        self._env = env
        self._timeout = timeout
        self._on_notification = on_notification
        self._process: asyncio.subprocess.Process | None = None
        self._inner: StreamTransport | None = None

    @property
    def protocol_errors(self) -> list[ProtocolError]:
        return self._inner.protocol_errors if self._inner is not None else []

    async def connect(self) -> None:
        """Launch the subprocess."""
        parts = shlex.split(self._command)
        if not parts:
            msg = "StdioTransport requires a non-empty command"
            raise TransportError(msg)
        try:
            self._process = await asyncio.create_subprocess_exec(
                *parts,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                env=self._env,
                limit=_STREAM_LIMIT,
            )
        except OSError as exc:
            raise TransportError(f"Failed to spawn {parts[0]!r}: {exc}") from exc

        assert self._process.stdout is not None
        assert self._process.stdin is not None
        self._inner = StreamTransport(
            self._process.stdout,
            self._process.stdin,
            timeout=self._timeout,
            on_notification=self._on_notification,
        )

    async def send_request(self, request: JsonRpcRequest) -> JsonRpcResponse:
        return await self._connected().send_request(request)

    async def send_notification(self, notification: JsonRpcNotification) -> None:
        await self._connected().send_notification(notification)

    async def close(self) -> None:
        """Close stdin and terminate the subprocess."""
        if self._process is not None:
            if self._process.stdin:
                self._process.stdin.close()
            try:
                self._process.terminate()
            except ProcessLookupError:
                pass
            await self._process.wait()
            self._process = None
            self._inner = None

    def _connected(self) -> StreamTransport:
        if self._inner is None:
            msg = "Transport not connected"
            raise TransportError(msg)
        return self._inner


class HttpTransport:
    """Communicates with an MCP server over HTTP POST.

    Every request and notification is the JSON body of its own POST; the
    response body of a request POST is the JSON-RPC response.
    """

    def __init__(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._headers = headers or {}
        self._timeout = timeout
        self._http_transport = transport
        self._client: httpx.AsyncClient | None = None
        self.protocol_errors: list[ProtocolError] = []

    async def connect(self) -> None:
        """Open the HTTP connection pool."""
        self._client = httpx.AsyncClient(
            headers=self._headers,
            timeout=self._timeout,
            transport=self._http_transport,
        )

    async def send_request(self, request: JsonRpcRequest) -> JsonRpcResponse:
        logger.debug("POST %s %s (id=%s)", self._url, request.method, request.id)
        data = await self._post(request.to_wire())
        try:
            response = JsonRpcResponse.model_validate(data)
        except ValueError as exc:
            raise TransportError(f"Failed to parse response: {exc}") from exc

        if response.id != request.id:
            err = ProtocolError(
                f"Response id {response.id!r} does not match request id {request.id!r}"
            )
            self.protocol_errors.append(err)
            raise TransportError(str(err))
        return response

    async def send_notification(self, notification: JsonRpcNotification) -> None:
        client = self._http()
        try:
            resp = await client.post(self._url, json=notification.to_wire())
        except httpx.TimeoutException as exc:
            raise TimeoutError(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"HTTP notification failed: {exc}") from exc
        # Fire-and-forget: a non-2xx answer is not an error for a notification.
        if resp.is_error:
            logger.debug("Notification %s got HTTP %s", notification.method, resp.status_code)

    async def close(self) -> None:
        """Close the HTTP connection pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, body: dict[str, Any]) -> Any:
        client = self._http()
        try:
            resp = await client.post(self._url, json=body)
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            raise TimeoutError(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"HTTP request failed: {exc}") from exc
        try:
            return resp.json()
        except ValueError as exc:
            raise TransportError(f"Response body is not JSON: {exc}") from exc

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "Transport not connected"
            raise TransportError(msg)
        return self._client
