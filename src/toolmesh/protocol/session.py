"""ClientSession — the client half of the handshake plus typed RPC helpers.

Used when this process consumes *another* implementation of the protocol::

    transport = StdioTransport("npx @modelcontextprotocol/server-filesystem /tmp")
    async with ClientSession(transport) as session:
        tools = await session.list_tools()
        result = await session.call_tool("read_file", {"path": "/tmp/x"})
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

from toolmesh import __version__
from toolmesh.protocol.errors import (
    ExecutionFailedError,
    InvalidArgumentsError,
    JsonRpcErrorResponse,
    PolicyRejectedError,
    ProtocolError,
    SessionError,
    ToolError,
    ToolNotFoundError,
    ToolTimeoutError,
)
from toolmesh.protocol.models import (
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    NOT_INITIALIZED,
    PROTOCOL_VERSION,
    CallToolResult,
    Capabilities,
    JsonRpcNotification,
    JsonRpcRequest,
    PeerInfo,
    ToolDefinition,
)

if TYPE_CHECKING:
    from toolmesh.protocol.transport import MCPTransport

logger = logging.getLogger(__name__)

CLIENT_NAME = "toolmesh"

# Guards against a server that keeps returning the same cursor.
_MAX_LIST_PAGES = 100

_M = TypeVar("_M", bound=BaseModel)


class ClientState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


class ClientSession:
    """Drives ``Uninitialized -> Initializing -> Ready`` over an :class:`MCPTransport`.

    Any RPC attempted before the session is ready fails fast with
    :class:`PolicyRejectedError` and nothing is written to the transport.
    After the handshake, :attr:`server_info`, :attr:`server_capabilities`
    and :attr:`protocol_version` describe the peer.
    """

    def __init__(
        self,
        transport: MCPTransport,
        *,
        client_info: PeerInfo | None = None,
        protocol_version: str = PROTOCOL_VERSION,
        timeout: float | None = None,
    ) -> None:
        self._transport = transport
        self._client_info = client_info or PeerInfo(name=CLIENT_NAME, version=__version__)
        self._requested_version = protocol_version
        self._timeout = timeout
        self._state = ClientState.UNINITIALIZED
        self._next_id = 1

        self.server_info: PeerInfo | None = None
        self.server_capabilities = Capabilities()
        self.protocol_version: str | None = None
        self.instructions: str | None = None

    async def __aenter__(self) -> ClientSession:
        await self.connect()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ClientState.READY

    @property
    def protocol_errors(self) -> list[ProtocolError]:
        """Stray or undecodable messages the transport skipped."""
        return list(getattr(self._transport, "protocol_errors", []))

    async def connect(self) -> None:
        """Open the transport and perform the ``initialize`` handshake.

        Raises:
            SessionError: If the transport cannot be opened or the server
                rejects ``initialize``.  The transport is closed again and
                the session stays uninitialized.
        """
        if self._state is not ClientState.UNINITIALIZED:
            msg = f"Cannot connect a session in state {self._state.value!r}"
            raise SessionError(msg)

        self._state = ClientState.INITIALIZING
        try:
            await self._transport.connect()
            raw = await self._request(
                "initialize",
                {
                    "protocolVersion": self._requested_version,
                    "capabilities": {"tools": {}},
                    "clientInfo": self._client_info.model_dump(),
                },
            )
            self._apply_initialize_result(raw)
            await self._transport.send_notification(
                JsonRpcNotification(method="notifications/initialized")
            )
        except (ProtocolError, TimeoutError, OSError) as exc:
            self._state = ClientState.UNINITIALIZED
            await self._abort_transport()
            raise SessionError(f"Handshake failed: {exc}") from exc

        self._state = ClientState.READY
        logger.info(
            "Connected to %s %s (protocol %s)",
            self.server_info.name if self.server_info else "<unknown>",
            self.server_info.version if self.server_info else "",
            self.protocol_version,
        )

    async def close(self) -> None:
        """Close the transport.  The session cannot be reused."""
        if self._state is ClientState.CLOSED:
            return
        self._state = ClientState.CLOSED
        await self._transport.close()

    async def list_tools(self) -> list[ToolDefinition]:
        """Send ``tools/list``, following ``nextCursor`` pages until exhausted."""
        self._require_ready("tools/list")

        tools: list[ToolDefinition] = []
        cursor: str | None = None
        for _ in range(_MAX_LIST_PAGES):
            params: dict[str, Any] = {"cursor": cursor} if cursor else {}
            result = await self._rpc("tools/list", "tools/list", params)
            for raw in result.get("tools", []):
                try:
                    tools.append(ToolDefinition.model_validate(raw))
                except ValidationError as exc:
                    logger.warning("Skipping malformed tool definition %r: %s", raw, exc)
            cursor = result.get("nextCursor")
            if not cursor:
                break
        return tools

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> CallToolResult:
        """Send ``tools/call``.

        A result with ``is_error=True`` is returned, not raised: the tool ran
        (or was refused) and the RPC itself succeeded.

        Raises:
            ToolError: For protocol-level failures, with ``kind`` mapped from
                the JSON-RPC error code, transport timeouts, or transport errors.
        """
        self._require_ready(name)
        result = await self._rpc(
            name,
            "tools/call",
            {"name": name, "arguments": arguments or {}},
        )
        try:
            return CallToolResult.model_validate(result)
        except ValidationError as exc:
            raise ExecutionFailedError(name, f"malformed tools/call result: {exc}") from exc

    async def ping(self) -> None:
        self._require_ready("ping")
        await self._rpc("ping", "ping", {})

    # ------------------------------------------------------------------

    async def _abort_transport(self) -> None:
        try:
            await self._transport.close()
        except (ProtocolError, OSError):
            logger.warning("Failed to close transport after handshake failure", exc_info=True)

    def _require_ready(self, name: str) -> None:
        if self._state is not ClientState.READY:
            raise PolicyRejectedError(name, f"session is {self._state.value}, not ready")

    def _apply_initialize_result(self, raw: dict[str, Any]) -> None:
        """Read what the server declared; missing or malformed fields become absent."""
        self.server_capabilities = _lenient(Capabilities, raw.get("capabilities")) or Capabilities()
        self.server_info = _lenient(PeerInfo, raw.get("serverInfo"))
        version = raw.get("protocolVersion")
        self.protocol_version = version if isinstance(version, str) else self._requested_version
        instructions = raw.get("instructions")
        self.instructions = instructions if isinstance(instructions, str) else None
        if self.protocol_version != self._requested_version:
            logger.info(
                "Server negotiated protocol %s (requested %s)",
                self.protocol_version,
                self._requested_version,
            )

    async def _rpc(self, name: str, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """Send a request, translating every failure into a :class:`ToolError`."""
        try:
            return await self._request(method, params)
        except JsonRpcErrorResponse as exc:
            raise _tool_error_from_rpc(name, exc) from exc
        except TimeoutError as exc:
            raise ToolTimeoutError(name, self._timeout) from exc
        except (ProtocolError, OSError) as exc:
            raise ExecutionFailedError(name, str(exc)) from exc

    async def _request(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """Send a JSON-RPC request and return its ``result`` object.

        Raises:
            JsonRpcErrorResponse: If the server answered with an ``error``.
        """
        request_id = self._next_id
        self._next_id += 1

        request = JsonRpcRequest(id=request_id, method=method, params=params)
        if self._timeout is None:
            response = await self._transport.send_request(request)
        else:
            response = await asyncio.wait_for(self._transport.send_request(request), self._timeout)

        if response.error is not None:
            raise JsonRpcErrorResponse(
                response.error.code, response.error.message, response.error.data
            )
        return response.result or {}


def _tool_error_from_rpc(name: str, exc: JsonRpcErrorResponse) -> ToolError:
    if exc.code == INVALID_PARAMS:
        return InvalidArgumentsError(name, exc.message)
    if exc.code == METHOD_NOT_FOUND:
        return ToolNotFoundError(name, exc.message)
    if exc.code == NOT_INITIALIZED:
        return PolicyRejectedError(name, exc.message)
    return ExecutionFailedError(name, f"{exc.message} (code {exc.code})")


def _lenient(model: type[_M], value: Any) -> _M | None:
    if not isinstance(value, dict):
        return None
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        logger.debug("Ignoring malformed %s in handshake: %s", model.__name__, exc)
        return None
