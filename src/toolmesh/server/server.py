"""ProtocolServer — serves a CompositeToolProvider over one JSON-RPC stream.

State machine::

    UNINITIALIZED --initialize--> READY --EOF--> CLOSED

Only ``initialize`` is accepted before READY; every other method, known or not, gets
``-32002``.  The ``initialize`` response itself completes the transition;
``notifications/initialized`` is recorded as a confirmation but is not
required.  Messages are processed strictly one at a time: a request is fully
dispatched and answered before the next line is read.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from pydantic import BaseModel, Field, ValidationError

from toolmesh import __version__
from toolmesh.middleware.base import MiddlewareChain, MiddlewareContext
from toolmesh.protocol.codec import MessageStream
from toolmesh.protocol.errors import MessageDecodeError, ToolError, TransportError
from toolmesh.protocol.models import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    NOT_INITIALIZED,
    PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    CallToolResult,
    Capabilities,
    InitializeParams,
    InitializeResult,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    PeerInfo,
)
from toolmesh.providers.base import split_qualified
from toolmesh.utils.telemetry import (
    ATTR_RPC_METHOD,
    ATTR_TOOL_ERROR_KIND,
    ATTR_TOOL_IS_ERROR,
    ATTR_TOOL_NAME,
    ATTR_TOOL_NAMESPACE,
    get_tracer,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from toolmesh.middleware.base import Middleware
    from toolmesh.protocol.codec import LineReader, LineWriter
    from toolmesh.protocol.models import Message
    from toolmesh.providers.composite import CompositeToolProvider

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)


class ServerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    CLOSED = "closed"


class SessionState(BaseModel):
    """What the server learned about its client during the handshake."""

    initialized: bool = False
    confirmed: bool = Field(default=False, description="notifications/initialized was received.")
    peer_info: PeerInfo | None = None
    protocol_version: str | None = None
    negotiated_capabilities: Capabilities = Field(default_factory=Capabilities)


class ProtocolServer:
    """One server per connection; holds that connection's handshake state.

    Usage::

        composite = CompositeToolProvider()
        composite.register(BuiltinToolProvider(registry))
        server = ProtocolServer(composite, [AuditLog(), ResultGuard()])
        await server.run(reader, writer)   # returns on EOF
    """

    def __init__(
        self,
        composite: CompositeToolProvider,
        middlewares: Iterable[Middleware] | None = None,
        *,
        server_info: PeerInfo | None = None,
        instructions: str | None = None,
        permissions: Iterable[str] | None = None,
    ) -> None:
        self._composite = composite
        self._chain = MiddlewareChain(middlewares)
        self._server_info = server_info or PeerInfo(name="toolmesh", version=__version__)
        self._instructions = instructions
        self._permissions = frozenset(permissions) if permissions is not None else None
        self._state = ServerState.UNINITIALIZED
        self._session = SessionState()
        self._handlers: dict[str, Callable[[JsonRpcRequest], Awaitable[dict[str, Any]]]] = {
            "tools/list": self._handle_tools_list,
            "tools/call": self._handle_tools_call,
            "ping": self._handle_ping,
        }

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def session(self) -> SessionState:
        return self._session

    @property
    def composite(self) -> CompositeToolProvider:
        return self._composite

    @property
    def chain(self) -> MiddlewareChain:
        return self._chain

    def add_middleware(self, middleware: Middleware) -> None:
        """Append *middleware*; it becomes the innermost layer."""
        self._chain.add(middleware)

    # ------------------------------------------------------------------
    # Stream loop
    # ------------------------------------------------------------------

    async def run(self, reader: LineReader, writer: LineWriter) -> None:
        """Serve until the peer closes the stream."""
        stream = MessageStream(reader, writer)
        logger.info("Serving %d provider(s): %s", len(self._composite), ", ".join(self._composite.namespaces))

        while True:
            try:
                message = await stream.read_message()
            except MessageDecodeError as exc:
                logger.warning("Rejected malformed message: %s", exc.detail)
                await self._send(stream, JsonRpcResponse.failure(exc.request_id, exc.code, exc.detail))
                continue

            if message is None:
                break

            response = await self.handle_message(message)
            if response is not None:
                await self._send(stream, response)

        self._state = ServerState.CLOSED
        logger.info("Input stream closed; server stopped")

    async def _send(self, stream: MessageStream, response: JsonRpcResponse) -> None:
        try:
            await stream.write_message(response)
        except TransportError as exc:
            logger.warning("Could not write response %r: %s", response.id, exc)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def handle_message(self, message: Message) -> JsonRpcResponse | None:
        """Process one message; returns the response, or ``None`` for notifications."""
        if isinstance(message, JsonRpcNotification):
            self._handle_notification(message)
            return None
        if isinstance(message, JsonRpcResponse):
            logger.debug("Ignoring response %r from client", message.id)
            return None

        try:
            return await self._dispatch(message)
        except Exception as exc:
            logger.exception("Unhandled error while processing %s", message.method)
            return JsonRpcResponse.failure(message.id, INTERNAL_ERROR, f"Internal error: {exc}")

    async def _dispatch(self, request: JsonRpcRequest) -> JsonRpcResponse:
        if request.method == "initialize":
            return self._handle_initialize(request)

        if self._state is not ServerState.READY:
            return JsonRpcResponse.failure(request.id, NOT_INITIALIZED, "not initialized")

        handler = self._handlers.get(request.method)
        if handler is None:
            return JsonRpcResponse.failure(request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}")

        try:
            result = await handler(request)
        except _InvalidParams as exc:
            return JsonRpcResponse.failure(request.id, INVALID_PARAMS, str(exc))
        return JsonRpcResponse.success(request.id, result)

    def _handle_notification(self, notification: JsonRpcNotification) -> None:
        if notification.method == "notifications/initialized":
            if self._state is ServerState.READY:
                self._session.confirmed = True
            else:
                logger.debug("notifications/initialized before initialize; ignoring")
            return
        logger.debug("Ignoring notification %s", notification.method)

    def _handle_initialize(self, request: JsonRpcRequest) -> JsonRpcResponse:
        if self._state is not ServerState.UNINITIALIZED:
            return JsonRpcResponse.failure(request.id, INVALID_REQUEST, "Server already initialized")

        try:
            params = InitializeParams.model_validate(request.params)
        except ValidationError as exc:
            return JsonRpcResponse.failure(
                request.id, INVALID_PARAMS, f"Invalid initialize params: {exc.error_count()} error(s)"
            )

        if params.protocol_version in SUPPORTED_PROTOCOL_VERSIONS:
            version = params.protocol_version
        else:
            logger.info(
                "Client requested unsupported protocol version %s; offering %s",
                params.protocol_version,
                PROTOCOL_VERSION,
            )
            version = PROTOCOL_VERSION

        self._session = SessionState(
            initialized=True,
            peer_info=params.client_info,
            protocol_version=version,
            negotiated_capabilities=params.capabilities,
        )
        self._state = ServerState.READY

        peer = params.client_info
        logger.info(
            "Initialized session with %s %s (protocol %s)",
            peer.name if peer else "<unknown>",
            peer.version if peer else "",
            version,
        )

        result = InitializeResult(
            protocol_version=version,
            capabilities=Capabilities(tools={"listChanged": True}),
            server_info=self._server_info,
            instructions=self._instructions,
        )
        return JsonRpcResponse.success(request.id, result.to_wire())

    async def _handle_ping(self, request: JsonRpcRequest) -> dict[str, Any]:
        return {}

    async def _handle_tools_list(self, request: JsonRpcRequest) -> dict[str, Any]:
        tools = await self._composite.list_tools_all()
        tools = await self._chain.filter_tools(tools)
        return {"tools": [t.to_wire() for t in tools]}

    async def _handle_tools_call(self, request: JsonRpcRequest) -> dict[str, Any]:
        name = request.params.get("name")
        if not isinstance(name, str) or not name:
            msg = "tools/call requires a non-empty string 'name'"
            raise _InvalidParams(msg)

        arguments = request.params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            msg = "tools/call 'arguments' must be an object"
            raise _InvalidParams(msg)

        context = MiddlewareContext(tool_name=name, arguments=arguments, permissions=self._permissions)
        with _tracer.start_as_current_span("toolmesh.tools.call") as span:
            span.set_attribute(ATTR_RPC_METHOD, request.method)
            span.set_attribute(ATTR_TOOL_NAME, name)
            parts = split_qualified(name)
            if parts is not None:
                span.set_attribute(ATTR_TOOL_NAMESPACE, parts[0])
            result = await self._call_tool(context, span)
            span.set_attribute(ATTR_TOOL_IS_ERROR, result.is_error)
        return result.to_wire()

    async def _call_tool(self, context: MiddlewareContext, span: trace.Span) -> CallToolResult:
        try:
            await self._chain.before_call(context)
        except ToolError as exc:
            logger.info("Call to %s rejected: %s", context.tool_name, exc)
            span.set_attribute(ATTR_TOOL_ERROR_KIND, exc.kind.value)
            return CallToolResult.error(str(exc))

        try:
            context.result = await self._composite.call_tool(context.tool_name, context.arguments)
        except ToolError as exc:
            logger.debug("Tool %s failed: %s", context.tool_name, exc)
            span.set_attribute(ATTR_TOOL_ERROR_KIND, exc.kind.value)
            context.result = CallToolResult.error(str(exc))

        return await self._chain.after_call(context)


class _InvalidParams(Exception):
    """Raised by handlers for request params that fail validation."""
