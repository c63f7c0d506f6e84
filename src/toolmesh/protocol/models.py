"""Protocol models — JSON-RPC 2.0 messages and MCP tool payloads.

Implements the message format used by the Model Context Protocol for the
``initialize`` handshake, tool discovery (``tools/list``) and execution
(``tools/call``).
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from toolmesh.protocol.errors import MessageDecodeError

PROTOCOL_VERSION = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS: tuple[str, ...] = (PROTOCOL_VERSION, "2025-03-26", "2024-11-05")

# Standard JSON-RPC 2.0 codes plus the MCP "server not initialized" code.
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
NOT_INITIALIZED = -32002

RequestId = Union[int, str]

# ---------------------------------------------------------------------------
# JSON-RPC 2.0 envelope
# ---------------------------------------------------------------------------


class JsonRpcRequest(BaseModel):
    """A JSON-RPC 2.0 request message."""

    jsonrpc: str = "2.0"
    id: RequestId
    method: str
    params: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump()


class JsonRpcNotification(BaseModel):
    """A JSON-RPC 2.0 notification (no ``id``, never answered)."""

    jsonrpc: str = "2.0"
    method: str
    params: dict[str, Any] | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class JsonRpcError(BaseModel):
    """A JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any = None


class JsonRpcResponse(BaseModel):
    """A JSON-RPC 2.0 response message.

    Exactly one of ``result`` and ``error`` is present on the wire.  ``id`` is
    ``None`` only for errors answering a message whose id could not be read.
    """

    jsonrpc: str = "2.0"
    id: RequestId | None = None
    result: dict[str, Any] | None = None
    error: JsonRpcError | None = None

    @classmethod
    def success(cls, request_id: RequestId | None, result: dict[str, Any]) -> JsonRpcResponse:
        return cls(id=request_id, result=result)

    @classmethod
    def failure(
        cls,
        request_id: RequestId | None,
        code: int,
        message: str,
        data: Any = None,
    ) -> JsonRpcResponse:
        return cls(id=request_id, error=JsonRpcError(code=code, message=message, data=data))

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            wire["error"] = self.error.model_dump(exclude_none=True)
        else:
            wire["result"] = self.result if self.result is not None else {}
        return wire


Message = Union[JsonRpcRequest, JsonRpcNotification, JsonRpcResponse]


def parse_message(data: Any, *, raw: str = "") -> Message:
    """Classify a decoded JSON value as a request, notification, or response.

    Raises:
        MessageDecodeError: If *data* is not a well-formed JSON-RPC message.
    """
    if not isinstance(data, dict):
        raise MessageDecodeError(
            "JSON-RPC message must be an object", code=INVALID_REQUEST, raw=raw
        )

    request_id = data.get("id")
    try:
        if "method" in data:
            if not isinstance(data["method"], str):
                msg = "'method' must be a string"
                raise MessageDecodeError(msg, code=INVALID_REQUEST, raw=raw, request_id=request_id)
            if data.get("params") is not None and not isinstance(data["params"], dict):
                msg = "'params' must be an object"
                raise MessageDecodeError(msg, code=INVALID_REQUEST, raw=raw, request_id=request_id)
            if request_id is None:
                return JsonRpcNotification.model_validate(data)
            return JsonRpcRequest.model_validate({**data, "params": data.get("params") or {}})
        if "result" in data or "error" in data:
            return JsonRpcResponse.model_validate(data)
    except ValidationError as exc:
        raise MessageDecodeError(
            f"Invalid JSON-RPC message: {exc.error_count()} validation error(s)",
            code=INVALID_REQUEST,
            raw=raw,
            request_id=request_id if isinstance(request_id, (int, str)) else None,
        ) from exc

    raise MessageDecodeError(
        "Message is neither a request nor a response",
        code=INVALID_REQUEST,
        raw=raw,
        request_id=request_id if isinstance(request_id, (int, str)) else None,
    )


# ---------------------------------------------------------------------------
# MCP-specific payloads
# ---------------------------------------------------------------------------


class ToolDefinition(BaseModel):
    """A tool declaration as returned by ``tools/list``."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        validation_alias=AliasChoices("inputSchema", "input_schema"),
        serialization_alias="inputSchema",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class TextContent(BaseModel):
    """A ``{"type": "text"}`` content block."""

    type: Literal["text"] = "text"
    text: str


# Unknown block types (images, resources, ...) from peers are kept as-is.
ContentBlock = Annotated[Union[TextContent, dict[str, Any]], Field(union_mode="left_to_right")]


class CallToolResult(BaseModel):
    """The payload of a successful ``tools/call`` response.

    ``is_error=True`` is a *tool-level* failure: the RPC succeeded and
    ``content`` explains what went wrong.
    """

    model_config = ConfigDict(populate_by_name=True)

    content: list[ContentBlock] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @classmethod
    def text(cls, text: str) -> CallToolResult:
        return cls(content=[TextContent(text=text)], is_error=False)

    @classmethod
    def error(cls, text: str) -> CallToolResult:
        return cls(content=[TextContent(text=text)], is_error=True)

    def text_content(self) -> str:
        """Join every text block with newlines."""
        return "\n".join(b.text for b in self.content if isinstance(b, TextContent))

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class PeerInfo(BaseModel):
    """``clientInfo`` / ``serverInfo`` identity block."""

    name: str = ""
    version: str = ""


class Capabilities(BaseModel):
    """Declared capability set.

    Only ``tools`` is interpreted; any other fields a peer declares are kept
    so that a newer peer never fails the handshake.
    """

    model_config = ConfigDict(extra="allow")

    tools: dict[str, Any] | None = None


class InitializeParams(BaseModel):
    """Parameters of the client's ``initialize`` request."""

    model_config = ConfigDict(populate_by_name=True)

    protocol_version: str = Field(default=PROTOCOL_VERSION, alias="protocolVersion")
    capabilities: Capabilities = Field(default_factory=Capabilities)
    client_info: PeerInfo | None = Field(default=None, alias="clientInfo")


class InitializeResult(BaseModel):
    """The server's answer to ``initialize``."""

    model_config = ConfigDict(populate_by_name=True)

    protocol_version: str = Field(default=PROTOCOL_VERSION, alias="protocolVersion")
    capabilities: Capabilities = Field(default_factory=Capabilities)
    server_info: PeerInfo | None = Field(default=None, alias="serverInfo")
    instructions: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
