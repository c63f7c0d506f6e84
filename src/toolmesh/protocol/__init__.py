"""Protocol layer — JSON-RPC messages, wire codec, client transports and session."""

from toolmesh.protocol.codec import MessageStream
from toolmesh.protocol.errors import (
    ExecutionFailedError,
    InvalidArgumentsError,
    MessageDecodeError,
    PolicyRejectedError,
    ProtocolError,
    RegistrationError,
    SessionError,
    ToolError,
    ToolErrorKind,
    ToolNotFoundError,
    ToolTimeoutError,
    TransportError,
)
from toolmesh.protocol.models import CallToolResult, TextContent, ToolDefinition
from toolmesh.protocol.session import ClientSession
from toolmesh.protocol.transport import HttpTransport, StdioTransport, StreamTransport

__all__ = [
    "CallToolResult",
    "ClientSession",
    "ExecutionFailedError",
    "HttpTransport",
    "InvalidArgumentsError",
    "MessageDecodeError",
    "MessageStream",
    "PolicyRejectedError",
    "ProtocolError",
    "RegistrationError",
    "SessionError",
    "StdioTransport",
    "StreamTransport",
    "TextContent",
    "ToolDefinition",
    "ToolError",
    "ToolErrorKind",
    "ToolNotFoundError",
    "ToolTimeoutError",
    "TransportError",
]
