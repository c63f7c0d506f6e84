"""Shared error types for the protocol layer.

Two families live here:

- :class:`ToolError` and its subclasses are *tool-level* failures.  The server
  reports them as successful RPCs carrying ``isError: true``; clients receive
  them as typed exceptions with a :attr:`ToolError.kind` to branch on.
- :class:`ProtocolError` and its subclasses are framing, handshake, and
  transport failures.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ToolErrorKind(str, Enum):
    """Discriminator for :class:`ToolError` subclasses."""

    INVALID_ARGUMENTS = "invalid_arguments"
    NOT_FOUND = "not_found"
    EXECUTION_FAILED = "execution_failed"
    POLICY_REJECTED = "policy_rejected"
    TIMEOUT = "timeout"


class ToolError(Exception):
    """Base error for a tool call that did not produce a result."""

    kind: ToolErrorKind = ToolErrorKind.EXECUTION_FAILED

    def __init__(self, message: str, *, detail: str = "") -> None:
        self.detail = detail
        super().__init__(message)


class InvalidArgumentsError(ToolError):
    """The arguments did not satisfy the tool's input schema."""

    kind = ToolErrorKind.INVALID_ARGUMENTS

    def __init__(self, name: str, detail: str = "") -> None:
        self.name = name
        super().__init__(
            f"Invalid arguments for tool: {name}" + (f" - {detail}" if detail else ""),
            detail=detail,
        )


class ToolNotFoundError(ToolError):
    """Requested tool does not exist in the provider's registry."""

    kind = ToolErrorKind.NOT_FOUND

    def __init__(self, name: str, detail: str = "") -> None:
        self.name = name
        super().__init__(
            f"Tool not found: {name}" + (f" ({detail})" if detail else ""),
            detail=detail,
        )


class ExecutionFailedError(ToolError):
    """A tool invocation failed at the provider side."""

    kind = ToolErrorKind.EXECUTION_FAILED

    def __init__(self, name: str, detail: str = "") -> None:
        self.name = name
        super().__init__(
            f"Tool execution failed: {name}" + (f" - {detail}" if detail else ""),
            detail=detail,
        )


class PolicyRejectedError(ToolError):
    """A middleware or session precondition vetoed the call."""

    kind = ToolErrorKind.POLICY_REJECTED

    def __init__(self, name: str, detail: str = "") -> None:
        self.name = name
        super().__init__(
            f"Call rejected by policy: {name}" + (f" - {detail}" if detail else ""),
            detail=detail,
        )


class ToolTimeoutError(ToolError):
    """The tool did not finish within the allotted time."""

    kind = ToolErrorKind.TIMEOUT

    def __init__(self, name: str, timeout: float | None = None) -> None:
        self.name = name
        self.timeout = timeout
        suffix = f" after {timeout}s" if timeout is not None else ""
        super().__init__(f"Tool timed out: {name}{suffix}", detail=suffix.strip())


# ---------------------------------------------------------------------------
# Protocol / transport errors
# ---------------------------------------------------------------------------


class ProtocolError(Exception):
    """Base error for all protocol-layer failures."""


class MessageDecodeError(ProtocolError):
    """A line on the wire could not be decoded into a JSON-RPC message.

    ``code`` is the JSON-RPC error code the receiving side should answer
    with; ``request_id`` is set when the payload parsed far enough to carry one.
    """

    def __init__(self, detail: str, *, code: int, raw: str = "", request_id: Any = None) -> None:
        self.detail = detail
        self.code = code
        self.raw = raw
        self.request_id = request_id
        super().__init__(detail)


class TransportError(ProtocolError):
    """The underlying byte stream or connection failed."""


class SessionError(ProtocolError):
    """The initialize handshake with a peer failed."""


class RegistrationError(Exception):
    """A provider could not be registered on a composite."""


class JsonRpcErrorResponse(ProtocolError):
    """The peer answered a request with a JSON-RPC ``error`` object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"JSON-RPC error {code}: {message}")
