"""ToolProvider protocol — a named source of tools.

Every tool source (in-process registry, remote MCP server, ...) satisfies this
protocol so that :class:`~toolmesh.providers.composite.CompositeToolProvider`
can aggregate and route without knowing what is behind it.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from toolmesh.protocol.errors import RegistrationError

if TYPE_CHECKING:
    from toolmesh.protocol.models import CallToolResult, ToolDefinition

NAMESPACE_SEPARATOR = "__"

_NAMESPACE_RE = re.compile(r"^[A-Za-z0-9_-]+$")


@runtime_checkable
class ToolProvider(Protocol):
    """Lists tool definitions and executes tools by their local name."""

    @property
    def namespace(self) -> str:
        """Stable, non-empty prefix; never contains :data:`NAMESPACE_SEPARATOR`."""
        ...

    async def list_tools(self) -> list[ToolDefinition]:
        """Return this provider's tools under their *local* names.

        Must be safe to call repeatedly and has no side effects.
        """
        ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        """Execute the tool *name* (local, un-prefixed).

        Raises:
            ToolError: For not-found, invalid-argument, execution, policy or
                timeout failures.
        """
        ...


def validate_namespace(namespace: str) -> None:
    """Reject namespaces that would make ``"{ns}__{name}"`` ambiguous to split.

    A trailing underscore is refused too: ``"a_" + "__" + "b"`` reads back as
    namespace ``"a"``.
    """
    if not namespace or not _NAMESPACE_RE.match(namespace):
        msg = f"Invalid namespace {namespace!r}: use letters, digits, '-' and '_'"
        raise RegistrationError(msg)
    if NAMESPACE_SEPARATOR in namespace or namespace.endswith("_"):
        msg = f"Invalid namespace {namespace!r}: must not contain {NAMESPACE_SEPARATOR!r} or end with '_'"
        raise RegistrationError(msg)


def is_valid_local_name(name: str) -> bool:
    return bool(name) and NAMESPACE_SEPARATOR not in name


def qualify(namespace: str, name: str) -> str:
    return f"{namespace}{NAMESPACE_SEPARATOR}{name}"


def split_qualified(qualified: str) -> tuple[str, str] | None:
    """Split on the first separator; ``None`` if there is none."""
    namespace, sep, local = qualified.partition(NAMESPACE_SEPARATOR)
    if not sep or not namespace or not local:
        return None
    return namespace, local
