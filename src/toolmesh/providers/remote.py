"""RemoteToolProvider — re-exports the tools of another MCP server."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from toolmesh.providers.base import validate_namespace

if TYPE_CHECKING:
    from toolmesh.protocol.models import CallToolResult, ToolDefinition
    from toolmesh.protocol.session import ClientSession


class RemoteToolProvider:
    """Proxies ``list_tools``/``call_tool`` to a connected :class:`ClientSession`.

    The session's lifetime belongs to the caller; this provider never
    connects or closes it.  Listings are not cached, so a remote server that
    changes its tool set is reflected on the next ``tools/list``.
    """

    def __init__(self, namespace: str, session: ClientSession) -> None:
        validate_namespace(namespace)
        self._namespace = namespace
        self._session = session

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def session(self) -> ClientSession:
        return self._session

    async def list_tools(self) -> list[ToolDefinition]:
        return await self._session.list_tools()

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        return await self._session.call_tool(name, arguments)
