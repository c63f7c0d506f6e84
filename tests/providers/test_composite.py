"""Tests for CompositeToolProvider routing and aggregation."""

from __future__ import annotations

from typing import Any

import pytest

from toolmesh.protocol.errors import (
    ExecutionFailedError,
    InvalidArgumentsError,
    RegistrationError,
    ToolNotFoundError,
)
from toolmesh.protocol.models import CallToolResult, ToolDefinition
from toolmesh.providers.composite import CompositeToolProvider


class _StaticProvider:
    """Records calls and answers with ``"<namespace>:<name>"``."""

    def __init__(self, namespace: str, names: list[str], *, fail_listing: bool = False) -> None:
        self.namespace = namespace
        self._names = names
        self._fail_listing = fail_listing
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def list_tools(self) -> list[ToolDefinition]:
        if self._fail_listing:
            msg = "listing unavailable"
            raise ConnectionError(msg)
        return [ToolDefinition(name=n, description=f"{n} tool") for n in self._names]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        self.calls.append((name, arguments))
        return CallToolResult.text(f"{self.namespace}:{name}")


class _RaisingProvider(_StaticProvider):
    def __init__(self, namespace: str, exc: Exception) -> None:
        super().__init__(namespace, ["boom"])
        self._exc = exc

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        raise self._exc


class TestRegister:
    def test_duplicate_namespace_rejected(self) -> None:
        composite = CompositeToolProvider()
        composite.register(_StaticProvider("a", []))

        with pytest.raises(RegistrationError, match="already registered"):
            composite.register(_StaticProvider("a", []))
        assert len(composite) == 1

    def test_invalid_namespace_rejected(self) -> None:
        with pytest.raises(RegistrationError):
            CompositeToolProvider().register(_StaticProvider("a__b", []))

    def test_registration_order(self) -> None:
        composite = CompositeToolProvider()
        first, second = _StaticProvider("b", []), _StaticProvider("a", [])
        composite.register(first)
        composite.register(second)

        assert composite.namespaces == ["b", "a"]
        assert composite.get("a") is second
        assert composite.get("zzz") is None


class TestListToolsAll:
    async def test_prefixes_names_in_registration_order(self) -> None:
        composite = CompositeToolProvider()
        composite.register(_StaticProvider("a", ["echo", "time"]))
        composite.register(_StaticProvider("b", ["echo"]))

        tools = await composite.list_tools_all()

        assert [t.name for t in tools] == ["a__echo", "a__time", "b__echo"]
        assert tools[0].description == "echo tool"

    async def test_failing_provider_is_omitted(self) -> None:
        composite = CompositeToolProvider()
        composite.register(_StaticProvider("a", ["x"], fail_listing=True))
        composite.register(_StaticProvider("b", ["y"]))

        tools = await composite.list_tools_all()

        assert [t.name for t in tools] == ["b__y"]

    async def test_unnamespaceable_tools_are_skipped(self) -> None:
        composite = CompositeToolProvider()
        composite.register(_StaticProvider("a", ["ok", "bad__name"]))

        assert [t.name for t in await composite.list_tools_all()] == ["a__ok"]

    async def test_provider_definitions_are_not_mutated(self) -> None:
        definition = ToolDefinition(name="echo")

        class _Fixed(_StaticProvider):
            async def list_tools(self) -> list[ToolDefinition]:
                return [definition]

        composite = CompositeToolProvider()
        composite.register(_Fixed("a", []))
        await composite.list_tools_all()

        assert definition.name == "echo"

    async def test_mapping_entries_are_validated(self) -> None:
        class _Raw(_StaticProvider):
            async def list_tools(self) -> list[Any]:
                return [{"name": "echo", "inputSchema": {"type": "object"}}]

        composite = CompositeToolProvider()
        composite.register(_Raw("a", []))

        tools = await composite.list_tools_all()

        assert [t.name for t in tools] == ["a__echo"]
        assert tools[0].input_schema == {"type": "object"}

    @pytest.mark.parametrize("entries", [["not-a-tool"], [{"description": "no name"}], None])
    async def test_provider_with_malformed_entries_is_omitted(self, entries: Any) -> None:
        class _Broken(_StaticProvider):
            async def list_tools(self) -> Any:
                return entries

        composite = CompositeToolProvider()
        composite.register(_Broken("a", []))
        composite.register(_StaticProvider("b", ["echo"]))

        assert [t.name for t in await composite.list_tools_all()] == ["b__echo"]

    async def test_empty(self) -> None:
        assert await CompositeToolProvider().list_tools_all() == []


class TestCallTool:
    async def test_routes_by_namespace(self) -> None:
        a, b = _StaticProvider("a", ["echo"]), _StaticProvider("b", ["echo"])
        composite = CompositeToolProvider()
        composite.register(a)
        composite.register(b)

        result = await composite.call_tool("b__echo", {"text": "hi"})

        assert result.text_content() == "b:echo"
        assert b.calls == [("echo", {"text": "hi"})]
        assert a.calls == []

    async def test_splits_on_first_separator(self) -> None:
        provider = _StaticProvider("a", [])
        composite = CompositeToolProvider()
        composite.register(provider)

        await composite.call_tool("a__x__y", {})

        assert provider.calls == [("x__y", {})]

    async def test_no_separator(self) -> None:
        provider = _StaticProvider("a", ["echo"])
        composite = CompositeToolProvider()
        composite.register(provider)

        with pytest.raises(ToolNotFoundError, match="no namespace prefix"):
            await composite.call_tool("echo", {})
        assert provider.calls == []

    async def test_unknown_namespace(self) -> None:
        composite = CompositeToolProvider()
        composite.register(_StaticProvider("a", ["echo"]))

        with pytest.raises(ToolNotFoundError, match="no provider for namespace 'zzz'"):
            await composite.call_tool("zzz__echo", {})

    async def test_tool_errors_pass_through(self) -> None:
        composite = CompositeToolProvider()
        composite.register(_RaisingProvider("a", InvalidArgumentsError("boom", "missing: x")))

        with pytest.raises(InvalidArgumentsError):
            await composite.call_tool("a__boom", {})

    async def test_unexpected_exception_is_wrapped(self) -> None:
        composite = CompositeToolProvider()
        composite.register(_RaisingProvider("a", RuntimeError("kaput")))

        with pytest.raises(ExecutionFailedError) as exc_info:
            await composite.call_tool("a__boom", {})

        assert exc_info.value.name == "a__boom"
        assert exc_info.value.detail == "kaput"
