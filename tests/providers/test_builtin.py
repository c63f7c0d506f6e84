"""Tests for ToolRegistry and BuiltinToolProvider."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from toolmesh.protocol.errors import (
    ExecutionFailedError,
    InvalidArgumentsError,
    RegistrationError,
    ToolErrorKind,
    ToolNotFoundError,
    ToolTimeoutError,
)
from toolmesh.protocol.models import CallToolResult
from toolmesh.providers.builtin import BuiltinToolProvider, FunctionTool, ToolRegistry

_ECHO_SCHEMA = {
    "type": "object",
    "properties": {"text": {"type": "string"}},
    "required": ["text"],
}


@pytest.fixture
def registry() -> ToolRegistry:
    reg = ToolRegistry()

    @reg.tool(input_schema=_ECHO_SCHEMA)
    def echo(arguments: dict[str, Any]) -> str:
        """Echo the input text."""
        return arguments["text"]

    @reg.tool(name="add", description="Add two numbers.")
    async def add_numbers(arguments: dict[str, Any]) -> dict[str, int]:
        return {"sum": arguments.get("a", 0) + arguments.get("b", 0)}

    return reg


class TestToolRegistry:
    def test_decorator_registers(self, registry: ToolRegistry) -> None:
        assert registry.names() == ["echo", "add"]
        assert len(registry) == 2
        assert "echo" in registry

    def test_description_from_docstring(self, registry: ToolRegistry) -> None:
        tool = registry.get("echo")
        assert tool is not None
        assert tool.description == "Echo the input text."

    def test_default_schema(self, registry: ToolRegistry) -> None:
        definitions = {d.name: d for d in registry.definitions()}
        assert definitions["add"].input_schema == {"type": "object", "properties": {}}
        assert definitions["echo"].input_schema == _ECHO_SCHEMA

    def test_duplicate_rejected(self, registry: ToolRegistry) -> None:
        with pytest.raises(ValueError, match="already registered"):
            registry.register(FunctionTool(name="echo", handler=lambda a: a))

    @pytest.mark.parametrize("name", ["", "a__b"])
    def test_invalid_name_rejected(self, name: str) -> None:
        with pytest.raises(ValueError, match="Invalid tool name"):
            ToolRegistry().register(FunctionTool(name=name, handler=lambda a: a))

    def test_schemas(self, registry: ToolRegistry) -> None:
        schemas = registry.schemas()
        assert schemas[0] == {
            "type": "function",
            "function": {
                "name": "echo",
                "description": "Echo the input text.",
                "parameters": _ECHO_SCHEMA,
            },
        }

    async def test_execute_sync_and_async(self, registry: ToolRegistry) -> None:
        assert await registry.execute("echo", {"text": "hi"}) == "hi"
        assert await registry.execute("add", {"a": 2, "b": 3}) == {"sum": 5}

    async def test_execute_unknown(self, registry: ToolRegistry) -> None:
        with pytest.raises(ToolNotFoundError):
            await registry.execute("missing", {})

    async def test_missing_required_argument(self, registry: ToolRegistry) -> None:
        with pytest.raises(InvalidArgumentsError, match="text"):
            await registry.execute("echo", {})

    async def test_unexpected_argument_when_closed_schema(self) -> None:
        reg = ToolRegistry()
        reg.register(
            FunctionTool(
                name="strict",
                handler=lambda a: "ok",
                input_schema={"type": "object", "properties": {"x": {}}, "additionalProperties": False},
            )
        )
        with pytest.raises(InvalidArgumentsError, match="unexpected: y"):
            await reg.execute("strict", {"x": 1, "y": 2})


class TestBuiltinToolProvider:
    def test_default_namespace(self, registry: ToolRegistry) -> None:
        assert BuiltinToolProvider(registry).namespace == "builtin"

    def test_invalid_namespace(self, registry: ToolRegistry) -> None:
        with pytest.raises(RegistrationError):
            BuiltinToolProvider(registry, namespace="bad__ns")

    async def test_list_tools_uses_local_names(self, registry: ToolRegistry) -> None:
        tools = await BuiltinToolProvider(registry).list_tools()
        assert [t.name for t in tools] == ["echo", "add"]

    async def test_string_output_is_text(self, registry: ToolRegistry) -> None:
        result = await BuiltinToolProvider(registry).call_tool("echo", {"text": "hi"})
        assert result.to_wire() == {"content": [{"type": "text", "text": "hi"}], "isError": False}

    async def test_structured_output_is_json(self, registry: ToolRegistry) -> None:
        result = await BuiltinToolProvider(registry).call_tool("add", {"a": 1, "b": 1})
        assert result.text_content() == '{"sum": 2}'

    async def test_none_output_is_empty_text(self) -> None:
        reg = ToolRegistry()
        reg.register(FunctionTool(name="noop", handler=lambda a: None))
        result = await BuiltinToolProvider(reg).call_tool("noop", {})
        assert result.text_content() == ""

    async def test_call_tool_result_passes_through(self) -> None:
        reg = ToolRegistry()
        reg.register(FunctionTool(name="fail_soft", handler=lambda a: CallToolResult.error("soft")))
        result = await BuiltinToolProvider(reg).call_tool("fail_soft", {})
        assert result.is_error
        assert result.text_content() == "soft"

    async def test_unknown_tool_never_executes(self, registry: ToolRegistry) -> None:
        provider = BuiltinToolProvider(registry)
        calls: list[str] = []
        registry.execute = lambda name, arguments: calls.append(name)  # type: ignore[method-assign]

        with pytest.raises(ToolNotFoundError) as exc_info:
            await provider.call_tool("missing", {})

        assert exc_info.value.kind is ToolErrorKind.NOT_FOUND
        assert calls == []

    async def test_invalid_arguments_propagate(self, registry: ToolRegistry) -> None:
        with pytest.raises(InvalidArgumentsError):
            await BuiltinToolProvider(registry).call_tool("echo", {})

    async def test_exception_becomes_execution_failed(self) -> None:
        reg = ToolRegistry()

        @reg.tool()
        def write_file(arguments: dict[str, Any]) -> None:
            msg = "disk full"
            raise OSError(msg)

        with pytest.raises(ExecutionFailedError) as exc_info:
            await BuiltinToolProvider(reg).call_tool("write_file", {})

        assert exc_info.value.detail == "disk full"
        assert isinstance(exc_info.value.__cause__, OSError)

    async def test_timeout(self) -> None:
        reg = ToolRegistry()

        @reg.tool()
        async def slow(arguments: dict[str, Any]) -> str:
            await asyncio.sleep(10)
            return "late"

        with pytest.raises(ToolTimeoutError) as exc_info:
            await BuiltinToolProvider(reg, timeout=0.05).call_tool("slow", {})
        assert exc_info.value.timeout == 0.05
