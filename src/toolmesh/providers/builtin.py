"""In-process tools and the provider that serves them.

- :class:`FunctionTool` — one named, schema-described callable.
- :class:`ToolRegistry` — the host's collection of tools.
- :class:`BuiltinToolProvider` — adapts a registry to :class:`ToolProvider`.

Usage::

    registry = ToolRegistry()

    @registry.tool(description="Echo the input text.", input_schema={
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    })
    def echo(arguments):
        return arguments["text"]

    provider = BuiltinToolProvider(registry)
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from toolmesh.protocol.errors import (
    ExecutionFailedError,
    InvalidArgumentsError,
    ToolError,
    ToolNotFoundError,
    ToolTimeoutError,
)
from toolmesh.protocol.models import CallToolResult, ToolDefinition
from toolmesh.providers.base import NAMESPACE_SEPARATOR, is_valid_local_name, validate_namespace

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

BUILTIN_NAMESPACE = "builtin"


@dataclass(frozen=True)
class FunctionTool:
    """A tool backed by a sync or async callable taking the arguments mapping."""

    name: str
    handler: Callable[[dict[str, Any]], Any]
    description: str = ""
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema,
        )

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Check required keys and, when the schema forbids them, unknown keys.

        Raises:
            InvalidArgumentsError: On the first violation found.
        """
        missing = [key for key in self.input_schema.get("required", []) if key not in arguments]
        if missing:
            raise InvalidArgumentsError(self.name, f"missing required: {', '.join(missing)}")

        if self.input_schema.get("additionalProperties") is False:
            known = set(self.input_schema.get("properties", {}))
            extra = sorted(set(arguments) - known)
            if extra:
                raise InvalidArgumentsError(self.name, f"unexpected: {', '.join(extra)}")


class ToolRegistry:
    """Name-keyed collection of :class:`FunctionTool` objects."""

    def __init__(self) -> None:
        self._tools: dict[str, FunctionTool] = {}

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def register(self, tool: FunctionTool) -> None:
        """Add *tool*.

        Raises:
            ValueError: On a duplicate name or a name containing the
                namespace separator.
        """
        if not is_valid_local_name(tool.name):
            msg = f"Invalid tool name {tool.name!r}: must be non-empty and not contain {NAMESPACE_SEPARATOR!r}"
            raise ValueError(msg)
        if tool.name in self._tools:
            msg = f"Tool already registered: {tool.name}"
            raise ValueError(msg)
        self._tools[tool.name] = tool

    def tool(
        self,
        name: str | None = None,
        *,
        description: str | None = None,
        input_schema: dict[str, Any] | None = None,
    ) -> Callable[[Callable[[dict[str, Any]], Any]], Callable[[dict[str, Any]], Any]]:
        """Decorator form of :meth:`register`.

        Name defaults to the function name, description to its docstring.
        """

        def decorator(fn: Callable[[dict[str, Any]], Any]) -> Callable[[dict[str, Any]], Any]:
            kwargs: dict[str, Any] = {
                "name": name or fn.__name__,
                "handler": fn,
                "description": description if description is not None else inspect.getdoc(fn) or "",
            }
            if input_schema is not None:
                kwargs["input_schema"] = input_schema
            self.register(FunctionTool(**kwargs))
            return fn

        return decorator

    def get(self, name: str) -> FunctionTool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[ToolDefinition]:
        return [t.definition() for t in self._tools.values()]

    def schemas(self) -> list[dict[str, Any]]:
        """Return tools as OpenAI-compatible function schemas."""
        return [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.input_schema or {"type": "object", "properties": {}},
                },
            }
            for t in self._tools.values()
        ]

    async def execute(self, name: str, arguments: dict[str, Any]) -> Any:
        """Validate *arguments* and run the tool.

        Sync handlers run in the default executor so a timeout around this
        call can still fire.

        Raises:
            ToolNotFoundError: If *name* is not registered.
            InvalidArgumentsError: If the arguments fail validation.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        tool.validate_arguments(arguments)

        if inspect.iscoroutinefunction(tool.handler):
            return await tool.handler(arguments)

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, functools.partial(tool.handler, arguments))
        # Handle callables that return an awaitable without being coroutine functions.
        if inspect.isawaitable(result):
            result = await result
        return result


class BuiltinToolProvider:
    """Serves a :class:`ToolRegistry` as a :class:`~toolmesh.providers.base.ToolProvider`.

    Unknown names fail with :class:`ToolNotFoundError` before the registry
    is touched.  Anything the tool raises other than a :class:`ToolError`
    becomes :class:`ExecutionFailedError` carrying the original message.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        namespace: str = BUILTIN_NAMESPACE,
        timeout: float | None = None,
    ) -> None:
        validate_namespace(namespace)
        self._registry = registry
        self._namespace = namespace
        self._timeout = timeout

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def list_tools(self) -> list[ToolDefinition]:
        return self._registry.definitions()

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        if name not in self._registry:
            raise ToolNotFoundError(name)

        try:
            if self._timeout is None:
                output = await self._registry.execute(name, arguments)
            else:
                output = await asyncio.wait_for(
                    self._registry.execute(name, arguments), self._timeout
                )
        except ToolError:
            raise
        except TimeoutError as exc:
            raise ToolTimeoutError(name, self._timeout) from exc
        except Exception as exc:
            logger.debug("Builtin tool %s raised", name, exc_info=True)
            raise ExecutionFailedError(name, str(exc) or type(exc).__name__) from exc

        if isinstance(output, CallToolResult):
            return output
        return CallToolResult.text(_render(output))


def _render(output: Any) -> str:
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    try:
        return json.dumps(output, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(output)
