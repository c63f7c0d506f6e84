"""Middleware hooks and the chain that runs them around every tool call.

Hooks run in registration order for ``filter_tools`` and ``before_call``, and
in reverse order for ``after_call``, so the first middleware registered is the
outermost layer: it sees the call first and the fully processed result last.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from toolmesh.protocol.errors import PolicyRejectedError, ToolError
from toolmesh.protocol.models import CallToolResult

if TYPE_CHECKING:
    from collections.abc import Iterable

    from toolmesh.protocol.models import ToolDefinition

logger = logging.getLogger(__name__)


@dataclass
class MiddlewareContext:
    """Per-call state shared by reference across the chain.

    ``permissions`` is the caller's allowed tool set (``None`` = unrestricted).
    ``result`` is filled in once the provider has answered.
    """

    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    permissions: frozenset[str] | None = None
    result: CallToolResult | None = None
    started_at: float = field(default_factory=time.monotonic)


class Middleware:
    """Base class; every hook passes its input through unchanged."""

    async def filter_tools(self, tools: list[ToolDefinition]) -> list[ToolDefinition]:
        return tools

    async def before_call(self, context: MiddlewareContext) -> None:
        """Raise :class:`ToolError` to veto the call."""

    async def after_call(self, context: MiddlewareContext) -> CallToolResult:
        """Return the (possibly transformed) ``context.result``."""
        assert context.result is not None
        return context.result


class MiddlewareChain:
    """Ordered sequence of :class:`Middleware` applied by explicit iteration."""

    def __init__(self, middlewares: Iterable[Middleware] | None = None) -> None:
        self._middlewares: list[Middleware] = list(middlewares or [])

    def __len__(self) -> int:
        return len(self._middlewares)

    @property
    def middlewares(self) -> list[Middleware]:
        return list(self._middlewares)

    def add(self, middleware: Middleware) -> None:
        self._middlewares.append(middleware)

    async def filter_tools(self, tools: list[ToolDefinition]) -> list[ToolDefinition]:
        for mw in self._middlewares:
            try:
                tools = await mw.filter_tools(tools)
            except Exception:
                # Fail closed: a broken filter hides everything.
                logger.exception("Middleware %s failed in filter_tools", type(mw).__name__)
                return []
        return tools

    async def before_call(self, context: MiddlewareContext) -> None:
        """Run every ``before_call``; the first rejection stops the chain.

        Raises:
            ToolError: The rejecting middleware's error.  Unexpected
                exceptions are reported as :class:`PolicyRejectedError`.
        """
        for mw in self._middlewares:
            try:
                await mw.before_call(context)
            except ToolError:
                raise
            except Exception as exc:
                logger.exception("Middleware %s failed in before_call", type(mw).__name__)
                raise PolicyRejectedError(
                    context.tool_name, f"{type(mw).__name__} failed: {exc}"
                ) from exc

    async def after_call(self, context: MiddlewareContext) -> CallToolResult:
        """Run every ``after_call`` in reverse order and return the final result.

        A :class:`ToolError` from a hook replaces the result with an error
        result; the remaining (outer) middlewares still see it.
        """
        for mw in reversed(self._middlewares):
            try:
                context.result = await mw.after_call(context)
            except ToolError as exc:
                context.result = CallToolResult.error(str(exc))
            except Exception as exc:
                logger.exception("Middleware %s failed in after_call", type(mw).__name__)
                rejected = PolicyRejectedError(context.tool_name, f"{type(mw).__name__} failed: {exc}")
                context.result = CallToolResult.error(str(rejected))
        assert context.result is not None
        return context.result
