"""Built-in middlewares."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from toolmesh.middleware.base import Middleware, MiddlewareContext
from toolmesh.middleware.policy import (
    CommandPolicy,
    PolicyAction,
    PolicyEngine,
    PolicyViolation,
    ToolPolicyConfig,
    UrlPolicy,
)
from toolmesh.protocol.errors import PolicyRejectedError
from toolmesh.protocol.models import CallToolResult, TextContent

if TYPE_CHECKING:
    from collections.abc import Iterable

    from toolmesh.protocol.models import ToolDefinition

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULT_BYTES = 64 * 1024
TRUNCATION_MARKER = "\n[truncated]"


class SecurityGuard(Middleware):
    """Checks shell commands and outbound URLs before the call runs.

    Tools whose name contains ``exec`` or ``shell`` have their ``command``
    argument validated against the :class:`CommandPolicy`; tools whose name
    contains ``fetch`` or ``search`` have their ``url`` argument validated
    against the :class:`UrlPolicy`.
    """

    def __init__(
        self,
        command_policy: CommandPolicy | None = None,
        url_policy: UrlPolicy | None = None,
    ) -> None:
        self.command_policy = command_policy or CommandPolicy()
        self.url_policy = url_policy or UrlPolicy()

    async def before_call(self, context: MiddlewareContext) -> None:
        name = context.tool_name.lower()

        command = context.arguments.get("command")
        if ("exec" in name or "shell" in name) and isinstance(command, str):
            try:
                self.command_policy.validate_command(command)
            except PolicyViolation as exc:
                raise PolicyRejectedError(context.tool_name, f"command rejected: {exc}") from exc

        url = context.arguments.get("url")
        if ("fetch" in name or "search" in name) and isinstance(url, str):
            try:
                self.url_policy.validate_url(url)
            except PolicyViolation as exc:
                raise PolicyRejectedError(context.tool_name, f"URL rejected: {exc}") from exc


class ToolPolicyGuard(Middleware):
    """Applies glob allow/deny rules to tool names, hiding denied tools too."""

    def __init__(self, config: ToolPolicyConfig | None = None) -> None:
        self._engine = PolicyEngine(config or ToolPolicyConfig())

    @property
    def engine(self) -> PolicyEngine:
        return self._engine

    async def filter_tools(self, tools: list[ToolDefinition]) -> list[ToolDefinition]:
        return [t for t in tools if self._engine.evaluate(t.name) == PolicyAction.ALLOW]

    async def before_call(self, context: MiddlewareContext) -> None:
        if self._engine.evaluate(context.tool_name) == PolicyAction.DENY:
            rule = self._engine.match(context.tool_name)
            reason = rule.reason if rule is not None and rule.reason else "denied by policy"
            raise PolicyRejectedError(context.tool_name, reason)


class PermissionFilter(Middleware):
    """Restricts listing and calling to an allowlist of namespaced names.

    ``allowed_tools=None`` leaves the configured set unrestricted.  The
    per-call ``context.permissions`` set, when present, narrows it further.
    """

    def __init__(self, allowed_tools: Iterable[str] | None = None) -> None:
        self.allowed_tools = frozenset(allowed_tools) if allowed_tools is not None else None

    async def filter_tools(self, tools: list[ToolDefinition]) -> list[ToolDefinition]:
        if self.allowed_tools is None:
            return tools
        return [t for t in tools if t.name in self.allowed_tools]

    async def before_call(self, context: MiddlewareContext) -> None:
        if self.allowed_tools is not None and context.tool_name not in self.allowed_tools:
            raise PolicyRejectedError(context.tool_name, "tool is not in the allowed set")
        if context.permissions is not None and context.tool_name not in context.permissions:
            raise PolicyRejectedError(context.tool_name, "caller lacks permission for this tool")


class ResultGuard(Middleware):
    """Caps each text block at ``max_bytes`` of UTF-8, marker included.

    Output that already fits is returned untouched, so running the guard
    over its own output changes nothing.
    """

    def __init__(self, max_bytes: int = DEFAULT_MAX_RESULT_BYTES) -> None:
        if max_bytes <= 0:
            msg = f"max_bytes must be positive, got {max_bytes}"
            raise ValueError(msg)
        self.max_bytes = max_bytes

    def truncate(self, text: str) -> str:
        encoded = text.encode("utf-8")
        if len(encoded) <= self.max_bytes:
            return text

        marker = TRUNCATION_MARKER.encode("utf-8")
        if len(marker) >= self.max_bytes:
            return _cut_utf8(encoded, self.max_bytes)
        return _cut_utf8(encoded, self.max_bytes - len(marker)) + TRUNCATION_MARKER

    async def after_call(self, context: MiddlewareContext) -> CallToolResult:
        result = context.result
        assert result is not None

        changed = False
        content: list[Any] = []
        for block in result.content:
            if isinstance(block, TextContent):
                text = self.truncate(block.text)
                if text is not block.text:
                    changed = True
                    block = TextContent(text=text)
            content.append(block)

        if not changed:
            return result
        logger.debug("Truncated result of %s to %d bytes per block", context.tool_name, self.max_bytes)
        return CallToolResult(content=content, is_error=result.is_error)


class AuditLog(Middleware):
    """Logs every call's start and outcome at INFO level."""

    def __init__(self, *, max_argument_chars: int = 200) -> None:
        self.max_argument_chars = max_argument_chars

    async def before_call(self, context: MiddlewareContext) -> None:
        logger.info(
            "tool call started: %s args=%s",
            context.tool_name,
            _summarize(context.arguments, self.max_argument_chars),
        )

    async def after_call(self, context: MiddlewareContext) -> CallToolResult:
        result = context.result
        assert result is not None

        elapsed_ms = (time.monotonic() - context.started_at) * 1000
        logger.info(
            "tool call completed: %s is_error=%s bytes=%d elapsed_ms=%.1f",
            context.tool_name,
            result.is_error,
            len(result.text_content().encode("utf-8")),
            elapsed_ms,
        )
        return result


def _cut_utf8(encoded: bytes, limit: int) -> str:
    # errors="ignore" drops a multi-byte sequence split at the cut.
    return encoded[:limit].decode("utf-8", errors="ignore")


def _summarize(arguments: dict[str, Any], limit: int) -> str:
    try:
        text = json.dumps(arguments, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        text = repr(arguments)
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
