"""Tests for the built-in middlewares."""

from __future__ import annotations

import logging

import pytest

from toolmesh.middleware.base import MiddlewareContext
from toolmesh.middleware.guards import (
    TRUNCATION_MARKER,
    AuditLog,
    PermissionFilter,
    ResultGuard,
    SecurityGuard,
    ToolPolicyGuard,
)
from toolmesh.middleware.policy import CommandPolicy, PolicyAction, ToolPolicy, ToolPolicyConfig
from toolmesh.protocol.errors import PolicyRejectedError
from toolmesh.protocol.models import CallToolResult, ToolDefinition


def _ctx(name: str, **arguments: object) -> MiddlewareContext:
    return MiddlewareContext(tool_name=name, arguments=dict(arguments))


def _tools(*names: str) -> list[ToolDefinition]:
    return [ToolDefinition(name=n) for n in names]


class TestSecurityGuard:
    async def test_allows_safe_command(self) -> None:
        await SecurityGuard().before_call(_ctx("builtin__exec", command="ls -la"))

    async def test_rejects_dangerous_command(self) -> None:
        with pytest.raises(PolicyRejectedError, match="command rejected: dangerous pattern"):
            await SecurityGuard().before_call(_ctx("exec", command="rm -rf /"))

    async def test_rejects_unlisted_command_for_shell_tools(self) -> None:
        with pytest.raises(PolicyRejectedError, match="command not allowed: curl"):
            await SecurityGuard().before_call(_ctx("sys__run_shell", command="curl x"))

    async def test_custom_command_policy(self) -> None:
        guard = SecurityGuard(command_policy=CommandPolicy(allowed_commands={"curl"}))
        await guard.before_call(_ctx("exec", command="curl https://example.com"))

    async def test_rejects_metadata_url(self) -> None:
        with pytest.raises(PolicyRejectedError, match="URL rejected"):
            await SecurityGuard().before_call(_ctx("web__fetch", url="http://169.254.169.254/"))

    async def test_ignores_unrelated_tools(self) -> None:
        guard = SecurityGuard()
        await guard.before_call(_ctx("fs__write_file", command="rm -rf /", url="http://127.0.0.1"))

    async def test_ignores_non_string_arguments(self) -> None:
        await SecurityGuard().before_call(_ctx("exec", command=["rm", "-rf", "/"]))


class TestToolPolicyGuard:
    def _guard(self) -> ToolPolicyGuard:
        return ToolPolicyGuard(
            ToolPolicyConfig(
                policies=[ToolPolicy(pattern="fs__write_*", action=PolicyAction.DENY, reason="read-only mount")]
            )
        )

    async def test_filters_denied_tools(self) -> None:
        tools = await self._guard().filter_tools(_tools("fs__read_file", "fs__write_file"))
        assert [t.name for t in tools] == ["fs__read_file"]

    async def test_rejects_with_rule_reason(self) -> None:
        with pytest.raises(PolicyRejectedError, match="read-only mount"):
            await self._guard().before_call(_ctx("fs__write_file"))

    async def test_default_deny_reason(self) -> None:
        guard = ToolPolicyGuard(ToolPolicyConfig(default_action=PolicyAction.DENY))
        with pytest.raises(PolicyRejectedError, match="denied by policy"):
            await guard.before_call(_ctx("anything__x"))

    async def test_default_config_allows(self) -> None:
        guard = ToolPolicyGuard()
        await guard.before_call(_ctx("a__b"))
        assert guard.engine.config.policies == []


class TestPermissionFilter:
    async def test_unrestricted_by_default(self) -> None:
        guard = PermissionFilter()
        tools = _tools("a__x", "b__y")
        assert await guard.filter_tools(tools) == tools
        await guard.before_call(_ctx("b__y"))

    async def test_allowlist(self) -> None:
        guard = PermissionFilter(["a__x"])

        assert [t.name for t in await guard.filter_tools(_tools("a__x", "b__y"))] == ["a__x"]
        await guard.before_call(_ctx("a__x"))
        with pytest.raises(PolicyRejectedError, match="not in the allowed set"):
            await guard.before_call(_ctx("b__y"))

    async def test_caller_permissions(self) -> None:
        ctx = _ctx("a__x")
        ctx.permissions = frozenset({"b__y"})
        with pytest.raises(PolicyRejectedError, match="lacks permission"):
            await PermissionFilter().before_call(ctx)


class TestResultGuard:
    def test_rejects_non_positive_limit(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            ResultGuard(0)

    def test_short_text_is_unchanged(self) -> None:
        text = "hello"
        assert ResultGuard(100).truncate(text) is text

    def test_long_text_is_cut_with_marker(self) -> None:
        out = ResultGuard(50).truncate("x" * 200)
        assert out.endswith(TRUNCATION_MARKER)
        assert len(out.encode()) == 50

    def test_never_splits_multibyte_characters(self) -> None:
        out = ResultGuard(21).truncate("é" * 40)
        out.encode("utf-8")
        assert out == "éééé" + TRUNCATION_MARKER
        assert len(out.encode()) <= 21

    def test_limit_smaller_than_marker(self) -> None:
        out = ResultGuard(5).truncate("abcdefghij")
        assert out == "abcde"

    @pytest.mark.parametrize("limit", [1, 5, 12, 13, 21, 64, 1000])
    @pytest.mark.parametrize("text", ["", "short", "x" * 500, "日本語テキスト" * 30, "a\nb" * 100])
    def test_idempotent(self, limit: int, text: str) -> None:
        guard = ResultGuard(limit)
        once = guard.truncate(text)
        assert guard.truncate(once) == once
        assert len(once.encode()) <= limit

    async def test_after_call_preserves_untouched_result(self) -> None:
        ctx = _ctx("a__x")
        ctx.result = CallToolResult.text("fine")
        assert await ResultGuard(100).after_call(ctx) is ctx.result

    async def test_after_call_truncates_text_blocks_only(self) -> None:
        image = {"type": "image", "data": "A" * 500, "mimeType": "image/png"}
        ctx = _ctx("a__x")
        ctx.result = CallToolResult.model_validate(
            {"content": [{"type": "text", "text": "y" * 500}, image], "isError": True}
        )

        result = await ResultGuard(64).after_call(ctx)

        assert result.is_error
        assert result.content[0].text.endswith(TRUNCATION_MARKER)
        assert result.content[1] == image


class TestAuditLog:
    async def test_logs_start_and_completion(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.INFO, logger="toolmesh.middleware.guards")
        audit = AuditLog()
        ctx = _ctx("builtin__echo", text="hi")

        await audit.before_call(ctx)
        ctx.result = CallToolResult.text("hi")
        result = await audit.after_call(ctx)

        assert result is ctx.result
        messages = [r.getMessage() for r in caplog.records]
        assert messages[0] == 'tool call started: builtin__echo args={"text": "hi"}'
        assert messages[1].startswith("tool call completed: builtin__echo is_error=False bytes=2")

    async def test_long_arguments_are_summarized(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.INFO, logger="toolmesh.middleware.guards")
        await AuditLog(max_argument_chars=10).before_call(_ctx("a__x", data="z" * 100))
        assert caplog.records[0].getMessage().endswith("...")
