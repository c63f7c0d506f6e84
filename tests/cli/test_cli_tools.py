"""Tests for ``toolmesh tools`` CLI command."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

from click.testing import CliRunner

from toolmesh.cli import main
from toolmesh.protocol.models import ToolDefinition


def _patched_session(tools: list[ToolDefinition] | None = None, *, error: Exception | None = None):
    patcher = patch("toolmesh.protocol.session.ClientSession")
    mock_cls = patcher.start()
    mock_instance = mock_cls.return_value
    mock_instance.__aenter__ = AsyncMock(return_value=mock_instance, side_effect=error)
    mock_instance.__aexit__ = AsyncMock(return_value=False)
    mock_instance.list_tools = AsyncMock(return_value=tools or [])
    return patcher, mock_cls


class TestToolsDiscover:
    def test_discover_tools(self) -> None:
        tools = [
            ToolDefinition(
                name="read_file",
                description="Read a file",
                input_schema={"type": "object", "properties": {"path": {"type": "string"}}},
            )
        ]
        patcher, _ = _patched_session(tools)
        try:
            runner = CliRunner()
            result = runner.invoke(main, ["tools", "discover", "npx @mcp/fs"])
        finally:
            patcher.stop()

        assert result.exit_code == 0
        assert "read_file" in result.output
        assert "path" in result.output

    def test_discover_json(self) -> None:
        patcher, _ = _patched_session([ToolDefinition(name="read_file")])
        try:
            result = CliRunner().invoke(main, ["tools", "discover", "npx @mcp/fs", "--json"])
        finally:
            patcher.stop()

        assert result.exit_code == 0
        assert json.loads(result.output)[0]["name"] == "read_file"

    def test_discover_http_uses_timeout(self) -> None:
        patcher, mock_cls = _patched_session([ToolDefinition(name="search")])
        try:
            with patch("toolmesh.config.make_transport") as make_transport:
                result = CliRunner().invoke(
                    main,
                    ["tools", "discover", "https://tools.test/mcp", "--transport", "http", "--timeout", "5"],
                )
        finally:
            patcher.stop()

        assert result.exit_code == 0
        ref = make_transport.call_args.args[0]
        assert ref.transport == "http"
        assert ref.url == "https://tools.test/mcp"
        assert mock_cls.call_args.kwargs["timeout"] == 5.0

    def test_discover_no_tools(self) -> None:
        patcher, _ = _patched_session([])
        try:
            result = CliRunner().invoke(main, ["tools", "discover", "npx @mcp/fs"])
        finally:
            patcher.stop()

        assert result.exit_code == 0
        assert "No tools discovered" in result.output

    def test_discover_error(self) -> None:
        patcher, _ = _patched_session(error=RuntimeError("fail"))
        try:
            result = CliRunner().invoke(main, ["tools", "discover", "bad-server"])
        finally:
            patcher.stop()

        assert result.exit_code == 1
        assert "Discovery error" in result.output
