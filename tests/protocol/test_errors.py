"""Tests for the protocol error hierarchy."""

from toolmesh.protocol.errors import (
    ExecutionFailedError,
    InvalidArgumentsError,
    JsonRpcErrorResponse,
    MessageDecodeError,
    PolicyRejectedError,
    ProtocolError,
    SessionError,
    ToolError,
    ToolErrorKind,
    ToolNotFoundError,
    ToolTimeoutError,
    TransportError,
)


class TestErrorHierarchy:
    def test_tool_errors_share_a_base(self) -> None:
        for cls in (
            InvalidArgumentsError,
            ToolNotFoundError,
            ExecutionFailedError,
            PolicyRejectedError,
            ToolTimeoutError,
        ):
            assert issubclass(cls, ToolError)

    def test_protocol_errors_share_a_base(self) -> None:
        for cls in (MessageDecodeError, TransportError, SessionError, JsonRpcErrorResponse):
            assert issubclass(cls, ProtocolError)

    def test_tool_and_protocol_errors_are_distinct(self) -> None:
        assert not issubclass(ToolError, ProtocolError)
        assert not issubclass(ProtocolError, ToolError)


class TestToolErrorKinds:
    def test_each_subclass_has_its_kind(self) -> None:
        assert InvalidArgumentsError("t").kind is ToolErrorKind.INVALID_ARGUMENTS
        assert ToolNotFoundError("t").kind is ToolErrorKind.NOT_FOUND
        assert ExecutionFailedError("t").kind is ToolErrorKind.EXECUTION_FAILED
        assert PolicyRejectedError("t").kind is ToolErrorKind.POLICY_REJECTED
        assert ToolTimeoutError("t").kind is ToolErrorKind.TIMEOUT

    def test_kind_values_are_strings(self) -> None:
        assert ToolErrorKind.NOT_FOUND == "not_found"


class TestToolNotFoundError:
    def test_message_mentions_not_found(self) -> None:
        err = ToolNotFoundError("missing")
        assert err.name == "missing"
        assert "not found" in str(err).lower()

    def test_detail_is_included(self) -> None:
        err = ToolNotFoundError("x__y", "no provider for namespace 'x'")
        assert err.detail == "no provider for namespace 'x'"
        assert "no provider" in str(err)


class TestExecutionFailedError:
    def test_preserves_detail(self) -> None:
        err = ExecutionFailedError("write_file", "disk full")
        assert err.name == "write_file"
        assert err.detail == "disk full"
        assert "write_file" in str(err)
        assert "disk full" in str(err)

    def test_without_detail(self) -> None:
        err = ExecutionFailedError("write_file")
        assert err.detail == ""
        assert str(err) == "Tool execution failed: write_file"


class TestPolicyRejectedError:
    def test_with_reason(self) -> None:
        err = PolicyRejectedError("exec", "command not allowed: rm")
        assert "exec" in str(err)
        assert "command not allowed: rm" in str(err)


class TestToolTimeoutError:
    def test_attributes(self) -> None:
        err = ToolTimeoutError("slow", 5.0)
        assert err.name == "slow"
        assert err.timeout == 5.0
        assert "5.0s" in str(err)

    def test_without_timeout(self) -> None:
        err = ToolTimeoutError("slow")
        assert err.timeout is None
        assert str(err) == "Tool timed out: slow"


class TestMessageDecodeError:
    def test_attributes(self) -> None:
        err = MessageDecodeError("bad", code=-32600, raw="{}", request_id=7)
        assert err.detail == "bad"
        assert err.code == -32600
        assert err.raw == "{}"
        assert err.request_id == 7


class TestJsonRpcErrorResponse:
    def test_attributes(self) -> None:
        err = JsonRpcErrorResponse(-32601, "Method not found", {"method": "x"})
        assert err.code == -32601
        assert err.message == "Method not found"
        assert err.data == {"method": "x"}
        assert "-32601" in str(err)
