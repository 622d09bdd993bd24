# ============================================================================
# EXECUTION WRAPPER TESTS
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Tests - Handler execution, authentication and error capture
# PURPOSE: Verify execute_function never raises and classifies outcomes
# CREATED: 19 OCT 2026
# ============================================================================
"""
Execution Wrapper Tests

Covers:
1. Sync and async handlers resolve with their return value
2. Raised errors become rejections with name/message/custom fields
3. authenticate runs first; a failing or missing auth blocks the handler
4. Timeouts produce FunctionTimeout rejections
5. serialize_error hides tracebacks unless requested

Run with:
    pytest tests/test_executor.py -v
"""

import asyncio

import pytest

from core.contracts import ResultType
from core.errors import TaskbridgeError, serialize_error
from worker.executor import execute_function


class QuotaExceeded(Exception):
    def __init__(self, limit):
        super().__init__(f"Quota of {limit} exceeded")
        self.limit = limit
        self.code = "QUOTA"


class TestExecuteFunction:
    """Tests for execute_function."""

    def test_sync_handler_resolves(self):
        result = asyncio.run(execute_function(lambda args: {"sum": args["a"] + args["b"]}, {"a": 1, "b": 2}))

        assert result.type is ResultType.RESOLUTION
        assert result.content == {"sum": 3}
        assert result.function_execution_time >= 0

    def test_async_handler_resolves(self):
        async def handler(args):
            await asyncio.sleep(0)
            return args["text"].upper()

        result = asyncio.run(execute_function(handler, {"text": "hi"}))

        assert result.is_resolution
        assert result.content == "HI"

    def test_sync_handler_returning_awaitable(self):
        async def later():
            return 7

        result = asyncio.run(execute_function(lambda args: later(), {}))
        assert result.content == 7

    def test_error_becomes_rejection(self):
        def handler(args):
            raise QuotaExceeded(10)

        result = asyncio.run(execute_function(handler, {}))

        assert result.type is ResultType.REJECTION
        assert result.content["name"] == "QuotaExceeded"
        assert result.content["message"] == "Quota of 10 exceeded"
        assert result.content["limit"] == 10
        assert result.content["code"] == "QUOTA"
        assert "stack" not in result.content

    def test_include_stack(self):
        def handler(args):
            raise ValueError("boom")

        result = asyncio.run(execute_function(handler, {}, include_stack=True))

        assert "ValueError: boom" in result.content["stack"]

    def test_authenticate_runs_before_handler(self):
        calls = []

        def authenticate(auth_context, args):
            calls.append(("auth", auth_context, args["x"]))

        def handler(args):
            calls.append(("handler", args["x"]))
            return "ok"

        result = asyncio.run(
            execute_function(handler, {"x": 1}, authenticate=authenticate, auth_context="token")
        )

        assert result.is_resolution
        assert calls == [("auth", "token", 1), ("handler", 1)]

    def test_rejecting_authenticate_prevents_handler(self):
        invoked = []

        async def authenticate(auth_context, args):
            raise PermissionError("denied")

        result = asyncio.run(
            execute_function(lambda a: invoked.append(a), {}, authenticate=authenticate, auth_context="bad")
        )

        assert result.type is ResultType.REJECTION
        assert result.content["name"] == "PermissionError"
        assert invoked == []

    def test_execution_time_excludes_authentication(self):
        async def slow_authenticate(auth_context, args):
            await asyncio.sleep(0.2)

        result = asyncio.run(
            execute_function(lambda a: "ok", {}, authenticate=slow_authenticate, auth_context="token")
        )

        assert result.is_resolution
        assert result.function_execution_time < 100

    def test_rejected_authentication_has_zero_time(self):
        async def authenticate(auth_context, args):
            await asyncio.sleep(0.05)
            raise PermissionError("denied")

        result = asyncio.run(
            execute_function(lambda a: "ok", {}, authenticate=authenticate, auth_context="bad")
        )

        assert result.content["name"] == "PermissionError"
        assert result.function_execution_time == 0

    @pytest.mark.parametrize("auth_context", [None, ""])
    def test_missing_auth_context(self, auth_context):
        invoked = []

        result = asyncio.run(
            execute_function(
                lambda a: invoked.append(a),
                {},
                authenticate=lambda ctx, a: None,
                auth_context=auth_context,
            )
        )

        assert result.content["name"] == "AuthContextRequired"
        assert result.content["message"] == TaskbridgeError.JOB_AUTHCONTEXT_INVALID
        assert result.function_execution_time == 0
        assert invoked == []

    def test_timeout(self):
        async def slow(args):
            await asyncio.sleep(5)

        result = asyncio.run(execute_function(slow, {}, timeout_seconds=0.05))

        assert result.type is ResultType.REJECTION
        assert result.content["name"] == "FunctionTimeout"
        assert result.content["timeout_seconds"] == 0.05


class TestSerializeError:
    """Tests for serialize_error."""

    def test_plain_exception(self):
        assert serialize_error(RuntimeError("x")) == {"name": "RuntimeError", "message": "x"}

    def test_taskbridge_error_meta(self):
        error = TaskbridgeError("bad thing", {"serviceName": "svc"})
        serialized = serialize_error(error)

        assert serialized == {
            "name": "TaskbridgeError",
            "message": "bad thing",
            "meta": {"serviceName": "svc"},
        }

    def test_non_json_attributes_are_skipped(self):
        error = RuntimeError("x")
        error.handle = object()
        error.ok = [1, 2]

        serialized = serialize_error(error)

        assert "handle" not in serialized
        assert serialized["ok"] == [1, 2]
