"""
Tool Executor Tests
"""

import asyncio
import json
import time
import pytest

from promptkit.domain.models import ToolCall
from promptkit.domain.tool import ToolExecutor, serialize_output
from promptkit.infrastructure.observability.logging import metrics


class TestSerializeOutput:

    def test_serialization(self):
        assert serialize_output("plain") == "plain"
        assert serialize_output(None) == ""
        assert json.loads(serialize_output({"a": [1, 2]})) == {"a": [1, 2]}


class TestToolExecutor:
    """Execution with failure capture"""

    @pytest.mark.asyncio
    async def test_sync_tool_success(self, registry):
        executor = ToolExecutor(registry)

        result = await executor.execute(ToolCall(id="c1", name="get_weather", arguments={"city": "Rome"}))

        assert result.success is True
        assert result.tool_call_id == "c1"
        assert json.loads(result.output) == {"city": "Rome", "temperature_c": 27, "conditions": "sunny"}
        assert result.duration_ms >= 0
        assert metrics.get_metrics_summary()["tool_calls.success"] == 1

    @pytest.mark.asyncio
    async def test_async_tool_with_permission(self, registry):
        executor = ToolExecutor(registry)

        result = await executor.execute(
            ToolCall(id="c1", name="book_hotel", arguments={"city": "Rome", "nights": 2}),
            granted_permissions=["booking:write"],
        )

        assert result.output == "Booked 2 night(s) in Rome"

    @pytest.mark.asyncio
    async def test_permission_denied_becomes_error_result(self, registry):
        executor = ToolExecutor(registry)

        result = await executor.execute(ToolCall(id="c1", name="book_hotel", arguments={"city": "Rome"}))

        assert result.success is False
        assert "booking:write" in result.error
        assert result.as_message_content().startswith("Error: ")

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        result = await ToolExecutor(registry).execute(ToolCall(id="c1", name="teleport"))
        assert result.success is False
        assert "not registered" in result.error

    @pytest.mark.asyncio
    async def test_tool_outside_allowed_set(self, registry):
        result = await ToolExecutor(registry).execute(
            ToolCall(id="c1", name="get_weather", arguments={"city": "Rome"}),
            allowed_tools=["book_hotel"],
        )
        assert result.error == "Tool 'get_weather' is not available for this prompt"

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, registry):
        result = await ToolExecutor(registry).execute(ToolCall(id="c1", name="get_weather", arguments={}))
        assert result.success is False
        assert "Invalid arguments for tool 'get_weather'" in result.error

    @pytest.mark.asyncio
    async def test_exception_is_captured(self, registry):
        result = await ToolExecutor(registry).execute(
            ToolCall(id="c1", name="get_weather", arguments={"city": "Atlantis"})
        )
        assert result.success is False
        assert result.error == "KeyError: 'atlantis'"
        assert metrics.get_metrics_summary()["tool_calls.failure"] == 1

    @pytest.mark.asyncio
    async def test_timeout(self, registry):
        async def slow_lookup() -> str:
            await asyncio.sleep(5)
            return "late"

        registry.register_function(slow_lookup, timeout_seconds=0.05)

        result = await ToolExecutor(registry).execute(ToolCall(id="c1", name="slow_lookup"))

        assert result.success is False
        assert result.error == "Tool execution timeout"

    @pytest.mark.asyncio
    async def test_default_timeout_caps_tool_timeout(self, registry):
        async def slow_lookup() -> str:
            await asyncio.sleep(5)
            return "late"

        registry.register_function(slow_lookup, timeout_seconds=30)

        result = await ToolExecutor(registry, default_timeout=0.05).execute(ToolCall(id="c1", name="slow_lookup"))

        assert result.error == "Tool execution timeout"

    @pytest.mark.asyncio
    async def test_execute_many_is_concurrent_and_ordered(self, registry):
        async def wait(seconds: float) -> float:
            await asyncio.sleep(seconds)
            return seconds

        registry.register_function(wait)
        calls = [
            ToolCall(id="slow", name="wait", arguments={"seconds": 0.2}),
            ToolCall(id="fast", name="wait", arguments={"seconds": 0.01}),
            ToolCall(id="bad", name="teleport"),
        ]

        start = time.perf_counter()
        results = await ToolExecutor(registry).execute_many(calls)
        elapsed = time.perf_counter() - start

        assert [r.tool_call_id for r in results] == ["slow", "fast", "bad"]
        assert [r.success for r in results] == [True, True, False]
        assert elapsed < 0.4
