from typing import Dict, Any, Iterable, List, Optional
import asyncio
import inspect
import json
import time
import structlog

from promptkit.domain.errors import ToolError, ToolNotFoundError, ToolTimeoutError
from promptkit.domain.models.run_state import ToolCall, ToolResult
from promptkit.infrastructure.observability.logging import prompt_logger, metrics
from .tool_registry import ToolRegistry
from .tool_validator import ToolParameterValidator

logger = structlog.get_logger(__name__)


def serialize_output(value: Any) -> str:
    """Text form of a tool return value"""

    if isinstance(value, str):
        return value
    if value is None:
        return ""
    try:
        return json.dumps(value, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


class ToolExecutor:
    """Executes tool calls with validation, timeouts and failure capture"""

    def __init__(self, registry: ToolRegistry, default_timeout: Optional[float] = None):
        self.registry = registry
        self.default_timeout = default_timeout
        self.validator = ToolParameterValidator()

    async def execute(
        self,
        call: ToolCall,
        allowed_tools: Optional[Iterable[str]] = None,
        granted_permissions: Iterable[str] = (),
        session_id: Optional[str] = None
    ) -> ToolResult:
        """Execute one tool call; failures become unsuccessful results"""

        start = time.perf_counter()

        try:
            if allowed_tools is not None and call.name not in set(allowed_tools):
                raise ToolNotFoundError(f"Tool '{call.name}' is not available for this prompt")

            spec = self.registry.get_spec(call.name)
            func = self.registry.get(call.name)
            self.validator.validate_tool_call(spec, call.arguments, granted_permissions)

            timeout = spec.timeout_seconds if self.default_timeout is None else min(
                spec.timeout_seconds, self.default_timeout
            )
            try:
                value = await asyncio.wait_for(self._invoke(func, call.arguments), timeout=timeout)
            except asyncio.TimeoutError:
                raise ToolTimeoutError("Tool execution timeout") from None

            result = ToolResult(
                tool_call_id=call.id,
                tool_name=call.name,
                success=True,
                output=serialize_output(value)
            )

        except ToolError as e:
            result = ToolResult(
                tool_call_id=call.id,
                tool_name=call.name,
                success=False,
                error=str(e)
            )
        except Exception as e:
            logger.warning("Tool raised an exception", tool=call.name, error=str(e), exc_info=True)
            result = ToolResult(
                tool_call_id=call.id,
                tool_name=call.name,
                success=False,
                error=f"{type(e).__name__}: {e}"
            )

        result.duration_ms = round((time.perf_counter() - start) * 1000, 3)

        prompt_logger.log_tool_execution(
            tool_name=call.name,
            session_id=session_id,
            input_data=call.arguments,
            output_data=result.output,
            duration_ms=result.duration_ms,
            success=result.success,
            error=result.error
        )
        metrics.record_latency("tool_execution", result.duration_ms, tags={"tool": call.name})
        metrics.increment_counter(
            "tool_calls.success" if result.success else "tool_calls.failure",
            tags={"tool": call.name}
        )

        return result

    async def execute_many(
        self,
        calls: List[ToolCall],
        allowed_tools: Optional[Iterable[str]] = None,
        granted_permissions: Iterable[str] = (),
        session_id: Optional[str] = None
    ) -> List[ToolResult]:
        """Run one turn's tool calls concurrently, results in call order"""

        allowed = None if allowed_tools is None else list(allowed_tools)
        granted = list(granted_permissions)

        return list(await asyncio.gather(*[
            self.execute(call, allowed, granted, session_id)
            for call in calls
        ]))

    async def _invoke(self, func, arguments: Dict[str, Any]) -> Any:
        if inspect.iscoroutinefunction(func):
            return await func(**arguments)

        # Sync tools run off the event loop
        value = await asyncio.to_thread(func, **arguments)
        if inspect.isawaitable(value):
            value = await value
        return value
