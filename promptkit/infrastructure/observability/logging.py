import structlog
import logging
import sys
from typing import Dict, Any, List, Optional
from datetime import datetime
import os


# Identifiers bound per run by the orchestrator
RUN_CONTEXT_KEYS = ("run_id", "session_id", "prompt")


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "promptkit"
) -> None:
    """Configure structlog on top of the stdlib root logger"""

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            add_service_context,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Make sure every entry carries a timestamp and the current run identifiers"""

    event_dict.setdefault("timestamp", datetime.utcnow().isoformat())

    bound = structlog.contextvars.get_contextvars()
    for key in RUN_CONTEXT_KEYS:
        if bound.get(key) is not None:
            event_dict.setdefault(key, bound[key])

    return event_dict


class PromptLogger:
    """Structured events emitted by the prompt pipeline"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def _emit(self, event: str, failed: bool = False, **fields: Any) -> None:
        if failed:
            self.logger.warning(event, **fields)
        else:
            self.logger.info(event, **fields)

    def log_llm_call(
        self,
        session_id: str,
        iteration: int,
        message_count: int,
        tool_call_count: int = 0,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None
    ):
        self._emit(
            "llm_call",
            failed=not success,
            session_id=session_id,
            iteration=iteration,
            message_count=message_count,
            tool_call_count=tool_call_count,
            duration_ms=duration_ms,
            error=error,
        )

    def log_tool_execution(
        self,
        tool_name: str,
        session_id: Optional[str],
        input_data: Dict[str, Any],
        output_data: Optional[str] = None,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None
    ):
        # Tool output can be large; only a preview goes to the log
        preview = output_data[:200] if output_data else output_data
        self._emit(
            "tool_execution",
            failed=not success,
            tool_name=tool_name,
            session_id=session_id,
            arguments=input_data,
            output_preview=preview,
            duration_ms=duration_ms,
            error=error,
        )

    def log_workflow_transition(
        self,
        session_id: str,
        from_node: str,
        to_node: str,
        condition: Optional[str] = None,
        state_summary: Optional[Dict[str, Any]] = None
    ):
        self._emit(
            "workflow_transition",
            session_id=session_id,
            transition=f"{from_node} -> {to_node}",
            condition=condition,
            state_summary=state_summary or {},
        )

    def log_context_update(
        self,
        session_id: str,
        context_type: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self._emit(
            "context_update",
            session_id=session_id,
            context_type=context_type,
            action=action,
            details=details or {},
        )

    def log_evaluation(
        self,
        session_id: str,
        prompt_name: str,
        score: float,
        passed: bool,
        failed_criteria: Optional[List[str]] = None
    ):
        """Record the outcome of scoring a final answer"""
        self._emit(
            "evaluation",
            session_id=session_id,
            prompt_name=prompt_name,
            score=round(score, 4),
            passed=passed,
            failed_criteria=failed_criteria or [],
        )


prompt_logger = PromptLogger("promptkit")


class MetricsCollector:
    """In-process counters, gauges and latency statistics"""

    def __init__(self):
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}
        self.latencies: Dict[str, Dict[str, float]] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        stats = self.latencies.setdefault(
            operation, {"count": 0, "sum": 0.0, "min": duration_ms, "max": duration_ms}
        )
        stats["count"] += 1
        stats["sum"] += duration_ms
        stats["min"] = min(stats["min"], duration_ms)
        stats["max"] = max(stats["max"], duration_ms)

        prompt_logger.logger.debug("metric", kind="latency", name=operation, value=duration_ms, tags=tags or {})

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        self.counters[name] = self.counters.get(name, 0) + value
        prompt_logger.logger.debug("metric", kind="counter", name=name, value=value, tags=tags or {})

    def set_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        self.gauges[name] = value
        prompt_logger.logger.debug("metric", kind="gauge", name=name, value=value, tags=tags or {})

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Flat view of every metric; latencies are reported as latency.<operation>"""

        summary: Dict[str, Any] = {**self.counters, **self.gauges}
        for operation, stats in self.latencies.items():
            summary[f"latency.{operation}"] = {
                "count": stats["count"],
                "avg": stats["sum"] / stats["count"],
                "min": stats["min"],
                "max": stats["max"],
            }
        return summary

    def reset(self):
        self.counters.clear()
        self.gauges.clear()
        self.latencies.clear()


metrics = MetricsCollector()
