# Langfuse integration
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional
import structlog
from langfuse import Langfuse

from promptkit.infrastructure.config import Settings

logger = structlog.get_logger(__name__)


class _NoopSpan:
    """Stands in for a Langfuse span when tracing is disabled"""

    def update(self, **kwargs) -> None:
        pass

    def update_trace(self, **kwargs) -> None:
        pass


class ObservabilityManager:
    """Wraps prompt runs in Langfuse spans when credentials are configured"""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[Langfuse] = None):
        self.client = client
        if self.client is None and settings is not None and settings.tracing_enabled:
            self.client = Langfuse(
                public_key=settings.langfuse_public_key,
                secret_key=settings.langfuse_secret_key,
                host=settings.langfuse_host
            )
            logger.info("Langfuse tracing enabled", host=settings.langfuse_host)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    @contextmanager
    def trace_run(
        self,
        prompt_name: str,
        session_id: str,
        run_id: str,
        input_data: Dict[str, Any],
        tags: Optional[List[str]] = None
    ) -> Iterator[Any]:
        """Span covering one prompt run"""

        if self.client is None:
            yield _NoopSpan()
            return

        with self.client.start_as_current_span(name=f"prompt_run:{prompt_name}", input=input_data) as span:
            span.update_trace(
                session_id=session_id,
                tags=["promptkit", prompt_name] + list(tags or []),
                metadata={"run_id": run_id, "prompt": prompt_name}
            )
            yield span

    @contextmanager
    def trace_tool_execution(self, tool_name: str, arguments: Dict[str, Any]) -> Iterator[Any]:
        """Nested span for a tool call"""

        if self.client is None:
            yield _NoopSpan()
            return

        with self.client.start_as_current_span(name=f"tool:{tool_name}", input=arguments) as span:
            yield span

    def flush(self) -> None:
        if self.client is not None:
            self.client.flush()
