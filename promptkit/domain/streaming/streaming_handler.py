from typing import Dict, Any, Optional, Callable, Awaitable
import structlog

from promptkit.application.websocket.connection_manager import ConnectionManager
from promptkit.application.websocket.schema.events import (
    MarkdownEvent, ComponentEvent, ProgressData, ComponentType
)

logger = structlog.get_logger(__name__)

NodeHandler = Callable[[str, Dict[str, Any]], Awaitable[None]]


class StreamingHandler:
    """Turns orchestrator node updates into WebSocket events"""

    TOTAL_STEPS = 4

    def __init__(self, connection_manager: Optional[ConnectionManager] = None):
        self.connection_manager = connection_manager or ConnectionManager()
        self._node_handlers: Dict[str, NodeHandler] = {
            "prompt_builder": self._on_prompt_built,
            "llm_caller": self._on_llm_call,
            "tool_executor": self._on_tool_results,
            "output_evaluator": self._on_evaluation,
            "refiner": self._on_refinement,
            "finalizer": self._on_finalize,
            "error_handler": self._on_error,
        }

    async def handle_update(self, session_id: str, update: Dict[str, Any]):
        """Entry point for one `updates` chunk from the workflow stream"""

        for node_id, node_data in update.items():
            logger.debug("Streaming node update", session_id=session_id, node_id=node_id)
            handler = self._node_handlers.get(node_id)
            if handler is not None:
                await handler(session_id, node_data or {})

    async def _on_prompt_built(self, session_id: str, data: Dict[str, Any]):
        await self.send_progress(session_id, "Building prompt...", "prompt_builder", step_index=1)

    async def _on_llm_call(self, session_id: str, data: Dict[str, Any]):
        await self.send_progress(
            session_id, f"Model call {data.get('iterations', 0)}", "llm_caller", step_index=2
        )

    async def _on_tool_results(self, session_id: str, data: Dict[str, Any]):
        for result in data.get("tool_results", []):
            await self._send_component(session_id, ComponentType.TOOL_RESULT, result.model_dump(mode="json"))

    async def _on_evaluation(self, session_id: str, data: Dict[str, Any]):
        evaluation = data.get("evaluation")
        if evaluation is not None:
            await self._send_component(session_id, ComponentType.EVALUATION, evaluation.model_dump(mode="json"))

    async def _on_refinement(self, session_id: str, data: Dict[str, Any]):
        await self.send_progress(
            session_id, f"Refining answer ({data.get('refinements', 0)})", "refiner", step_index=3
        )

    async def _on_finalize(self, session_id: str, data: Dict[str, Any]):
        if data.get("output"):
            await self.send_markdown(session_id, data["output"])
        await self.send_progress(session_id, "_workflow_finish", "finalizer", step_index=4)

    async def _on_error(self, session_id: str, data: Dict[str, Any]):
        if data.get("error"):
            await self.connection_manager.send_error(session_id, str(data["error"]), error_code="run_failed")

    async def _send_component(self, session_id: str, component: ComponentType, data: Any):
        await self.connection_manager.send_event(session_id, ComponentEvent.create(component, data))

    async def send_progress(
        self,
        session_id: str,
        status: str,
        node: Optional[str] = None,
        step_index: Optional[int] = None
    ):
        progress = ProgressData(
            status=status,
            node=node,
            step_index=step_index,
            total_steps=self.TOTAL_STEPS if step_index else None
        )
        await self._send_component(session_id, ComponentType.PROGRESS, progress)

    async def send_markdown(self, session_id: str, content: str):
        await self.connection_manager.send_event(session_id, MarkdownEvent(payload=content))

    async def send_run_result(self, session_id: str, summary: Dict[str, Any]):
        """Final component of every streamed run"""
        await self._send_component(session_id, ComponentType.RUN_RESULT, summary)
