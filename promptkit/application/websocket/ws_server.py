from typing import Any, Dict
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends
from pydantic import ValidationError
import structlog

from .schema.events import EventType, UserMessage
from promptkit.domain.errors import UnknownPromptError
from promptkit.domain.orchestration.prompt_orchestrator import PromptOrchestrator
from promptkit.domain.streaming.streaming_handler import StreamingHandler
from promptkit.application.api.dependencies import get_ws_orchestrator, get_ws_streaming_handler

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.websocket("/ws/prompts/{session_id}")
async def prompt_websocket(
    websocket: WebSocket,
    session_id: str,
    orchestrator: PromptOrchestrator = Depends(get_ws_orchestrator),
    streaming_handler: StreamingHandler = Depends(get_ws_streaming_handler)
):
    """WebSocket endpoint streaming prompt runs"""

    connection_manager = streaming_handler.connection_manager
    await connection_manager.connect(websocket, session_id)

    try:
        await streaming_handler.send_progress(session_id, "Ready")

        # Main message loop
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError as e:
                await connection_manager.send_error(
                    session_id,
                    f"Frame is not valid JSON: {e}",
                    error_code="invalid_message"
                )
                continue
            connection_manager.touch(session_id)

            if not isinstance(data, dict):
                await connection_manager.send_error(
                    session_id,
                    f"Expected a JSON object, got {type(data).__name__}",
                    error_code="invalid_message"
                )
                continue

            if data.get("type") != EventType.USER_MESSAGE.value:
                await connection_manager.send_error(
                    session_id,
                    f"Unsupported event type: {data.get('type')}",
                    error_code="unsupported_event"
                )
                continue

            try:
                message = UserMessage(**data)
            except ValidationError as e:
                await connection_manager.send_error(session_id, str(e), error_code="invalid_message")
                continue

            await process_user_message(session_id, message, orchestrator, streaming_handler)

    except WebSocketDisconnect:
        logger.info("Client disconnected", session_id=session_id)
    finally:
        await connection_manager.disconnect(session_id, websocket)


async def process_user_message(
    session_id: str,
    message: UserMessage,
    orchestrator: PromptOrchestrator,
    streaming_handler: StreamingHandler
) -> Dict[str, Any]:
    """Run the named prompt and stream its progress"""

    logger.info("Processing user message", session_id=session_id, prompt=message.prompt_name)

    try:
        result = await orchestrator.run_named(
            message.prompt_name,
            message.content,
            variables=message.variables,
            session_id=session_id,
            granted_permissions=message.permissions,
            streaming_handler=streaming_handler
        )
    except UnknownPromptError as e:
        await streaming_handler.connection_manager.send_error(session_id, str(e), error_code="unknown_prompt")
        return {}

    summary = result.get_summary()
    await streaming_handler.send_run_result(session_id, summary)
    return summary
