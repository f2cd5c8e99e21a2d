from typing import Any, Dict, Optional
from uuid import uuid4
from datetime import datetime, timedelta
from fastapi import APIRouter, Depends, status
import structlog

from promptkit.domain.orchestration.prompt_orchestrator import PromptOrchestrator
from promptkit.infrastructure.config import Settings
from promptkit.application.api.dependencies import get_orchestrator, get_settings

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])


def _expires_at(last_activity: datetime, settings: Settings) -> str:
    return (last_activity + timedelta(seconds=settings.session_ttl_seconds)).isoformat()


# REST endpoint that initiates a WebSocket session
@router.post("", status_code=status.HTTP_201_CREATED)
async def create_session(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    """Allocate a session id; it expires after session_ttl_seconds without activity"""

    session_id = str(uuid4())
    logger.info("Session created", session_id=session_id)

    return {
        "session_id": session_id,
        "websocket_url": f"/ws/prompts/{session_id}",
        "expires_at": _expires_at(datetime.utcnow(), settings)
    }


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    orchestrator: PromptOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings)
) -> Dict[str, Any]:
    """Context summary plus the stored conversation"""

    context_manager = orchestrator.context_manager
    summary = await context_manager.get_context_summary(session_id)
    history = await context_manager.runtime_memory.get_conversation_history(session_id)
    state = await context_manager.state_manager.get_current_state(session_id)

    expires_at: Optional[str] = None
    if await context_manager.state_manager.has_state(session_id):
        expires_at = _expires_at(datetime.fromisoformat(state["last_updated"]), settings)

    return {
        **summary,
        "state": state,
        "expires_at": expires_at,
        "conversation": [
            {
                "role": turn["role"],
                "content": turn["content"],
                "timestamp": turn.get("timestamp")
            }
            for turn in history
        ]
    }


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    orchestrator: PromptOrchestrator = Depends(get_orchestrator)
):
    await orchestrator.context_manager.clear_session_context(session_id)
