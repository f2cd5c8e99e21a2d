"""
Shared FastAPI dependencies.

The settings, orchestrator, connection manager and streaming handler are created by
create_app() and stored on app.state.
"""

from fastapi import Request, WebSocket

from promptkit.domain.orchestration.prompt_orchestrator import PromptOrchestrator
from promptkit.domain.streaming.streaming_handler import StreamingHandler
from promptkit.infrastructure.config import Settings


def get_orchestrator(request: Request) -> PromptOrchestrator:
    return request.app.state.orchestrator


def get_ws_orchestrator(websocket: WebSocket) -> PromptOrchestrator:
    return websocket.app.state.orchestrator


def get_ws_streaming_handler(websocket: WebSocket) -> StreamingHandler:
    return websocket.app.state.streaming_handler


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
