"""
FastAPI application for promptkit.

Usage:
    promptkit-server

Or directly:
    uvicorn promptkit.application.api.api_server:create_app --factory --port 8000
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import structlog

from promptkit import __version__
from promptkit.domain.llm.llm_builder import build_llm
from promptkit.domain.orchestration.prompt_orchestrator import PromptOrchestrator
from promptkit.domain.streaming.streaming_handler import StreamingHandler
from promptkit.domain.template.prompt_library import PromptLibrary
from promptkit.domain.tool.tool_registry import ToolRegistry
from promptkit.application.websocket.connection_manager import ConnectionManager
from promptkit.application.websocket import ws_server
from promptkit.application.api.route import prompt, session
from promptkit.infrastructure.config import Settings
from promptkit.infrastructure.observability.langfuse_tracing import ObservabilityManager
from promptkit.infrastructure.observability.logging import setup_logging, metrics

logger = structlog.get_logger(__name__)


def build_orchestrator(settings: Settings, tool_registry: Optional[ToolRegistry] = None) -> PromptOrchestrator:
    """Wire the orchestrator from settings"""

    library = PromptLibrary()
    if settings.prompts_dir:
        library.load_directory(settings.prompts_dir)

    return PromptOrchestrator(
        llm=build_llm(settings),
        tool_registry=tool_registry or ToolRegistry(),
        prompt_library=library,
        settings=settings,
        observability=ObservabilityManager(settings)
    )


async def expire_idle_sessions(orchestrator: PromptOrchestrator, settings: Settings):
    """Background loop releasing sessions idle past session_ttl_seconds"""

    while True:
        await asyncio.sleep(settings.session_sweep_interval_seconds)
        try:
            await orchestrator.context_manager.expire_idle_sessions(settings.session_ttl_seconds)
        except Exception as e:
            logger.error("Session expiry sweep failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start background tasks and clean up on shutdown"""

    connection_manager: ConnectionManager = app.state.connection_manager
    health_task = asyncio.create_task(connection_manager.health_check())
    sweep_task = asyncio.create_task(expire_idle_sessions(app.state.orchestrator, app.state.settings))
    logger.info("Prompt server started", prompts=len(app.state.orchestrator.prompt_library.list()))

    yield

    health_task.cancel()
    sweep_task.cancel()
    for session_id in list(connection_manager.get_active_sessions()):
        await connection_manager.disconnect(session_id)
    app.state.orchestrator.observability.flush()

    logger.info("Prompt server shutdown")


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[PromptOrchestrator] = None
) -> FastAPI:
    """Build the FastAPI application"""

    settings = settings or Settings.from_env()
    setup_logging(settings.log_level, settings.log_format, settings.service_name)

    app = FastAPI(title="promptkit", version=__version__, lifespan=lifespan)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    connection_manager = ConnectionManager(stale_after_seconds=settings.ws_stale_after_seconds)
    app.state.settings = settings
    app.state.orchestrator = orchestrator or build_orchestrator(settings)
    app.state.connection_manager = connection_manager
    app.state.streaming_handler = StreamingHandler(connection_manager)

    app.include_router(prompt.router)
    app.include_router(session.router)
    app.include_router(ws_server.router)

    @app.get("/health", tags=["health"])
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "version": __version__,
            "prompts": len(app.state.orchestrator.prompt_library.list()),
            "active_connections": len(connection_manager.get_active_sessions()),
            "metrics": metrics.get_metrics_summary(),
            "timestamp": datetime.utcnow().isoformat()
        }

    return app


def main():
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
