from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
import structlog

from promptkit.domain.errors import PromptExistsError, TemplateError, UnknownPromptError
from promptkit.domain.models.prompt import Prompt
from promptkit.domain.orchestration.prompt_orchestrator import PromptOrchestrator
from promptkit.application.api.dependencies import get_orchestrator

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/prompts", tags=["prompts"])


class PromptSummary(BaseModel):
    """Listing entry for a registered prompt"""
    name: str
    version: str
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class RenderRequest(BaseModel):
    """Variables and input to render a prompt with"""
    variables: Dict[str, Any] = Field(default_factory=dict)
    user_input: str = ""


class RenderedMessage(BaseModel):
    role: str
    content: Any


class RenderResponse(BaseModel):
    prompt_name: str
    messages: List[RenderedMessage]


class RunRequest(BaseModel):
    """Input for a full prompt run"""
    user_input: str
    variables: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)


def _get_prompt(orchestrator: PromptOrchestrator, name: str) -> Prompt:
    try:
        return orchestrator.prompt_library.get(name)
    except UnknownPromptError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("", status_code=status.HTTP_201_CREATED, response_model=Prompt)
async def register_prompt(
    prompt: Prompt,
    overwrite: bool = False,
    orchestrator: PromptOrchestrator = Depends(get_orchestrator)
):
    try:
        registered = orchestrator.prompt_library.register(prompt, overwrite=overwrite)
    except PromptExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    logger.info("Prompt registered", prompt=prompt.name, version=prompt.version)
    return registered


@router.get("", response_model=List[PromptSummary])
async def list_prompts(orchestrator: PromptOrchestrator = Depends(get_orchestrator)):
    return [
        PromptSummary(name=p.name, version=p.version, description=p.description, tags=p.tags)
        for p in orchestrator.prompt_library.list()
    ]


@router.get("/{name}", response_model=Prompt)
async def get_prompt(name: str, orchestrator: PromptOrchestrator = Depends(get_orchestrator)):
    return _get_prompt(orchestrator, name)


@router.delete("/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_prompt(name: str, orchestrator: PromptOrchestrator = Depends(get_orchestrator)):
    if not orchestrator.prompt_library.remove(name):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown prompt: {name}")


@router.post("/{name}/render", response_model=RenderResponse)
async def render_prompt(
    name: str,
    request: RenderRequest,
    orchestrator: PromptOrchestrator = Depends(get_orchestrator)
):
    """Render a prompt without calling the model"""

    prompt = _get_prompt(orchestrator, name)
    try:
        messages = orchestrator.template_engine.render(
            prompt,
            request.variables,
            user_input=request.user_input,
            contexts=prompt.contexts
        )
    except TemplateError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return RenderResponse(
        prompt_name=prompt.name,
        messages=[RenderedMessage(role=m.type, content=m.content) for m in messages]
    )


@router.post("/{name}/run")
async def run_prompt(
    name: str,
    request: RunRequest,
    orchestrator: PromptOrchestrator = Depends(get_orchestrator)
) -> Dict[str, Any]:
    """Run a prompt through the full pipeline"""

    prompt = _get_prompt(orchestrator, name)
    result = await orchestrator.run(
        prompt,
        request.user_input,
        variables=request.variables,
        session_id=request.session_id,
        granted_permissions=request.permissions
    )
    return result.model_dump(mode="json")
