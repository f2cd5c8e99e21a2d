from typing import Dict, Any, Optional, List, Literal, Union
from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from enum import Enum


class EventType(str, Enum):
    MARKDOWN = "markdown"
    COMPONENT = "component"
    ERROR = "error"
    CONNECTION = "connection"
    USER_MESSAGE = "user_message"


class ComponentType(str, Enum):
    """Structured payloads streamed while a prompt runs"""
    PROGRESS = "progress"
    TOOL_RESULT = "tool_result"
    EVALUATION = "evaluation"
    RUN_RESULT = "run_result"


class BaseEvent(BaseModel):
    type: EventType
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    session_id: Optional[str] = None


# Server -> client

class MarkdownEvent(BaseEvent):
    """Final answer text"""
    type: Literal[EventType.MARKDOWN] = EventType.MARKDOWN
    payload: str


class ProgressData(BaseModel):
    status: str
    node: Optional[str] = None
    step_index: Optional[int] = None
    total_steps: Optional[int] = None


class ComponentPayload(BaseModel):
    component: ComponentType
    # Dict first so run summaries carrying a "status" key are not coerced into ProgressData
    data: Union[Dict[str, Any], ProgressData]


class ComponentEvent(BaseEvent):
    type: Literal[EventType.COMPONENT] = EventType.COMPONENT
    payload: ComponentPayload

    @classmethod
    def create(
        cls,
        component: ComponentType,
        data: Union[ProgressData, Dict[str, Any]],
        session_id: Optional[str] = None
    ) -> "ComponentEvent":
        return cls(payload=ComponentPayload(component=component, data=data), session_id=session_id)


class ErrorEvent(BaseEvent):
    type: Literal[EventType.ERROR] = EventType.ERROR
    payload: Dict[str, Any]
    error_code: Optional[str] = None


class ConnectionEvent(BaseEvent):
    type: Literal[EventType.CONNECTION] = EventType.CONNECTION
    status: Literal["connected", "disconnected"]


# Client -> server

class UserMessage(BaseEvent):
    """Request to run a registered prompt against the session"""
    type: Literal[EventType.USER_MESSAGE] = EventType.USER_MESSAGE
    content: str
    prompt_name: str
    variables: Dict[str, Any] = Field(default_factory=dict)
    permissions: List[str] = Field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("prompt_name")
    @classmethod
    def _strip_prompt_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("prompt_name must not be blank")
        return value
