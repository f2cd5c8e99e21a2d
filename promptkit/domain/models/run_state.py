from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from enum import Enum
from langchain_core.messages import BaseMessage

from .prompt import Context


class RunStatus(str, Enum):
    """Prompt run status"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    NEEDS_REVIEW = "needs_review"
    FAILED = "failed"


class ToolCall(BaseModel):
    """A tool invocation requested by the model"""
    id: str = Field(description="Call identifier echoed back in the tool message")
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """Outcome of a single tool invocation"""
    tool_call_id: str
    tool_name: str
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    duration_ms: Optional[float] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    def as_message_content(self) -> str:
        """Text fed back to the model"""
        if self.success:
            return self.output or ""
        return f"Error: {self.error}"


class ExecutionContext(BaseModel):
    """Context assembled for a single prompt run"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    query: str = Field(description="User input for this run")
    session_id: str = Field(description="Session identifier")
    conversation_history: List[BaseMessage] = Field(default_factory=list)
    contexts: List[Context] = Field(default_factory=list)
    available_tools: List[str] = Field(default_factory=list)
    relevance_scores: Dict[str, float] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view for caching"""
        return {
            "query": self.query,
            "session_id": self.session_id,
            "conversation_history": [
                {"type": m.type, "content": m.content} for m in self.conversation_history
            ],
            "contexts": [c.model_dump() for c in self.contexts],
            "available_tools": list(self.available_tools),
            "relevance_scores": dict(self.relevance_scores),
            "metadata": self.metadata,
        }


class CriterionResult(BaseModel):
    """Score for one evaluation criterion"""
    name: str
    score: float = Field(ge=0.0, le=1.0)
    passed: bool
    required: bool = True
    weight: float = 1.0
    detail: Optional[str] = None


class EvaluationResult(BaseModel):
    """Aggregate evaluation of a final answer"""
    score: float = Field(ge=0.0, le=1.0)
    passed: bool
    criteria: List[CriterionResult] = Field(default_factory=list)
    parsed_output: Optional[Any] = None

    @property
    def failed_criteria(self) -> List[CriterionResult]:
        return [c for c in self.criteria if not c.passed]

    def feedback(self) -> List[str]:
        """Human-readable lines describing each failed criterion"""
        lines = []
        for criterion in self.failed_criteria:
            line = f"{criterion.name}: score {criterion.score:.2f}"
            if criterion.detail:
                line += f" ({criterion.detail})"
            lines.append(line)
        return lines


class PromptRunResult(BaseModel):
    """Complete record of a prompt run"""
    run_id: str
    session_id: str
    prompt_name: str
    status: RunStatus = Field(default=RunStatus.PENDING)
    output: Optional[str] = None
    parsed_output: Optional[Any] = None
    evaluation: Optional[EvaluationResult] = None
    tool_results: List[ToolResult] = Field(default_factory=list)
    iterations: int = 0
    refinements: int = 0
    node_trace: List[str] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the run"""
        return {
            "run_id": self.run_id,
            "session_id": self.session_id,
            "prompt_name": self.prompt_name,
            "status": self.status.value,
            "iterations": self.iterations,
            "refinements": self.refinements,
            "tool_calls": len(self.tool_results),
            "score": self.evaluation.score if self.evaluation else None,
            "errors": len(self.errors),
        }
