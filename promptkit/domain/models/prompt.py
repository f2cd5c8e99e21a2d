from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from enum import Enum
import re


IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class VariableType(str, Enum):
    """Declared types for prompt variables"""
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    LIST = "list"


class OutputFormatType(str, Enum):
    """Expected shape of the model's final answer"""
    TEXT = "text"
    JSON = "json"
    MARKDOWN = "markdown"


class CriterionKind(str, Enum):
    """Supported evaluation checks"""
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    REGEX = "regex"
    MAX_LENGTH = "max_length"
    JSON_SCHEMA = "json_schema"
    LLM_JUDGE = "llm_judge"


class Role(BaseModel):
    """Persona the model is asked to adopt"""
    name: str = Field(min_length=1, description="Role name, e.g. 'travel planner'")
    description: Optional[str] = Field(None, description="What the role is responsible for")
    persona_traits: List[str] = Field(default_factory=list, description="Tone and style traits")


class Example(BaseModel):
    """Few-shot input/output pair"""
    input: str
    output: str


class Instruction(BaseModel):
    """Task the model must perform; text may contain {variable} placeholders"""
    text: str = Field(min_length=1)
    constraints: List[str] = Field(default_factory=list)
    examples: List[Example] = Field(default_factory=list)


class Context(BaseModel):
    """A piece of background knowledge supplied to the model"""
    source: str = Field(description="Where the content came from")
    content: str
    relevance: float = Field(default=1.0, ge=0.0, le=1.0)
    pinned: bool = Field(default=True, description="Pinned contexts are never trimmed")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Variable(BaseModel):
    """Declared template parameter"""
    name: str
    type: VariableType = VariableType.STRING
    required: bool = True
    default: Optional[Any] = None
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        if not IDENTIFIER.match(value):
            raise ValueError(f"Variable name '{value}' is not a valid identifier")
        return value


class ToolSpec(BaseModel):
    """Description of a callable tool as presented to the model"""
    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON schema for the tool arguments"
    )
    category: str = "general"
    required_permissions: List[str] = Field(default_factory=list)
    timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("name")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        if not IDENTIFIER.match(value):
            raise ValueError(f"Tool name '{value}' is not a valid identifier")
        return value

    def to_openai_tool(self) -> Dict[str, Any]:
        """Function-calling definition understood by chat model providers"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class MemorySettings(BaseModel):
    """How much conversation and long-term memory a prompt draws on"""
    history_window: int = Field(default=20, ge=0, description="Newest turns replayed as messages")
    recall_limit: int = Field(default=5, ge=0, description="Long-term memories recalled per run")
    persist_turns: bool = Field(default=True, description="Store each finished turn in memory")


class OutputFormat(BaseModel):
    """Expected output shape and how to describe it to the model"""
    type: OutputFormatType = OutputFormatType.TEXT
    json_schema: Optional[Dict[str, Any]] = None
    instructions: Optional[str] = None
    example: Optional[str] = None


class EvaluationCriteria(BaseModel):
    """A single scored check applied to the model's final answer"""
    name: str
    kind: CriterionKind
    description: Optional[str] = None
    value: Optional[Any] = Field(None, description="Kind-specific parameter (terms, pattern, limit, schema)")
    threshold: float = Field(default=1.0, ge=0.0, le=1.0)
    weight: float = Field(default=1.0, gt=0.0)
    required: bool = True

    @model_validator(mode="after")
    def _check_value(self) -> "EvaluationCriteria":
        if self.kind in (CriterionKind.CONTAINS, CriterionKind.NOT_CONTAINS):
            if isinstance(self.value, str):
                self.value = [self.value]
            if not isinstance(self.value, list) or not self.value:
                raise ValueError(f"Criterion '{self.name}' needs a non-empty list of terms")
        elif self.kind == CriterionKind.REGEX:
            if not isinstance(self.value, str):
                raise ValueError(f"Criterion '{self.name}' needs a regex pattern")
            try:
                re.compile(self.value)
            except re.error as e:
                raise ValueError(f"Criterion '{self.name}' has an invalid pattern: {e}") from e
        elif self.kind == CriterionKind.MAX_LENGTH:
            if not isinstance(self.value, int) or self.value <= 0:
                raise ValueError(f"Criterion '{self.name}' needs a positive length limit")
        elif self.kind == CriterionKind.JSON_SCHEMA:
            if self.value is not None and not isinstance(self.value, dict):
                raise ValueError(f"Criterion '{self.name}' needs a JSON schema object")
        return self


class Prompt(BaseModel):
    """Parameterized container tying every prompt component together"""
    name: str = Field(min_length=1)
    version: str = "1.0"
    description: Optional[str] = None
    instruction: Instruction
    role: Optional[Role] = None
    contexts: List[Context] = Field(default_factory=list)
    variables: List[Variable] = Field(default_factory=list)
    tools: List[str] = Field(default_factory=list, description="Names of registered tools")
    memory: Optional[MemorySettings] = None
    output_format: Optional[OutputFormat] = None
    evaluation_criteria: List[EvaluationCriteria] = Field(default_factory=list)
    pass_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    tags: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_names(self) -> "Prompt":
        for label, names in (
            ("variable", [v.name for v in self.variables]),
            ("criterion", [c.name for c in self.evaluation_criteria]),
            ("tool", self.tools),
        ):
            duplicates = {n for n in names if names.count(n) > 1}
            if duplicates:
                raise ValueError(f"Duplicate {label} names: {', '.join(sorted(duplicates))}")
        return self

    def get_variable(self, name: str) -> Optional[Variable]:
        """Look up a declared variable by name"""
        for variable in self.variables:
            if variable.name == name:
                return variable
        return None

    @property
    def memory_settings(self) -> MemorySettings:
        return self.memory or MemorySettings()
