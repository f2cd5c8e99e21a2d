from .prompt import (
    Prompt, Instruction, Role, Context, Variable, VariableType, Example,
    ToolSpec, MemorySettings, OutputFormat, OutputFormatType,
    EvaluationCriteria, CriterionKind,
)
from .run_state import (
    RunStatus, ToolCall, ToolResult, ExecutionContext,
    CriterionResult, EvaluationResult, PromptRunResult,
)

__all__ = [
    "Prompt", "Instruction", "Role", "Context", "Variable", "VariableType", "Example",
    "ToolSpec", "MemorySettings", "OutputFormat", "OutputFormatType",
    "EvaluationCriteria", "CriterionKind",
    "RunStatus", "ToolCall", "ToolResult", "ExecutionContext",
    "CriterionResult", "EvaluationResult", "PromptRunResult",
]
