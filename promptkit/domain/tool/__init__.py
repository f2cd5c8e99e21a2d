from .tool_registry import ToolRegistry, schema_from_signature
from .tool_validator import ToolParameterValidator
from .tool_executor import ToolExecutor, serialize_output

__all__ = ["ToolRegistry", "ToolParameterValidator", "ToolExecutor", "schema_from_signature", "serialize_output"]
