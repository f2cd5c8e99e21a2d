from .llm_adapter import (
    LLMAdapter, ChatModelAdapter, ScriptedLLMAdapter,
    normalize_response, extract_tool_calls, parse_function_call_text,
    strip_code_fence, message_text,
)
from .llm_builder import build_llm

__all__ = [
    "LLMAdapter", "ChatModelAdapter", "ScriptedLLMAdapter",
    "normalize_response", "extract_tool_calls", "parse_function_call_text",
    "strip_code_fence", "message_text", "build_llm",
]
