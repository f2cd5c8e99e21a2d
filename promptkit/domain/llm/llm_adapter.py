"""
LLM adapter layer.

Every model backend is reached through LLMAdapter.generate(), which takes
chat messages plus optional function-calling tool definitions and returns
an AIMessage whose tool_calls are always populated with ids.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Union
import json
import re
import time
import uuid
import structlog

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from promptkit.domain.errors import LLMAdapterError
from promptkit.domain.models.run_state import ToolCall
from promptkit.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)


_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence, if any"""

    text = text.strip()
    match = _FENCE.match(text)
    return match.group(1) if match else text


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


def parse_function_call_text(content: Any) -> List[Dict[str, Any]]:
    """Read tool calls written as text, e.g.
    {"function": "lookupWeather", "arguments": {"location": "Berlin"}}
    """

    if not isinstance(content, str) or not content.strip():
        return []

    try:
        data = json.loads(strip_code_fence(content))
    except json.JSONDecodeError:
        return []

    items = data if isinstance(data, list) else [data]
    calls = []
    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get("function"), str):
            return []
        arguments = item.get("arguments", {})
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError:
                return []
        if not isinstance(arguments, dict):
            return []
        calls.append({
            "name": item["function"],
            "args": arguments,
            "id": _new_call_id(),
            "type": "tool_call",
        })
    return calls


def normalize_response(message: BaseMessage) -> AIMessage:
    """Coerce a model response into an AIMessage with identified tool calls"""

    if not isinstance(message, AIMessage):
        message = AIMessage(content=message.content)

    if message.tool_calls:
        tool_calls = [
            {
                "name": call["name"],
                "args": call.get("args") or {},
                "id": call.get("id") or _new_call_id(),
                "type": "tool_call",
            }
            for call in message.tool_calls
        ]
        return AIMessage(content=message.content, tool_calls=tool_calls, id=message.id)

    text_calls = parse_function_call_text(message.content)
    if text_calls:
        logger.debug("Parsed function call from text content", calls=[c["name"] for c in text_calls])
        return AIMessage(content="", tool_calls=text_calls, id=message.id)

    return message


def extract_tool_calls(message: AIMessage) -> List[ToolCall]:
    """Tool calls of a normalized response"""

    return [
        ToolCall(id=call["id"], name=call["name"], arguments=call.get("args") or {})
        for call in message.tool_calls
    ]


def message_text(message: BaseMessage) -> str:
    """Plain text of a message whose content may be a list of parts"""

    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


class LLMAdapter(ABC):
    """Base class for language model backends"""

    name: str = "llm"

    async def generate(
        self,
        messages: Sequence[BaseMessage],
        tools: Optional[List[Dict[str, Any]]] = None
    ) -> AIMessage:
        """Send messages to the model and return its normalized reply"""

        start = time.perf_counter()
        try:
            response = await self._generate(list(messages), tools or [])
        except LLMAdapterError:
            raise
        except Exception as e:
            raise LLMAdapterError(f"{self.name} call failed: {type(e).__name__}: {e}") from e
        finally:
            metrics.record_latency("llm_call", (time.perf_counter() - start) * 1000, tags={"adapter": self.name})

        return normalize_response(response)

    @abstractmethod
    async def _generate(self, messages: List[BaseMessage], tools: List[Dict[str, Any]]) -> BaseMessage:
        """Backend-specific model call"""
        pass


class ChatModelAdapter(LLMAdapter):
    """Adapter over any LangChain chat model"""

    name = "chat_model"

    def __init__(self, model: BaseChatModel, max_retries: int = 3, retry_jitter: bool = True):
        self.model = model
        self.max_retries = max_retries
        self.retry_jitter = retry_jitter

    async def _generate(self, messages: List[BaseMessage], tools: List[Dict[str, Any]]) -> BaseMessage:
        runnable = self.model.bind_tools(tools) if tools else self.model
        if self.max_retries > 1:
            runnable = runnable.with_retry(
                stop_after_attempt=self.max_retries,
                wait_exponential_jitter=self.retry_jitter
            )
        return await runnable.ainvoke(messages)


class ScriptedLLMAdapter(LLMAdapter):
    """Replays queued responses; echoes the last user message once exhausted"""

    name = "scripted"

    def __init__(self, responses: Optional[List[Union[AIMessage, str, Exception]]] = None):
        self.responses: List[Union[AIMessage, str, Exception]] = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *responses: Union[AIMessage, str, Exception]) -> None:
        """Append responses to replay"""
        self.responses.extend(responses)

    async def _generate(self, messages: List[BaseMessage], tools: List[Dict[str, Any]]) -> BaseMessage:
        self.calls.append({"messages": messages, "tools": tools})

        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response if isinstance(response, BaseMessage) else AIMessage(content=str(response))

        last_human = next((m for m in reversed(messages) if isinstance(m, HumanMessage)), None)
        return AIMessage(content=message_text(last_human) if last_human else "")
