from typing import Dict, List, Any, Optional
import structlog
from datetime import datetime, timedelta

from langchain_core.messages import BaseMessage, HumanMessage, AIMessage

from promptkit.domain.models.prompt import Prompt, Context
from promptkit.domain.models.run_state import ExecutionContext
from promptkit.domain.tool.tool_registry import ToolRegistry
from promptkit.infrastructure.observability.logging import prompt_logger
from .memory.runtime_memory import RuntimeMemory
from .memory.vector_memory_store import VectorMemoryStore
from .memory.cache_memory_store import CacheMemoryStore
from .state.state_manager import StateManager
from .context_ranker import ContextRanker
from .context_retriever import ContextRetriever

logger = structlog.get_logger(__name__)


class ContextManager:
    """Assembles context from multiple sources for a prompt run"""

    def __init__(
        self,
        runtime_memory: Optional[RuntimeMemory] = None,
        vector_store: Optional[VectorMemoryStore] = None,
        cache_store: Optional[CacheMemoryStore] = None,
        state_manager: Optional[StateManager] = None,
        context_ranker: Optional[ContextRanker] = None,
        context_retriever: Optional[ContextRetriever] = None,
        tool_registry: Optional[ToolRegistry] = None,
        max_context_items: int = 8,
        tool_relevance_threshold: float = 0.5
    ):
        self.runtime_memory = runtime_memory or RuntimeMemory()
        self.vector_store = vector_store or VectorMemoryStore()
        self.cache_store = cache_store or CacheMemoryStore()
        self.state_manager = state_manager or StateManager()
        self.context_ranker = context_ranker or ContextRanker()
        self.context_retriever = context_retriever or ContextRetriever(self.context_ranker)
        self.tool_registry = tool_registry or ToolRegistry()
        self.max_context_items = max_context_items
        self.tool_relevance_threshold = tool_relevance_threshold

    async def build_context(self, prompt: Prompt, user_input: str, session_id: str) -> ExecutionContext:
        """Build the execution context for one run of a prompt"""

        logger.info("Building context", session_id=session_id, prompt=prompt.name)

        memory_settings = prompt.memory_settings

        conversation = await self.get_conversation_context(session_id, memory_settings.history_window)
        relevant_tools = self.discover_relevant_tools(user_input, prompt.tools)
        state_context = await self.state_manager.get_current_state(session_id)

        pinned = [c for c in prompt.contexts if c.pinned]
        dynamic = [c for c in prompt.contexts if not c.pinned]
        dynamic.extend(await self.context_retriever.retrieve(user_input, memory_settings.recall_limit))
        dynamic.extend(await self._retrieve_relevant_memories(user_input, session_id, memory_settings.recall_limit))

        contexts = self.select_contexts(pinned, dynamic)

        relevance_scores = self.calculate_relevance_scores(user_input, relevant_tools, contexts)

        context = ExecutionContext(
            query=user_input,
            session_id=session_id,
            conversation_history=conversation,
            contexts=contexts,
            available_tools=relevant_tools,
            relevance_scores=relevance_scores,
            metadata={
                "state": state_context,
                "prompt": prompt.name,
                "timestamp": datetime.utcnow().isoformat()
            }
        )

        await self.cache_store.set(self._cache_key(session_id, "context"), context.snapshot())

        prompt_logger.log_context_update(
            session_id=session_id,
            context_type="execution_context",
            action="built",
            details={"history": len(conversation), "contexts": len(contexts)}
        )

        return context

    def select_contexts(self, pinned: List[Context], dynamic: List[Context]) -> List[Context]:
        """Keep all pinned contexts and fill the remaining budget by relevance"""

        budget = max(self.max_context_items - len(pinned), 0)
        ranked = sorted(dynamic, key=lambda c: c.relevance, reverse=True)
        return list(pinned) + ranked[:budget]

    async def get_conversation_context(self, session_id: str, window: int = 20) -> List[BaseMessage]:
        """Get the newest conversation turns as chat messages"""

        if window <= 0:
            return []

        conversation = await self.runtime_memory.get_conversation_history(session_id)

        messages: List[BaseMessage] = []
        for entry in conversation[-window:]:
            if entry.get("role") == "user":
                messages.append(HumanMessage(content=entry.get("content", "")))
            elif entry.get("role") == "assistant":
                messages.append(AIMessage(content=entry.get("content", "")))
        return messages

    def discover_relevant_tools(self, user_input: str, tool_names: List[str]) -> List[str]:
        """Names of the prompt's tools that score above the relevance threshold"""

        specs = [self.tool_registry.get_spec(name) for name in tool_names if self.tool_registry.has(name)]
        tool_scores = self.context_ranker.rank_tools(user_input, specs)

        relevant = [name for name, score in tool_scores.items() if score > self.tool_relevance_threshold]

        logger.debug("Discovered relevant tools", query=user_input[:50], tools=relevant)

        return relevant

    async def _retrieve_relevant_memories(self, query: str, session_id: str, limit: int) -> List[Context]:
        """Recall long-term memories as contexts"""

        memories = await self.vector_store.search(query=query, session_id=session_id, limit=limit)

        return [
            Context(
                source="memory",
                content=memory["content"],
                relevance=min(memory["score"], 1.0),
                pinned=False,
                metadata={"memory_id": memory["id"], **memory.get("metadata", {})}
            )
            for memory in memories
        ]

    def calculate_relevance_scores(
        self,
        query: str,
        tools: List[str],
        contexts: List[Context]
    ) -> Dict[str, float]:
        """Calculate relevance scores for context elements"""

        scores = {}

        for tool in tools:
            spec = self.tool_registry.get_spec(tool)
            scores[f"tool_{tool}"] = self.context_ranker.calculate_relevance(query, spec.description)

        for idx, context in enumerate(contexts):
            scores[f"context_{idx}"] = context.relevance

        return scores

    async def update_context(self, session_id: str, updates: Dict[str, Any]):
        """Update context with new information"""

        if "content" in updates and "role" in updates:
            await self.runtime_memory.add_to_conversation(session_id, {
                "role": updates["role"],
                "content": updates["content"],
                **({"run_id": updates["run_id"]} if "run_id" in updates else {})
            })

        # Every write counts as session activity for idle expiry
        await self.state_manager.update_state(session_id, updates.get("state_update", {}))

        if updates.get("store_in_memory", False):
            await self.vector_store.add(
                session_id=session_id,
                content=updates.get("memory_content", updates.get("content", "")),
                metadata=updates.get("metadata", {})
            )

        prompt_logger.log_context_update(
            session_id=session_id,
            context_type="session",
            action="updated",
            details={"keys": sorted(updates)}
        )

    async def get_context_summary(self, session_id: str) -> Dict[str, Any]:
        """Get a summary of the current context"""

        cached_context = await self.cache_store.get(self._cache_key(session_id, "context"))
        state = await self.state_manager.get_current_state(session_id)

        if cached_context:
            return {
                "session_id": session_id,
                "status": state.get("status", "idle"),
                "has_conversation": len(cached_context.get("conversation_history", [])) > 0,
                "available_tools": len(cached_context.get("available_tools", [])),
                "context_count": len(cached_context.get("contexts", [])),
                "memory_count": await self.vector_store.count(session_id),
                "last_updated": cached_context.get("metadata", {}).get("timestamp")
            }

        return {
            "session_id": session_id,
            "status": "no_context"
        }

    async def clear_session_context(self, session_id: str):
        """Clear all context for a session"""

        logger.info("Clearing session context", session_id=session_id)

        await self.runtime_memory.clear_session(session_id)
        await self.vector_store.clear_session(session_id)
        await self.cache_store.delete_prefix(self._cache_key(session_id, ""))
        await self.state_manager.clear_state(session_id)

    async def expire_idle_sessions(self, max_idle_seconds: int) -> int:
        """Release sessions idle for longer than max_idle_seconds and drop expired cache entries"""

        idle_since = datetime.utcnow() - timedelta(seconds=max_idle_seconds)
        expired = await self.state_manager.get_idle_sessions(idle_since)
        for session_id in expired:
            await self.clear_session_context(session_id)

        evicted = await self.cache_store.clear_expired()
        if expired or evicted:
            logger.info("Expired idle sessions", sessions=len(expired), cache_entries=evicted)
        return len(expired)

    @staticmethod
    def _cache_key(session_id: str, name: str) -> str:
        return f"session:{session_id}:{name}"
