"""
Context Manager Tests
"""

from datetime import datetime, timedelta

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from promptkit.domain.context import ContextManager, ContextRanker, ContextRetriever
from promptkit.domain.models import Context, MemorySettings


class TestContextRanker:
    """Lexical relevance scoring"""

    def test_relevance_overlap_and_substring_boost(self):
        ranker = ContextRanker()
        assert ranker.calculate_relevance("rome hotels", "Cheap hotels near the station") == 0.5
        assert ranker.calculate_relevance("rome hotels", "Best rome hotels") == 1.0
        assert ranker.calculate_relevance("", "anything") == 0.0

    def test_tool_name_matches_count_double(self, registry):
        ranker = ContextRanker()
        scores = ranker.rank_tools("weather in rome", registry.list_specs())
        assert scores["get_weather"] > scores["book_hotel"]


class TestContextRetriever:
    """Knowledge base retrieval"""

    @pytest.mark.asyncio
    async def test_retrieve_orders_by_relevance(self):
        retriever = ContextRetriever()
        await retriever.add_document("d1", "Rome metro runs until midnight", source="transit")
        await retriever.add_document("d2", "Rome metro tickets cost 1.50 EUR and the metro is cheap", source="prices")
        await retriever.add_document("d3", "Berlin zoo opening hours")

        contexts = await retriever.retrieve("rome metro tickets", limit=5)

        assert [c.source for c in contexts] == ["knowledge:prices", "knowledge:transit"]
        assert all(not c.pinned for c in contexts)
        assert contexts[0].metadata["doc_id"] == "d2"

    @pytest.mark.asyncio
    async def test_remove_document(self):
        retriever = ContextRetriever()
        await retriever.add_document("d1", "Rome metro")
        assert await retriever.remove_document("d1") is True
        assert await retriever.retrieve("rome") == []


class TestContextManager:
    """Context assembly for a run"""

    @pytest.mark.asyncio
    async def test_build_context_includes_history_and_pinned_context(self, registry, trip_prompt):
        manager = ContextManager(tool_registry=registry)
        await manager.update_context("s1", {"role": "user", "content": "Hi"})
        await manager.update_context("s1", {"role": "assistant", "content": "Hello!"})

        context = await manager.build_context(trip_prompt, "weather in rome", "s1")

        assert context.conversation_history == [HumanMessage(content="Hi"), AIMessage(content="Hello!")]
        assert [c.source for c in context.contexts] == ["policy"]
        assert context.available_tools == ["get_weather"]
        assert context.metadata["prompt"] == "trip_planner"

    @pytest.mark.asyncio
    async def test_history_window(self, registry, trip_prompt):
        manager = ContextManager(tool_registry=registry)
        for i in range(6):
            await manager.update_context("s1", {"role": "user", "content": f"m{i}"})
        prompt = trip_prompt.model_copy(update={"memory": MemorySettings(history_window=2)})

        context = await manager.build_context(prompt, "next", "s1")

        assert [m.content for m in context.conversation_history] == ["m4", "m5"]

    @pytest.mark.asyncio
    async def test_memories_and_documents_become_dynamic_contexts(self, registry, trip_prompt):
        manager = ContextManager(tool_registry=registry)
        await manager.update_context("s1", {
            "store_in_memory": True,
            "memory_content": "User loves gelato in Rome",
            "metadata": {"kind": "preference"},
        })
        await manager.context_retriever.add_document("guide", "Rome gelato shops open late", source="guide")

        context = await manager.build_context(trip_prompt, "gelato in rome", "s1")

        sources = [c.source for c in context.contexts]
        assert sources[0] == "policy"
        assert set(sources[1:]) == {"memory", "knowledge:guide"}
        memory = next(c for c in context.contexts if c.source == "memory")
        assert memory.metadata["kind"] == "preference"

    def test_select_contexts_keeps_pinned_and_trims_by_relevance(self):
        manager = ContextManager(max_context_items=3)
        pinned = [Context(source="a", content="a"), Context(source="b", content="b")]
        dynamic = [
            Context(source="low", content="x", relevance=0.2, pinned=False),
            Context(source="high", content="y", relevance=0.9, pinned=False),
        ]

        selected = manager.select_contexts(pinned, dynamic)

        assert [c.source for c in selected] == ["a", "b", "high"]

    def test_pinned_contexts_survive_zero_budget(self):
        manager = ContextManager(max_context_items=1)
        pinned = [Context(source="a", content="a"), Context(source="b", content="b")]

        selected = manager.select_contexts(pinned, [Context(source="d", content="d", pinned=False)])

        assert [c.source for c in selected] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_summary_and_clear(self, registry, trip_prompt):
        manager = ContextManager(tool_registry=registry)
        await manager.update_context("s1", {"role": "user", "content": "Hi", "state_update": {"status": "running"}})
        await manager.build_context(trip_prompt, "weather", "s1")

        summary = await manager.get_context_summary("s1")
        assert summary["status"] == "running"
        assert summary["has_conversation"] is True
        assert summary["context_count"] == 1

        await manager.clear_session_context("s1")

        assert (await manager.get_context_summary("s1"))["status"] == "no_context"
        assert await manager.runtime_memory.get_conversation_history("s1") == []

    @pytest.mark.asyncio
    async def test_idle_sessions_expire(self, registry, trip_prompt):
        manager = ContextManager(tool_registry=registry)
        for session_id in ("idle", "fresh", "busy"):
            await manager.update_context(session_id, {
                "role": "user",
                "content": "Hi",
                "store_in_memory": True,
                "memory_content": "likes museums",
            })
            await manager.build_context(trip_prompt, "weather", session_id)
        await manager.update_context("busy", {"state_update": {"status": "running"}})

        stale = (datetime.utcnow() - timedelta(hours=2)).isoformat()
        manager.state_manager.states["idle"]["last_updated"] = stale
        manager.state_manager.states["busy"]["last_updated"] = stale

        assert await manager.expire_idle_sessions(max_idle_seconds=3600) == 1

        assert await manager.runtime_memory.list_sessions() == ["busy", "fresh"]
        assert await manager.vector_store.count("idle") == 0
        assert await manager.state_manager.has_state("idle") is False
        assert (await manager.get_context_summary("idle"))["status"] == "no_context"
        assert (await manager.get_context_summary("fresh"))["status"] != "no_context"

    @pytest.mark.asyncio
    async def test_expiry_sweeps_expired_cache_entries(self, registry):
        manager = ContextManager(tool_registry=registry)
        await manager.cache_store.set("session:gone:context", {}, ttl=1)
        manager.cache_store.cache["session:gone:context"].expires_at = datetime.utcnow() - timedelta(seconds=1)

        assert await manager.expire_idle_sessions(max_idle_seconds=3600) == 0
        assert manager.cache_store.cache == {}
