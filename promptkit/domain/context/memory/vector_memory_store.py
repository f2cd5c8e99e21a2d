from typing import Dict, List, Any, Optional
from collections import Counter
from datetime import datetime
import asyncio
import math
import re


_TOKEN = re.compile(r"\w+")


def embed_text(text: str) -> Counter:
    """Bag-of-words term-frequency vector"""
    return Counter(_TOKEN.findall(text.lower()))


def cosine_similarity(a: Counter, b: Counter) -> float:
    """Cosine similarity between two sparse term vectors"""

    if not a or not b:
        return 0.0
    dot = sum(count * b[term] for term, count in a.items() if term in b)
    if dot == 0:
        return 0.0
    norm_a = math.sqrt(sum(c * c for c in a.values()))
    norm_b = math.sqrt(sum(c * c for c in b.values()))
    return dot / (norm_a * norm_b)


class VectorMemoryStore:
    """Long-term per-session memory searched by term-vector similarity"""

    def __init__(self, max_memories: int = 1000):
        self.max_memories = max_memories
        self.memories: Dict[str, List[Dict[str, Any]]] = {}
        self._counters: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def add(self, session_id: str, content: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        """Add content to the store"""

        async with self._lock:
            if session_id not in self.memories:
                self.memories[session_id] = []

            sequence = self._counters.get(session_id, 0)
            self._counters[session_id] = sequence + 1
            memory_id = f"{session_id}_{sequence}"

            self.memories[session_id].append({
                "id": memory_id,
                "content": content,
                "metadata": metadata or {},
                "timestamp": datetime.utcnow().isoformat(),
                "embedding": embed_text(content),
            })

            if len(self.memories[session_id]) > self.max_memories:
                self.memories[session_id] = self.memories[session_id][-self.max_memories:]

            return memory_id

    async def search(self, query: str, session_id: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Search for memories similar to the query, best match first"""

        if limit <= 0:
            return []

        query_vector = embed_text(query)

        async with self._lock:
            candidates = list(enumerate(self.memories.get(session_id, [])))

        scored = []
        for position, memory in candidates:
            score = cosine_similarity(query_vector, memory["embedding"])
            if score > 0:
                scored.append((score, position, memory))

        # Newer memories win ties
        scored.sort(key=lambda item: (item[0], item[1]), reverse=True)

        results = []
        for score, _, memory in scored[:limit]:
            result = {k: v for k, v in memory.items() if k != "embedding"}
            result["score"] = round(score, 4)
            results.append(result)

        return results

    async def count(self, session_id: str) -> int:
        """Number of memories stored for a session"""

        async with self._lock:
            return len(self.memories.get(session_id, []))

    async def clear_session(self, session_id: str):
        """Forget all memories for a session"""

        async with self._lock:
            self.memories.pop(session_id, None)
            self._counters.pop(session_id, None)
