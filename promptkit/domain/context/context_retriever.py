from typing import Dict, List, Any, Optional
import asyncio
from datetime import datetime

from promptkit.domain.models.prompt import Context
from .context_ranker import ContextRanker


class ContextRetriever:
    """Knowledge base queried at run time for retrieval-augmented context"""

    def __init__(self, ranker: Optional[ContextRanker] = None):
        self.ranker = ranker or ContextRanker()
        self.documents: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def add_document(
        self,
        doc_id: str,
        content: str,
        source: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Add or replace a document"""

        async with self._lock:
            self.documents[doc_id] = {
                "id": doc_id,
                "content": content,
                "source": source or doc_id,
                "metadata": metadata or {},
                "added_at": datetime.utcnow().isoformat()
            }

    async def remove_document(self, doc_id: str) -> bool:
        """Remove a document, returning whether it existed"""

        async with self._lock:
            return self.documents.pop(doc_id, None) is not None

    async def retrieve(self, query: str, limit: int = 5) -> List[Context]:
        """Return the documents most relevant to the query as contexts"""

        if limit <= 0:
            return []

        async with self._lock:
            documents = list(self.documents.values())

        scored = []
        for doc in documents:
            score = self.ranker.calculate_relevance(query, doc["content"])
            if score > 0:
                scored.append((score, doc))

        scored.sort(key=lambda item: item[0], reverse=True)

        return [
            Context(
                source=f"knowledge:{doc['source']}",
                content=doc["content"],
                relevance=round(score, 4),
                pinned=False,
                metadata={"doc_id": doc["id"], **doc["metadata"]}
            )
            for score, doc in scored[:limit]
        ]
