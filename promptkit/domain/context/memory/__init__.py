from .runtime_memory import RuntimeMemory
from .vector_memory_store import VectorMemoryStore, embed_text, cosine_similarity
from .cache_memory_store import CacheMemoryStore

__all__ = ["RuntimeMemory", "VectorMemoryStore", "CacheMemoryStore", "embed_text", "cosine_similarity"]
