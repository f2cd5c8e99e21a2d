# This module handles context engineering

# +---------------------+
# |      Memory         |   (Persistent, per session)
# |---------------------|
# | Conversation turns  |
# | Long-term memories  |
# | Knowledge documents |
# +---------------------+

# +---------------------+
# |      State          |   (Current run, workflow-focused)
# |---------------------|
# | Run status          |
# | Iteration counters  |
# | Last run id         |
# +---------------------+

#    \    /
#     \  /
#      \/
# +------------------------------+
# |           Context            |   (Assembled per run)
# |------------------------------|
# | Pinned prompt contexts       |
# | Retrieved documents          |
# | Recalled memories            |
# | History window               |
# +------------------------------+
#         |
#         v
#   [template engine -> LLM]

from .context_manager import ContextManager
from .context_ranker import ContextRanker
from .context_retriever import ContextRetriever

__all__ = ["ContextManager", "ContextRanker", "ContextRetriever"]
