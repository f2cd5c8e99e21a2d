from typing import Dict, List, Set
import re

from promptkit.domain.models.prompt import ToolSpec


def _words(text: str) -> Set[str]:
    return set(re.findall(r'\w+', text.lower()))


class ContextRanker:
    """Ranks context elements by lexical relevance to a query"""

    def __init__(self, substring_boost: float = 0.3):
        self.substring_boost = substring_boost

    def rank_tools(self, query: str, tools: List[ToolSpec]) -> Dict[str, float]:
        """Rank tools by relevance to query"""

        scores = {}
        query_words = _words(query)

        for tool in tools:
            name_words = _words(tool.name.replace("_", " "))
            desc_words = _words(tool.description)

            desc_overlap = len(query_words & desc_words)
            name_overlap = len(query_words & name_words)

            # Name matches count double
            score = (name_overlap * 2 + desc_overlap) / len(query_words) if query_words else 0.0
            scores[tool.name] = min(score, 1.0)

        return scores

    def calculate_relevance(self, query: str, content: str) -> float:
        """Calculate relevance score between query and content"""

        query_words = _words(query)
        if not query_words:
            return 0.0

        overlap = len(query_words & _words(content))
        score = overlap / len(query_words)

        query_lower = query.lower().strip()
        if query_lower and query_lower in content.lower():
            score += self.substring_boost

        return min(score, 1.0)
