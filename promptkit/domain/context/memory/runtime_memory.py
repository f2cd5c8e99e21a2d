from typing import Deque, Dict, List, Any, Optional
from collections import deque
from datetime import datetime
import asyncio


class RuntimeMemory:
    """Short-term memory: recent conversation turns and scratch data per session"""

    def __init__(self, max_messages: int = 100):
        self.max_messages = max_messages
        self.conversations: Dict[str, Deque[Dict[str, Any]]] = {}
        self.session_data: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def add_to_conversation(self, session_id: str, message: Dict[str, Any]):
        """Append a turn; the oldest turns fall off once max_messages is reached"""

        entry = {"timestamp": datetime.utcnow().isoformat(), **message}
        async with self._lock:
            turns = self.conversations.get(session_id)
            if turns is None:
                turns = self.conversations[session_id] = deque(maxlen=self.max_messages)
            turns.append(entry)

    async def get_conversation_history(self, session_id: str) -> List[Dict[str, Any]]:
        async with self._lock:
            return list(self.conversations.get(session_id, ()))

    async def set_session_data(self, session_id: str, key: str, value: Any):
        async with self._lock:
            self.session_data.setdefault(session_id, {})[key] = value

    async def get_session_data(self, session_id: str, key: str) -> Optional[Any]:
        async with self._lock:
            return self.session_data.get(session_id, {}).get(key)

    async def list_sessions(self) -> List[str]:
        async with self._lock:
            return sorted(self.conversations.keys() | self.session_data.keys())

    async def clear_session(self, session_id: str):
        async with self._lock:
            self.conversations.pop(session_id, None)
            self.session_data.pop(session_id, None)
