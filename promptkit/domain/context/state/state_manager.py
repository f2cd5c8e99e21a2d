from typing import Dict, Any, List
import asyncio
from datetime import datetime


# Run statuses that mean a session is still executing
IN_FLIGHT_STATUSES = frozenset({"pending", "running"})


def _blank_state(session_id: str) -> Dict[str, Any]:
    now = datetime.utcnow().isoformat()
    return {"session_id": session_id, "status": "idle", "created_at": now, "last_updated": now}


class StateManager:
    """Latest run status and bookkeeping for each session"""

    def __init__(self):
        self.states: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get_current_state(self, session_id: str) -> Dict[str, Any]:
        """Snapshot of the session state; unknown sessions report as idle"""

        async with self._lock:
            return dict(self.states.get(session_id) or _blank_state(session_id))

    async def has_state(self, session_id: str) -> bool:
        async with self._lock:
            return session_id in self.states

    async def update_state(self, session_id: str, updates: Dict[str, Any]):
        async with self._lock:
            state = self.states.setdefault(session_id, _blank_state(session_id))
            state.update(updates)
            state["last_updated"] = datetime.utcnow().isoformat()

    async def clear_state(self, session_id: str):
        async with self._lock:
            self.states.pop(session_id, None)

    async def get_all_active_sessions(self) -> Dict[str, Dict[str, Any]]:
        async with self._lock:
            return {
                session_id: dict(state)
                for session_id, state in self.states.items()
                if state.get("status") in IN_FLIGHT_STATUSES
            }

    async def get_idle_sessions(self, idle_since: datetime) -> List[str]:
        """Sessions not updated since idle_since, excluding those mid-run"""

        async with self._lock:
            return [
                session_id
                for session_id, state in self.states.items()
                if state.get("status") not in IN_FLIGHT_STATUSES
                and datetime.fromisoformat(state["last_updated"]) < idle_since
            ]
