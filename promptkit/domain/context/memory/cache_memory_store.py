from typing import Dict, Any, Optional
from dataclasses import dataclass
import asyncio
from datetime import datetime, timedelta


@dataclass
class CacheEntry:
    value: Any
    expires_at: datetime

    def expired(self, now: datetime) -> bool:
        return now > self.expires_at


class CacheMemoryStore:
    """Key/value cache with per-entry expiry, used for per-session context snapshots"""

    def __init__(self, default_ttl: int = 3600):
        self.default_ttl = default_ttl
        self.cache: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = datetime.utcnow() + timedelta(seconds=ttl or self.default_ttl)
        async with self._lock:
            self.cache[key] = CacheEntry(value=value, expires_at=expires_at)

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, evicting it first if it has expired"""

        async with self._lock:
            entry = self.cache.get(key)
            if entry is None:
                return None
            if entry.expired(datetime.utcnow()):
                del self.cache[key]
                return None
            return entry.value

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self.cache.pop(key, None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        """Drop every key under a namespace such as "session:<id>:" """

        async with self._lock:
            return self._evict(lambda key, entry: key.startswith(prefix))

    async def clear_expired(self) -> int:
        now = datetime.utcnow()
        async with self._lock:
            return self._evict(lambda key, entry: entry.expired(now))

    def _evict(self, predicate) -> int:
        keys = [key for key, entry in self.cache.items() if predicate(key, entry)]
        for key in keys:
            del self.cache[key]
        return len(keys)

    async def get_stats(self) -> Dict[str, Any]:
        now = datetime.utcnow()
        async with self._lock:
            expired = sum(1 for entry in self.cache.values() if entry.expired(now))
            return {
                "total_keys": len(self.cache),
                "active_keys": len(self.cache) - expired,
                "expired_keys": expired,
            }
