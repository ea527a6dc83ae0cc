from typing import Dict, Any, Callable, List, Optional
from collections import OrderedDict
from datetime import datetime
from pydantic import BaseModel
import asyncio
import json
import zlib
import structlog

from context_engine.domain.events import EventBus, EventType
from context_engine.domain.models.config import CacheConfig
from context_engine.domain.models.context_state import utc_now
from context_engine.domain.models.memory_state import CacheEntry
from .eviction import EvictionPolicy, LruEviction

logger = structlog.get_logger(__name__)


class ContextCache:
    """In-memory context cache with per-entry TTL and LRU eviction.

    Entries live in an OrderedDict kept in recency order (least recent first).
    Expired entries are removed lazily by get/has and proactively by the
    periodic sweep started with `start()`. Nothing here raises on bad input.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        event_bus: Optional[EventBus] = None,
        eviction_policy: Optional[EvictionPolicy] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.config = config or CacheConfig()
        self.events = event_bus or EventBus(source="ContextCache")
        self.eviction_policy = eviction_policy or LruEviction()
        self._now = now
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._sweep_task: Optional[asyncio.Task] = None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value and mark it most recently used"""

        now = self._now()
        ttl_seconds = self.config.default_ttl_seconds if ttl is None else max(0.0, float(ttl))

        # Re-inserting moves the key to the most-recent end
        self._entries.pop(key, None)

        if len(self._entries) >= self.config.max_size:
            self._evict_for_insert()

        entry = CacheEntry(
            key=key,
            payload=value,
            created_at=now,
            ttl_seconds=ttl_seconds,
            access_count=1,
            last_accessed_at=now,
        )
        if self.config.compression_enabled:
            self._compress(entry)

        self._entries[key] = entry

        self.events.emit(EventType.CONTEXT_CACHED, {
            "key": key,
            "ttl": ttl_seconds,
            "timestamp": now.isoformat(),
        })

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if present and not expired"""

        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        now = self._now()
        if self._is_expired(entry, now):
            del self._entries[key]
            self._misses += 1
            self.events.emit(EventType.CONTEXT_EXPIRED, {
                "key": key,
                "expired_at": now.isoformat(),
                "reason": "ttl_expired",
            })
            return None

        entry.access_count += 1
        entry.last_accessed_at = now
        self._entries.move_to_end(key)
        self._hits += 1

        value = self._decompress(entry) if entry.compressed else entry.payload

        self.events.emit(EventType.CONTEXT_RETRIEVED, {
            "key": key,
            "access_count": entry.access_count,
        })
        return value

    def has(self, key: str) -> bool:
        """Check presence without touching recency or access statistics"""

        entry = self._entries.get(key)
        if entry is None:
            return False

        if self._is_expired(entry, self._now()):
            del self._entries[key]
            return False

        return True

    def delete(self, key: str, reason: str = "manual_deletion") -> bool:
        """Delete a key from cache"""

        if key not in self._entries:
            return False

        del self._entries[key]
        self.events.emit(EventType.CONTEXT_EXPIRED, {
            "key": key,
            "expired_at": self._now().isoformat(),
            "reason": reason,
        })
        return True

    def clear(self) -> None:
        """Remove every entry"""

        keys = list(self._entries.keys())
        self._entries.clear()
        self.events.emit(EventType.CONTEXT_EXPIRED, {
            "keys": keys,
            "expired_at": self._now().isoformat(),
            "reason": "cache_cleared",
        })

    def cleanup_expired(self) -> int:
        """Clear expired entries and return count"""

        now = self._now()
        expired_keys = [
            key for key, entry in self._entries.items()
            if self._is_expired(entry, now)
        ]

        for key in expired_keys:
            del self._entries[key]

        if expired_keys:
            logger.debug("Swept expired cache entries", count=len(expired_keys))
            self.events.emit(EventType.CONTEXT_EXPIRED, {
                "keys": expired_keys,
                "expired_at": now.isoformat(),
                "reason": "ttl_cleanup",
            })

        return len(expired_keys)

    def keys(self) -> List[str]:
        """Non-expired keys, least recently used first"""
        now = self._now()
        return [key for key, entry in self._entries.items() if not self._is_expired(entry, now)]

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""

        now = self._now()
        total_access = sum(entry.access_count for entry in self._entries.values())
        expired_count = sum(1 for entry in self._entries.values() if self._is_expired(entry, now))
        lookups = self._hits + self._misses

        return {
            "size": len(self._entries),
            "max_size": self.config.max_size,
            "hit_rate": self._hits / lookups if lookups else 0.0,
            "hits": self._hits,
            "misses": self._misses,
            "total_access": total_access,
            "expired_count": expired_count,
            "memory_usage": self._estimate_memory_usage(),
        }

    def update_config(self, **changes: Any) -> None:
        """Apply new settings; a shrunk max_size trims LRU entries immediately"""

        self.config = self.config.model_copy(update=changes)
        self.config = CacheConfig.model_validate(self.config.model_dump())

        while len(self._entries) > self.config.max_size:
            self._evict_for_insert(target=self.config.max_size)

        if "cleanup_interval_seconds" in changes and self._sweep_task is not None:
            self._restart_sweep()

    async def start(self) -> None:
        """Start the periodic TTL sweep on the running event loop"""

        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Stop the periodic sweep"""

        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def destroy(self) -> None:
        """Stop the sweep, drop all entries and listeners"""

        await self.stop()
        self.clear()
        self.events.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _restart_sweep(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
        self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval_seconds)
            try:
                self.cleanup_expired()
            except Exception as e:
                logger.error("Cache sweep failed", error=str(e))

    def _evict_for_insert(self, target: Optional[int] = None) -> None:
        capacity = self.config.max_size - 1 if target is None else target
        recency_order = list(self._entries.keys())
        for key in self.eviction_policy.evict(recency_order, max(0, capacity)):
            del self._entries[key]
            logger.debug("Evicted cache entry", key=key, policy=self.eviction_policy.name)
            self.events.emit(EventType.CONTEXT_EXPIRED, {
                "key": key,
                "expired_at": self._now().isoformat(),
                "reason": "lru_eviction",
            })

    def _is_expired(self, entry: CacheEntry, now: datetime) -> bool:
        age_seconds = (now - entry.created_at).total_seconds()
        return age_seconds >= entry.ttl_seconds

    def _compress(self, entry: CacheEntry) -> None:
        value = entry.payload
        if isinstance(value, BaseModel):
            raw = value.model_dump_json()
            entry.payload = (type(value), zlib.compress(raw.encode("utf-8")))
        else:
            raw = json.dumps(value, default=str)
            entry.payload = (None, zlib.compress(raw.encode("utf-8")))
        entry.compressed = True

    def _decompress(self, entry: CacheEntry) -> Any:
        model_type, blob = entry.payload
        raw = zlib.decompress(blob).decode("utf-8")
        if model_type is not None:
            return model_type.model_validate_json(raw)
        return json.loads(raw)

    def _estimate_memory_usage(self) -> int:
        total = 0
        for entry in self._entries.values():
            if entry.compressed:
                total += len(entry.payload[1])
                continue
            payload = entry.payload
            if isinstance(payload, BaseModel):
                payload = payload.model_dump(mode="json")
            total += len(json.dumps(payload, default=str)) * 2
        return total


class CacheKeyGenerator:
    """Derived cache keys used by the manager"""

    @staticmethod
    def for_session(session_id: str) -> str:
        return f"session:{session_id}"

    @staticmethod
    def for_conversation_context(session_id: str, message_count: int) -> str:
        return f"conversation:{session_id}:{message_count}"

    @staticmethod
    def for_topic_context(topic: str, user_id: str) -> str:
        return f"topic:{'_'.join(topic.lower().split())}:{user_id}"

    @staticmethod
    def for_user_context(user_id: str, timestamp: Optional[datetime] = None) -> str:
        moment = timestamp or utc_now()
        # One-minute buckets
        return f"user:{user_id}:{int(moment.timestamp() // 60)}"
