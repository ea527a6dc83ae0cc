from .eviction import (
    EvictionPolicy,
    FifoEviction,
    LruEviction,
    LowestImpactEviction,
    CompletedFirstEviction,
    BoundedStore,
)
from .cache_memory_store import ContextCache, CacheKeyGenerator
from .runtime_memory import ShortTermMemory
from .long_term_memory import LongTermMemory
from .working_memory import WorkingMemory
from .memory_system import TieredMemorySystem, extract_topics

__all__ = [
    "EvictionPolicy",
    "FifoEviction",
    "LruEviction",
    "LowestImpactEviction",
    "CompletedFirstEviction",
    "BoundedStore",
    "ContextCache",
    "CacheKeyGenerator",
    "ShortTermMemory",
    "LongTermMemory",
    "WorkingMemory",
    "TieredMemorySystem",
    "extract_topics",
]
