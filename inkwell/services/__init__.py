"""
Inkwell Services Module
Model client, narrative stores and event streaming.
"""

from .model_client import ModelResponse, UnifiedModelClient
from .narrative_store import InMemoryNarrativeStore, NarrativeStore
from .redis_streams import RedisStreamsService
from .supabase_persistence import SupabaseNarrativeStore

__all__ = [
    "ModelResponse",
    "UnifiedModelClient",
    "NarrativeStore",
    "InMemoryNarrativeStore",
    "SupabaseNarrativeStore",
    "RedisStreamsService",
]
