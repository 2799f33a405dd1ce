"""
Organic Schema - Core Layer

Persistence boundary, settings and small shared utilities:
- Graph: async store over SQLite (default) or Neo4j
- Config: tunable thresholds read from the environment
- Cache: TTL cache with lazy expiry
"""

from .cache import TTLCache
from .config import OrganicSettings
from .graph import GraphStore, Neo4jGraphStore, SQLiteGraphStore, create_graph_store
from .result import Result

__all__ = [
    "GraphStore",
    "SQLiteGraphStore",
    "Neo4jGraphStore",
    "create_graph_store",
    "OrganicSettings",
    "TTLCache",
    "Result",
]
