"""
Organic Schema - structure that emerges from usage.

A schema-less data platform keeps entities in a graph store. This package
infers structure from how entities are actually used instead of requiring
it up front:

- Pattern learning: attribute types, common values and confidence
- Gentle validation: suggestions and corrections, never rejection
- Implicit relations: entities related through shared grouping contexts
"""

from .core import (
    GraphStore,
    Neo4jGraphStore,
    OrganicSettings,
    Result,
    SQLiteGraphStore,
    TTLCache,
    create_graph_store,
)
from .patterns import PatternLearner, PatternSnapshot, TypeTag, infer_type
from .relations import Connection, ImplicitRelation, ImplicitRelationResolver, ModuleContext
from .system import OrganicSchema
from .validation import AutoCorrection, GentleValidator, ValidationReport, ValidationResult

__version__ = "0.1.0"

__all__ = [
    # Facade
    "OrganicSchema",
    # Core
    "GraphStore",
    "SQLiteGraphStore",
    "Neo4jGraphStore",
    "create_graph_store",
    "OrganicSettings",
    "TTLCache",
    "Result",
    # Patterns
    "PatternLearner",
    "PatternSnapshot",
    "TypeTag",
    "infer_type",
    # Validation
    "GentleValidator",
    "ValidationResult",
    "AutoCorrection",
    "ValidationReport",
    # Relations
    "ImplicitRelationResolver",
    "ImplicitRelation",
    "Connection",
    "ModuleContext",
]
