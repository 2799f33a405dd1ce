"""
Implicit Relations for the Organic Schema.

Entities are related by living in the same grouping context:
- Related entities with confidence and semantic context
- Direct and bridged connection paths
- Adding entities to a group with inherited common attributes
"""

from .resolver import ImplicitRelationResolver
from .types import (
    DEFAULT_RELATIONSHIP,
    LIKELY_RELATIONSHIPS,
    Connection,
    ImplicitRelation,
    ModuleContext,
    RelationContext,
    SemanticContext,
    likely_relationship,
)

__all__ = [
    # Types
    "ModuleContext",
    "SemanticContext",
    "RelationContext",
    "ImplicitRelation",
    "Connection",
    "LIKELY_RELATIONSHIPS",
    "DEFAULT_RELATIONSHIP",
    "likely_relationship",
    # Core classes
    "ImplicitRelationResolver",
]
