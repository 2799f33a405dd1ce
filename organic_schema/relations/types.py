"""
Implicit Relation Type Definitions.

Relations here are never stored edges. They are inferred from two entities
sharing a grouping context (a ``ModuleInstance``), and these structures
describe that shared context.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

# Sorted entity-type pair -> likely relationship label
LIKELY_RELATIONSHIPS: Dict[tuple, str] = {
    ("Company", "Person"): "works_for",
    ("Person", "Project"): "assigned_to",
    ("Person", "Task"): "responsible_for",
    ("Client", "Company"): "client_of",
}

DEFAULT_RELATIONSHIP = "related_to"


def likely_relationship(type_a: Optional[str], type_b: Optional[str]) -> str:
    """Guess the relationship label for two entity types, order-insensitive."""
    key = tuple(sorted((str(type_a), str(type_b))))
    return LIKELY_RELATIONSHIPS.get(key, DEFAULT_RELATIONSHIP)


@dataclass
class ModuleContext:
    """What a grouping context looks like, derived from its members."""
    module_id: str
    dominant_entity_type: str
    entity_count: int = 0
    module_name: Optional[str] = None
    template_id: Optional[str] = None
    target_entity_type: Optional[str] = None
    last_analyzed: datetime = field(default_factory=datetime.now)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module_id": self.module_id,
            "module_name": self.module_name,
            "template_id": self.template_id,
            "target_entity_type": self.target_entity_type,
            "dominant_entity_type": self.dominant_entity_type,
            "entity_count": self.entity_count,
            "last_analyzed": self.last_analyzed.isoformat(),
            "error": self.error,
        }


@dataclass
class SemanticContext:
    """How an entity sits inside a module."""
    context_type: str                  # "primary" or "secondary"
    module_template: Optional[str]
    likely_relationship: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "context_type": self.context_type,
            "module_template": self.module_template,
            "likely_relationship": self.likely_relationship,
        }


@dataclass
class RelationContext:
    """Why two entities are considered related."""
    module_id: str
    module_name: str
    module_type: Optional[str]
    confidence: float
    type: str = "shared_module"
    semantic_context: Optional[SemanticContext] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.type,
            "module_id": self.module_id,
            "module_name": self.module_name,
            "module_type": self.module_type,
            "confidence": self.confidence,
        }
        if self.semantic_context is not None:
            data["semantic_context"] = self.semantic_context.to_dict()
        return data


@dataclass
class ImplicitRelation:
    """A related entity plus the shared context that relates it."""
    entity: Dict[str, Any]
    relation_context: RelationContext

    @property
    def entity_id(self) -> str:
        return self.entity.get("id")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "relation_context": self.relation_context.to_dict(),
        }


@dataclass
class Connection:
    """
    A path between two entities through grouping contexts.

    Direct connections have a 3-element path (a, module, b); indirect ones
    go through a bridge entity and have 5 elements.
    """
    type: str                          # "direct_shared_context" or "indirect_shared_context"
    path: List[str]
    strength: str                      # "strong" or "medium"
    module: Optional[Dict[str, Any]] = None
    intermediate_entity: Optional[Dict[str, Any]] = None
    bridge_module: Optional[Dict[str, Any]] = None

    @property
    def is_direct(self) -> bool:
        return self.type == "direct_shared_context"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "path": self.path,
            "strength": self.strength,
            "module": self.module,
            "intermediate_entity": self.intermediate_entity,
            "bridge_module": self.bridge_module,
        }
