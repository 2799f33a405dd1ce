"""
Organic Schema - The main interface to the subsystem.

Wires the three components to one graph store and one settings object:
- PatternLearner: learns attribute structure from every write
- GentleValidator: advises on values, never rejects them
- ImplicitRelationResolver: relates entities through shared modules
"""

import logging
from typing import Any, Dict, Optional

from .core.config import OrganicSettings
from .core.graph import GraphStore, create_graph_store
from .patterns.learner import PatternLearner
from .relations.resolver import ImplicitRelationResolver
from .validation.validator import GentleValidator

logger = logging.getLogger(__name__)


class OrganicSchema:
    """
    Unified interface to the Organic Schema subsystem.

    Example:
        organic = OrganicSchema.from_settings(OrganicSettings.from_env())
        await organic.initialize()

        # Entity-write path
        await organic.learner.learn("Lead", "email", "a@b.com")

        # Validation path
        result = await organic.validator.validate("Lead", "email", "A@B.com")

        # Related-items path
        related = await organic.resolver.related_entities(lead_id)

        await organic.close()
    """

    def __init__(self, store: GraphStore, settings: Optional[OrganicSettings] = None):
        """
        Initialize the subsystem.

        Args:
            store: Graph store shared by every component
            settings: Thresholds and caps; defaults when omitted
        """
        self.store = store
        self.settings = settings or OrganicSettings()

        self.learner = PatternLearner(store, self.settings)
        self.validator = GentleValidator(self.learner, store, self.settings)
        self.resolver = ImplicitRelationResolver(store, self.learner, self.settings)

        logger.info(f"OrganicSchema initialized with {type(store).__name__}")

    @classmethod
    def from_settings(cls, settings: Optional[OrganicSettings] = None) -> "OrganicSchema":
        """Build the graph store described by ``settings`` and wire everything to it."""
        settings = settings or OrganicSettings()
        store = create_graph_store(
            settings.graph_backend,
            db_path=settings.sqlite_path,
            username=settings.neo4j_user,
            password=settings.neo4j_password,
            database=settings.neo4j_database,
        )
        return cls(store, settings)

    async def initialize(self) -> None:
        await self.store.initialize()

    async def close(self) -> None:
        await self.store.close()
        logger.info("OrganicSchema closed")

    def cleanup(self) -> Dict[str, Any]:
        """Run every component's cleanup pass."""
        return {
            "patterns": self.learner.cleanup(),
            "validation": self.validator.cleanup(),
            "relations": self.resolver.cleanup(),
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            "entity_types": len(self.learner.known_entity_types()),
            "validation": self.validator.stats.model_dump(),
            "backend": type(self.store).__name__,
        }
