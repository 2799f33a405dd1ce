"""
Implicit Relation Resolver - Relations Through Shared Context.

Replaces rigid typed edges with relations inferred from grouping contexts:
two entities that live in the same module are related, with a confidence
that grows when the entity matches the module's target type and was created
close to the module itself.

Membership of a module is the union of:
- Entities of the module's target type
- Entities explicitly linked to the module (CONTAINS / HAS_RELATION)
- Entities referencing the module by id
"""

import logging
import math
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..core.cache import TTLCache
from ..core.config import OrganicSettings
from ..core.graph import MODULE_ENTITY_TYPE, GraphStore
from ..core.result import Result
from ..patterns.inference import value_key
from ..patterns.learner import PatternLearner
from .types import (
    Connection,
    ImplicitRelation,
    ModuleContext,
    RelationContext,
    SemanticContext,
    likely_relationship,
)

logger = logging.getLogger(__name__)

# Bookkeeping keys never copied between group members
NON_SHARED_KEYS = {"id", "entityType", "createdAt", "updatedAt", "modifiedAt"}


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _most_common(values: Iterable[Any]) -> Any:
    """Most frequent value by structural identity; the first seen wins ties."""
    counts: Counter = Counter()
    originals: Dict[Any, Any] = {}
    for value in values:
        key = value_key(value)
        counts[key] += 1
        originals.setdefault(key, value)
    if not counts:
        return None
    # Counter.most_common keeps insertion order among equal counts
    key, _ = counts.most_common(1)[0]
    return originals[key]


class ImplicitRelationResolver:
    """
    Discover relations between entities through shared grouping contexts.

    Example:
        resolver = ImplicitRelationResolver(store, learner)

        # Who is related to this person?
        result = await resolver.related_entities(person_id, limit=10)
        for relation in result.value:
            print(relation.entity["id"], relation.relation_context.confidence)

        # How are two entities connected?
        paths = await resolver.find_connection_path(a_id, b_id)

        # Add an entity to a module, inheriting the module's common attributes
        created = await resolver.add_entity_to_group(module_id, {"name": "Ada"})
    """

    def __init__(
        self,
        store: GraphStore,
        learner: Optional[PatternLearner] = None,
        settings: Optional[OrganicSettings] = None,
    ):
        """
        Initialize the resolver.

        Args:
            store: Graph store holding entities and modules
            learner: Learner fed with attributes of entities added to groups
            settings: Thresholds, TTLs and time window
        """
        self.store = store
        self.learner = learner
        self.settings = settings or (learner.settings if learner else OrganicSettings())

        self._module_contexts = TTLCache(self.settings.module_context_ttl)
        self._entity_modules = TTLCache(self.settings.module_context_ttl)

        logger.info("ImplicitRelationResolver initialized")

    # =========================================================================
    # Membership
    # =========================================================================

    async def _modules_of(self, entity_id: str) -> List[Dict[str, Any]]:
        modules = self._entity_modules.get(entity_id)
        if modules is None:
            modules = await self.store.modules_containing(entity_id)
            self._entity_modules.set(entity_id, modules)
        return modules

    # =========================================================================
    # Related entities
    # =========================================================================

    async def related_entities(
        self,
        entity_id: str,
        relation_types: Optional[List[str]] = None,
        limit: int = 50,
        include_context: bool = True,
    ) -> Result[List[ImplicitRelation]]:
        """
        Find entities related to ``entity_id`` through shared modules.

        Args:
            entity_id: Entity to start from
            relation_types: Optional likely-relationship labels to keep
                (e.g. ["works_for"])
            limit: Maximum relations returned
            include_context: Attach the semantic context to each relation

        Returns:
            Result holding relations, first occurrence per entity, in
            module discovery order
        """
        try:
            modules = await self._modules_of(entity_id)

            relations = []
            for module in modules:
                members = await self.store.entities_in_module(module["id"])
                for entity in members:
                    if entity.get("id") == entity_id:
                        continue

                    label = likely_relationship(entity.get("entityType"), module.get("targetEntityType"))
                    if relation_types and label not in relation_types:
                        continue

                    context = RelationContext(
                        module_id=module["id"],
                        module_name=module.get("instanceName") or "Unnamed Module",
                        module_type=module.get("templateModuleId"),
                        confidence=self._relation_confidence(entity, module),
                    )
                    if include_context:
                        context.semantic_context = self._semantic_context(entity, module, label)
                    relations.append(ImplicitRelation(entity=entity, relation_context=context))

        except Exception as e:
            logger.warning(f"Related entities lookup for {entity_id} failed: {e}")
            return Result.fallback([], e)

        unique = self._deduplicate(relations)[:limit]
        logger.info(f"Found {len(unique)} implicit relations for {entity_id}")
        return Result(unique)

    def _relation_confidence(self, entity: Dict[str, Any], module: Dict[str, Any]) -> float:
        confidence = 0.5

        if entity.get("entityType") == module.get("targetEntityType"):
            confidence += 0.3

        entity_created = _parse_timestamp(entity.get("createdAt"))
        module_created = _parse_timestamp(module.get("createdAt"))
        if entity_created and module_created:
            delta = abs((entity_created - module_created).total_seconds())
            if delta < self.settings.relation_time_window:
                confidence += 0.2

        return min(1.0, confidence)

    @staticmethod
    def _semantic_context(entity: Dict[str, Any], module: Dict[str, Any], label: str) -> SemanticContext:
        primary = entity.get("entityType") == module.get("targetEntityType")
        return SemanticContext(
            context_type="primary" if primary else "secondary",
            module_template=module.get("templateModuleId"),
            likely_relationship=label,
        )

    @staticmethod
    def _deduplicate(relations: List[ImplicitRelation]) -> List[ImplicitRelation]:
        seen = set()
        unique = []
        for relation in relations:
            if relation.entity_id in seen:
                continue
            seen.add(relation.entity_id)
            unique.append(relation)
        return unique

    async def find_relations(self, source_entity_id: str) -> Result[List[Dict[str, Any]]]:
        """Implicit relations rendered as relation-shaped records."""
        result = await self.related_entities(source_entity_id)
        records = []
        for relation in result.value:
            context = relation.relation_context
            records.append({
                "id": f"implicit_{relation.entity_id}",
                "relationType": context.type,
                "sourceEntityId": source_entity_id,
                "targetEntityId": relation.entity_id,
                "sourceEntity": {"id": source_entity_id},
                "targetEntity": relation.entity,
                "moduleId": context.module_id,
                "confidence": context.confidence,
                "semantic": context.semantic_context.to_dict() if context.semantic_context else None,
            })
        return Result(records, degraded=result.degraded, error=result.error)

    # =========================================================================
    # Connection paths
    # =========================================================================

    async def find_connection_path(
        self,
        entity_a: str,
        entity_b: str,
        max_depth: int = 2,
    ) -> Result[List[Connection]]:
        """
        Find how two entities are connected through modules.

        Direct connections (a shared module) are all returned. Only when
        none exist and ``max_depth > 1`` is a bridge entity searched for, one
        per module of ``entity_a``.
        """
        try:
            modules_a = await self._modules_of(entity_a)
            modules_b = await self._modules_of(entity_b)
            ids_b = {m["id"] for m in modules_b}

            connections = [
                Connection(
                    type="direct_shared_context",
                    path=[entity_a, module["id"], entity_b],
                    strength="strong",
                    module=module,
                )
                for module in modules_a
                if module["id"] in ids_b
            ]

            if not connections and max_depth > 1:
                for module in modules_a:
                    connection = await self._bridge_through(entity_a, entity_b, module, ids_b, modules_b)
                    if connection:
                        connections.append(connection)

        except Exception as e:
            logger.warning(f"Connection path {entity_a} -> {entity_b} failed: {e}")
            return Result.fallback([], e)

        return Result(connections)

    async def _bridge_through(
        self,
        entity_a: str,
        entity_b: str,
        module: Dict[str, Any],
        ids_b: set,
        modules_b: List[Dict[str, Any]],
    ) -> Optional[Connection]:
        for bridge in await self.store.entities_in_module(module["id"]):
            if bridge.get("id") in (entity_a, entity_b):
                continue
            for bridge_module in await self._modules_of(bridge["id"]):
                if bridge_module["id"] in ids_b:
                    return Connection(
                        type="indirect_shared_context",
                        path=[entity_a, module["id"], bridge["id"], bridge_module["id"], entity_b],
                        strength="medium",
                        intermediate_entity=bridge,
                        bridge_module=bridge_module,
                    )
        return None

    # =========================================================================
    # Group context
    # =========================================================================

    async def module_context(self, module_id: str) -> ModuleContext:
        """
        Analyze a module's members, cached for ``module_context_ttl`` seconds.

        Unknown modules and store failures yield an uncached context with the
        default entity type and ``error`` set.
        """
        cached = self._module_contexts.get(module_id)
        if cached is not None:
            return cached

        try:
            module = await self.store.get_entity(module_id)
            if not module or module.get("entityType") != MODULE_ENTITY_TYPE:
                raise LookupError(f"Module {module_id} not found")

            members = await self.store.entities_in_module(module_id)
        except Exception as e:
            logger.error(f"Module context for {module_id} unavailable: {e}")
            return ModuleContext(
                module_id=module_id,
                dominant_entity_type=self.settings.default_entity_type,
                error=str(e),
            )

        dominant = _most_common(m.get("entityType") for m in members if m.get("entityType"))
        context = ModuleContext(
            module_id=module_id,
            module_name=module.get("instanceName"),
            template_id=module.get("templateModuleId"),
            target_entity_type=module.get("targetEntityType"),
            dominant_entity_type=dominant or self.settings.default_entity_type,
            entity_count=len(members),
        )
        self._module_contexts.set(module_id, context)
        return context

    async def common_group_attributes(self, module_id: str) -> Result[Dict[str, Any]]:
        """
        Attributes shared by enough members of a module, with their most
        frequent value.

        An attribute counts when it appears in at least
        ``ceil(members * common_attribute_threshold)`` members.
        """
        try:
            members = await self.store.entities_in_module(module_id)
        except Exception as e:
            logger.warning(f"Common attributes of {module_id} unavailable: {e}")
            return Result.fallback({}, e)

        if not members:
            return Result({})

        values: Dict[str, List[Any]] = {}
        for member in members:
            for name, value in member.items():
                if name not in NON_SHARED_KEYS:
                    values.setdefault(name, []).append(value)

        threshold = math.ceil(len(members) * self.settings.common_attribute_threshold)
        common = {
            name: _most_common(observed)
            for name, observed in values.items()
            if len(observed) >= threshold
        }
        return Result(common)

    async def add_entity_to_group(
        self,
        module_id: str,
        entity_data: Dict[str, Any],
        create_explicit_link: bool = False,
    ) -> Result[Optional[Dict[str, Any]]]:
        """
        Create an entity inside a module's context.

        Args:
            module_id: Target module
            entity_data: Attributes of the new entity; ``entityType`` is
                inferred from the module's majority type when missing.
                The module's common attributes take precedence over these
            create_explicit_link: Also add a CONTAINS edge from the module

        Returns:
            Result holding the created entity, or None when the store failed
        """
        logger.info(f"Adding entity to module {module_id}")
        try:
            context = await self.module_context(module_id)
            common = await self.common_group_attributes(module_id)
            if common.degraded:
                raise RuntimeError(common.error)

            data = {**entity_data, **common.value}
            entity_type = data.pop("entityType", None) or context.dominant_entity_type
            entity_id = data.pop("id", None)

            entity = await self.store.create_entity(entity_type, data, entity_id=entity_id)

            if self.learner is not None:
                for name, value in data.items():
                    await self.learner.learn(
                        entity_type,
                        name,
                        value,
                        {"module_id": module_id, "context": "module_addition"},
                    )

            if create_explicit_link:
                await self.store.link_module_entity(module_id, entity["id"])

        except Exception as e:
            logger.error(f"Adding entity to module {module_id} failed: {e}")
            return Result.fallback(None, e)

        self._module_contexts.delete(module_id)
        logger.info(f"Entity {entity['id']} added to module {module_id}")
        return Result(entity)

    # =========================================================================
    # Maintenance
    # =========================================================================

    def cleanup(self) -> Dict[str, int]:
        """Drop the module-context cache and the entity-module index."""
        cleared = {
            "module_contexts_cleared": len(self._module_contexts),
            "entity_modules_cleared": len(self._entity_modules),
        }
        self._module_contexts.clear()
        self._entity_modules.clear()
        logger.info("ImplicitRelationResolver cleanup complete")
        return cleared
