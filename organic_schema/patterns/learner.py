"""
Pattern Learner - Learn Attribute Structure from Usage.

Replaces upfront schema declarations with statistics gathered from real
writes:
- What type each attribute tends to hold
- Which values recur
- How established an attribute is (confidence)
- Where (which grouping contexts) it gets used

The learner never blocks the write path: failures degrade to a fallback
pattern and persistence is best-effort.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np

from ..core.config import OrganicSettings
from ..core.graph import GraphStore
from .inference import infer_type
from .types import (
    AttributeDoc,
    AttributePattern,
    AttributeSuggestion,
    LivingDocumentation,
    PatternSnapshot,
    PropagationResult,
    UsageStats,
)

logger = logging.getLogger(__name__)


class PatternLearner:
    """
    Learn per-attribute patterns from observed values.

    Example:
        learner = PatternLearner(store)

        # Every successful attribute write is an observation
        await learner.learn("Lead", "email", "a@b.com", {"module_id": "mod_1"})

        # What does a Lead look like so far?
        doc = learner.living_documentation("Lead")

        # Which attributes should a new Lead/Contact module offer?
        suggestions = learner.suggest_attributes_for_context(["Lead", "Contact"])
    """

    def __init__(
        self,
        store: Optional[GraphStore] = None,
        settings: Optional[OrganicSettings] = None,
    ):
        """
        Initialize pattern learner.

        Args:
            store: Graph store for pattern summaries and propagation writes.
                Without one, learning stays purely in memory.
            settings: Thresholds and caps
        """
        self.store = store
        self.settings = settings or OrganicSettings()

        # entity_type -> attribute_name -> pattern
        self._patterns: Dict[str, Dict[str, AttributePattern]] = {}
        self._usage: Dict[Tuple[str, str], UsageStats] = {}

        logger.info("PatternLearner initialized")

    # =========================================================================
    # Observation
    # =========================================================================

    async def learn(
        self,
        entity_type: str,
        attribute_name: str,
        value: Any,
        context: Optional[Dict[str, Any]] = None,
    ) -> PatternSnapshot:
        """
        Record one observed attribute value.

        Args:
            entity_type: Type of the entity written to
            attribute_name: Attribute that was set
            value: The raw value
            context: Optional origin info; ``module_id`` is tracked

        Returns:
            Snapshot of the updated pattern, or a degraded fallback
        """
        context = context or {}
        try:
            inferred = infer_type(value)
            pattern = self._update_pattern(entity_type, attribute_name, inferred, value)
            self._update_usage(entity_type, attribute_name, value, context)
            snapshot = pattern.snapshot()
        except Exception as e:
            logger.warning(f"Learning {entity_type}.{attribute_name} failed: {e}")
            return self._fallback(entity_type, attribute_name, value)

        logger.debug(f"Learned {entity_type}.{attribute_name} = {inferred.value}")
        await self._persist(pattern)
        return snapshot

    def _update_pattern(self, entity_type: str, attribute_name: str, inferred, value: Any) -> AttributePattern:
        entity_patterns = self._patterns.setdefault(entity_type, {})
        pattern = entity_patterns.get(attribute_name)
        if pattern is None:
            pattern = AttributePattern(
                entity_type=entity_type,
                name=attribute_name,
                saturation=self.settings.confidence_saturation,
                common_values_limit=self.settings.common_values_limit,
            )
            entity_patterns[attribute_name] = pattern

        pattern.observe(inferred, value)
        return pattern

    def _update_usage(self, entity_type: str, attribute_name: str, value: Any, context: Dict[str, Any]) -> None:
        stats = self._usage.setdefault((entity_type, attribute_name), UsageStats())
        stats.record(
            value,
            context,
            trend_limit=self.settings.trend_limit,
            trend_retain=self.settings.trend_retain,
        )

    async def _persist(self, pattern: AttributePattern) -> None:
        """Upsert the pattern summary. Failures stay in memory only."""
        if self.store is None:
            return
        try:
            await self.store.upsert_pattern_summary(pattern.summary())
        except Exception as e:
            logger.warning(f"Pattern persistence failed for {pattern.entity_type}.{pattern.name}: {e}")

    def _fallback(self, entity_type: str, attribute_name: str, value: Any) -> PatternSnapshot:
        try:
            inferred = infer_type(value)
        except Exception:
            inferred = infer_type(None)
        return PatternSnapshot(
            entity_type=entity_type,
            name=attribute_name,
            dominant_type=inferred,
            types=[inferred],
            common_values=[value],
            frequency=1,
            confidence=0.1,
            degraded=True,
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def get_pattern(self, entity_type: str, attribute_name: str) -> Optional[PatternSnapshot]:
        pattern = self._patterns.get(entity_type, {}).get(attribute_name)
        return pattern.snapshot() if pattern else None

    def get_usage_stats(self, entity_type: str, attribute_name: str) -> Optional[UsageStats]:
        return self._usage.get((entity_type, attribute_name))

    def known_entity_types(self) -> List[str]:
        return list(self._patterns)

    def suggest_attributes_for_context(self, candidate_entity_types: Iterable[str]) -> List[AttributeSuggestion]:
        """
        Suggest attributes for a new grouping context.

        Args:
            candidate_entity_types: Entity types the context will hold

        Returns:
            Well-established attributes, most confident first
        """
        suggestions = []
        for entity_type in candidate_entity_types:
            for name, pattern in self._patterns.get(entity_type, {}).items():
                if pattern.confidence <= self.settings.suggestion_threshold:
                    continue
                suggestions.append(AttributeSuggestion(
                    name=name,
                    type=pattern.dominant_type,
                    confidence=pattern.confidence,
                    frequency=pattern.frequency,
                    examples=list(pattern.common_values.values())[:2],
                    reason=f"Common in {entity_type} ({pattern.frequency} uses)",
                ))

        suggestions.sort(key=lambda s: s.confidence, reverse=True)
        return suggestions[:self.settings.max_attribute_suggestions]

    def living_documentation(self, entity_type: str) -> LivingDocumentation:
        """Render every known pattern of an entity type as documentation."""
        patterns = self._patterns.get(entity_type)
        if not patterns:
            return LivingDocumentation(entity_type=entity_type, status="no_patterns_yet")

        doc = LivingDocumentation(entity_type=entity_type)
        for name, pattern in patterns.items():
            established = pattern.confidence > self.settings.established_threshold
            doc.attributes.append(AttributeDoc(
                name=name,
                type=pattern.dominant_type,
                confidence=pattern.confidence,
                usage=pattern.frequency,
                examples=list(pattern.common_values.values())[:3],
                status="established" if established else "emerging",
            ))
            if established:
                doc.established += 1
            else:
                doc.emerging += 1

        return doc

    def emergent_schema(self, entity_type: str) -> Dict[str, Any]:
        """
        Schema view of learned patterns.

        Every attribute is optional; the shape only reflects what has been
        observed so far.
        """
        patterns = self._patterns.get(entity_type)
        attributes = [
            {
                "name": p.name,
                "type": p.dominant_type.value,
                "required": False,
                "confidence": p.confidence,
                "organic": True,
            }
            for p in (patterns or {}).values()
        ]
        return {
            "entity_type": entity_type,
            "mode": "organic",
            "attributes": attributes,
            "version": 1,
            "organic": True,
            "status": "learned_from_usage" if attributes else "emerging",
        }

    # =========================================================================
    # Group operations
    # =========================================================================

    async def propagate_to_group(self, module_id: str, attribute_name: str, default_value: Any) -> PropagationResult:
        """
        Give every member of a grouping context the same attribute value.

        Each write is also an observation, tagged ``propagated``.

        Args:
            module_id: The grouping context
            attribute_name: Attribute to set
            default_value: Value written to every member

        Returns:
            PropagationResult with the number of entities updated
        """
        result = PropagationResult(
            module_id=module_id,
            attribute_name=attribute_name,
            inferred_type=infer_type(default_value),
        )
        if self.store is None:
            result.degraded = True
            result.error = "No graph store configured"
            return result

        logger.info(f"Propagating {attribute_name} to group {module_id}")
        try:
            members = await self.store.group_members(module_id)
        except Exception as e:
            logger.warning(f"Resolving members of {module_id} failed: {e}")
            result.degraded = True
            result.error = str(e)
            return result

        for entity in members:
            try:
                await self.learn(
                    entity.get("entityType", self.settings.default_entity_type),
                    attribute_name,
                    default_value,
                    {"module_id": module_id, "propagated": True},
                )
                await self.store.update_entity_attribute(entity["id"], attribute_name, default_value)
            except Exception as e:
                logger.error(f"Propagating {attribute_name} to {entity.get('id')} failed: {e}")
                result.degraded = True
                result.error = str(e)
                return result

            result.entities_updated += 1
            await asyncio.sleep(self.settings.propagation_delay)

        logger.info(f"Propagated {attribute_name} to {result.entities_updated} entities")
        return result

    # =========================================================================
    # Maintenance
    # =========================================================================

    def cleanup(self) -> Dict[str, int]:
        """
        Drop weak patterns and trim usage stats.

        Returns:
            Counts of removed patterns and trimmed usage entries
        """
        removed = 0
        for entity_type in list(self._patterns):
            patterns = self._patterns[entity_type]
            for name in [n for n, p in patterns.items() if p.confidence < 0.1 and p.frequency < 2]:
                del patterns[name]
                removed += 1
            if not patterns:
                del self._patterns[entity_type]

        trimmed = 0
        if len(self._usage) > self.settings.usage_stats_limit:
            keys = list(self._usage)
            usage = np.array([self._usage[k].total_usage for k in keys])
            keep = np.argsort(-usage, kind="stable")[:self.settings.usage_stats_retain]
            trimmed = len(keys) - len(keep)
            self._usage = {keys[i]: self._usage[keys[i]] for i in keep}

        logger.info(f"PatternLearner cleanup: {removed} patterns removed, {trimmed} usage stats trimmed")
        return {"patterns_removed": removed, "usage_stats_trimmed": trimmed}
