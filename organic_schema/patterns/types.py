"""
Pattern Type Definitions.

These structures hold what the learner knows about each attribute: the
types it has seen, a handful of common values, how often it is used and
how confident the system is in the emerging pattern.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from .inference import TypeTag, dominant_type, value_key


@dataclass
class PatternSnapshot:
    """
    Point-in-time copy of an attribute pattern handed to callers.

    ``degraded`` is set when learning failed and this is a fallback built
    from the single observed value.
    """
    entity_type: str
    name: str
    dominant_type: TypeTag
    types: List[TypeTag] = field(default_factory=list)
    common_values: List[Any] = field(default_factory=list)
    frequency: int = 0
    confidence: float = 0.0
    first_seen: Optional[datetime] = None
    last_used: Optional[datetime] = None
    degraded: bool = False

    def has_common_value(self, value: Any) -> bool:
        key = value_key(value)
        return any(value_key(v) == key for v in self.common_values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "name": self.name,
            "dominant_type": self.dominant_type.value,
            "types": [t.value for t in self.types],
            "common_values": self.common_values,
            "frequency": self.frequency,
            "confidence": self.confidence,
            "first_seen": self.first_seen.isoformat() if self.first_seen else None,
            "last_used": self.last_used.isoformat() if self.last_used else None,
            "degraded": self.degraded,
        }


@dataclass
class AttributePattern:
    """
    Learned statistical summary of one attribute of one entity type.

    Confidence is derived from frequency and never stored; the dominant
    type is recomputed whenever a new observation arrives.
    """
    entity_type: str
    name: str
    types: Set[TypeTag] = field(default_factory=set)
    common_values: Dict[Any, Any] = field(default_factory=dict)  # value_key -> value
    frequency: int = 0
    first_seen: datetime = field(default_factory=datetime.now)
    last_used: datetime = field(default_factory=datetime.now)
    dominant_type: TypeTag = TypeTag.ANY

    # Observations needed for full confidence
    saturation: int = 10
    common_values_limit: int = 10

    @property
    def confidence(self) -> float:
        return min(1.0, self.frequency / self.saturation)

    def observe(self, inferred: TypeTag, value: Any) -> None:
        """Fold one observation into the pattern."""
        key = value_key(value)
        self.types.add(inferred)
        if len(self.common_values) < self.common_values_limit:
            self.common_values.setdefault(key, value)
        self.frequency += 1
        self.last_used = datetime.now()
        self.dominant_type = dominant_type(self.types)

    def snapshot(self) -> PatternSnapshot:
        return PatternSnapshot(
            entity_type=self.entity_type,
            name=self.name,
            dominant_type=self.dominant_type,
            types=sorted(self.types, key=lambda t: t.value),
            common_values=list(self.common_values.values()),
            frequency=self.frequency,
            confidence=self.confidence,
            first_seen=self.first_seen,
            last_used=self.last_used,
        )

    def summary(self, sample_size: int = 3) -> Dict[str, Any]:
        """Simplified form persisted to the graph store."""
        return {
            "entityType": self.entity_type,
            "attributeName": self.name,
            "dominantType": self.dominant_type.value,
            "frequency": self.frequency,
            "confidence": self.confidence,
            "lastUsed": self.last_used.isoformat(),
            "sampleValues": list(self.common_values.values())[:sample_size],
        }


@dataclass
class TrendEntry:
    """A single timestamped observation kept for trend analysis."""
    timestamp: datetime
    value: Any
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UsageStats:
    """Running usage statistics for one attribute of one entity type."""
    total_usage: int = 0
    unique_values: Set[Any] = field(default_factory=set)   # value keys
    contexts: Set[str] = field(default_factory=set)        # originating module ids
    average_length: float = 0.0
    trends: List[TrendEntry] = field(default_factory=list)

    def record(
        self,
        value: Any,
        context: Dict[str, Any],
        trend_limit: int = 100,
        trend_retain: int = 50,
    ) -> None:
        self.total_usage += 1
        self.unique_values.add(value_key(value))
        if context.get("module_id"):
            self.contexts.add(context["module_id"])

        if isinstance(value, str):
            self.average_length = (self.average_length + len(value)) / 2

        self.trends.append(TrendEntry(timestamp=datetime.now(), value=value, context=dict(context)))
        if len(self.trends) > trend_limit:
            self.trends = self.trends[-trend_retain:]


@dataclass
class AttributeSuggestion:
    """An attribute worth offering when building a new grouping context."""
    name: str
    type: TypeTag
    confidence: float
    frequency: int
    examples: List[Any]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "confidence": self.confidence,
            "frequency": self.frequency,
            "examples": self.examples,
            "reason": self.reason,
        }


@dataclass
class AttributeDoc:
    """Living documentation entry for one attribute."""
    name: str
    type: TypeTag
    confidence: float
    usage: int
    examples: List[Any]
    status: str                    # "established" or "emerging"


@dataclass
class LivingDocumentation:
    """Documentation rendered from what has actually been observed."""
    entity_type: str
    attributes: List[AttributeDoc] = field(default_factory=list)
    established: int = 0
    emerging: int = 0
    status: str = "documented"
    generated_at: datetime = field(default_factory=datetime.now)

    @property
    def total_attributes(self) -> int:
        return len(self.attributes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "attributes": [
                {
                    "name": a.name,
                    "type": a.type.value,
                    "confidence": a.confidence,
                    "usage": a.usage,
                    "examples": a.examples,
                    "status": a.status,
                }
                for a in self.attributes
            ],
            "emergence": {
                "total_attributes": self.total_attributes,
                "high_confidence": self.established,
                "emerging_patterns": self.emerging,
            },
            "status": self.status,
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass
class PropagationResult:
    """Outcome of pushing a default attribute value to every group member."""
    module_id: str
    attribute_name: str
    inferred_type: TypeTag
    entities_updated: int = 0
    degraded: bool = False
    error: Optional[str] = None
