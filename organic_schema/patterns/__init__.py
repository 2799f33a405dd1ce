"""
Pattern Learning for the Organic Schema.

Structure emerges from usage instead of being declared:
- Every attribute write is an observation
- Types are inferred from values (email, url, date, phone, ...)
- Confidence grows with frequency
- Established patterns become suggestions and living documentation
"""

from .inference import TypeTag, dominant_type, infer_type, value_key
from .learner import PatternLearner
from .types import (
    AttributeDoc,
    AttributePattern,
    AttributeSuggestion,
    LivingDocumentation,
    PatternSnapshot,
    PropagationResult,
    TrendEntry,
    UsageStats,
)

__all__ = [
    # Types
    "TypeTag",
    "AttributePattern",
    "PatternSnapshot",
    "UsageStats",
    "TrendEntry",
    "AttributeSuggestion",
    "AttributeDoc",
    "LivingDocumentation",
    "PropagationResult",
    # Inference
    "infer_type",
    "dominant_type",
    "value_key",
    # Core classes
    "PatternLearner",
]
