"""
Gentle Validation for the Organic Schema.

Values are never rejected. Validation produces:
- Suggestions ranked by confidence
- Auto-corrections (some applied automatically, some needing confirmation)
- Insights about how the value fits the learned pattern
"""

from .types import (
    AutoCorrection,
    CorrectionOutcome,
    FeedbackRanking,
    Insight,
    Suggestion,
    SuggestionFeedback,
    ValidationReport,
    ValidationResult,
    ValidationStats,
)
from .validator import GentleValidator

__all__ = [
    # Types
    "Suggestion",
    "AutoCorrection",
    "Insight",
    "ValidationResult",
    "CorrectionOutcome",
    "SuggestionFeedback",
    "ValidationStats",
    "FeedbackRanking",
    "ValidationReport",
    # Core classes
    "GentleValidator",
]
