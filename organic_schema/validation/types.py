"""
Advisory validation payloads.

These are handed straight to API callers, so they are pydantic models:
serializable with ``model_dump()`` and validated on construction.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Suggestion(BaseModel):
    """A non-binding hint about a value."""
    kind: str = Field(..., description="type_suggestion, common_values, length_anomaly, format_*, module_context")
    message: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    category: str
    suggestion: Optional[str] = None
    alternatives: Optional[List[Any]] = None
    example: Optional[str] = None
    expected_range: Optional[str] = None
    module_values: Optional[List[Any]] = None


class AutoCorrection(BaseModel):
    """A concrete transformed value the caller may apply."""
    kind: str
    original: Any
    corrected: Any
    reason: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    auto_apply: bool = Field(default=False, description="False means the user must confirm first")


class Insight(BaseModel):
    """Observation about how the value relates to the learned pattern."""
    kind: str
    message: str
    impact: str
    category: str
    types: Optional[List[str]] = None


class ValidationResult(BaseModel):
    """
    Outcome of a gentle validation.

    ``accepted`` is always True. ``degraded`` marks a fallback result
    produced after an internal error.
    """
    accepted: bool = True
    original_value: Any = None
    confidence: float = 1.0
    suggestions: List[Suggestion] = Field(default_factory=list)
    auto_corrections: List[AutoCorrection] = Field(default_factory=list)
    insights: List[Insight] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.now)
    degraded: bool = False
    error: Optional[str] = None


class CorrectionOutcome(BaseModel):
    success: bool
    correction: Optional[AutoCorrection] = None
    entity: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class SuggestionFeedback(BaseModel):
    """How often suggestions for one attribute were accepted."""
    accepted: int = 0
    total: int = 0

    @property
    def acceptance_rate(self) -> float:
        return self.accepted / self.total if self.total else 0.0


class ValidationStats(BaseModel):
    total_validations: int = 0
    suggestions_accepted: int = 0
    suggestions_rejected: int = 0
    auto_corrections_applied: int = 0


class FeedbackRanking(BaseModel):
    attribute: str
    acceptance_rate: float
    total_suggestions: int
    accepted_suggestions: int


class ValidationReport(BaseModel):
    statistics: ValidationStats
    acceptance_rate: float = Field(..., description="Accepted suggestions as a percent of all recorded feedback (accepted plus rejected)")
    acceptance_rate_label: str
    top_attributes: List[FeedbackRanking] = Field(default_factory=list)
    system_health: Dict[str, Any] = Field(default_factory=dict)
    generated_at: datetime = Field(default_factory=datetime.now)
