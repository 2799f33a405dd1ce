"""
Gentle Validator - Advisory Validation.

Replaces rigid validation with hints. A value is never rejected; instead it
is scored against what has been learned about the attribute and comes back
with suggestions, concrete auto-corrections and insights. Every validated
value is also fed to the learner, so validation is a learning event.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Union

import numpy as np

from ..core.config import OrganicSettings
from ..core.graph import GraphStore
from ..patterns.inference import TypeTag, infer_type, is_email, is_phone, is_url, value_key
from ..patterns.learner import PatternLearner
from ..patterns.types import PatternSnapshot
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

logger = logging.getLogger(__name__)

_WORD_START = re.compile(r"\b\w")


class GentleValidator:
    """
    Soft validation that never fails a write.

    Example:
        validator = GentleValidator(learner, store)

        result = await validator.validate("Lead", "email", "  A@B.com ")
        result.accepted            # always True
        result.auto_corrections    # trim, lowercase, ...

        # Apply an auto-applicable correction to a stored entity
        await validator.apply_correction(entity_id, "email", result.auto_corrections[0])

        # Tell the validator whether a suggestion helped
        validator.record_feedback("Lead", "email", accepted=True)
    """

    def __init__(
        self,
        learner: PatternLearner,
        store: Optional[GraphStore] = None,
        settings: Optional[OrganicSettings] = None,
    ):
        self.learner = learner
        self.store = store if store is not None else learner.store
        self.settings = settings or learner.settings

        self.stats = ValidationStats()
        self._feedback: Dict[str, SuggestionFeedback] = {}

        logger.info("GentleValidator initialized")

    # =========================================================================
    # Validation
    # =========================================================================

    async def validate(
        self,
        entity_type: str,
        attribute_name: str,
        value: Any,
        context: Optional[Dict[str, Any]] = None,
    ) -> ValidationResult:
        """
        Validate a value without ever rejecting it.

        Args:
            entity_type: Type of the entity being written
            attribute_name: Attribute being set
            value: Proposed value
            context: Optional origin info; ``module_id`` enables
                module-consistency hints

        Returns:
            ValidationResult with accepted=True
        """
        context = dict(context or {})
        self.stats.total_validations += 1

        try:
            result = ValidationResult(original_value=value)
            pattern = self.learner.get_pattern(entity_type, attribute_name)

            if pattern is not None and pattern.confidence > self.settings.validation_threshold:
                result.suggestions = await self._suggestions(value, pattern, context)
            if pattern is not None:
                result.insights = self._insights(value, pattern)
            result.auto_corrections = self._auto_corrections(attribute_name, value, pattern)

            await self.learner.learn(entity_type, attribute_name, value, {**context, "validation": True})

            logger.debug(
                f"Validated {entity_type}.{attribute_name}: "
                f"{len(result.suggestions)} suggestions, {len(result.auto_corrections)} corrections"
            )
            return result

        except Exception as e:
            logger.warning(f"Gentle validation of {entity_type}.{attribute_name} degraded: {e}")
            return ValidationResult(
                original_value=value,
                confidence=0.5,
                degraded=True,
                error=str(e),
            )

    async def check(self, entity_type: str, attribute_name: str, value: Any) -> Dict[str, Any]:
        """Boolean-style validation for callers migrating from rigid schemas."""
        result = await self.validate(entity_type, attribute_name, value)
        return {
            "is_valid": True,
            "suggestions": [s.model_dump() for s in result.suggestions],
            "insights": [i.model_dump() for i in result.insights],
            "organic": True,
        }

    async def _suggestions(self, value: Any, pattern: PatternSnapshot, context: Dict[str, Any]) -> List[Suggestion]:
        suggestions = []
        current = infer_type(value)

        # 1. Type consistency
        if current != pattern.dominant_type:
            suggestions.append(Suggestion(
                kind="type_suggestion",
                message=(
                    f"Value looks like '{current.value}', but this attribute "
                    f"is usually '{pattern.dominant_type.value}'"
                ),
                suggestion=f"Consider formatting the value as {pattern.dominant_type.value}",
                confidence=pattern.confidence,
                category="type_consistency",
            ))

        # 2. Common values
        if pattern.common_values and not pattern.has_common_value(value):
            common = ", ".join(str(v) for v in pattern.common_values[:3])
            suggestions.append(Suggestion(
                kind="common_values",
                message=f"Common values for this attribute: {common}",
                alternatives=list(pattern.common_values),
                confidence=pattern.confidence * 0.8,
                category="value_consistency",
            ))

        # 3. Length anomaly
        length_hint = self._length_suggestion(value, pattern)
        if length_hint:
            suggestions.append(length_hint)

        # 4. Format
        format_hint = self._format_suggestion(value, pattern)
        if format_hint:
            suggestions.append(format_hint)

        # 5. Module consistency
        if context.get("module_id"):
            module_hint = await self._module_suggestion(value, pattern, context["module_id"])
            if module_hint:
                suggestions.append(module_hint)

        suggestions.sort(key=lambda s: s.confidence, reverse=True)
        return suggestions[:self.settings.max_suggestions]

    def _length_suggestion(self, value: Any, pattern: PatternSnapshot) -> Optional[Suggestion]:
        if not isinstance(value, str) or pattern.dominant_type != TypeTag.STRING:
            return None

        stats = self.learner.get_usage_stats(pattern.entity_type, pattern.name)
        if stats is None or stats.average_length <= 0:
            return None

        average = stats.average_length
        tolerance = self.settings.length_tolerance
        if abs(len(value) - average) <= average * tolerance:
            return None

        return Suggestion(
            kind="length_anomaly",
            message=f"Unexpected length: {len(value)} characters (average {round(average)})",
            expected_range=f"{round(average * (1 - tolerance))}-{round(average * (1 + tolerance))} characters",
            confidence=0.6,
            category="format_suggestion",
        )

    def _format_suggestion(self, value: Any, pattern: PatternSnapshot) -> Optional[Suggestion]:
        if not isinstance(value, str):
            return None

        if pattern.dominant_type == TypeTag.EMAIL and not is_email(value):
            return Suggestion(
                kind="format_email",
                message="This attribute usually holds email addresses",
                suggestion="Check that the email address is correct",
                example="someone@example.com",
                confidence=0.8,
                category="format_suggestion",
            )

        if pattern.dominant_type == TypeTag.PHONE and not is_phone(value):
            return Suggestion(
                kind="format_phone",
                message="This attribute usually holds phone numbers",
                suggestion="Consider a standard phone format",
                example="+1 555 123 4567",
                confidence=0.7,
                category="format_suggestion",
            )

        if pattern.dominant_type == TypeTag.URL and not is_url(value):
            return Suggestion(
                kind="format_url",
                message="This attribute usually holds URLs",
                suggestion="Add http:// or https:// at the beginning",
                example="https://example.com",
                confidence=0.8,
                category="format_suggestion",
            )

        return None

    async def _module_suggestion(self, value: Any, pattern: PatternSnapshot, module_id: str) -> Optional[Suggestion]:
        if self.store is None:
            return None
        try:
            members = await self.store.entities_referencing_module(module_id)
        except Exception as e:
            logger.warning(f"Module context lookup for {module_id} failed: {e}")
            return None

        current = value_key(value)
        alternatives: Dict[Any, Any] = {}
        for entity in members:
            other = entity.get(pattern.name)
            if other and value_key(other) != current:
                alternatives.setdefault(value_key(other), other)

        if not alternatives or len(alternatives) > self.settings.module_values_limit:
            return None

        values = list(alternatives.values())
        return Suggestion(
            kind="module_context",
            message=f"Other values in this module: {', '.join(str(v) for v in values)}",
            suggestion="Check that the value is consistent with the rest of the module",
            module_values=values,
            confidence=0.6,
            category="context_consistency",
        )

    def _auto_corrections(self, attribute_name: str, value: Any, pattern: Optional[PatternSnapshot]) -> List[AutoCorrection]:
        if not isinstance(value, str):
            return []

        corrections = []
        dominant = pattern.dominant_type if pattern else None

        trimmed = value.strip()
        if trimmed != value:
            corrections.append(AutoCorrection(
                kind="trim_whitespace",
                original=value,
                corrected=trimmed,
                reason="Remove leading/trailing whitespace",
                confidence=0.9,
                auto_apply=True,
            ))

        if dominant == TypeTag.EMAIL:
            lowered = value.lower()
            if lowered != value:
                corrections.append(AutoCorrection(
                    kind="email_lowercase",
                    original=value,
                    corrected=lowered,
                    reason="Email addresses are normalized to lowercase",
                    confidence=0.8,
                    auto_apply=True,
                ))

        if dominant == TypeTag.URL and not value.startswith("http"):
            corrections.append(AutoCorrection(
                kind="url_protocol",
                original=value,
                corrected=f"https://{value}",
                reason="Add HTTPS protocol",
                confidence=0.7,
                auto_apply=False,
            ))

        lowered_name = attribute_name.lower()
        if any(marker in lowered_name for marker in self.settings.name_markers):
            capitalized = _WORD_START.sub(lambda m: m.group().upper(), value)
            if capitalized != value and len(value) > 1:
                corrections.append(AutoCorrection(
                    kind="name_capitalization",
                    original=value,
                    corrected=capitalized,
                    reason="Capitalize name",
                    confidence=0.6,
                    auto_apply=False,
                ))

        return corrections

    def _insights(self, value: Any, pattern: PatternSnapshot) -> List[Insight]:
        insights = []

        if pattern.common_values and not pattern.has_common_value(value):
            insights.append(Insight(
                kind="new_value",
                message="This is a new value for this attribute",
                impact="The system will learn this new value",
                category="learning",
            ))

        if pattern.confidence > 0.8:
            insights.append(Insight(
                kind="stable_pattern",
                message="This attribute has a well-established pattern",
                impact="The value is consistent with past usage",
                category="consistency",
            ))
        elif pattern.confidence < 0.3:
            insights.append(Insight(
                kind="emerging_pattern",
                message="This attribute is still settling on a pattern",
                impact="The system is still learning how it is used",
                category="evolution",
            ))

        if len(pattern.types) > 1:
            insights.append(Insight(
                kind="type_diversity",
                message=f"This attribute has shown {len(pattern.types)} different types",
                types=[t.value for t in pattern.types],
                impact="The attribute is flexible and accepts several formats",
                category="flexibility",
            ))

        return insights

    # =========================================================================
    # Corrections and feedback
    # =========================================================================

    async def apply_correction(
        self,
        entity_id: str,
        attribute_name: str,
        correction: Union[AutoCorrection, Dict[str, Any]],
    ) -> CorrectionOutcome:
        """
        Persist an auto-correction.

        Corrections that need confirmation are refused; the caller must get
        the user's approval and write the value itself.
        """
        if not isinstance(correction, AutoCorrection):
            correction = AutoCorrection(**correction)

        if not correction.auto_apply:
            return CorrectionOutcome(
                success=False,
                correction=correction,
                error="Correction requires user confirmation",
            )
        if self.store is None:
            return CorrectionOutcome(success=False, correction=correction, error="No graph store configured")

        try:
            entity = await self.store.update_entity_attribute(entity_id, attribute_name, correction.corrected)
        except Exception as e:
            logger.error(f"Applying {correction.kind} to {entity_id}.{attribute_name} failed: {e}")
            return CorrectionOutcome(success=False, correction=correction, error=str(e))

        self.stats.auto_corrections_applied += 1
        logger.info(f"Applied {correction.kind} to {entity_id}.{attribute_name}")
        return CorrectionOutcome(success=True, correction=correction, entity=entity)

    def record_feedback(self, entity_type: str, attribute_name: str, accepted: bool) -> SuggestionFeedback:
        """Record whether the user took a suggestion for an attribute."""
        key = f"{entity_type}.{attribute_name}"
        feedback = self._feedback.setdefault(key, SuggestionFeedback())
        feedback.total += 1
        if accepted:
            feedback.accepted += 1
            self.stats.suggestions_accepted += 1
        else:
            self.stats.suggestions_rejected += 1

        if len(self._feedback) > self.settings.feedback_cache_limit:
            self._prune_feedback()
        return feedback

    def _prune_feedback(self) -> int:
        keys = list(self._feedback)
        totals = np.array([self._feedback[k].total for k in keys])
        keep = np.argsort(-totals, kind="stable")[:self.settings.feedback_cache_retain]
        self._feedback = {keys[i]: self._feedback[keys[i]] for i in keep}
        return len(keys) - len(keep)

    def generate_report(self) -> ValidationReport:
        """
        Summarize validations, corrections and suggestion acceptance.

        The acceptance rate is taken over recorded feedback only; validations
        that never received feedback do not count against it.
        """
        feedback_total = self.stats.suggestions_accepted + self.stats.suggestions_rejected
        rate = (self.stats.suggestions_accepted / feedback_total * 100) if feedback_total else 0.0

        rankings = [
            FeedbackRanking(
                attribute=key,
                acceptance_rate=fb.acceptance_rate,
                total_suggestions=fb.total,
                accepted_suggestions=fb.accepted,
            )
            for key, fb in self._feedback.items()
        ]
        rankings.sort(key=lambda r: r.acceptance_rate, reverse=True)

        return ValidationReport(
            statistics=self.stats.model_copy(),
            acceptance_rate=round(rate, 1),
            acceptance_rate_label=f"{rate:.1f}%",
            top_attributes=rankings[:5],
            system_health={
                "validations_performed": self.stats.total_validations,
                "auto_corrections_applied": self.stats.auto_corrections_applied,
                "user_engagement": "active" if self.stats.suggestions_accepted > 0 else "passive",
            },
        )

    def cleanup(self) -> Dict[str, int]:
        pruned = 0
        if len(self._feedback) > self.settings.feedback_cache_limit:
            pruned = self._prune_feedback()
        logger.info(f"GentleValidator cleanup: {pruned} feedback entries pruned")
        return {"feedback_pruned": pruned}
