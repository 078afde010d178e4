"""Confidence scoring and review routing."""

import math
from collections.abc import Mapping

from invoice_ocr.extraction.schema import ConfidenceScores

# Fields whose individual score gates review regardless of the overall mean
CRITICAL_FIELDS = ("invoice_number", "net_amount", "vat_amount", "gross_amount")
CRITICAL_FIELD_FLOOR = 70
DEFAULT_REVIEW_THRESHOLD = 80


def _as_mapping(scores: Mapping[str, float] | ConfidenceScores) -> Mapping[str, float]:
    if isinstance(scores, ConfidenceScores):
        return scores.model_dump()
    return scores


def overall_confidence(scores: Mapping[str, float] | ConfidenceScores) -> int:
    """Rounded arithmetic mean of all per-field scores.

    Halves round up, so 84.5 becomes 85. An empty mapping scores 0.
    """
    values = list(_as_mapping(scores).values())
    if not values:
        return 0
    return math.floor(sum(values) / len(values) + 0.5)


def critical_scores(scores: Mapping[str, float] | ConfidenceScores) -> dict[str, float]:
    """Pick the critical-field scores, treating missing ones as 0."""
    mapping = _as_mapping(scores)
    return {field: mapping.get(field, 0) for field in CRITICAL_FIELDS}


def requires_review(
    overall: float,
    critical_field_scores: Mapping[str, float],
    threshold: int = DEFAULT_REVIEW_THRESHOLD,
) -> bool:
    """Decide whether an extraction needs a human reviewer.

    Args:
        overall: Overall confidence (0-100)
        critical_field_scores: Scores of the critical fields
        threshold: Minimum acceptable overall confidence

    Returns:
        True if overall is below threshold or any critical field is below the floor
    """
    if overall < threshold:
        return True
    return any(score < CRITICAL_FIELD_FLOOR for score in critical_field_scores.values())
