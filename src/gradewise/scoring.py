from __future__ import annotations

import math
from typing import Optional, Sequence

from .schemas import FinalGrade, GradingOutcome


def render_rubric(keywords: Sequence[str]) -> Optional[str]:
    """Render rubric keywords as the single descriptive string the capabilities take."""
    cleaned = [keyword.strip() for keyword in keywords if keyword and keyword.strip()]
    if not cleaned:
        return None
    return "Keywords: " + ", ".join(cleaned)


def derive_final_score(similarity_score: float, max_marks: float) -> int:
    """Round ``similarity_score * max_marks`` half-up to an integer within ``[0, max_marks]``."""
    if not (math.isfinite(similarity_score) and 0.0 <= similarity_score <= 1.0):
        raise ValueError(f"similarity_score must be within [0, 1], got {similarity_score!r}.")
    if not (math.isfinite(max_marks) and max_marks > 0):
        raise ValueError(f"max_marks must be a positive number, got {max_marks!r}.")
    score = math.floor(similarity_score * max_marks + 0.5)
    # Fractional max marks (e.g. 2.5) could otherwise round past the cap.
    return min(score, math.floor(max_marks))


def derive_final_grade(outcome: GradingOutcome, max_marks: float) -> FinalGrade:
    return FinalGrade(
        score=derive_final_score(outcome.similarity_score, max_marks),
        feedback=outcome.feedback,
    )
