"""
Confidence in a category score, derived from how much evidence backs it.

Confidence only gates whether a score is shown; it never changes the score.
"""

from __future__ import annotations

import math
from typing import Literal

from pydantic import BaseModel, Field

from .models import CategoryScore
from .taxonomy import Category

ConfidenceLevel = Literal["none", "low", "medium", "high"]

_LABELS: dict[str, str] = {
    "none": "No data",
    "low": "Limited",
    "medium": "Moderate",
    "high": "Strong",
}

MONITORING_MESSAGE = "Monitoring in progress"


class ConfidenceEstimate(BaseModel):
    weight: float = Field(..., ge=0.0, le=1.0)
    level: ConfidenceLevel
    label: str

    @property
    def percentage(self) -> int:
        return round(self.weight * 100)


class ScoreView(BaseModel):
    category: Category
    status: Literal["scored", "monitoring"]
    score: float | None = None
    confidence: ConfidenceEstimate
    event_count: int
    verified_count: int
    independent_owner_count: int
    message: str | None = None


def confidence_weight(event_count: int, verified_rate: float, independent_owner_count: int) -> float:
    volume = 0.60 * math.log(1 + max(0, event_count)) / math.log(21)
    verification = 0.25 * verified_rate
    diversity = 0.15 * min(max(0, independent_owner_count) / 3, 1.0)
    return max(0.0, min(1.0, volume + verification + diversity))


def estimate_confidence(event_count: int, verified_count: int, independent_owner_count: int) -> ConfidenceEstimate:
    verified_rate = verified_count / event_count if event_count > 0 else 0.0
    weight = confidence_weight(event_count, verified_rate, independent_owner_count)
    if event_count == 0:
        level: ConfidenceLevel = "none"
    elif weight < 0.35:
        level = "low"
    elif weight < 0.70:
        level = "medium"
    else:
        level = "high"
    return ConfidenceEstimate(weight=weight, level=level, label=_LABELS[level])


def gate_score(state: CategoryScore) -> ScoreView:
    """Public view of a category score; withheld entirely while there is no evidence."""
    estimate = estimate_confidence(state.event_count, state.verified_count, state.independent_owner_count)
    if estimate.level == "none":
        return ScoreView(
            category=state.category,
            status="monitoring",
            score=None,
            confidence=estimate,
            event_count=state.event_count,
            verified_count=state.verified_count,
            independent_owner_count=state.independent_owner_count,
            message=MONITORING_MESSAGE,
        )
    return ScoreView(
        category=state.category,
        status="scored",
        score=round(state.score, 2),
        confidence=estimate,
        event_count=state.event_count,
        verified_count=state.verified_count,
        independent_owner_count=state.independent_owner_count,
    )
