from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from .config import Settings, get_settings
from .models import CategoryContribution, DealbreakerFlag, PersonalizedScoreResult, UserPreferences
from .taxonomy import CATEGORIES, Category

logger = logging.getLogger(__name__)

EQUAL_WEIGHT = 1.0 / len(CATEGORIES)

_CATEGORY_LABELS = {
    Category.LABOR: "Labor Practices",
    Category.ENVIRONMENT: "Environment",
    Category.POLITICS: "Politics",
    Category.SOCIAL: "Social Impact",
}


def normalize_weights(raw: Mapping[Category, float] | None) -> tuple[dict[Category, float], bool]:
    """Scale raw preference weights to sum to 1.

    Returns ``(weights, personalized)``. Missing or degenerate input (nothing
    positive) falls back to equal weighting and ``personalized=False``.
    """
    cleaned = {category: max(0.0, float((raw or {}).get(category, 0.0))) for category in CATEGORIES}
    total = sum(cleaned.values())
    if not raw or total <= 0:
        return {category: EQUAL_WEIGHT for category in CATEGORIES}, False
    return {category: value / total for category, value in cleaned.items()}, True


def _impact(score: float) -> str:
    if score >= 60:
        return "positive"
    if score <= 40:
        return "negative"
    return "neutral"


@dataclass
class PersonalizedScoreComposer:
    dealbreaker_label: str = "dealbreaker"
    dealbreaker_overall_cap: float | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PersonalizedScoreComposer":
        settings = settings or get_settings()
        return cls(
            dealbreaker_label=settings.dealbreaker_label,
            dealbreaker_overall_cap=settings.dealbreaker_overall_cap,
        )

    def _check_dealbreakers(
        self,
        scores: Mapping[Category, float | None],
        thresholds: Mapping[Category, float],
    ) -> list[DealbreakerFlag]:
        flags: list[DealbreakerFlag] = []
        for category in CATEGORIES:
            threshold = thresholds.get(category)
            actual = scores.get(category)
            if threshold is None or actual is None:
                continue
            if actual < threshold:
                flags.append(
                    DealbreakerFlag(
                        category=category,
                        threshold=threshold,
                        actual=actual,
                        label=self.dealbreaker_label,
                        message=(
                            f"{_CATEGORY_LABELS[category]} score ({round(actual)}) "
                            f"is below your minimum ({threshold:g})"
                        ),
                    )
                )
        return flags

    def compose(
        self,
        scores: Mapping[Category, float | None],
        preferences: UserPreferences | None = None,
    ) -> PersonalizedScoreResult:
        """Weighted composite of category scores for one user.

        Categories without a score (withheld for lack of evidence) are left
        out and the remaining weights rescaled.
        """
        weights, personalized = normalize_weights(preferences.weights if preferences else None)
        label = "personalized" if personalized else "baseline"
        if preferences is not None and not personalized:
            logger.warning("[personalized] no usable weights in preferences, using equal weighting")
        dealbreakers = self._check_dealbreakers(scores, preferences.dealbreakers if preferences else {})

        included = [category for category in CATEGORIES if scores.get(category) is not None]
        excluded = [category for category in CATEGORIES if scores.get(category) is None]
        included_weight = sum(weights[category] for category in included)

        breakdown: list[CategoryContribution] = []
        overall: float | None = None
        if included:
            if included_weight <= 0:
                # Every weighted category is withheld; the rest share equally.
                effective = {category: 1.0 / len(included) for category in included}
            else:
                effective = {category: weights[category] / included_weight for category in included}
            total = 0.0
            for category in included:
                score = float(scores[category])  # type: ignore[arg-type]
                contribution = score * effective[category]
                total += contribution
                breakdown.append(
                    CategoryContribution(
                        category=category,
                        weight=effective[category],
                        score=score,
                        contribution=contribution,
                        impact=_impact(score),
                    )
                )
            overall = max(0.0, min(100.0, total))
            if dealbreakers and self.dealbreaker_overall_cap is not None:
                overall = min(overall, self.dealbreaker_overall_cap)
            overall = round(overall, 2)

        breakdown.sort(key=lambda item: abs(item.contribution), reverse=True)
        return PersonalizedScoreResult(
            overall=overall,
            breakdown=breakdown,
            dealbreakers=dealbreakers,
            label=label,
            excluded_categories=excluded,
            summary=self._summary(overall, dealbreakers, breakdown),
        )

    @staticmethod
    def _summary(
        overall: float | None,
        dealbreakers: list[DealbreakerFlag],
        breakdown: list[CategoryContribution],
    ) -> str:
        if overall is None:
            return "Not enough evidence to score yet"
        if dealbreakers:
            return f"Does not meet your {dealbreakers[0].category.value} requirements"
        positives = [item for item in breakdown if item.impact == "positive"]
        negatives = [item for item in breakdown if item.impact == "negative"]
        if overall >= 80:
            suffix = f", especially in {_CATEGORY_LABELS[positives[0].category].lower()}" if positives else ""
            return f"Strong alignment with your values{suffix}"
        if overall >= 60:
            if negatives:
                return f"Good alignment overall, some concerns in {_CATEGORY_LABELS[negatives[0].category].lower()}"
            return "Good alignment with your values"
        if overall >= 40:
            return "Mixed alignment: some values match, others don't"
        if negatives:
            return f"Primary concern: {_CATEGORY_LABELS[negatives[0].category].lower()}"
        return "Poor alignment with your values"
