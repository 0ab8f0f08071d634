"""
Community outlook: per-category user ratings (1-5) shrunk toward a neutral prior.

Small samples are pulled toward 3.0 so a handful of ratings cannot swing the
displayed score.
"""

from __future__ import annotations

import logging
import statistics
from collections import defaultdict
from collections.abc import Iterable, Mapping

from .models import CommunityCategoryOutlook, CommunityRatingRow, RatingHistogram
from .taxonomy import CATEGORIES, Category, normalize_category

logger = logging.getLogger(__name__)

PRIOR_MEAN = 3.0
PRIOR_STRENGTH = 20
MIN_RATING = 1
MAX_RATING = 5


class RatingOutOfRangeError(ValueError):
    """A community rating outside 1..5."""


def shrink(mean: float, n: int, prior_mean: float = PRIOR_MEAN, k: int = PRIOR_STRENGTH) -> float:
    return round((mean * n + prior_mean * k) / (n + k), 2)


def outlook_confidence(n: int) -> str:
    if n >= 100:
        return "high"
    if n >= 30:
        return "medium"
    if n >= 10:
        return "low"
    return "none"


def _empty_outlook(category: Category) -> CommunityCategoryOutlook:
    return CommunityCategoryOutlook(
        category=category,
        n=0,
        mean_score=PRIOR_MEAN,
        sd=0.0,
        histogram=RatingHistogram(),
        display_score=PRIOR_MEAN,
        confidence="none",
    )


def build_outlook(rows: Iterable[CommunityRatingRow]) -> list[CommunityCategoryOutlook]:
    """One outlook per category, always all four, in canonical category order."""
    by_category: dict[Category, CommunityCategoryOutlook] = {}
    for row in rows:
        if row.category in by_category:
            logger.warning("[community] duplicate aggregate row for %s ignored", row.category.value)
            continue
        mean = row.mean_score if row.mean_score is not None else PRIOR_MEAN
        by_category[row.category] = CommunityCategoryOutlook(
            category=row.category,
            n=row.n,
            mean_score=mean,
            sd=row.sd,
            histogram=row.histogram,
            display_score=shrink(mean, row.n),
            confidence=outlook_confidence(row.n),
        )
    return [by_category.get(category) or _empty_outlook(category) for category in CATEGORIES]


def summarize_ratings(ratings: Iterable[tuple[str | Category, int]]) -> list[CommunityRatingRow]:
    """Aggregate raw ``(category, rating)`` pairs into per-category rows.

    Raises:
        RatingOutOfRangeError: if any rating is not an integer in 1..5.
    """
    grouped: dict[Category, list[int]] = defaultdict(list)
    for raw_category, rating in ratings:
        if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
            raise RatingOutOfRangeError(f"rating must be an integer in {MIN_RATING}..{MAX_RATING}, got {rating!r}")
        grouped[normalize_category(raw_category)].append(rating)

    rows: list[CommunityRatingRow] = []
    for category in CATEGORIES:
        values = grouped.get(category)
        if not values:
            continue
        counts = {f"s{score}": values.count(score) for score in range(MIN_RATING, MAX_RATING + 1)}
        rows.append(
            CommunityRatingRow(
                category=category,
                n=len(values),
                mean_score=round(statistics.fmean(values), 4),
                sd=round(statistics.stdev(values), 4) if len(values) > 1 else 0.0,
                histogram=RatingHistogram(**counts),
            )
        )
    return rows


def outlook_from_ratings(
    ratings: Iterable[tuple[str | Category, int]] | Mapping[str, Iterable[int]],
) -> list[CommunityCategoryOutlook]:
    if isinstance(ratings, Mapping):
        pairs = [(category, value) for category, values in ratings.items() for value in values]
    else:
        pairs = list(ratings)
    return build_outlook(summarize_ratings(pairs))
