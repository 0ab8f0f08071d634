"""
Apply a verified event's declared impact to running category scores.

Scores are a running accumulator: applying the same events in a different
order can clamp differently at the 0/100 walls, so callers must feed one
brand's events oldest-first and never in parallel (see ``recompute``).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from .models import MAX_EVENT_IMPACT, BrandScores, RawEvent
from .ownership import OwnershipResolver
from .taxonomy import CATEGORIES, Category, VerificationLevel
from .urlnorm import registrable_domain

logger = logging.getLogger(__name__)

SCORE_MIN = 0.0
SCORE_MAX = 100.0


def verification_factor(level: VerificationLevel, source_count: int) -> float:
    if level == VerificationLevel.OFFICIAL:
        return 1.0
    if level == VerificationLevel.CORROBORATED:
        return 0.75
    # Single-source unverified reports are informational only.
    if source_count >= 2:
        return 0.25
    return 0.0


def effective_delta(impact: float, level: VerificationLevel, source_count: int) -> float:
    delta = impact * verification_factor(level, source_count)
    return max(-MAX_EVENT_IMPACT, min(MAX_EVENT_IMPACT, delta))


def apply_delta(score: float, delta: float) -> float:
    return max(SCORE_MIN, min(SCORE_MAX, score + delta))


@dataclass
class AppliedImpact:
    event_id: str
    factor: float
    deltas: dict[Category, float]


class CategoryImpactScorer:
    def __init__(self, resolver: OwnershipResolver | None = None) -> None:
        self.resolver = resolver or OwnershipResolver()

    def _owner_keys(self, event: RawEvent) -> set[str]:
        keys = set()
        for source in event.sources:
            domain = source.registrable_domain or registrable_domain(source.canonical_url or source.url)
            key = self.resolver.independence_key(domain)
            if key:
                keys.add(key)
        return keys

    def apply_event(self, scores: BrandScores, event: RawEvent) -> AppliedImpact:
        """Fold one event into ``scores`` in place."""
        if event.brand_id != scores.brand_id:
            raise ValueError(f"event {event.event_id} belongs to {event.brand_id}, not {scores.brand_id}")
        source_count = len(event.sources)
        factor = verification_factor(event.verification, source_count)
        verified = event.verification != VerificationLevel.UNVERIFIED
        owners = self._owner_keys(event) if verified else set()

        deltas: dict[Category, float] = {}
        for category in CATEGORIES:
            impact = event.impact_for(category)
            if category != event.category and impact == 0:
                continue
            state = scores.categories[category]
            delta = effective_delta(impact, event.verification, source_count)
            state.score = apply_delta(state.score, delta)
            state.event_count += 1
            if verified:
                state.verified_count += 1
                state.independent_owners.update(owners)
            deltas[category] = delta
        return AppliedImpact(event_id=event.event_id, factor=factor, deltas=deltas)

    def apply_events(self, scores: BrandScores, events: Iterable[RawEvent]) -> list[AppliedImpact]:
        ordered = sorted(events, key=lambda event: event.occurred_at)
        applied = [self.apply_event(scores, event) for event in ordered]
        logger.debug("Applied %d events to brand %s", len(applied), scores.brand_id)
        return applied
