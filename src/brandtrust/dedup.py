"""
Near-duplicate clustering of event reports.

Callers pass events that already share a brand and a category; clustering
across categories would leak evidence from one score into another.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Callable, Sequence
from datetime import timedelta

from .models import DuplicateRef, EventCluster, RawEvent
from .urlnorm import source_name_from_url

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.75

Similarity = Callable[[str, str], float]

_WHITESPACE = re.compile(r"\s+")


def title_similarity(first: str, second: str) -> float:
    """Dice coefficient over character bigrams, whitespace ignored. Result in [0, 1]."""
    a = _WHITESPACE.sub("", first or "")
    b = _WHITESPACE.sub("", second or "")
    if a == b:
        return 1.0
    if len(a) < 2 or len(b) < 2:
        return 0.0
    bigrams_a = Counter(a[i : i + 2] for i in range(len(a) - 1))
    bigrams_b = Counter(b[i : i + 2] for i in range(len(b) - 1))
    overlap = sum((bigrams_a & bigrams_b).values())
    return (2.0 * overlap) / (len(a) + len(b) - 2)


def _cluster(events: Sequence[RawEvent], joins: Callable[[RawEvent, RawEvent], bool]) -> list[EventCluster]:
    # Membership is tracked by position so repeated event ids are never lost.
    clusters: list[EventCluster] = []
    taken = [False] * len(events)
    for index, anchor in enumerate(events):
        if taken[index]:
            continue
        taken[index] = True
        duplicates: list[RawEvent] = []
        for other_index in range(index + 1, len(events)):
            other = events[other_index]
            if not taken[other_index] and joins(anchor, other):
                taken[other_index] = True
                duplicates.append(other)
        clusters.append(
            EventCluster(
                canonical=anchor,
                duplicates=[
                    DuplicateRef(
                        event_id=dup.event_id,
                        source_url=dup.source_url,
                        source_name=source_name_from_url(dup.source_url),
                    )
                    for dup in duplicates
                ],
            )
        )
    return clusters


def _warn_repeated_ids(events: Sequence[RawEvent]) -> None:
    repeated = sorted(event_id for event_id, count in Counter(e.event_id for e in events).items() if count > 1)
    if repeated:
        logger.warning("[dedup] repeated event ids in batch: %s", ", ".join(repeated))


def deduplicate_events(
    events: Sequence[RawEvent],
    *,
    threshold: float = DEFAULT_THRESHOLD,
    similarity: Similarity = title_similarity,
) -> list[EventCluster]:
    """Group events whose titles are more than ``threshold`` similar to an anchor.

    Anchors come out in first-seen order; every input event lands in exactly
    one cluster, either as its canonical event or as a duplicate.
    """
    if not events:
        return []
    _warn_repeated_ids(events)

    def joins(anchor: RawEvent, other: RawEvent) -> bool:
        return similarity(anchor.title.lower(), other.title.lower()) > threshold

    clusters = _cluster(list(events), joins)
    merged = len(events) - len(clusters)
    if merged:
        logger.debug("Merged %d duplicate events into %d clusters", merged, len(clusters))
    return clusters


def deduplicate_for_scoring(
    events: Sequence[RawEvent],
    *,
    window_days: int = 7,
    threshold: float = DEFAULT_THRESHOLD,
    similarity: Similarity = title_similarity,
) -> list[EventCluster]:
    """Scoring-time variant: oldest report wins, duplicates must share brand and
    category and fall within ``window_days`` of the canonical event."""
    if not events:
        return []
    _warn_repeated_ids(events)
    ordered = sorted(events, key=lambda event: event.occurred_at)
    window = timedelta(days=window_days)

    def joins(anchor: RawEvent, other: RawEvent) -> bool:
        return bool(
            other.brand_id == anchor.brand_id
            and other.category == anchor.category
            and abs(other.occurred_at - anchor.occurred_at) <= window
            and anchor.title
            and other.title
            and similarity(anchor.title.lower(), other.title.lower()) > threshold
        )

    clusters = _cluster(ordered, joins)
    logger.info(
        "[dedup] %d events -> %d canonical (%d duplicates merged)",
        len(events),
        len(clusters),
        len(events) - len(clusters),
    )
    return clusters
