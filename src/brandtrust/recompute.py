"""
Periodic score recomputation.

Each brand's scores are a running total, so at most one recompute per brand
may be in flight. Different brands run concurrently up to a fixed bound.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from .dedup import deduplicate_for_scoring
from .impact import CategoryImpactScorer
from .models import BrandScores, JobSummary, RawEvent
from .taxonomy import Category

logger = logging.getLogger(__name__)


class BrandLockRegistry:
    """One ``asyncio.Lock`` per brand id, created lazily and dropped once idle."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = defaultdict(int)

    def __len__(self) -> int:
        return len(self._locks)

    def lock_for(self, brand_id: str) -> asyncio.Lock:
        lock = self._locks.get(brand_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[brand_id] = lock
        return lock

    def is_locked(self, brand_id: str) -> bool:
        lock = self._locks.get(brand_id)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, brand_id: str) -> AsyncIterator[asyncio.Lock]:
        lock = self.lock_for(brand_id)
        self._holders[brand_id] += 1
        try:
            async with lock:
                yield lock
        finally:
            self._holders[brand_id] -= 1
            if not self._holders[brand_id]:
                del self._holders[brand_id]
                if self._locks.get(brand_id) is lock:
                    del self._locks[brand_id]


@dataclass
class RecomputeResult:
    summary: JobSummary
    scores: dict[str, BrandScores] = field(default_factory=dict)


class ScoreRecomputeJob:
    def __init__(
        self,
        scorer: CategoryImpactScorer | None = None,
        *,
        locks: BrandLockRegistry | None = None,
        max_concurrent_brands: int = 8,
        max_brands: int | None = None,
        collapse_duplicates: bool = True,
    ) -> None:
        self.scorer = scorer or CategoryImpactScorer()
        self.locks = locks or BrandLockRegistry()
        self.max_concurrent_brands = max_concurrent_brands
        self.max_brands = max_brands
        self.collapse_duplicates = collapse_duplicates

    async def _score(self, scores: BrandScores, batch: list[RawEvent]) -> None:
        await asyncio.to_thread(self.scorer.apply_events, scores, batch)

    async def recompute_brand(
        self,
        brand_id: str,
        events: Sequence[RawEvent],
        baseline: Mapping[Category, float] | None = None,
    ) -> BrandScores:
        async with self.locks.hold(brand_id):
            scores = BrandScores.from_baseline(brand_id, dict(baseline or {}))
            batch = list(events)
            if self.collapse_duplicates:
                batch = [cluster.canonical for cluster in deduplicate_for_scoring(batch)]
            await self._score(scores, batch)
            logger.info(
                "[recompute] %s: %d events -> %s",
                brand_id,
                len(batch),
                {category.value: round(score, 2) for category, score in scores.vector().items()},
            )
            return scores

    async def run(
        self,
        events: Sequence[RawEvent],
        baselines: Mapping[str, Mapping[Category, float]] | None = None,
    ) -> RecomputeResult:
        """Recompute every brand present in ``events``; one failing brand never aborts the rest."""
        baselines = baselines or {}
        summary = JobSummary(job="recompute-scores")
        result = RecomputeResult(summary=summary)

        by_brand: dict[str, list[RawEvent]] = defaultdict(list)
        for event in events:
            by_brand[event.brand_id].append(event)
        for brand_id in baselines:
            by_brand.setdefault(brand_id, [])

        brand_ids = list(by_brand)
        if self.max_brands is not None and len(brand_ids) > self.max_brands:
            logger.warning("[recompute] %d brands requested, limiting to %d", len(brand_ids), self.max_brands)
            summary.details["skipped_brands"] = brand_ids[self.max_brands :]
            brand_ids = brand_ids[: self.max_brands]

        semaphore = asyncio.Semaphore(self.max_concurrent_brands)

        async def _one(brand_id: str) -> None:
            async with semaphore:
                try:
                    scores = await self.recompute_brand(brand_id, by_brand[brand_id], baselines.get(brand_id))
                except Exception as exc:  # noqa: BLE001
                    logger.error("[recompute] brand %s failed: %s", brand_id, exc, exc_info=True)
                    summary.record_failure(brand_id, exc)
                    return
                result.scores[brand_id] = scores
                summary.record_success()

        logger.info("[recompute] starting for %d brands", len(brand_ids))
        await asyncio.gather(*(_one(brand_id) for brand_id in brand_ids))
        summary.finish()
        logger.info(
            "[recompute] done: %d processed, %d succeeded, %d failed",
            summary.processed,
            summary.succeeded,
            summary.failed,
        )
        return result
