"""
Verification state machine for brand events.

    unverified -> corroborated -> official
    unverified ------------------> official

Levels only ever move forward. Two independent paths promote events:

* ``verify_event`` looks at a single event's own sources on demand;
* ``sweep`` runs periodically over recent unverified events and corroborates
  whole clusters that were reported by at least two distinct domains.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from .config import Settings, get_settings
from .credibility import CredibilityStore
from .models import JobSummary, RawEvent, Source, VerificationAudit, VerificationOutcome, as_utc
from .ownership import OwnershipResolver
from .taxonomy import Category, VerificationLevel
from .urlnorm import day_bucket, hostname, registrable_domain, text_fingerprint

logger = logging.getLogger(__name__)


class VerificationDowngradeError(ValueError):
    """Raised when a caller asks for a transition that would lower trust."""


@dataclass
class VerificationPolicy:
    official_domains: frozenset[str] = frozenset({"fec.gov", "osha.gov", "epa.gov", "ilo.org"})
    corroboration_threshold: float = 0.80
    lower_credibility_bar: float = 0.60
    window_days: int = 14

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "VerificationPolicy":
        settings = settings or get_settings()
        return cls(
            official_domains=frozenset(d.strip().lower() for d in settings.official_domains if d.strip()),
            corroboration_threshold=settings.corroboration_threshold,
            lower_credibility_bar=settings.lower_credibility_bar,
            window_days=settings.sweep_window_days,
        )


@dataclass
class SweepReport:
    summary: JobSummary
    outcomes: list[VerificationOutcome] = field(default_factory=list)

    @property
    def upgraded(self) -> list[str]:
        return [outcome.event_id for outcome in self.outcomes if outcome.changed]


class VerificationEngine:
    def __init__(
        self,
        credibility: CredibilityStore,
        resolver: OwnershipResolver | None = None,
        policy: VerificationPolicy | None = None,
    ) -> None:
        self.credibility = credibility
        self.resolver = resolver or OwnershipResolver()
        self.policy = policy or VerificationPolicy.from_settings()
        self.audit_log: list[VerificationAudit] = []

    # -- helpers -----------------------------------------------------------------

    @staticmethod
    def source_domain(source: Source) -> str | None:
        return source.registrable_domain or registrable_domain(source.canonical_url or source.url)

    def is_official_source(self, source: Source) -> bool:
        candidates = {self.source_domain(source), hostname(source.url)}
        candidates.discard(None)
        for candidate in candidates:
            for official in self.policy.official_domains:
                if candidate == official or candidate.endswith(f".{official}"):
                    return True
        return False

    def _source_credibility(self, source: Source) -> float:
        # Outlet name first, then registrable domain; default when neither is known.
        for name in (source.source_name, self.source_domain(source)):
            if name and name in self.credibility:
                return self.credibility.effective(name)
        return self.credibility.effective(None)

    def promote(self, event: RawEvent, target: VerificationLevel, reason: str) -> VerificationOutcome:
        """Move ``event`` to ``target`` if that is an upgrade; a same-level request is a no-op."""
        previous = event.verification
        if target == previous:
            return VerificationOutcome(
                event_id=event.event_id, previous=previous, verification=previous, changed=False, reason="no-op"
            )
        if not previous.can_promote_to(target):
            raise VerificationDowngradeError(
                f"event {event.event_id}: refusing {previous.value} -> {target.value}"
            )
        event.verification = target
        self.audit_log.append(
            VerificationAudit(event_id=event.event_id, from_level=previous, to_level=target, reason=reason)
        )
        logger.info("[verify] %s: %s -> %s (%s)", event.event_id, previous.value, target.value, reason)
        return VerificationOutcome(
            event_id=event.event_id, previous=previous, verification=target, changed=True, reason=reason
        )

    # -- synchronous path --------------------------------------------------------

    def evaluate(self, event: RawEvent) -> tuple[VerificationLevel, str]:
        """Decide the level an event's own sources justify. Does not mutate."""
        sources = event.sources
        official = [s for s in sources if self.is_official_source(s)]
        if official:
            return VerificationLevel.OFFICIAL, f"official source: {self.source_domain(official[0])}"

        if len(sources) < 2:
            return VerificationLevel.UNVERIFIED, "fewer than 2 sources"

        scored = [(source, self._source_credibility(source)) for source in sources]
        high = [source for source, cred in scored if cred >= self.policy.corroboration_threshold]
        if len(high) >= 2:
            return (
                VerificationLevel.CORROBORATED,
                f"{len(high)} sources with credibility >= {self.policy.corroboration_threshold:.2f}",
            )

        qualifying = [source for source, cred in scored if cred >= self.policy.lower_credibility_bar]
        owners = self.resolver.count_independent_owners(self.source_domain(s) for s in qualifying)
        if len(qualifying) >= 2 and owners >= 2:
            return (
                VerificationLevel.CORROBORATED,
                f"{owners} independent owners with credibility >= {self.policy.lower_credibility_bar:.2f}",
            )
        return VerificationLevel.UNVERIFIED, "insufficient independent credible sources"

    def verify_event(self, event: RawEvent) -> VerificationOutcome:
        if event.verification == VerificationLevel.OFFICIAL:
            return VerificationOutcome(
                event_id=event.event_id,
                previous=event.verification,
                verification=event.verification,
                changed=False,
                reason="already official",
            )
        target, reason = self.evaluate(event)
        if not event.verification.can_promote_to(target):
            return VerificationOutcome(
                event_id=event.event_id,
                previous=event.verification,
                verification=event.verification,
                changed=False,
                reason=reason,
            )
        return self.promote(event, target, reason)

    def verify_events(self, events: Iterable[RawEvent]) -> tuple[list[VerificationOutcome], JobSummary]:
        summary = JobSummary(job="verify-events")
        outcomes: list[VerificationOutcome] = []
        for event in events:
            try:
                outcomes.append(self.verify_event(event))
            except Exception as exc:  # noqa: BLE001
                logger.error("[verify] event %s failed: %s", event.event_id, exc, exc_info=True)
                summary.record_failure(event.event_id, exc)
                continue
            summary.record_success()
        return outcomes, summary.finish()

    # -- batch sweep -------------------------------------------------------------

    def _cluster_key(self, event: RawEvent) -> tuple[str, Category, str | None, str]:
        return (
            event.brand_id,
            event.category,
            day_bucket(event.occurred_at),
            text_fingerprint(event.title),
        )

    def sweep(self, events: Sequence[RawEvent], *, now: datetime | None = None) -> SweepReport:
        """Corroborate clusters of recent unverified events seen on ≥2 distinct domains.

        Credibility plays no part here; distinct registrable domains
        (not owners) are what count.
        """
        now = as_utc(now or datetime.now(timezone.utc))
        cutoff = now - timedelta(days=self.policy.window_days)
        summary = JobSummary(job="verification-sweep")
        report = SweepReport(summary=summary)

        candidates = [
            event
            for event in events
            if event.verification == VerificationLevel.UNVERIFIED and as_utc(event.occurred_at) >= cutoff
        ]
        logger.info("[sweep] %d unverified events inside %d-day window", len(candidates), self.policy.window_days)

        groups: dict[tuple, list[RawEvent]] = defaultdict(list)
        domains: dict[tuple, set[str]] = defaultdict(set)
        for event in candidates:
            try:
                key = self._cluster_key(event)
                for source in event.sources:
                    domain = self.source_domain(source)
                    if domain:
                        domains[key].add(domain)
            except Exception as exc:  # noqa: BLE001
                logger.error("[sweep] cannot cluster event %s: %s", event.event_id, exc, exc_info=True)
                summary.record_failure(event.event_id, exc)
                continue
            groups[key].append(event)

        upgraded_groups = 0
        for key, members in groups.items():
            domain_count = len(domains[key])
            if domain_count < 2:
                for event in members:
                    summary.record_success()
                continue
            upgraded_groups += 1
            reason = f"sweep: {domain_count} distinct domains in cluster of {len(members)}"
            for event in members:
                try:
                    report.outcomes.append(self.promote(event, VerificationLevel.CORROBORATED, reason))
                except Exception as exc:  # noqa: BLE001
                    logger.error("[sweep] upgrade of %s failed: %s", event.event_id, exc, exc_info=True)
                    summary.record_failure(event.event_id, exc)
                    continue
                summary.record_success()

        summary.details = {
            "candidates": len(candidates),
            "clusters": len(groups),
            "corroborated_clusters": upgraded_groups,
            "upgraded": len(report.upgraded),
        }
        summary.finish()
        logger.info(
            "[sweep] done: %d clusters, %d upgraded, %d failed",
            len(groups),
            len(report.upgraded),
            summary.failed,
        )
        return report
