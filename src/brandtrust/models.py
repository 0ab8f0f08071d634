import math
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

from .taxonomy import CATEGORIES, Category, LinkKind, VerificationLevel, normalize_category, normalize_verification

MAX_EVENT_IMPACT = 20.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_mapping(value: Any, field: str) -> Mapping:
    if not isinstance(value, Mapping):
        raise ValueError(f"{field} must be an object keyed by category")
    return value


def _finite_float(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{field} must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be a number, got {value!r}") from None
    if not math.isfinite(number):
        raise ValueError(f"{field} must be finite, got {value!r}")
    return number


class Source(BaseModel):
    source_id: str = Field(..., min_length=1)
    event_id: str | None = None
    url: str
    source_name: str | None = None
    published_at: datetime | None = None
    canonical_url: str | None = None
    registrable_domain: str | None = None
    domain_owner: str = "Unknown"
    domain_kind: str = "publisher"
    title_fp: str | None = None
    day_bucket: str | None = None
    is_primary: bool = False
    link_kind: LinkKind = LinkKind.ARTICLE


class RawEvent(BaseModel):
    event_id: str = Field(..., min_length=1)
    brand_id: str = Field(..., min_length=1)
    category: Category
    title: str = ""
    occurred_at: datetime
    impacts: dict[Category, float] = Field(default_factory=dict)
    verification: VerificationLevel = VerificationLevel.UNVERIFIED
    sources: list[Source] = Field(default_factory=list)

    @field_validator("occurred_at")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("category", mode="before")
    @classmethod
    def _canonical_category(cls, value: Any) -> Category:
        return normalize_category(value)

    @field_validator("verification", mode="before")
    @classmethod
    def _canonical_verification(cls, value: Any) -> VerificationLevel:
        return normalize_verification(value)

    @field_validator("impacts", mode="before")
    @classmethod
    def _clamp_impacts(cls, value: Any) -> dict[Category, float]:
        if not value:
            return {}
        clamped: dict[Category, float] = {}
        for key, delta in _as_mapping(value, "impacts").items():
            category = normalize_category(key)
            number = _finite_float(delta, f"impacts.{key}")
            clamped[category] = max(-MAX_EVENT_IMPACT, min(MAX_EVENT_IMPACT, number))
        return clamped

    @property
    def source_url(self) -> str | None:
        for source in self.sources:
            if source.is_primary:
                return source.url
        return self.sources[0].url if self.sources else None

    def impact_for(self, category: Category) -> float:
        return self.impacts.get(category, 0.0)


class DuplicateRef(BaseModel):
    event_id: str
    source_url: str | None = None
    source_name: str = "Unknown"


class EventCluster(BaseModel):
    canonical: RawEvent
    duplicates: list[DuplicateRef] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return 1 + len(self.duplicates)


class VerificationAudit(BaseModel):
    event_id: str
    from_level: VerificationLevel
    to_level: VerificationLevel
    reason: str
    at: datetime = Field(default_factory=_utcnow)


class VerificationOutcome(BaseModel):
    event_id: str
    previous: VerificationLevel
    verification: VerificationLevel
    changed: bool
    reason: str


class JobFailure(BaseModel):
    item_id: str
    error: str


class JobSummary(BaseModel):
    job: str
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: list[JobFailure] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime | None = None

    def record_success(self) -> None:
        self.processed += 1
        self.succeeded += 1

    def record_failure(self, item_id: str, exc: BaseException) -> None:
        self.processed += 1
        self.failed += 1
        self.failures.append(JobFailure(item_id=item_id, error=str(exc) or exc.__class__.__name__))

    def finish(self) -> "JobSummary":
        self.finished_at = _utcnow()
        return self


class CategoryScore(BaseModel):
    category: Category
    score: float = Field(50.0, ge=0.0, le=100.0)
    event_count: int = Field(0, ge=0)
    verified_count: int = Field(0, ge=0)
    independent_owners: set[str] = Field(default_factory=set)

    @property
    def independent_owner_count(self) -> int:
        return len(self.independent_owners)


class BrandScores(BaseModel):
    brand_id: str
    categories: dict[Category, CategoryScore] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _all_categories(self) -> "BrandScores":
        for category in CATEGORIES:
            if category not in self.categories:
                self.categories[category] = CategoryScore(category=category)
        return self

    @classmethod
    def from_baseline(cls, brand_id: str, baseline: dict[Category, float] | None = None) -> "BrandScores":
        baseline = baseline or {}
        return cls(
            brand_id=brand_id,
            categories={
                category: CategoryScore(category=category, score=baseline.get(category, 50.0))
                for category in CATEGORIES
            },
        )

    def vector(self) -> dict[Category, float]:
        return {category: self.categories[category].score for category in CATEGORIES}


class UserPreferences(BaseModel):
    weights: dict[Category, float] = Field(default_factory=dict)
    dealbreakers: dict[Category, float] = Field(default_factory=dict)

    @field_validator("weights", "dealbreakers", mode="before")
    @classmethod
    def _canonical_keys(cls, value: Any, info: ValidationInfo) -> dict[Category, float]:
        if not value:
            return {}
        return {
            normalize_category(key): _finite_float(item, f"{info.field_name}.{key}")
            for key, item in _as_mapping(value, info.field_name).items()
            if item is not None
        }


class CategoryContribution(BaseModel):
    category: Category
    weight: float
    score: float
    contribution: float
    impact: Literal["positive", "negative", "neutral"]


class DealbreakerFlag(BaseModel):
    category: Category
    threshold: float
    actual: float
    label: str
    message: str


class PersonalizedScoreResult(BaseModel):
    overall: float | None = Field(default=None, ge=0.0, le=100.0)
    breakdown: list[CategoryContribution] = Field(default_factory=list)
    dealbreakers: list[DealbreakerFlag] = Field(default_factory=list)
    label: Literal["personalized", "baseline"]
    excluded_categories: list[Category] = Field(default_factory=list)
    summary: str = ""

    @property
    def is_personalized(self) -> bool:
        return self.label == "personalized"


class RatingHistogram(BaseModel):
    s1: int = 0
    s2: int = 0
    s3: int = 0
    s4: int = 0
    s5: int = 0


class CommunityRatingRow(BaseModel):
    category: Category
    n: int = Field(0, ge=0)
    mean_score: float | None = None
    sd: float = 0.0
    histogram: RatingHistogram = Field(default_factory=RatingHistogram)

    @field_validator("category", mode="before")
    @classmethod
    def _canonical_category(cls, value: Any) -> Category:
        return normalize_category(value)


class CommunityCategoryOutlook(BaseModel):
    category: Category
    n: int
    mean_score: float
    sd: float
    histogram: RatingHistogram
    display_score: float
    confidence: Literal["none", "low", "medium", "high"]
