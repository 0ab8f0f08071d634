"""
Canonical tags for categories and verification levels.

Incoming feeds label things loosely ("Labor Rights", "ENV", "gov-verified").
Everything past the ingestion boundary works with the closed enums below.
"""

from __future__ import annotations

from enum import Enum


class Category(str, Enum):
    LABOR = "labor"
    ENVIRONMENT = "environment"
    POLITICS = "politics"
    SOCIAL = "social"


CATEGORIES: tuple[Category, ...] = (
    Category.LABOR,
    Category.ENVIRONMENT,
    Category.POLITICS,
    Category.SOCIAL,
)


class VerificationLevel(str, Enum):
    UNVERIFIED = "unverified"
    CORROBORATED = "corroborated"
    OFFICIAL = "official"

    @property
    def rank(self) -> int:
        return _VERIFICATION_RANK[self]

    def can_promote_to(self, target: "VerificationLevel") -> bool:
        return target.rank > self.rank


_VERIFICATION_RANK = {
    VerificationLevel.UNVERIFIED: 0,
    VerificationLevel.CORROBORATED: 1,
    VerificationLevel.OFFICIAL: 2,
}


class LinkKind(str, Enum):
    ARTICLE = "article"
    DATABASE = "database"
    HOMEPAGE = "homepage"


def normalize_category(raw: str | Category | None) -> Category:
    """Map any incoming category label onto the closed set.

    Unknown, empty and community/diversity style labels land in ``social``.
    """
    if isinstance(raw, Category):
        return raw
    if not raw:
        return Category.SOCIAL
    value = raw.lower().strip()
    if value.startswith("labor") or value.startswith("labour") or "worker" in value or "employment" in value:
        return Category.LABOR
    if value.startswith("env") or "climate" in value or "pollution" in value:
        return Category.ENVIRONMENT
    if value.startswith("politic") or "lobby" in value or "campaign" in value:
        return Category.POLITICS
    return Category.SOCIAL


def normalize_verification(raw: str | VerificationLevel | None) -> VerificationLevel:
    """Map a verification label onto the closed set; anything unrecognised is unverified."""
    if isinstance(raw, VerificationLevel):
        return raw
    if not raw:
        return VerificationLevel.UNVERIFIED
    value = raw.lower().strip()
    if value == "official":
        return VerificationLevel.OFFICIAL
    if value == "corroborated":
        return VerificationLevel.CORROBORATED
    return VerificationLevel.UNVERIFIED
