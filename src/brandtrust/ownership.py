from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

UNKNOWN_OWNER = "Unknown"
DEFAULT_KIND = "publisher"


@dataclass(frozen=True)
class DomainOwner:
    owner: str = UNKNOWN_OWNER
    kind: str = DEFAULT_KIND

    @property
    def known(self) -> bool:
        return self.owner != UNKNOWN_OWNER


class OwnershipResolver:
    """Registrable domain -> controlling media owner.

    Two outlets under one conglomerate resolve to the same owner and therefore
    count once when independence is measured.
    """

    def __init__(self, table: Mapping[str, DomainOwner] | None = None) -> None:
        self._table: dict[str, DomainOwner] = {
            domain.lower(): owner for domain, owner in (table or {}).items()
        }

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "OwnershipResolver":
        table: dict[str, DomainOwner] = {}
        for record in records:
            domain = (record.get("domain") or "").strip().lower()
            owner = record.get("owner")
            if not domain or not owner:
                logger.warning("Skip ownership record without domain/owner: %s", record)
                continue
            table[domain] = DomainOwner(owner=str(owner), kind=str(record.get("kind") or DEFAULT_KIND))
        return cls(table)

    def __len__(self) -> int:
        return len(self._table)

    def resolve(self, domain: str | None) -> DomainOwner:
        if not domain:
            return DomainOwner()
        return self._table.get(domain.lower(), DomainOwner())

    def independence_key(self, domain: str | None) -> str | None:
        """Identity used for independence counting.

        Known domains collapse to their owner; unknown domains stand for
        themselves; a missing domain never counts.
        """
        if not domain:
            return None
        owner = self.resolve(domain)
        if owner.known:
            return f"owner:{owner.owner}"
        return f"domain:{domain.lower()}"

    def count_independent_owners(self, domains: Iterable[str | None]) -> int:
        keys = {self.independence_key(domain) for domain in domains}
        keys.discard(None)
        return len(keys)
