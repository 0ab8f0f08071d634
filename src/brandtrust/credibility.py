from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_CREDIBILITY = 0.6


class InvalidCredibilityError(ValueError):
    """Raised when an administrative write is outside the allowed range."""


class SourceCredibility(BaseModel):
    source: str
    base: float = Field(DEFAULT_CREDIBILITY, ge=0.0, le=1.0)
    dynamic: float = Field(0.0, ge=-0.5, le=0.5)

    @property
    def effective(self) -> float:
        return max(0.0, min(1.0, self.base + self.dynamic))


class CredibilityStore:
    """Per-source trust numbers.

    Only administrative writes happen here; policies that move ``dynamic``
    over time live with the caller. Instances are injected, never shared
    through module state.
    """

    def __init__(
        self,
        records: Mapping[str, SourceCredibility] | None = None,
        *,
        default: float = DEFAULT_CREDIBILITY,
    ) -> None:
        self._records: dict[str, SourceCredibility] = {
            self._key(name): record for name, record in (records or {}).items()
        }
        self._default = default

    @classmethod
    def from_records(cls, rows: Iterable[Mapping[str, Any]], *, default: float = DEFAULT_CREDIBILITY) -> "CredibilityStore":
        store = cls(default=default)
        for row in rows:
            name = row.get("source") or row.get("source_name")
            if not name:
                logger.warning("Skip credibility row without source name: %s", row)
                continue
            try:
                store.upsert(str(name), base=float(row.get("base", default)), dynamic=float(row.get("dynamic", 0.0)))
            except (InvalidCredibilityError, TypeError, ValueError) as exc:
                logger.warning("Skip credibility row %s: %s", name, exc)
        return store

    @staticmethod
    def _key(name: str) -> str:
        return name.strip().lower()

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self._key(name) in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, name: str) -> SourceCredibility | None:
        return self._records.get(self._key(name))

    def effective(self, name: str | None) -> float:
        if not name:
            return self._default
        record = self._records.get(self._key(name))
        if record is None:
            return self._default
        return record.effective

    def upsert(self, name: str, *, base: float | None = None, dynamic: float | None = None) -> SourceCredibility:
        current = self.get(name)
        base_value = base if base is not None else (current.base if current else self._default)
        dynamic_value = dynamic if dynamic is not None else (current.dynamic if current else 0.0)
        if not 0.0 <= base_value <= 1.0:
            raise InvalidCredibilityError(f"base credibility must be within [0, 1], got {base_value}")
        if not -0.5 <= dynamic_value <= 0.5:
            raise InvalidCredibilityError(f"dynamic adjustment must be within [-0.5, 0.5], got {dynamic_value}")
        record = SourceCredibility(source=name.strip(), base=base_value, dynamic=dynamic_value)
        self._records[self._key(name)] = record
        return record

    def set_base(self, name: str, base: float) -> SourceCredibility:
        return self.upsert(name, base=base)

    def set_dynamic(self, name: str, dynamic: float) -> SourceCredibility:
        return self.upsert(name, dynamic=dynamic)

    def remove(self, name: str) -> bool:
        return self._records.pop(self._key(name), None) is not None
