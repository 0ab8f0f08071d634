import sys
from datetime import datetime, timezone
from pathlib import Path
import os

import pytest


# Ensure project src is on path for imports in tests
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (ROOT, SRC):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

# Keep tests on the bundled reference tables and the in-memory limiter
os.environ.setdefault("DATA_DIR", str(ROOT / "data"))
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")

from brandtrust.models import RawEvent, Source  # noqa: E402

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_event(
    event_id: str,
    *urls: str,
    brand_id: str = "acme",
    category: str = "labor",
    title: str = "Acme fined for unpaid overtime at warehouses",
    occurred_at: datetime = NOW,
    impacts: dict | None = None,
    verification: str = "unverified",
    source_names: list[str] | None = None,
) -> RawEvent:
    names = source_names or [None] * len(urls)
    return RawEvent(
        event_id=event_id,
        brand_id=brand_id,
        category=category,
        title=title,
        occurred_at=occurred_at,
        impacts=impacts if impacts is not None else {category: -10},
        verification=verification,
        sources=[
            Source(source_id=f"{event_id}-s{i}", event_id=event_id, url=url, source_name=name)
            for i, (url, name) in enumerate(zip(urls, names))
        ],
    )


@pytest.fixture
def now() -> datetime:
    return NOW
