#!/usr/bin/env python3
"""
Startup preflight: settings, offline domain parsing, reference tables and the
rate-limit backend, checked the same way the service builds them.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from brandtrust.config import get_settings  # noqa: E402
from brandtrust.ratelimit import build_rate_limiter  # noqa: E402
from brandtrust.urlnorm import registrable_domain  # noqa: E402
from data_loader import build_credibility_store, build_ownership_resolver, load_datasets, official_domains  # noqa: E402

# Multi-label suffixes only resolve when the bundled suffix snapshot is present.
DOMAIN_SAMPLES = {
    "https://www.bbc.co.uk/news/business": "bbc.co.uk",
    "https://news.abc.net.au/story": "abc.net.au",
    "https://www.osha.gov/news/newsreleases": "osha.gov",
    "https://markets.ft.com/data": "ft.com",
}


def check_domains() -> list[str]:
    problems = []
    for url, expected in DOMAIN_SAMPLES.items():
        actual = registrable_domain(url)
        status = "OK" if actual == expected else "FAIL"
        print(f"  [{status}] {url} -> {actual}")
        if actual != expected:
            problems.append(f"{url}: expected {expected}, got {actual}")
    return problems


def check_tables(settings) -> list[str]:
    datasets = load_datasets(settings.data_dir)
    resolver = build_ownership_resolver(datasets)
    credibility = build_credibility_store(datasets, default=settings.default_credibility)
    allow_list = official_domains(datasets, settings.official_domains)
    print(f"  ownership records:   {len(resolver)}")
    print(f"  credibility entries: {len(credibility)}")
    print(f"  official domains:    {len(allow_list)}")
    problems = []
    if not len(resolver):
        problems.append("ownership table is empty")
    if not len(credibility):
        problems.append("credibility table is empty")
    return problems


async def check_rate_limiter(settings) -> list[str]:
    limiter = await build_rate_limiter(settings)
    try:
        print(f"  configured: {settings.rate_limit_backend}, active: {limiter.backend}")
        if settings.rate_limit_backend.lower() != limiter.backend:
            return [f"rate limiter fell back to {limiter.backend}"]
        return []
    finally:
        await limiter.close()


def main() -> int:
    settings = get_settings()
    print("Brand trust preflight")
    print("=" * 50)

    print("\nDomain parsing (offline suffix list):")
    problems = check_domains()
    print("\nReference tables:")
    problems += check_tables(settings)
    print("\nRate limiter:")
    warnings = asyncio.run(check_rate_limiter(settings))

    print("\n" + "=" * 50)
    for warning in warnings:
        print(f"WARNING: {warning}")
    if problems:
        print("Preflight failed:")
        for problem in problems:
            print(f"  - {problem}")
        return 1
    print("Preflight passed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
