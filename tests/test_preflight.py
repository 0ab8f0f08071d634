"""
Preflight script checks
"""

import pytest

from brandtrust.config import Settings
from scripts import preflight


def test_offline_suffix_list_resolves_multi_label_domains():
    assert preflight.check_domains() == []


def test_bundled_tables_pass():
    assert preflight.check_tables(Settings()) == []


def test_empty_data_dir_is_reported(tmp_path):
    problems = preflight.check_tables(Settings(data_dir=str(tmp_path)))
    assert "ownership table is empty" in problems
    assert "credibility table is empty" in problems


@pytest.mark.asyncio
async def test_memory_rate_limiter_reports_no_warnings():
    assert await preflight.check_rate_limiter(Settings(rate_limit_backend="memory")) == []


@pytest.mark.asyncio
async def test_redis_fallback_is_reported():
    settings = Settings(rate_limit_backend="redis", redis_url="redis://127.0.0.1:1")
    assert await preflight.check_rate_limiter(settings) == ["rate limiter fell back to memory"]
