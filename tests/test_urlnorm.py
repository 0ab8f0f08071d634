from datetime import datetime, timedelta, timezone

import pytest

from brandtrust.models import Source
from brandtrust.ownership import OwnershipResolver
from brandtrust.urlnorm import (
    canonicalize,
    day_bucket,
    enrich_source,
    hostname,
    registrable_domain,
    source_name_from_url,
    text_fingerprint,
)


def test_canonicalize_strips_tracking_and_sorts_params():
    url = "HTTPS://WWW.Example.com/News/Story/?utm_source=x&b=2&gclid=abc&a=1&fbclid=z"
    assert canonicalize(url) == "https://www.example.com/News/Story?a=1&b=2"


def test_canonicalize_keeps_fragment_and_root_slash():
    assert canonicalize("https://example.com/") == "https://example.com/"
    assert canonicalize("https://example.com/a/#section") == "https://example.com/a#section"


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://example.com/amp/business/story", "https://example.com/business/story"),
        ("https://example.com/business/story/amp", "https://example.com/business/story"),
        ("https://example.com/business/story/amp/", "https://example.com/business/story"),
        ("https://example.com/amp", "https://example.com/"),
    ],
)
def test_canonicalize_collapses_amp(url, expected):
    assert canonicalize(url) == expected


@pytest.mark.parametrize(
    "url",
    ["not a url", "example.com/path", "https://example.com:99999999/x", "http://[::1/", ""],
)
def test_canonicalize_never_raises(url):
    assert canonicalize(url) == url


def test_registrable_domain_is_suffix_aware():
    assert registrable_domain("https://news.bbc.co.uk/story") == "bbc.co.uk"
    assert registrable_domain("https://www.reuters.com/x") == "reuters.com"
    assert registrable_domain("https://osha.gov/news") == "osha.gov"


def test_registrable_domain_unparsable():
    assert registrable_domain(None) is None
    assert registrable_domain("") is None
    assert registrable_domain("localhost") is None


def test_hostname():
    assert hostname("https://WWW.Example.com/a") == "www.example.com"
    assert hostname("example.com/a") == "example.com"
    assert hostname(None) is None


def test_fingerprint_ignores_case_and_punctuation():
    assert text_fingerprint("Acme Fined: $2M!") == text_fingerprint("acme fined 2m")
    assert text_fingerprint("Acme fined") != text_fingerprint("Acme cleared")


def test_fingerprint_is_16_hex_digits():
    fp = text_fingerprint("Anything at all")
    assert len(fp) == 16
    int(fp, 16)
    # FNV-1a offset basis for empty input
    assert text_fingerprint("") == "cbf29ce484222325"


def test_fingerprint_uses_first_30_tokens():
    base = " ".join(f"w{i}" for i in range(30))
    assert text_fingerprint(base) == text_fingerprint(base + " extra words here")
    assert text_fingerprint(base, "snippet") == text_fingerprint(base)
    assert text_fingerprint("short title", "snippet text") != text_fingerprint("short title")


def test_day_bucket_uses_utc():
    late = datetime(2026, 3, 10, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    assert day_bucket(late) == "2026-03-11"
    assert day_bucket(None) is None


def test_source_name_from_url():
    assert source_name_from_url("https://www.reuters.com/business") == "Reuters"
    assert source_name_from_url("https://apnews.com/article/x") == "Apnews"
    assert source_name_from_url("https://awww.site.com/") == "Asite"
    assert source_name_from_url("https://www2.example.com/") == "Www2"
    assert source_name_from_url("garbage") == "Unknown"
    assert source_name_from_url(None) == "Unknown"


def test_enrich_source_fills_derived_fields():
    resolver = OwnershipResolver.from_records([{"domain": "wsj.com", "owner": "News Corp", "kind": "publisher"}])
    published = datetime(2026, 3, 9, 8, 0, tzinfo=timezone.utc)
    source = Source(source_id="s1", url="https://www.wsj.com/articles/acme/?utm_medium=email", published_at=published)

    enriched = enrich_source(source, title="Acme fined", resolver=resolver)

    assert enriched.canonical_url == "https://www.wsj.com/articles/acme"
    assert enriched.registrable_domain == "wsj.com"
    assert enriched.domain_owner == "News Corp"
    assert enriched.title_fp == text_fingerprint("Acme fined")
    assert enriched.day_bucket == "2026-03-09"
    assert enriched.source_name == "Wsj"
    # original is untouched
    assert source.canonical_url is None
