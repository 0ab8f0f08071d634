"""
URL canonicalization and title fingerprinting used to cluster event sources.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlsplit, urlunsplit

import tldextract

from .models import Source

if TYPE_CHECKING:  # pragma: no cover
    from .ownership import OwnershipResolver

logger = logging.getLogger(__name__)

TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "gclid",
        "fbclid",
        "mc_cid",
        "mc_eid",
        "msclkid",
        "_ga",
    }
)

FINGERPRINT_TOKENS = 30
_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_AMP_PREFIX = re.compile(r"^/amp(/|$)")
_AMP_SUFFIX = re.compile(r"/amp/?$")

# Bundled public suffix snapshot only; never fetch the list at runtime.
_extract = tldextract.TLDExtract(suffix_list_urls=())


def canonicalize(url: str) -> str:
    """Return a canonical form of ``url``, or ``url`` itself when it cannot be parsed."""
    try:
        parts = urlsplit(url.strip())
        if not parts.scheme or not parts.netloc or not parts.hostname:
            return url
        _ = parts.port  # raises ValueError on a malformed port
    except (ValueError, AttributeError):
        return url

    kept: list[tuple[str, str]] = []
    for pair in parts.query.split("&"):
        if not pair:
            continue
        key = pair.split("=", 1)[0]
        if unquote(key) in TRACKING_PARAMS:
            continue
        kept.append((unquote(key), pair))
    kept.sort(key=lambda item: item[0])
    query = "&".join(pair for _, pair in kept)

    path = parts.path or "/"
    path = _AMP_PREFIX.sub("/", path)
    path = _AMP_SUFFIX.sub("/", path)
    if path != "/" and path.endswith("/"):
        path = path[:-1]

    netloc = parts.netloc.lower()
    return urlunsplit((parts.scheme.lower(), netloc, path, query, parts.fragment))


def registrable_domain(url: str | None) -> str | None:
    """Public-suffix aware registrable domain, e.g. ``news.example.co.uk`` -> ``example.co.uk``."""
    if not url:
        return None
    try:
        extracted = _extract(url)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Could not extract domain from %r: %s", url, exc)
        return None
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}".lower()
    return None


def hostname(url: str | None) -> str | None:
    if not url:
        return None
    try:
        host = urlsplit(url if "://" in url else f"http://{url}").hostname
    except ValueError:
        return None
    return host.lower() if host else None


def text_fingerprint(title: str, snippet: str | None = None) -> str:
    """64-bit FNV-1a over the first 30 normalized tokens of title + snippet.

    A clustering key only; not suitable for integrity checks.
    """
    text = f"{title or ''} {snippet or ''}".lower()
    tokens = _NON_ALNUM.sub(" ", text).split()
    window = " ".join(tokens[:FINGERPRINT_TOKENS])
    value = _FNV_OFFSET
    for byte in window.encode("utf-8"):
        value ^= byte
        value = (value * _FNV_PRIME) & _MASK_64
    return f"{value:016x}"


def day_bucket(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date().isoformat()


def source_name_from_url(url: str | None) -> str:
    """Readable outlet name from a URL: ``https://www.reuters.com/x`` -> ``Reuters``."""
    host = hostname(url) if url and "://" in url else None
    if not host:
        return "Unknown"
    host = host.replace("www.", "", 1)
    name = host.split(".")[0]
    return name[:1].upper() + name[1:] if name else "Unknown"


def enrich_source(
    source: Source,
    *,
    title: str = "",
    snippet: str | None = None,
    resolver: "OwnershipResolver | None" = None,
) -> Source:
    """Fill the derived fields of ``source`` (canonical URL, domain, owner, fingerprint, day)."""
    domain = registrable_domain(source.url)
    update = {
        "canonical_url": canonicalize(source.url),
        "registrable_domain": domain,
        "title_fp": text_fingerprint(title, snippet),
        "day_bucket": day_bucket(source.published_at),
        "source_name": source.source_name or source_name_from_url(source.url),
    }
    if resolver is not None:
        owner = resolver.resolve(domain)
        update["domain_owner"] = owner.owner
        update["domain_kind"] = owner.kind
    return source.model_copy(update=update)
