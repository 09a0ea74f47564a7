"""URL normalisation helpers shared by discovery, scraping and reporting."""

from __future__ import annotations

from typing import Optional
from urllib.parse import ParseResult, urlparse, urlunparse


def host_of(url: str) -> Optional[str]:
    """Return the lower-cased hostname without a leading ``www.``."""
    if not url or not isinstance(url, str):
        return None
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    host = parsed.hostname.lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def _parse_http(url: str) -> Optional[ParseResult]:
    try:
        parsed = urlparse(url.strip())
        port = parsed.port
    except (ValueError, AttributeError):
        return None
    if parsed.scheme.lower() not in ("http", "https") or not parsed.hostname:
        return None
    host = parsed.hostname
    if ":" in host:
        host = f"[{host}]"
    netloc = f"{host}:{port}" if port is not None else host
    return parsed._replace(scheme=parsed.scheme.lower(), netloc=netloc)


def strip_url(url: str) -> Optional[str]:
    """Return ``scheme://host[:port]/path`` with query and fragment removed.

    Scheme and host come back lower-cased; the path keeps its case.
    """
    parsed = _parse_http(url)
    if parsed is None:
        return None
    return urlunparse((parsed.scheme, parsed.netloc, parsed.path or "/", "", "", ""))


def normalize_url(url: Optional[str]) -> Optional[str]:
    """Normalise a URL for exact comparisons: no query/fragment, trailing slash."""
    if not url:
        return None
    stripped = strip_url(url)
    if not stripped:
        return None
    return stripped if stripped.endswith("/") else f"{stripped}/"


def aggregation_key(url: str, source_type: str) -> str:
    """Social profiles keep their path; every other host collapses to its origin."""
    parsed = _parse_http(url)
    if parsed is None:
        return url
    if source_type == "social":
        return urlunparse((parsed.scheme, parsed.netloc, parsed.path, "", "", ""))
    return f"{parsed.scheme}://{parsed.netloc}"


def is_http_url(value: Optional[str]) -> bool:
    if not value or not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)
