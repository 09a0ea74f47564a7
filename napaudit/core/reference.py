"""Reference-record side channel: attach a website or social profile to a business."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

from napaudit.core.urls import is_http_url

logger = logging.getLogger(__name__)

_SOCIAL_HOST_KEYS = (
    (("facebook.com",), "facebook"),
    (("instagram.com",), "instagram"),
    (("linkedin.com",), "linkedin"),
    (("x.com", "twitter.com"), "x"),
    (("youtube.com", "youtu.be"), "youtube"),
    (("tiktok.com",), "tiktok"),
)


class SocialConflictError(Exception):
    """A different profile is already stored for this social key."""

    def __init__(self, key: str, socials: Dict[str, str]) -> None:
        super().__init__(f"{key} already set. Use replace to overwrite.")
        self.key = key
        self.socials = socials


def detect_social_key(url: str) -> Tuple[Optional[str], str]:
    """Return ``(key, normalized)`` where normalized is ``scheme://host/path``."""
    parsed = urlparse(url)
    normalized = f"{parsed.scheme}://{parsed.netloc}{parsed.path}"
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    for needles, key in _SOCIAL_HOST_KEYS:
        if any(needle in host for needle in needles):
            return key, normalized
    return None, normalized


def apply_social_update(
    socials: Optional[Dict[str, str]], key: str, url: str, replace: bool = False
) -> Tuple[Dict[str, str], Optional[str]]:
    """Set ``socials[key]`` when absent or forced; raise on a conflicting existing value.

    Returns the updated mapping and the previous value. Setting the same value
    again is a no-op rather than a conflict.
    """
    updated = dict(socials or {})
    previous = updated.get(key) or None
    if replace or not previous:
        updated[key] = url
    elif previous != url:
        raise SocialConflictError(key, updated)
    return updated, previous


def normalize_website(url: Optional[str]) -> str:
    if not url or not isinstance(url, str):
        raise ValueError("Missing website")
    parsed = urlparse(url.strip())
    if not parsed.scheme or not parsed.netloc:
        raise ValueError("Invalid website URL")
    path = parsed.path or "/"
    return parsed._replace(path=path).geturl()


def _stamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def set_website(store: Any, business_id: str, website: str, audit_id: Optional[str] = None) -> Dict[str, Any]:
    next_website = normalize_website(website)
    previous = store.update_website(business_id, next_website)
    if audit_id:
        store.insert_snapshot(
            business_id,
            audit_id,
            "manual",
            {"website_set": {"prev": previous, "next": next_website, "at": _stamp()}},
        )
    logger.info("Website for business %s set to %s", business_id, next_website)
    return {"website": next_website, "host": urlparse(next_website).hostname}


def set_social(
    store: Any,
    business_id: str,
    url: str,
    *,
    key: Optional[str] = None,
    replace: bool = False,
    audit_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Attach a social profile URL to the business, honouring the replace flag."""
    if not is_http_url(url):
        raise ValueError("Missing businessId or invalid url")
    detected, normalized = detect_social_key(url)
    key = key or detected
    if not key:
        raise ValueError("Unsupported social URL")

    profile = store.get_profile(business_id)
    current = profile.get("socials") if isinstance(profile.get("socials"), dict) else {}
    socials, previous = apply_social_update(current, key, normalized, replace)

    store.update_socials(business_id, socials)
    if audit_id:
        store.insert_snapshot(
            business_id,
            audit_id,
            "manual",
            {"social_set": {"key": key, "prev": previous, "next": socials[key], "at": _stamp()}},
        )
    return {"socials": socials, "changed": {"key": key, "prev": previous, "next": socials[key]}}
