"""Crawl a business website once and fold its social links back into the profile."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from napaudit.core.config import Settings
from napaudit.core.http import FetchError
from napaudit.core.urls import is_http_url
from napaudit.extraction.page import PageExtractor, PageFetchFailure

logger = logging.getLogger(__name__)


def crawl_website(
    settings: Settings,
    store: Any,
    business_id: str,
    url: str,
    *,
    audit_id: Optional[str] = None,
    extractor: Optional[PageExtractor] = None,
) -> Dict[str, Any]:
    """Extract ``url``, merge its socials into the profile, set it as the website and snapshot the page."""
    if not business_id or not is_http_url(url):
        raise ValueError("Missing businessId or invalid url")

    if extractor is None:
        with PageExtractor(settings) as owned:
            page = owned.extract(url)
    else:
        page = extractor.extract(url)
    if isinstance(page, PageFetchFailure):
        raise FetchError(url, f"Fetch failed: {page.error}", status=page.status)

    found: Dict[str, Any] = dict(page.socials)
    if page.other_links:
        found["other"] = list(page.other_links)

    profile = store.get_profile(business_id)
    existing = profile.get("socials") if isinstance(profile.get("socials"), dict) else {}
    merged = {**existing, **found}

    store.update_socials(business_id, merged)
    store.update_website(business_id, url)
    store.insert_snapshot(business_id, audit_id, "website", page.snapshot())
    logger.info("Crawled %s for business %s: %s social links", url, business_id, len(page.socials))
    return {"businessId": business_id, "auditId": audit_id, "socials": merged}
