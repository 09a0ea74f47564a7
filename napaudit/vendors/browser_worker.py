"""Client for the external scripted-browser search worker."""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Optional
from urllib.parse import parse_qs, quote, urlparse

import requests

from napaudit.core.config import Settings
from napaudit.core.http import MalformedPayloadError, fetch_with_timeout
from napaudit.core.models import SearchHit, SearchPage

logger = logging.getLogger(__name__)

PROVIDER = "worker"

_HEX_CID = re.compile(r":0x[0-9a-f]+", re.IGNORECASE)


def search(
    query: str,
    settings: Settings,
    *,
    session: Optional[requests.Session] = None,
    cancel: Optional[threading.Event] = None,
) -> SearchPage:
    if not settings.browser_worker_url:
        raise RuntimeError("BROWSER_WORKER_URL is not configured")
    target = f"{settings.browser_worker_url}/search?q={quote(query, safe='')}"
    result = fetch_with_timeout(
        target,
        headers={"Accept": "application/json"},
        timeout_ms=settings.worker_timeout_ms,
        session=session,
        cancel=cancel,
    ).raise_for_error()
    payload = result.json()
    results = payload.get("results") if isinstance(payload, dict) else None
    if not isinstance(results, list):
        raise MalformedPayloadError(target, "worker payload has no results list", status=result.status)
    hits = [
        SearchHit(url=raw.get("url"), title=_text_or_none(raw.get("title")), content=_text_or_none(raw.get("content")))
        if isinstance(raw, dict)
        else SearchHit(url=None)
        for raw in results
    ]
    return SearchPage(provider=PROVIDER, query=query, hits=hits, elapsed_ms=result.elapsed_ms, target=target)


def _text_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def extract_cid(url: Optional[str]) -> Optional[str]:
    """Google Maps customer id from ``?cid=`` or a ``:0x...`` feature id."""
    if not url:
        return None
    try:
        cid = parse_qs(urlparse(url).query).get("cid")
    except ValueError:
        cid = None
    if cid:
        return cid[0]
    match = _HEX_CID.search(url)
    return match.group(0)[1:] if match else None
