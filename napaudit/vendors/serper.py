"""Serper (Google organic results) helpers for the commercial search passes."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

import requests

from napaudit.core.config import Settings
from napaudit.core.http import MalformedPayloadError, fetch_with_timeout
from napaudit.core.models import SearchHit, SearchPage

logger = logging.getLogger(__name__)

PROVIDER = "serper"
SERPER_URL = "https://google.serper.dev/search"


def build_serper_body(query: str, settings: Settings, num: int) -> Dict[str, Any]:
    """Construct the Serper request body for one query."""
    if not query or not query.strip():
        raise ValueError("Query must be provided for Serper lookups.")
    return {
        "q": query.strip(),
        "gl": settings.serper_gl,
        "hl": settings.serper_hl,
        "autocorrect": True,
        "num": num,
    }


def search(
    query: str,
    settings: Settings,
    *,
    num: Optional[int] = None,
    session: Optional[requests.Session] = None,
    cancel: Optional[threading.Event] = None,
) -> SearchPage:
    """Run one Serper query; raises ``FetchError`` on transport or payload failure.

    Serper bills per request, so callers bound the number of queries per run
    rather than retrying here.
    """
    if not settings.serper_api_key:
        raise RuntimeError("SERPER_API_KEY is required for Serper lookups")
    body = build_serper_body(query, settings, num if num is not None else settings.per_query_limit)
    logger.debug("Calling Serper for query=%s num=%s", query, body["num"])
    result = fetch_with_timeout(
        SERPER_URL,
        method="POST",
        headers={"Content-Type": "application/json", "X-API-KEY": settings.serper_api_key},
        json_body=body,
        timeout_ms=settings.search_timeout_ms,
        session=session,
        cancel=cancel,
    ).raise_for_error()
    payload = result.json()
    if not isinstance(payload, dict):
        raise MalformedPayloadError(SERPER_URL, "Serper payload is not an object", status=result.status)
    return SearchPage(provider=PROVIDER, query=query, hits=parse_organic(payload), elapsed_ms=result.elapsed_ms)


def parse_organic(data: Optional[Dict[str, Any]]) -> List[SearchHit]:
    """Extract ``organic`` rows into hits; rows without a usable link keep ``url=None``."""
    if not data:
        return []
    items = _extract_items(data)
    if not items:
        logger.debug("Serper response missing organic list. keys=%s", list(data.keys())[:10])
    hits: List[SearchHit] = []
    for raw in items:
        if not isinstance(raw, dict):
            hits.append(SearchHit(url=None))
            continue
        link = raw.get("link")
        hits.append(
            SearchHit(
                url=link if isinstance(link, str) else None,
                title=_strip_or_none(raw.get("title")),
                content=_strip_or_none(raw.get("snippet")),
            )
        )
    return hits


def _extract_items(data: Dict[str, Any]) -> Iterable[Any]:
    organic = data.get("organic")
    if isinstance(organic, list):
        return organic
    return []


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None
