"""Client for a self-hosted SearXNG metasearch instance."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

import requests

from napaudit.core.config import Settings
from napaudit.core.http import MalformedPayloadError, fetch_with_timeout
from napaudit.core.models import SearchHit, SearchPage

logger = logging.getLogger(__name__)

PROVIDER = "searxng"


def build_search_params(query: str, settings: Settings, limit: Optional[int] = None) -> Dict[str, Any]:
    if not query or not query.strip():
        raise ValueError("Query must be provided for SearXNG lookups.")
    params: Dict[str, Any] = {
        "q": query,
        "format": "json",
        "safesearch": "0",
        "language": settings.searxng_language,
        "limit": str(limit if limit is not None else settings.per_query_limit),
    }
    if settings.searxng_engines:
        params["engines"] = settings.searxng_engines
    return params


def parse_results(payload: Any) -> List[SearchHit]:
    results = payload.get("results") if isinstance(payload, dict) else None
    if not isinstance(results, list):
        return []
    hits: List[SearchHit] = []
    for raw in results:
        if not isinstance(raw, dict):
            hits.append(SearchHit(url=None))
            continue
        hits.append(
            SearchHit(
                url=raw.get("url"),
                title=_text_or_none(raw.get("title")),
                content=_text_or_none(raw.get("content")),
            )
        )
    return hits


def _text_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def search(
    query: str,
    settings: Settings,
    *,
    session: Optional[requests.Session] = None,
    cancel: Optional[threading.Event] = None,
    limit: Optional[int] = None,
    engines: Optional[str] = None,
) -> SearchPage:
    """Run one query and return the parsed page; raises ``FetchError`` on failure."""
    params = build_search_params(query, settings, limit)
    if engines:
        params["engines"] = engines
    target = requests.Request("GET", f"{settings.searxng_base_url}/search", params=params).prepare().url
    result = fetch_with_timeout(
        target,
        headers={"Accept": "application/json"},
        timeout_ms=settings.search_timeout_ms,
        session=session,
        cancel=cancel,
    ).raise_for_error()
    payload = result.json()
    if not isinstance(payload, dict):
        raise MalformedPayloadError(target, "SearXNG payload is not an object", status=result.status)
    unresponsive = payload.get("unresponsive_engines")
    return SearchPage(
        provider=PROVIDER,
        query=query,
        hits=parse_results(payload),
        elapsed_ms=result.elapsed_ms,
        target=target,
        unresponsive_engines=unresponsive if isinstance(unresponsive, list) else [],
    )


def fetch_stats(settings: Settings, *, session: Optional[requests.Session] = None) -> Dict[str, Any]:
    """Return the instance's ``/stats`` JSON (engine timings and error rates)."""
    target = f"{settings.searxng_base_url}/stats?format=json"
    result = fetch_with_timeout(
        target,
        headers={"Accept": "application/json"},
        timeout_ms=settings.search_timeout_ms,
        session=session,
    ).raise_for_error()
    payload = result.json()
    if not isinstance(payload, dict):
        raise MalformedPayloadError(target, "SearXNG stats payload is not an object", status=result.status)
    return payload
