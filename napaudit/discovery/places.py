"""Place lookup used to bootstrap a reference record before an audit starts."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

import requests

from napaudit.core.config import Settings
from napaudit.core.http import FetchError
from napaudit.etl import transform
from napaudit.vendors import browser_worker, google_places, searxng

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 10
MAX_MAPS_CANDIDATES = 5
MAPS_ENGINES = "google_au"

_GOOGLE_MAPS_URL = re.compile(r"google\.[^/]*/maps", re.IGNORECASE)


def _query(name: Optional[str], address: Optional[str], phone: Optional[str]) -> str:
    return " ".join(part.strip() for part in (name, address, phone) if part and part.strip())


def _from_worker(query: str, settings: Settings, session: Optional[requests.Session]) -> List[Dict[str, Any]]:
    page = browser_worker.search(query, settings, session=session)
    return [
        transform.search_hit_to_candidate(
            hit.url,
            hit.title or query,
            position,
            cid=browser_worker.extract_cid(hit.url) if isinstance(hit.url, str) else None,
        )
        for position, hit in enumerate(page.hits[:MAX_CANDIDATES], start=1)
    ]


def _from_google(query: str, settings: Settings, session: Optional[requests.Session]) -> List[Dict[str, Any]]:
    payload = google_places.text_search(query, settings.google_api_key, session=session)
    results = payload.get("results") or []
    return [
        transform.place_result_to_candidate(result, position)
        for position, result in enumerate(results[:MAX_CANDIDATES], start=1)
        if isinstance(result, dict)
    ]


def _from_searxng(query: str, settings: Settings, session: Optional[requests.Session]) -> List[Dict[str, Any]]:
    page = searxng.search(f"{query} site:google.com/maps", settings, session=session, engines=MAPS_ENGINES)
    maps_hits = [hit for hit in page.hits if isinstance(hit.url, str) and _GOOGLE_MAPS_URL.search(hit.url)]
    return [
        transform.search_hit_to_candidate(
            hit.url,
            hit.title,
            position,
            cid=browser_worker.extract_cid(hit.url),
            address=hit.content,
        )
        for position, hit in enumerate(maps_hits[:MAX_MAPS_CANDIDATES], start=1)
    ]


def search_places(
    name: Optional[str],
    address: Optional[str],
    phone: Optional[str],
    settings: Settings,
    *,
    session: Optional[requests.Session] = None,
) -> List[Dict[str, Any]]:
    """Return place candidates from the first source that answers.

    Sources are tried in order: the browser worker, Google Places text search,
    then SearXNG restricted to Google Maps links. A failing source falls
    through to the next; if all fail the result is empty.
    """
    query = _query(name, address, phone)
    if not query:
        raise ValueError("Provide at least one of name, address, phone")

    sources = []
    if settings.browser_worker_url:
        sources.append(("worker", _from_worker))
    if settings.google_api_key:
        sources.append(("google_places", _from_google))
    if settings.searxng_base_url:
        sources.append(("searxng", _from_searxng))

    for label, source in sources:
        try:
            return source(query, settings, session)
        except (FetchError, google_places.GooglePlacesError) as exc:
            logger.warning("Place search via %s failed: %s", label, exc)
    return []


def confirm_place(
    candidate: Dict[str, Any],
    settings: Settings,
    *,
    lead_id: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> Dict[str, Any]:
    """Map a chosen candidate onto a profile row, filling gaps from Places details when possible."""
    if not candidate or not candidate.get("title"):
        raise ValueError("Missing candidate.title")
    place_id = candidate.get("placeId")
    needs_details = not (candidate.get("phoneNumber") and candidate.get("address") and candidate.get("website"))
    if place_id and settings.google_api_key and needs_details:
        try:
            details = google_places.place_details(place_id, settings.google_api_key, session=session)
            candidate = transform.merge_place_details(candidate, details)
        except (FetchError, google_places.GooglePlacesError) as exc:
            logger.warning("Place details lookup failed for %s: %s", place_id, exc)
    return transform.candidate_to_profile_row(candidate, lead_id=lead_id)
