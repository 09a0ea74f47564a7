"""Client utilities for the Google Places API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from napaudit.core.http import fetch_with_timeout

logger = logging.getLogger(__name__)
_BASE_URL = "https://maps.googleapis.com/maps/api/place"
_TIMEOUT_MS = 10000
_DETAIL_FIELDS = (
    "place_id,name,formatted_address,formatted_phone_number,international_phone_number,"
    "website,types,url"
)


class GooglePlacesError(RuntimeError):
    """Raised when the Places API returns a non-successful response."""


def _get(path: str, params: Dict[str, Any], session: Optional[requests.Session]) -> Dict[str, Any]:
    target = requests.Request("GET", f"{_BASE_URL}/{path}", params=params).prepare().url
    payload = fetch_with_timeout(target, timeout_ms=_TIMEOUT_MS, session=session).raise_for_error().json()
    status = payload.get("status") if isinstance(payload, dict) else None
    if status not in {"OK", "ZERO_RESULTS"}:
        message = payload.get("error_message") if isinstance(payload, dict) else None
        logger.error("%s failed: status=%s, error_message=%s", path, status, message)
        raise GooglePlacesError(message or status or "malformed response")
    return payload


def text_search(query: str, api_key: str, session: Optional[requests.Session] = None) -> Dict[str, Any]:
    return _get("textsearch/json", {"query": query, "key": api_key, "region": "au"}, session)


def place_details(place_id: str, api_key: str, session: Optional[requests.Session] = None) -> Dict[str, Any]:
    params = {"place_id": place_id, "key": api_key, "fields": _DETAIL_FIELDS}
    return _get("details/json", params, session).get("result", {})
