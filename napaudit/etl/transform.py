"""Transformations between vendor payloads, engine models and store rows."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from napaudit.core.models import Observation

logger = logging.getLogger(__name__)

_IGNORE_TYPES = {"point_of_interest", "establishment", "political", "premise"}


def _extract_primary_type(types: Iterable[str]) -> Optional[str]:
    for type_name in types or []:
        if type_name not in _IGNORE_TYPES:
            return type_name
    return None


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def place_result_to_candidate(result: Dict[str, Any], position: int) -> Dict[str, Any]:
    """Google Places text-search row -> place candidate shown for confirmation."""
    return {
        "position": position,
        "title": _clean(result.get("name")) or "Result",
        "address": _clean(result.get("formatted_address")),
        "website": _clean(result.get("website")),
        "phoneNumber": _clean(result.get("formatted_phone_number")),
        "category": _extract_primary_type(result.get("types", [])),
        "rating": result.get("rating"),
        "ratingCount": result.get("user_ratings_total"),
        "placeId": result.get("place_id"),
        "cid": None,
        "sourceUrl": _clean(result.get("url")),
    }


def search_hit_to_candidate(
    url: Optional[str],
    title: Optional[str],
    position: int,
    *,
    cid: Optional[str] = None,
    address: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "position": position,
        "title": _clean(title) or "Result",
        "address": _clean(address),
        "website": None,
        "phoneNumber": None,
        "category": None,
        "rating": None,
        "ratingCount": None,
        "placeId": None,
        "cid": cid,
        "sourceUrl": url,
    }


def merge_place_details(candidate: Dict[str, Any], details: Dict[str, Any]) -> Dict[str, Any]:
    """Fill gaps in a candidate from a Places details payload without overwriting confirmed values."""
    merged = dict(candidate)
    merged["address"] = merged.get("address") or _clean(details.get("formatted_address"))
    merged["phoneNumber"] = merged.get("phoneNumber") or _clean(
        details.get("formatted_phone_number") or details.get("international_phone_number")
    )
    merged["website"] = merged.get("website") or _clean(details.get("website"))
    merged["category"] = merged.get("category") or _extract_primary_type(details.get("types", []))
    return merged


def candidate_to_profile_row(candidate: Dict[str, Any], lead_id: Optional[str] = None) -> Dict[str, Any]:
    """Confirmed place candidate -> ``business_profiles`` insert parameters."""
    category = _clean(candidate.get("category"))
    return {
        "lead_id": lead_id,
        "place_cid": _clean(candidate.get("cid")),
        "golden_name": _clean(candidate.get("title")),
        "golden_address": _clean(candidate.get("address")),
        "golden_phone": _clean(candidate.get("phoneNumber")),
        "website": _clean(candidate.get("website")),
        "categories": [category] if category else None,
    }


def observation_to_row(observation: Observation, audit_id: str, business_id: str) -> Dict[str, Any]:
    return {
        "audit_id": audit_id,
        "business_id": business_id,
        "source_url": observation.source_url,
        "source_type": observation.source_type,
        "name": observation.name,
        "address": observation.address,
        "phone": observation.phone,
        "match_score": observation.match_score,
        "mismatch": observation.mismatch,
    }
