"""Per-platform presence report and listing opportunities for one audit run."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from napaudit.core.models import ListingOpportunity, Observation, PlatformSummary, ReferenceRecord
from napaudit.core.urls import host_of
from napaudit.discovery.directories import AU_DIRECTORIES, DEFAULT_WEIGHT, OPPORTUNITY_CATEGORIES, find_directory_by_host
from napaudit.extraction.nap import classify_field

logger = logging.getLogger(__name__)

STRONG_SCORE = 85
WEAK_SCORE = 40
OPPORTUNITY_REASON = "not found or weak match"

STRONG = "strong"
WEAK = "weak"
MISSING = "missing"

_REPORT_CATEGORIES = ("social",) + OPPORTUNITY_CATEGORIES


def status_for(score: Optional[int]) -> str:
    if not isinstance(score, (int, float)):
        return MISSING
    if score >= STRONG_SCORE:
        return STRONG
    if score >= WEAK_SCORE:
        return WEAK
    return MISSING


def _contribution(status: str, weight: int) -> float:
    if status == STRONG:
        return float(weight)
    if status == WEAK:
        return weight * 0.5
    return 0.0


def _unpack(observation: Any) -> Tuple[Optional[str], Optional[str], Optional[int], Dict[str, Any]]:
    """Accept either an :class:`Observation` or a stored ``nap_observations`` row."""
    if isinstance(observation, Observation):
        return observation.source_url, observation.source_type, observation.match_score, observation.mismatch
    return (
        observation.get("source_url") or observation.get("url"),
        observation.get("source_type"),
        observation.get("match_score"),
        observation.get("mismatch") or {},
    )


def _row(url: str, source_type: Optional[str], score: Optional[int], mismatch: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "url": url,
        "source_type": source_type,
        "score": score,
        "status": status_for(score),
        "mismatch": mismatch,
        "fields": {name: classify_field(mismatch, name) for name in ("name", "address", "phone")},
    }


def build_report(
    reference: ReferenceRecord,
    observations: Iterable[Any],
    include_maps: bool = False,
) -> Dict[str, Any]:
    """Join observations onto the registry and compute the weighted presence score."""
    platforms: Dict[str, PlatformSummary] = {}
    for entry in AU_DIRECTORIES:
        if entry.category in _REPORT_CATEGORIES or (include_maps and entry.category == "maps"):
            platforms[entry.key] = PlatformSummary(
                key=entry.key, name=entry.name, category=entry.category, weight=entry.weight or DEFAULT_WEIGHT
            )

    unmatched = 0
    for observation in observations:
        url, source_type, score, mismatch = _unpack(observation)
        entry = find_directory_by_host(host_of(url)) if url else None
        if entry is None or entry.key not in platforms:
            unmatched += 1
            continue
        platforms[entry.key].rows.append(_row(url, source_type, score, mismatch))

    obtained = 0.0
    for summary in platforms.values():
        scored = [row for row in summary.rows if isinstance(row["score"], (int, float))]
        if scored:
            best = max(scored, key=lambda row: row["score"])
            summary.best_score = best["score"]
            summary.status = best["status"]
        summary.contribution = _contribution(summary.status, summary.weight)
        obtained += summary.contribution

    total_weight = sum(summary.weight for summary in platforms.values()) or 1
    overall = int(math.floor(100 * obtained / total_weight + 0.5))
    logger.debug("Report built: %s platforms, %s observations outside the registry", len(platforms), unmatched)

    return {
        "golden": {"name": reference.name, "address": reference.address, "phone": reference.phone},
        "scoring": {
            "thresholds": {STRONG: f">={STRONG_SCORE}", WEAK: f"{WEAK_SCORE}-{STRONG_SCORE - 1}", MISSING: f"<{WEAK_SCORE} or no result"},
            "contribution": {STRONG: "100% weight", WEAK: "50% weight", MISSING: "0%"},
            "totalWeight": total_weight,
            "obtained": obtained,
            "overallScore": overall,
        },
        "platforms": [summary.to_dict() for summary in platforms.values()],
        "generatedAt": datetime.now(timezone.utc).isoformat(),
    }


def derive_opportunities(observations: Iterable[Any]) -> List[ListingOpportunity]:
    """Directory, review and leads platforms without a strong observation, in registry order."""
    strong_keys = set()
    for observation in observations:
        url, _, score, _ = _unpack(observation)
        entry = find_directory_by_host(host_of(url)) if url else None
        if entry is not None and isinstance(score, (int, float)) and score >= STRONG_SCORE:
            strong_keys.add(entry.key)

    return [
        ListingOpportunity(
            directory_key=entry.key,
            reason=OPPORTUNITY_REASON,
            priority=max(1, 11 - (entry.weight or DEFAULT_WEIGHT)),
        )
        for entry in AU_DIRECTORIES
        if entry.category in OPPORTUNITY_CATEGORIES and entry.key not in strong_keys
    ]
