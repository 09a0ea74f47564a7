"""Cross-query aggregation, thresholding and per-host capping of candidates."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from napaudit.core.config import Settings
from napaudit.core.models import AggregatedCandidate, Candidate
from napaudit.core.urls import aggregation_key

MISSING_RANK = 999


@dataclass
class AggregateOutcome:
    selected: List[AggregatedCandidate] = field(default_factory=list)
    agg_candidates: int = 0
    pre_filtered: int = 0
    cap_dropped: int = 0


def corroboration_scale(best_score: int) -> float:
    if best_score >= 40:
        return 1.0
    if best_score >= 30:
        return 0.5
    return 0.0


def final_score(best_score: int, best_rank: int, hits: int) -> int:
    """Blend repeat hits and rank into the best score, only for already-relevant keys."""
    dup_boost = min(6, max(0, 2 * (hits - 1)))
    rank_boost = min(6, max(0, 6 - max(0, best_rank - 1)))
    # Half-up rounding: 0.5 steps always round towards the larger score.
    return int(math.floor(best_score + corroboration_scale(best_score) * (dup_boost + rank_boost) + 0.5))


def group_candidates(candidates: Iterable[Candidate]) -> Dict[str, AggregatedCandidate]:
    groups: Dict[str, AggregatedCandidate] = {}
    for candidate in candidates:
        key = aggregation_key(candidate.url, candidate.source_type)
        rank = candidate.rank or MISSING_RANK
        existing = groups.get(key)
        if existing is None:
            groups[key] = AggregatedCandidate(
                key=key, sample=candidate, best_score=candidate.score, best_rank=rank, hits=1
            )
            continue
        existing.hits += 1
        existing.best_score = max(existing.best_score, candidate.score)
        existing.best_rank = min(existing.best_rank, rank)
        if candidate.score > existing.sample.score:
            existing.sample = candidate
    return groups


def aggregate(candidates: Iterable[Candidate], settings: Settings) -> AggregateOutcome:
    """Deduplicate by key, score, filter by per-type minimum and apply per-host caps."""
    groups = group_candidates(candidates)
    for group in groups.values():
        group.final_score = final_score(group.best_score, group.best_rank, group.hits)

    eligible = [
        group for group in groups.values() if group.final_score >= settings.min_score_for(group.source_type)
    ]
    eligible.sort(key=lambda group: group.final_score, reverse=True)

    outcome = AggregateOutcome(agg_candidates=len(groups), pre_filtered=len(eligible))
    per_host: Dict[str, int] = {}
    for group in eligible:
        taken = per_host.get(group.host, 0)
        if taken < settings.cap_for(group.host, group.source_type):
            outcome.selected.append(group)
            per_host[group.host] = taken + 1
        else:
            outcome.cap_dropped += 1
    return outcome


def build_snapshot(queries: List[str], selected: List[AggregatedCandidate], provider: str = "searxng") -> Dict[str, Any]:
    return {
        "provider": provider,
        "queries": list(queries),
        "urls": [group.to_dict() for group in selected],
        "capturedAt": datetime.now(timezone.utc).isoformat(),
    }
