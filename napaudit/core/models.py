"""Core data models shared by the discovery, scrape and report stages."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

SOURCE_TYPES = ("social", "directory", "places", "web")


@dataclass(slots=True)
class ReferenceRecord:
    """Golden identity a business has confirmed; the engine only reads it."""

    business_id: Optional[str] = None
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    socials: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class SearchHit:
    """One raw result row as a search backend returned it."""

    url: Optional[str]
    title: Optional[str] = None
    content: Optional[str] = None


@dataclass(slots=True)
class SearchPage:
    provider: str
    query: str
    hits: List[SearchHit] = field(default_factory=list)
    elapsed_ms: int = 0
    target: Optional[str] = None
    unresponsive_engines: List[Any] = field(default_factory=list)


@dataclass(slots=True)
class Candidate:
    """One scored search hit, before cross-query deduplication."""

    url: str
    host: str
    source_type: str
    title: Optional[str] = None
    content: Optional[str] = None
    score: int = 0
    rank: Optional[int] = None
    provider: str = "searxng"
    exact: bool = False
    bigram: bool = False
    phone: bool = False
    geo: bool = False
    wrong_location: bool = False
    occupation_only: bool = False
    job_board: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "content": self.content,
            "host": self.host,
            "source_type": self.source_type,
            "provider": self.provider,
            "score": self.score,
            "rank": self.rank,
            "exact": self.exact,
            "bigram": self.bigram,
            "phone": self.phone,
            "geo": self.geo,
            "wrongLocation": self.wrong_location,
            "occupationOnly": self.occupation_only,
            "jobBoard": self.job_board,
        }


@dataclass(slots=True)
class AggregatedCandidate:
    """All hits sharing one normalized URL key within a run."""

    key: str
    sample: Candidate
    best_score: int
    best_rank: int
    hits: int = 1
    final_score: int = 0

    @property
    def host(self) -> str:
        return self.sample.host

    @property
    def source_type(self) -> str:
        return self.sample.source_type

    def to_dict(self) -> Dict[str, Any]:
        payload = self.sample.to_dict()
        payload.update(
            url=self.key,
            score=self.final_score,
            bestScore=self.best_score,
            bestRank=self.best_rank,
            hits=self.hits,
        )
        return payload


@dataclass(slots=True)
class Observation:
    """Identity data scraped from one URL, scored against the reference."""

    source_url: str
    source_type: str
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    match_score: int = 0
    mismatch: Dict[str, Any] = field(default_factory=dict)
    last_post_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.source_url,
            "source_type": self.source_type,
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "match_score": self.match_score,
            "mismatch": self.mismatch,
            "last_post_at": self.last_post_at,
        }


@dataclass(slots=True)
class ListingOpportunity:
    directory_key: str
    reason: str
    priority: int
    suggested_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class PlatformSummary:
    """Report-time join of a registry entry with its observations."""

    key: str
    name: str
    category: str
    weight: int
    status: str = "missing"
    contribution: float = 0.0
    best_score: Optional[int] = None
    rows: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "category": self.category,
            "weight": self.weight,
            "status": self.status,
            "contribution": self.contribution,
            "bestScore": self.best_score,
            "urls": self.rows,
        }
