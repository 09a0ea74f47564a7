"""Deterministic site-restricted probes for directories free-text search under-indexes."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

import requests

from napaudit.core.config import Settings
from napaudit.core.http import FetchError, collect_errors
from napaudit.core.models import ReferenceRecord
from napaudit.core.urls import host_of, strip_url
from napaudit.discovery.queries import build_probe_query
from napaudit.vendors import serper

logger = logging.getLogger(__name__)

PROBE_HOSTS = (
    "yellowpages.com.au",
    "localsearch.com.au",
    "truelocal.com.au",
    "womo.com.au",
    "oneflare.com.au",
)
PROBE_RESULTS_PER_QUERY = 5


@dataclass(slots=True)
class ProbeResult:
    url: str
    host: str
    title: Optional[str] = None
    snippet: Optional[str] = None


def run_directory_probes(
    reference: ReferenceRecord,
    settings: Settings,
    *,
    session: Optional[requests.Session] = None,
    cancel: Optional[threading.Event] = None,
    limit_per_host: Optional[int] = None,
) -> List[ProbeResult]:
    """Query each probe host once and keep its top listing URLs.

    Returns ``[]`` without a Serper key or a business name. A failing host is
    logged and skipped.
    """
    if not settings.serper_enabled or not (reference.name or "").strip():
        return []

    per_host = max(1, min(3, limit_per_host if limit_per_host is not None else settings.probe_limit_per_host))

    def probe(host: str) -> List[ProbeResult]:
        query = build_probe_query(host, reference)
        page = serper.search(query, settings, num=PROBE_RESULTS_PER_QUERY, session=session, cancel=cancel)
        seen: List[str] = []
        found: List[ProbeResult] = []
        for hit in page.hits:
            result_host = host_of(hit.url) if hit.url else None
            if not result_host or not result_host.endswith(host):
                continue
            normalized = strip_url(hit.url)
            if not normalized or normalized in seen:
                continue
            seen.append(normalized)
            found.append(ProbeResult(url=normalized, host=result_host, title=hit.title, snippet=hit.content))
            if len(seen) >= per_host:
                break
        return found

    def skip(host: str, exc: FetchError) -> None:
        logger.warning("Directory probe failed for %s: %s", host, exc)

    results: List[ProbeResult] = []
    for found in collect_errors(PROBE_HOSTS, probe, skip, cancel=cancel):
        results.extend(found)
    return results
