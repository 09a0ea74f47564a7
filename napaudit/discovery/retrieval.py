"""Multi-source retrieval: primary metasearch, commercial passes and directory probes."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from napaudit.core.config import Settings
from napaudit.core.http import FetchError, build_session
from napaudit.core.models import Candidate, ReferenceRecord, SearchPage
from napaudit.core.urls import host_of, normalize_url
from napaudit.discovery.aggregate import AggregateOutcome, aggregate
from napaudit.discovery.directories import classify_host
from napaudit.discovery.probes import run_directory_probes
from napaudit.discovery.queries import build_facebook_queries, build_queries, priority_social_query
from napaudit.discovery.relevance import RelevanceContext, apply_score
from napaudit.vendors import browser_worker, searxng, serper

logger = logging.getLogger(__name__)

Emit = Callable[[str, Dict[str, Any]], None]
SearchFn = Callable[..., SearchPage]

MAX_FALLBACK_QUERIES = 2


def _noop_emit(name: str, data: Dict[str, Any]) -> None:
    return None


@dataclass
class DiscoveryResult:
    provider: str
    queries: List[str]
    candidates: List[Candidate] = field(default_factory=list)
    outcome: AggregateOutcome = field(default_factory=AggregateOutcome)


class DiscoveryRunner:
    """Run every discovery source for one reference record and aggregate the hits.

    Events are reported through ``emit(name, data)``; the runner never raises
    for a failing backend. Cancellation is checked before each outbound query.
    """

    def __init__(
        self,
        reference: ReferenceRecord,
        settings: Settings,
        *,
        emit: Optional[Emit] = None,
        cancel: Optional[threading.Event] = None,
        session: Optional[requests.Session] = None,
        include_website: bool = False,
        primary_search: Optional[SearchFn] = None,
        commercial_search: Optional[SearchFn] = None,
        probe_runner: Optional[Callable[..., list]] = None,
    ) -> None:
        self.reference = reference
        self.settings = settings
        self.emit = emit or _noop_emit
        self.cancel = cancel or threading.Event()
        self._session = session
        self._owned_session: Optional[requests.Session] = None
        self.include_website = include_website
        self.context = RelevanceContext.build(reference, settings)
        self.website_normalized = normalize_url(reference.website)

        use_worker = settings.search_provider == "worker" and bool(settings.browser_worker_url)
        self.provider = browser_worker.PROVIDER if use_worker else searxng.PROVIDER
        if primary_search is not None:
            self.primary_search = primary_search
        else:
            self.primary_search = browser_worker.search if use_worker else searxng.search
        self.commercial_search = commercial_search or serper.search
        self.probe_runner = probe_runner or run_directory_probes

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> DiscoveryResult:
        if self._session is not None:
            return self._run()
        self._owned_session = build_session()
        try:
            return self._run()
        finally:
            self._owned_session.close()
            self._owned_session = None

    def _run(self) -> DiscoveryResult:
        settings = self.settings
        queries = build_queries(self.reference, country_tld=settings.country_tld)
        self.emit(
            "meta",
            {
                "provider": self.provider,
                "searx": settings.searxng_base_url,
                "engines": settings.searxng_engines,
                "queries": queries,
                "limits": {"perQueryLimit": settings.per_query_limit, "delayMs": settings.query_delay_ms},
                "serperParallel": settings.serper_parallel,
                "serperMaxQueries": settings.serper_parallel_max_queries,
            },
        )

        candidates: List[Candidate] = []
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="serper") as pool:
            branches = []
            if settings.serper_enabled and settings.serper_parallel:
                branches.append(pool.submit(self._guarded, "parallel", self._run_parallel_enrichment, queries))
            if settings.serper_enabled and settings.social_serper_force:
                branches.append(pool.submit(self._guarded, "forced_social", self._run_forced_social))

            candidates.extend(self._run_probes())
            primary_items, primary_count = self._run_primary(queries)
            candidates.extend(primary_items)

            if settings.serper_enabled and primary_count < settings.serper_min_results and not self.cancelled:
                candidates.extend(self._run_fallback(queries, primary_count))

            for branch in branches:
                candidates.extend(branch.result())

        outcome = aggregate(candidates, settings)
        self.emit(
            "aggregate:pre",
            {
                "aggCandidates": outcome.agg_candidates,
                "preFiltered": outcome.pre_filtered,
                "minScoreDefault": settings.min_item_score_default,
                "minScoreByType": {
                    "social": settings.min_item_score_social,
                    "directory": settings.min_item_score_directory,
                    "places": settings.min_item_score_places,
                    "web": settings.min_item_score_web,
                },
            },
        )
        self.emit(
            "aggregate:post",
            {
                "kept": len(outcome.selected),
                "capDefault": settings.per_host_cap_default,
                "capByType": {
                    "social": settings.per_host_cap_social,
                    "directory": settings.per_host_cap_directory,
                    "places": settings.per_host_cap_places,
                    "web": settings.per_host_cap_web,
                },
                "hostOverrides": dict(settings.host_cap_overrides),
                "capDropped": outcome.cap_dropped,
            },
        )
        logger.info(
            "Discovery for %s: %s queries, %s raw candidates, %s kept",
            self.reference.business_id,
            len(queries),
            len(candidates),
            len(outcome.selected),
        )
        return DiscoveryResult(provider=self.provider, queries=queries, candidates=candidates, outcome=outcome)

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def _run_probes(self) -> List[Candidate]:
        self.emit("probe:start", {"provider": serper.PROVIDER, "kind": "directories"})
        found: List[Candidate] = []
        try:
            results = self.probe_runner(
                self.reference,
                self.settings,
                session=self._branch_session(),
                cancel=self.cancel,
                limit_per_host=self.settings.probe_limit_per_host,
            )
            for probe in results:
                host = probe.host or host_of(probe.url)
                if not host:
                    continue
                candidate = Candidate(
                    url=probe.url,
                    host=host,
                    source_type=classify_host(host),
                    title=probe.title,
                    content=probe.snippet,
                    rank=1,
                    provider=serper.PROVIDER,
                )
                apply_score(candidate, self.context)
                found.append(candidate)
                self.emit("probe:item", candidate.to_dict())
            self.emit("probe:done", {"count": len(found)})
        except Exception as exc:  # noqa: BLE001
            logger.warning("Directory probes failed: %s", exc)
            self.emit("probe:error", {"error": str(exc) or "probe_failed"})
        return found

    def _run_primary(self, queries: List[str]) -> Tuple[List[Candidate], int]:
        session = self._branch_session()

        def search(query: str) -> SearchPage:
            return self.primary_search(query, self.settings, session=session, cancel=self.cancel)

        items = self._run_queries(queries, self.provider, search, pause=True)
        return items, len(items)

    def _run_fallback(self, queries: List[str], primary_count: int) -> List[Candidate]:
        self.emit(
            "meta",
            {
                "provider": serper.PROVIDER,
                "reason": "fallback_threshold",
                "threshold": self.settings.serper_min_results,
                "searxItems": primary_count,
            },
        )
        fallback_queries = self._with_priority(queries)[:MAX_FALLBACK_QUERIES]
        return self._run_queries(fallback_queries, serper.PROVIDER, self._commercial(self.settings.per_query_limit))

    def _run_parallel_enrichment(self, queries: List[str]) -> List[Candidate]:
        limit = self.settings.serper_parallel_max_queries
        self.emit("meta", {"provider": serper.PROVIDER, "reason": "parallel", "maxQueries": limit})
        items = self._run_queries(
            self._with_priority(queries)[:limit],
            serper.PROVIDER,
            self._commercial(self.settings.per_query_limit),
            mode="parallel",
        )
        self.emit("serper:parallel:done", {"queries": limit})
        return items

    def _run_forced_social(self) -> List[Candidate]:
        fb_queries = build_facebook_queries(self.reference)[: self.settings.social_serper_max_query_count]
        self.emit(
            "meta",
            {"provider": serper.PROVIDER, "reason": "forced_social", "host": "facebook.com", "count": len(fb_queries)},
        )
        items = self._run_queries(
            fb_queries,
            serper.PROVIDER,
            self._commercial(self.settings.social_serper_per_query),
            mode="forced_social",
        )
        self.emit("serper:forced_social:done", {"host": "facebook.com"})
        return items

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _guarded(self, mode: str, fn: Callable[..., List[Candidate]], *args: Any) -> List[Candidate]:
        try:
            return fn(*args)
        except Exception:  # noqa: BLE001
            logger.exception("Serper %s branch failed", mode)
            return []

    def _branch_session(self) -> requests.Session:
        if self._session is not None:
            return self._session
        if self._owned_session is None:
            self._owned_session = build_session()
        return self._owned_session

    def _commercial(self, num: int) -> Callable[[str], SearchPage]:
        session = self._branch_session()

        def search(query: str) -> SearchPage:
            return self.commercial_search(query, self.settings, num=num, session=session, cancel=self.cancel)

        return search

    def _with_priority(self, queries: List[str]) -> List[str]:
        priority = priority_social_query(self.reference)
        ordered = ([priority] if priority else []) + list(queries)
        return list(dict.fromkeys(ordered))

    def _pause(self) -> None:
        if self.settings.query_delay_ms > 0:
            self.cancel.wait(self.settings.query_delay_ms / 1000.0)

    def _run_queries(
        self,
        queries: List[str],
        provider: str,
        search: Callable[[str], SearchPage],
        *,
        mode: Optional[str] = None,
        pause: bool = False,
    ) -> List[Candidate]:
        """Run queries sequentially; a failing query is reported and skipped."""
        items: List[Candidate] = []
        extra = {"mode": mode} if mode else {}
        for query in queries:
            if self.cancelled:
                break
            self.emit("query:start", {"provider": provider, "q": query, **extra})
            try:
                page = search(query)
            except FetchError as exc:
                logger.warning("%s query failed (%s): %s", provider, exc.kind, query)
                payload: Dict[str, Any] = {"provider": provider, "q": query, "error": str(exc) or exc.kind, **extra}
                if exc.status is not None:
                    payload["status"] = exc.status
                self.emit("query:error", payload)
            else:
                emitted, bad_url, excluded_own = self._collect(page, provider, items)
                done: Dict[str, Any] = {
                    "provider": provider,
                    "q": query,
                    "elapsed": page.elapsed_ms,
                    "count": emitted,
                    "total": len(page.hits),
                    "badUrl": bad_url,
                    "excludedOwn": excluded_own,
                    **extra,
                }
                if page.unresponsive_engines:
                    done["unresponsive_engines"] = page.unresponsive_engines
                self.emit("query:done", done)
            if pause:
                self._pause()
        return items

    def _collect(self, page: SearchPage, provider: str, sink: List[Candidate]) -> Tuple[int, int, int]:
        emitted = bad_url = excluded_own = 0
        for rank, hit in enumerate(page.hits, start=1):
            if not hit.url or not isinstance(hit.url, str):
                bad_url += 1
                continue
            normalized = normalize_url(hit.url)
            host = host_of(hit.url)
            if not normalized or not host:
                bad_url += 1
                continue
            if self.website_normalized and normalized == self.website_normalized and not self.include_website:
                excluded_own += 1
                continue
            candidate = Candidate(
                url=hit.url,
                host=host,
                source_type=classify_host(host),
                title=hit.title,
                content=hit.content,
                rank=rank,
                provider=provider,
            )
            try:
                apply_score(candidate, self.context)
            except (AttributeError, TypeError, ValueError) as exc:
                logger.warning("%s result %s skipped: %s", provider, hit.url, exc)
                bad_url += 1
                continue
            sink.append(candidate)
            self.emit("item", candidate.to_dict())
            emitted += 1
        return emitted, bad_url, excluded_own
