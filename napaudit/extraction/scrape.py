"""Scrape discovered URLs, score each page against the reference and persist the results."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import requests

from napaudit.core.config import Settings
from napaudit.core.db import PersistenceError
from napaudit.core.models import ListingOpportunity, Observation, ReferenceRecord
from napaudit.core.reference import detect_social_key
from napaudit.core.urls import host_of, normalize_url, strip_url
from napaudit.discovery.directories import classify_host
from napaudit.etl.transform import observation_to_row
from napaudit.extraction.nap import Nap, score_match
from napaudit.extraction.page import PageExtractor, PageFetchFailure, parse_timestamp
from napaudit.reporting.report import derive_opportunities

logger = logging.getLogger(__name__)

NO_MATCH_FLAGS = {"name": False, "address": False, "phone": False}


@dataclass
class ScrapeResult:
    observations: List[Observation] = field(default_factory=list)
    socials_last: Dict[str, str] = field(default_factory=dict)
    opportunities: List[ListingOpportunity] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "observations": [observation.to_dict() for observation in self.observations],
            "socialsLast": dict(self.socials_last),
        }


def build_targets(
    urls: Iterable[str],
    reference: ReferenceRecord,
    *,
    explicit: bool,
    max_urls: int,
) -> List[str]:
    """Merge candidate URLs with the reference socials, dedupe and cap.

    The reference website is only scraped when the caller listed it
    explicitly; discovery snapshots never pull it in on their own.
    """
    candidates = [url for url in urls if isinstance(url, str)]
    explicit_keys = {normalize_url(url) for url in candidates} if explicit else set()
    for social in (reference.socials or {}).values():
        stripped = strip_url(social) if isinstance(social, str) else None
        if stripped:
            candidates.append(stripped)

    website_key = normalize_url(reference.website)
    seen = set()
    targets: List[str] = []
    for url in candidates:
        key = normalize_url(url)
        if not key or key in seen:
            continue
        if website_key and key == website_key and key not in explicit_keys:
            continue
        seen.add(key)
        targets.append(url)
    return targets[:max_urls]


class ScrapeRunner:
    """Sequentially scrape a target list for one audit.

    Observation rows are written in batches of ``settings.flush_every``. A
    batch that fails mid-run stays buffered for the next flush; the final
    flush raises :class:`PersistenceError`.
    """

    def __init__(
        self,
        reference: ReferenceRecord,
        audit_id: str,
        settings: Settings,
        store: Any,
        *,
        business_id: Optional[str] = None,
        extractor: Optional[PageExtractor] = None,
        session: Optional[requests.Session] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.reference = reference
        self.audit_id = audit_id
        self.business_id = business_id or reference.business_id
        self.settings = settings
        self.store = store
        self._owns_extractor = extractor is None
        self.extractor = extractor or PageExtractor(settings, session=session)
        self.cancel = cancel or threading.Event()
        self._buffer: List[Dict[str, Any]] = []

    def run(self, targets: List[str]) -> ScrapeResult:
        try:
            return self._run(targets)
        finally:
            if self._owns_extractor:
                self.extractor.close()

    def _run(self, targets: List[str]) -> ScrapeResult:
        result = ScrapeResult()
        for index, url in enumerate(targets):
            if self.cancel.is_set():
                result.cancelled = True
                logger.info("Scrape for audit %s cancelled after %s of %s URLs", self.audit_id, index, len(targets))
                break
            observation = self._observe(url, result.socials_last)
            result.observations.append(observation)
            self._buffer.append(observation_to_row(observation, self.audit_id, self.business_id))
            if len(self._buffer) >= self.settings.flush_every:
                self._flush(final=False)
            if self.settings.scrape_delay_ms > 0:
                self.cancel.wait(self.settings.scrape_delay_ms / 1000.0)

        self._flush(final=True)
        result.opportunities = derive_opportunities(result.observations)
        self._record_opportunities(result.opportunities)
        self._record_snapshot(result)
        if result.socials_last:
            self._best_effort("merge socials_last", self.store.merge_socials_last, self.business_id, result.socials_last)
        logger.info(
            "Scraped %s URLs for audit %s (%s opportunities)",
            len(result.observations),
            self.audit_id,
            len(result.opportunities),
        )
        return result

    def _observe(self, url: str, socials_last: Dict[str, str]) -> Observation:
        host = host_of(url)
        source_type = classify_host(host) if host else "web"
        try:
            page = self.extractor.extract(url, cancel=self.cancel)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Extraction failed for %s: %s", url, exc)
            page = PageFetchFailure(url=url, error=str(exc))

        if isinstance(page, PageFetchFailure):
            return Observation(
                source_url=url,
                source_type=source_type,
                match_score=0,
                mismatch={"error": page.error or "fetch_failed", "flags": dict(NO_MATCH_FLAGS)},
            )

        name, address, phone = page.best_nap()
        match = score_match(self.reference, Nap(name, address, phone), country_code=self.settings.country_code)
        last_post_at = None
        if source_type == "social":
            last_post_at = page.last_post_at
            self._track_latest_post(url, last_post_at, socials_last)
        return Observation(
            source_url=url,
            source_type=source_type,
            name=name,
            address=address,
            phone=phone,
            match_score=match.score,
            mismatch=match.mismatch_with_flags(),
            last_post_at=last_post_at,
        )

    @staticmethod
    def _track_latest_post(url: str, last_post_at: Optional[str], socials_last: Dict[str, str]) -> None:
        key, _ = detect_social_key(url)
        stamp = parse_timestamp(last_post_at)
        if not key or stamp is None:
            return
        previous = parse_timestamp(socials_last.get(key))
        if previous is None or stamp > previous:
            socials_last[key] = last_post_at

    def _flush(self, *, final: bool) -> None:
        if not self._buffer:
            return
        batch = list(self._buffer)
        try:
            self.store.insert_observations(batch)
        except PersistenceError as exc:
            if final:
                logger.exception("Final observation flush failed for audit %s", self.audit_id)
                raise
            logger.warning("Observation flush failed for audit %s, keeping %s rows buffered: %s", self.audit_id, len(batch), exc)
            return
        del self._buffer[: len(batch)]

    def _record_opportunities(self, opportunities: List[ListingOpportunity]) -> None:
        for opportunity in opportunities:
            try:
                if self.store.opportunity_exists(self.audit_id, opportunity.directory_key):
                    continue
                self.store.insert_opportunity(self.audit_id, opportunity)
            except PersistenceError as exc:
                logger.warning("Could not record opportunity %s: %s", opportunity.directory_key, exc)

    def _record_snapshot(self, result: ScrapeResult) -> None:
        payload = {
            "scrape": {
                "observations": [observation.to_dict() for observation in result.observations],
                "socialsLast": dict(result.socials_last),
                "capturedAt": datetime.now(timezone.utc).isoformat(),
            }
        }
        self._best_effort("store scrape snapshot", self.store.insert_snapshot, self.business_id, self.audit_id, "manual", payload)

    def _best_effort(self, label: str, fn, *args: Any) -> None:
        try:
            fn(*args)
        except PersistenceError as exc:
            logger.warning("Failed to %s for audit %s: %s", label, self.audit_id, exc)


def run_scrape(
    settings: Settings,
    store: Any,
    *,
    business_id: Optional[str] = None,
    audit_id: Optional[str] = None,
    urls: Optional[List[str]] = None,
    use_discovery: bool = False,
    session: Optional[requests.Session] = None,
    cancel: Optional[threading.Event] = None,
    extractor: Optional[PageExtractor] = None,
) -> ScrapeResult:
    """Resolve the audit, assemble the target list and scrape it."""
    if not business_id and audit_id:
        business_id = store.resolve_business_id(audit_id)
    if not business_id or not audit_id:
        raise ValueError("Missing businessId or auditId")
    reference = store.get_reference_record(business_id)

    explicit = list(urls or [])
    source_urls = explicit
    if use_discovery and not explicit:
        snapshot = store.latest_discovery_snapshot(audit_id) or {}
        source_urls = [item.get("url") for item in snapshot.get("urls") or [] if isinstance(item, dict)]

    targets = build_targets(source_urls, reference, explicit=bool(explicit), max_urls=settings.scrape_max_urls)
    logger.info("Scraping %s URLs for audit %s", len(targets), audit_id)
    runner = ScrapeRunner(
        reference,
        audit_id,
        settings,
        store,
        business_id=business_id,
        extractor=extractor,
        session=session,
        cancel=cancel,
    )
    return runner.run(targets)
