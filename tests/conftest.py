import sys
from dataclasses import replace
from pathlib import Path

import pytest

# Ensure the `napaudit` package is importable when running pytest from the repo root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from napaudit.core.config import Settings  # noqa: E402
from napaudit.core.db import NotFoundError  # noqa: E402
from napaudit.core.models import ReferenceRecord  # noqa: E402


@pytest.fixture
def settings():
    """Settings with no delays and no commercial backend."""
    return replace(Settings(), query_delay_ms=0, scrape_delay_ms=0, serper_api_key="")


@pytest.fixture
def reference():
    return ReferenceRecord(
        business_id="biz-1",
        name="Shadow Plumbing",
        address="100 Pipe Rd, Sydney NSW 2000",
        phone="+61 400 111 111",
        website="https://shadowplumbing.com.au/",
        socials={"facebook": "https://www.facebook.com/shadowplumbing?ref=bookmarks"},
    )


class FakeStore:
    """In-memory stand-in for ``napaudit.core.db``."""

    def __init__(self, reference=None, audits=None):
        self.reference = reference
        self.audits = dict(audits or {})
        self.profile = {}
        self.observation_batches = []
        self.snapshots = []
        self.opportunities = []
        self.existing_opportunities = set()
        self.socials_last = []
        self.discovery_snapshot = None
        self.insert_failures = []
        self.updated_socials = []
        self.updated_websites = []

    def resolve_business_id(self, audit_id):
        if audit_id not in self.audits:
            raise NotFoundError(f"Audit not found: {audit_id}")
        return self.audits[audit_id]

    def get_reference_record(self, business_id):
        if self.reference is None or business_id != self.reference.business_id:
            raise NotFoundError(f"Business profile not found: {business_id}")
        return self.reference

    def get_profile(self, business_id):
        if self.reference is None or business_id != self.reference.business_id:
            raise NotFoundError(f"Business profile not found: {business_id}")
        return {"id": "profile-1", "website": self.reference.website, "socials": dict(self.reference.socials), **self.profile}

    def insert_observations(self, rows):
        if self.insert_failures:
            raise self.insert_failures.pop(0)
        self.observation_batches.append(list(rows))

    def list_observations(self, audit_id):
        return [row for batch in self.observation_batches for row in batch if row["audit_id"] == audit_id]

    def insert_snapshot(self, business_id, audit_id, source, data):
        self.snapshots.append((business_id, audit_id, source, data))

    def latest_discovery_snapshot(self, audit_id):
        return self.discovery_snapshot

    def opportunity_exists(self, audit_id, directory_key):
        return (audit_id, directory_key) in self.existing_opportunities

    def insert_opportunity(self, audit_id, opportunity):
        self.opportunities.append((audit_id, opportunity))
        self.existing_opportunities.add((audit_id, opportunity.directory_key))

    def merge_socials_last(self, business_id, socials_last):
        self.socials_last.append((business_id, dict(socials_last)))

    def update_socials(self, business_id, socials):
        self.updated_socials.append((business_id, dict(socials)))

    def update_website(self, business_id, url):
        previous = self.reference.website if self.reference else None
        self.updated_websites.append((business_id, url))
        return previous


@pytest.fixture
def fake_store(reference):
    return FakeStore(reference=reference, audits={"audit-1": reference.business_id})
