import json

import pytest

from napaudit.core.db import NotFoundError
from napaudit.core.models import Candidate
from napaudit.discovery import stream
from napaudit.discovery.aggregate import aggregate
from napaudit.discovery.retrieval import DiscoveryResult


class DummyRunner:
    """Replays a fixed event sequence instead of calling search backends."""

    fail_with = None
    instances = []

    def __init__(self, reference, settings, *, emit, cancel=None, session=None, include_website=False):
        self.reference = reference
        self.settings = settings
        self.emit = emit
        self.cancel = cancel
        self.include_website = include_website
        DummyRunner.instances.append(self)

    def run(self):
        self.emit("meta", {"provider": "searxng", "queries": ["q1"]})
        if self.fail_with is not None:
            raise self.fail_with
        candidate = Candidate(
            url="https://www.yelp.com.au/biz/shadow", host="yelp.com.au", source_type="directory", score=50, rank=1
        )
        self.emit("item", candidate.to_dict())
        outcome = aggregate([candidate], self.settings)
        return DiscoveryResult(provider="searxng", queries=["q1"], candidates=[candidate], outcome=outcome)


class FailingRunner(DummyRunner):
    fail_with = RuntimeError("searx exploded")


@pytest.fixture(autouse=True)
def reset_instances():
    DummyRunner.instances = []
    yield


def test_format_sse_frames_named_events():
    frame = stream.format_sse(stream.DiscoveryEvent("item", {"url": "https://a.com.au"}))

    assert frame.startswith("event: item\ndata: ")
    assert frame.endswith("\n\n")
    assert json.loads(frame.split("data: ", 1)[1]) == {"url": "https://a.com.au"}


def test_resolve_reference_requires_an_identifier(fake_store):
    with pytest.raises(ValueError):
        stream.resolve_reference(fake_store, None, None)
    with pytest.raises(NotFoundError):
        stream.resolve_reference(fake_store, None, "unknown-audit")

    business_id, reference = stream.resolve_reference(fake_store, None, "audit-1")
    assert business_id == "biz-1"
    assert reference.name == "Shadow Plumbing"


def test_collect_discovery_saves_snapshot_and_returns_urls(settings, fake_store):
    payload = stream.collect_discovery(settings, fake_store, audit_id="audit-1", runner_factory=DummyRunner)

    assert payload["provider"] == "searxng"
    assert [row["url"] for row in payload["urls"]] == ["https://www.yelp.com.au"]
    business_id, audit_id, source, data = fake_store.snapshots[0]
    assert (business_id, audit_id, source) == ("biz-1", "audit-1", "manual")
    assert data["discovery"]["urls"] == payload["urls"]
    assert data["discovery"]["queries"] == ["q1"]


def test_collect_discovery_without_audit_skips_snapshot(settings, fake_store):
    stream.collect_discovery(settings, fake_store, business_id="biz-1", runner_factory=DummyRunner)

    assert fake_store.snapshots == []


def test_batch_and_stream_agree_on_selected_urls(settings, fake_store, reference):
    batch = stream.collect_discovery(settings, fake_store, business_id="biz-1", runner_factory=DummyRunner)
    events = list(stream.stream_discovery(reference, settings, fake_store, business_id="biz-1", runner_factory=DummyRunner))

    names = [event.name for event in events]
    assert names[0] == "meta"
    assert names[-1] == "done"
    assert events[-1].data == {"total": len(batch["urls"])}


def test_fatal_event_closes_the_stream(settings, fake_store, reference):
    events = list(
        stream.stream_discovery(reference, settings, fake_store, business_id="biz-1", runner_factory=FailingRunner)
    )

    assert [event.name for event in events] == ["meta", "fatal"]
    assert events[-1].data == {"error": "searx exploded"}


def test_batch_raises_pipeline_error_on_fatal(settings, fake_store):
    with pytest.raises(stream.PipelineError, match="searx exploded"):
        stream.collect_discovery(settings, fake_store, business_id="biz-1", runner_factory=FailingRunner)


def test_snapshot_failure_becomes_fatal(settings, fake_store, reference):
    def broken_snapshot(*args):
        raise RuntimeError("db down")

    fake_store.insert_snapshot = broken_snapshot
    events = list(
        stream.stream_discovery(
            reference, settings, fake_store, business_id="biz-1", audit_id="audit-1", runner_factory=DummyRunner
        )
    )

    assert events[-1].name == "fatal"
    assert "done" not in [event.name for event in events]


def test_closing_stream_sets_cancel(settings, fake_store, reference):
    generator = stream.stream_discovery(reference, settings, fake_store, business_id="biz-1", runner_factory=DummyRunner)

    first = next(generator)
    generator.close()

    assert first.name == "meta"
    assert DummyRunner.instances[0].cancel.is_set()
