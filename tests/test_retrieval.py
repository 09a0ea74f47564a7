import threading
from dataclasses import replace

from napaudit.core import http
from napaudit.core.models import ReferenceRecord, SearchHit, SearchPage
from napaudit.discovery.probes import ProbeResult
from napaudit.discovery.retrieval import DiscoveryRunner


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, name, data):
        self.events.append((name, data))

    def names(self):
        return [name for name, _ in self.events]

    def of(self, name):
        return [data for event, data in self.events if event == name]


class DummySearch:
    def __init__(self, pages=None, fail_on=()):
        self.pages = pages or {}
        self.fail_on = set(fail_on)
        self.queries = []

    def __call__(self, query, settings, **kwargs):
        self.queries.append(query)
        if query in self.fail_on:
            raise http.HttpStatusError("https://search.local/", "HTTP 502", status=502)
        return SearchPage(provider="fake", query=query, hits=list(self.pages.get(query, self.pages.get("*", []))))


def _no_probes(*args, **kwargs):
    return []


def test_primary_hits_are_scored_and_own_website_excluded(settings, reference):
    recorder = Recorder()
    search = DummySearch(
        pages={
            "*": [
                SearchHit("https://www.yelp.com.au/biz/shadow-plumbing", "Shadow Plumbing - Sydney", "Call 0400 111 111"),
                SearchHit("https://shadowplumbing.com.au", "Shadow Plumbing", "Home"),
                SearchHit(None, "broken"),
            ]
        }
    )

    result = DiscoveryRunner(
        reference, settings, emit=recorder, primary_search=search, probe_runner=_no_probes
    ).run()

    assert recorder.names()[0] == "meta"
    assert recorder.of("meta")[0]["queries"] == result.queries
    assert len(search.queries) == len(result.queries)
    done = recorder.of("query:done")[0]
    assert (done["count"], done["badUrl"], done["excludedOwn"], done["total"]) == (1, 1, 1, 3)
    assert all(candidate.host == "yelp.com.au" for candidate in result.candidates)
    assert [group.key for group in result.outcome.selected] == ["https://www.yelp.com.au"]
    assert recorder.names()[-2:] == ["aggregate:pre", "aggregate:post"]


def test_include_website_keeps_own_site(settings, reference):
    search = DummySearch(pages={"*": [SearchHit("https://shadowplumbing.com.au/", "Shadow Plumbing", "Sydney")]})

    result = DiscoveryRunner(
        reference, settings, primary_search=search, probe_runner=_no_probes, include_website=True
    ).run()

    assert any(candidate.host == "shadowplumbing.com.au" for candidate in result.candidates)


def test_failing_query_is_reported_and_skipped(settings, reference):
    recorder = Recorder()
    first = '"Shadow Plumbing" 61400111111'
    search = DummySearch(fail_on={first})

    result = DiscoveryRunner(reference, settings, emit=recorder, primary_search=search, probe_runner=_no_probes).run()

    error = recorder.of("query:error")[0]
    assert error["q"] == first
    assert error["status"] == 502
    assert len(recorder.of("query:done")) == len(result.queries) - 1


def test_empty_reference_yields_no_queries_or_candidates(settings):
    search = DummySearch()

    result = DiscoveryRunner(ReferenceRecord(), settings, primary_search=search, probe_runner=_no_probes).run()

    assert result.queries == []
    assert result.candidates == []
    assert result.outcome.selected == []
    assert search.queries == []


def test_commercial_fallback_runs_priority_query_first(settings, reference):
    enabled = replace(settings, serper_api_key="key", serper_min_results=3)
    recorder = Recorder()
    primary = DummySearch()
    commercial = DummySearch(
        pages={"*": [SearchHit("https://www.facebook.com/shadowplumbing", "Shadow Plumbing | Sydney", "Plumber")]}
    )

    result = DiscoveryRunner(
        reference,
        enabled,
        emit=recorder,
        primary_search=primary,
        commercial_search=commercial,
        probe_runner=_no_probes,
    ).run()

    assert commercial.queries[0] == 'site:facebook.com "Shadow Plumbing" Sydney NSW 2000'
    assert len(commercial.queries) == 2
    fallback_meta = [data for data in recorder.of("meta") if data.get("reason") == "fallback_threshold"]
    assert fallback_meta[0]["searxItems"] == 0
    assert {candidate.provider for candidate in result.candidates} == {"serper"}


def test_probe_results_become_candidates(settings, reference):
    recorder = Recorder()

    def probes(*args, **kwargs):
        return [ProbeResult("https://www.yellowpages.com.au/nsw/sydney/shadow-plumbing", "yellowpages.com.au", "Shadow Plumbing")]

    result = DiscoveryRunner(reference, settings, emit=recorder, primary_search=DummySearch(), probe_runner=probes).run()

    assert recorder.of("probe:done") == [{"count": 1}]
    probe_item = recorder.of("probe:item")[0]
    assert probe_item["provider"] == "serper"
    assert probe_item["rank"] == 1
    assert result.candidates[0].source_type == "directory"


def test_probe_failure_does_not_stop_discovery(settings, reference):
    recorder = Recorder()

    def broken(*args, **kwargs):
        raise RuntimeError("probe exploded")

    DiscoveryRunner(reference, settings, emit=recorder, primary_search=DummySearch(), probe_runner=broken).run()

    assert recorder.of("probe:error") == [{"error": "probe exploded"}]
    assert "aggregate:post" in recorder.names()


def test_cancelled_run_issues_no_queries(settings, reference):
    cancel = threading.Event()
    cancel.set()
    search = DummySearch()

    DiscoveryRunner(reference, settings, primary_search=search, probe_runner=_no_probes, cancel=cancel).run()

    assert search.queries == []


def test_mixed_case_reference_website_is_still_excluded(settings, reference):
    shouty = replace(reference, website="https://ShadowPlumbing.com.au")
    recorder = Recorder()
    search = DummySearch(pages={"*": [SearchHit("https://shadowplumbing.com.au/", "Shadow Plumbing", "Sydney")]})

    result = DiscoveryRunner(shouty, settings, emit=recorder, primary_search=search, probe_runner=_no_probes).run()

    assert recorder.of("query:done")[0]["excludedOwn"] == 1
    assert result.candidates == []


def test_non_string_result_fields_do_not_abort_the_run(settings, reference):
    recorder = Recorder()
    search = DummySearch(
        pages={
            "*": [
                SearchHit("https://example.com.au/a", 5, ["not", "text"]),
                SearchHit("https://www.yelp.com.au/biz/shadow-plumbing", "Shadow Plumbing - Sydney", "Call 0400 111 111"),
            ]
        }
    )

    result = DiscoveryRunner(reference, settings, emit=recorder, primary_search=search, probe_runner=_no_probes).run()

    done = recorder.of("query:done")
    assert len(done) == len(result.queries)
    assert (done[0]["count"], done[0]["badUrl"]) == (1, 1)
    assert {candidate.host for candidate in result.candidates} == {"yelp.com.au"}
    assert "aggregate:post" in recorder.names()


def test_parallel_and_forced_social_branches_reach_the_aggregator(settings, reference):
    enabled = replace(
        settings,
        serper_api_key="key",
        serper_min_results=0,
        serper_parallel=True,
        serper_parallel_max_queries=1,
        social_serper_force=True,
        social_serper_max_query_count=1,
    )
    recorder = Recorder()
    commercial = DummySearch(
        pages={"*": [SearchHit("https://www.facebook.com/shadowplumbing", "Shadow Plumbing | Sydney", "Call 0400 111 111")]}
    )

    result = DiscoveryRunner(
        reference,
        enabled,
        emit=recorder,
        primary_search=DummySearch(),
        commercial_search=commercial,
        probe_runner=_no_probes,
    ).run()

    assert len(commercial.queries) == 2
    assert "serper:parallel:done" in recorder.names()
    assert "serper:forced_social:done" in recorder.names()
    modes = {data["mode"] for data in recorder.of("query:done") if "mode" in data}
    assert modes == {"parallel", "forced_social"}
    assert len(result.candidates) == 2
    assert [group.key for group in result.outcome.selected] == ["https://www.facebook.com/shadowplumbing"]
    assert result.outcome.selected[0].hits == 2
    assert recorder.names().index("serper:parallel:done") < recorder.names().index("aggregate:pre")
