import json

import pytest

from napaudit.extraction.scrape import ScrapeResult
from napaudit.jobs import run_audit


class DummySettings:
    def __init__(self):
        self.database_url = "postgres://"
        self.worker_port = 9000


@pytest.fixture(autouse=True)
def no_database(monkeypatch):
    monkeypatch.setattr(run_audit, "get_settings", lambda: DummySettings())
    monkeypatch.setattr(run_audit.db, "init_pool", lambda settings=None: None)


def test_parser_requires_subcommand():
    with pytest.raises(SystemExit):
        run_audit.build_parser().parse_args([])


def test_scrape_requires_audit_id():
    with pytest.raises(SystemExit):
        run_audit.build_parser().parse_args(["scrape", "--business-id", "biz-1"])


def test_scrape_collects_repeated_urls():
    args = run_audit.build_parser().parse_args(
        ["scrape", "--audit-id", "audit-1", "--url", "https://a.com.au", "--url", "https://b.com.au"]
    )

    assert args.urls == ["https://a.com.au", "https://b.com.au"]
    assert args.use_discovery is False


def test_discover_prints_json(monkeypatch, capsys):
    captured = {}

    def fake_collect(settings, store, **kwargs):
        captured.update(kwargs)
        return {"provider": "searxng", "urls": []}

    monkeypatch.setattr(run_audit, "collect_discovery", fake_collect)

    run_audit.main(["discover", "--audit-id", "audit-1", "--include-website"])

    assert json.loads(capsys.readouterr().out) == {"provider": "searxng", "urls": []}
    assert captured == {"business_id": None, "audit_id": "audit-1", "include_website": True}


def test_scrape_job_passes_flags(monkeypatch):
    captured = {}

    def fake_run_scrape(settings, store, **kwargs):
        captured.update(kwargs)
        return ScrapeResult()

    monkeypatch.setattr(run_audit, "run_scrape", fake_run_scrape)

    data = run_audit.run_scrape_job(business_id=None, audit_id="audit-1", urls=None, use_discovery=True)

    assert data == {"observations": [], "socialsLast": {}}
    assert captured["use_discovery"] is True


def test_report_job_reads_store(monkeypatch, reference):
    monkeypatch.setattr(run_audit.db, "get_reference_record", lambda business_id: reference)
    monkeypatch.setattr(run_audit.db, "list_observations", lambda audit_id: [])

    report = run_audit.run_report(business_id="biz-1", audit_id="audit-1", include_maps=False)

    assert report["scoring"]["overallScore"] == 0
    assert report["golden"]["phone"] == "+61 400 111 111"
