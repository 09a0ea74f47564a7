import json
from dataclasses import replace
from urllib.parse import parse_qs, urlparse

import pytest

from napaudit.core import http
from napaudit.vendors import browser_worker, google_places, searxng, serper


class DummyResponse:
    def __init__(self, payload, status_code=200):
        self.status_code = status_code
        self._body = json.dumps(payload).encode("utf-8") if not isinstance(payload, bytes) else payload
        self.headers = {"Content-Type": "application/json"}
        self.url = "https://vendor.local/"
        self.encoding = "utf-8"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def iter_content(self, chunk_size=1):
        yield self._body


class DummySession:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return DummyResponse(self.payload, self.status_code)


def test_searxng_search_parses_results(settings):
    session = DummySession(
        {
            "results": [
                {"url": "https://www.yelp.com.au/biz/shadow", "title": "Shadow", "content": "Plumber"},
                "junk",
            ],
            "unresponsive_engines": [["bing", "timeout"]],
        }
    )

    page = searxng.search('"Shadow Plumbing"', settings, session=session)

    assert page.provider == "searxng"
    assert [hit.url for hit in page.hits] == ["https://www.yelp.com.au/biz/shadow", None]
    assert page.unresponsive_engines == [["bing", "timeout"]]
    method, url, _ = session.calls[0]
    query = parse_qs(urlparse(url).query)
    assert method == "GET"
    assert query["format"] == ["json"]
    assert query["q"] == ['"Shadow Plumbing"']
    assert query["engines"] == [settings.searxng_engines]


def test_searxng_rejects_blank_query(settings):
    with pytest.raises(ValueError):
        searxng.build_search_params("  ", settings)


def test_searxng_http_error_raises_fetch_error(settings):
    with pytest.raises(http.HttpStatusError) as excinfo:
        searxng.search("q", settings, session=DummySession({"error": "down"}, status_code=502))

    assert excinfo.value.status == 502


def test_searxng_stats(settings):
    stats = searxng.fetch_stats(settings, session=DummySession({"engines": {"bing": {"errors": 0}}}))

    assert stats["engines"]["bing"]["errors"] == 0


def test_serper_posts_body_and_parses_organic(settings):
    keyed = replace(settings, serper_api_key="secret")
    session = DummySession(
        {"organic": [{"link": "https://www.facebook.com/shadowplumbing", "title": " Shadow ", "snippet": "Sydney"}, {"link": 5}]}
    )

    page = serper.search("shadow plumbing", keyed, num=5, session=session)

    assert [hit.url for hit in page.hits] == ["https://www.facebook.com/shadowplumbing", None]
    assert page.hits[0].title == "Shadow"
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", serper.SERPER_URL)
    assert kwargs["json"]["num"] == 5
    assert kwargs["json"]["gl"] == "au"
    assert kwargs["headers"]["X-API-KEY"] == "secret"


def test_serper_requires_key(settings):
    with pytest.raises(RuntimeError):
        serper.search("q", settings, session=DummySession({}))


def test_serper_parse_organic_handles_missing_list():
    assert serper.parse_organic({"answerBox": {}}) == []
    assert serper.parse_organic(None) == []


def test_browser_worker_requires_results_list(settings):
    configured = replace(settings, browser_worker_url="http://worker.local")

    with pytest.raises(http.MalformedPayloadError):
        browser_worker.search("q", configured, session=DummySession({"items": []}))

    page = browser_worker.search("shadow plumbing", configured, session=DummySession({"results": [{"url": "https://a.com.au"}]}))
    assert page.target == "http://worker.local/search?q=shadow%20plumbing"
    assert page.hits[0].url == "https://a.com.au"


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://maps.google.com/?cid=123456", "123456"),
        ("https://www.google.com/maps/place/Shadow/data=!4m2!3m1!1s0x6b12ae:0x1a2b3c", "0x1a2b3c"),
        ("https://www.google.com/maps/search/shadow", None),
        (None, None),
    ],
)
def test_extract_cid(url, expected):
    assert browser_worker.extract_cid(url) == expected


def test_google_places_text_search_checks_status():
    ok = google_places.text_search("shadow", "key", session=DummySession({"status": "OK", "results": [{"name": "Shadow"}]}))
    assert ok["results"][0]["name"] == "Shadow"

    with pytest.raises(google_places.GooglePlacesError, match="denied"):
        google_places.text_search(
            "shadow", "key", session=DummySession({"status": "REQUEST_DENIED", "error_message": "denied"})
        )


def test_google_places_details_returns_result():
    session = DummySession({"status": "OK", "result": {"website": "https://shadowplumbing.com.au"}})

    details = google_places.place_details("pid", "key", session=session)

    assert details == {"website": "https://shadowplumbing.com.au"}
    assert "place_id=pid" in session.calls[0][1]


def test_non_string_titles_and_content_are_dropped(settings):
    rows = {"results": [{"url": "https://example.com.au/a", "title": 5, "content": {"text": "x"}}]}
    configured = replace(settings, browser_worker_url="http://worker.local")

    searx_hit = searxng.search("shadow", settings, session=DummySession(rows)).hits[0]
    worker_hit = browser_worker.search("shadow", configured, session=DummySession(rows)).hits[0]

    for hit in (searx_hit, worker_hit):
        assert hit.url == "https://example.com.au/a"
        assert hit.title is None
        assert hit.content is None
