from dataclasses import replace

import pytest

from napaudit.core import http
from napaudit.core.models import SearchHit, SearchPage
from napaudit.discovery import places
from napaudit.vendors import google_places


def test_search_places_requires_some_input(settings):
    with pytest.raises(ValueError):
        places.search_places(" ", None, "", settings)


def test_worker_is_tried_first(monkeypatch, settings):
    configured = replace(settings, browser_worker_url="http://worker.local", google_api_key="key")
    seen = []

    def fake_worker(query, settings, session=None):
        seen.append(query)
        return SearchPage(
            provider="worker",
            query=query,
            hits=[SearchHit("https://maps.google.com/?cid=42", "Shadow Plumbing"), SearchHit(None)],
        )

    monkeypatch.setattr(places.browser_worker, "search", fake_worker)

    candidates = places.search_places("Shadow Plumbing", "Sydney", None, configured)

    assert seen == ["Shadow Plumbing Sydney"]
    assert candidates[0]["cid"] == "42"
    assert candidates[0]["position"] == 1
    assert candidates[1]["title"] == "Shadow Plumbing Sydney"


def test_failing_source_falls_through_to_google(monkeypatch, settings):
    configured = replace(settings, browser_worker_url="http://worker.local", google_api_key="key")

    def broken_worker(query, settings, session=None):
        raise http.NetworkError("http://worker.local", "refused")

    def fake_text_search(query, api_key, session=None):
        return {
            "status": "OK",
            "results": [
                {
                    "name": "Shadow Plumbing",
                    "formatted_address": "100 Pipe Rd, Sydney NSW 2000",
                    "types": ["point_of_interest", "plumber"],
                    "place_id": "pid-1",
                }
            ],
        }

    monkeypatch.setattr(places.browser_worker, "search", broken_worker)
    monkeypatch.setattr(places.google_places, "text_search", fake_text_search)

    candidates = places.search_places("Shadow Plumbing", None, None, configured)

    assert candidates == [
        {
            "position": 1,
            "title": "Shadow Plumbing",
            "address": "100 Pipe Rd, Sydney NSW 2000",
            "website": None,
            "phoneNumber": None,
            "category": "plumber",
            "rating": None,
            "ratingCount": None,
            "placeId": "pid-1",
            "cid": None,
            "sourceUrl": None,
        }
    ]


def test_searxng_keeps_only_maps_links(monkeypatch, settings):
    def fake_search(query, settings, session=None, engines=None):
        assert query.endswith("site:google.com/maps")
        assert engines == places.MAPS_ENGINES
        return SearchPage(
            provider="searxng",
            query=query,
            hits=[
                SearchHit("https://www.google.com/maps/place/x?cid=7", "Shadow Plumbing", "100 Pipe Rd"),
                SearchHit("https://shadowplumbing.com.au", "Shadow Plumbing"),
            ],
        )

    monkeypatch.setattr(places.searxng, "search", fake_search)

    candidates = places.search_places("Shadow Plumbing", None, None, settings)

    assert len(candidates) == 1
    assert candidates[0]["cid"] == "7"
    assert candidates[0]["address"] == "100 Pipe Rd"


def test_all_sources_failing_returns_empty(monkeypatch, settings):
    def broken(*args, **kwargs):
        raise http.FetchTimeout("http://searx.local", "timeout")

    monkeypatch.setattr(places.searxng, "search", broken)

    assert places.search_places("Shadow Plumbing", None, None, settings) == []


def test_confirm_place_fills_gaps_from_details(monkeypatch, settings):
    configured = replace(settings, google_api_key="key")

    def fake_details(place_id, api_key, session=None):
        assert place_id == "pid-1"
        return {"formatted_phone_number": "0400 111 111", "website": "https://shadowplumbing.com.au", "types": ["plumber"]}

    monkeypatch.setattr(places.google_places, "place_details", fake_details)

    row = places.confirm_place(
        {"title": "Shadow Plumbing", "address": "100 Pipe Rd", "placeId": "pid-1", "cid": "42"},
        configured,
        lead_id="lead-9",
    )

    assert row == {
        "lead_id": "lead-9",
        "place_cid": "42",
        "golden_name": "Shadow Plumbing",
        "golden_address": "100 Pipe Rd",
        "golden_phone": "0400 111 111",
        "website": "https://shadowplumbing.com.au",
        "categories": ["plumber"],
    }


def test_confirm_place_survives_details_failure(monkeypatch, settings):
    configured = replace(settings, google_api_key="key")

    def broken(place_id, api_key, session=None):
        raise google_places.GooglePlacesError("OVER_QUERY_LIMIT")

    monkeypatch.setattr(places.google_places, "place_details", broken)

    row = places.confirm_place({"title": "Shadow Plumbing", "placeId": "pid-1"}, configured)

    assert row["golden_name"] == "Shadow Plumbing"
    assert row["golden_phone"] is None


def test_confirm_place_requires_title(settings):
    with pytest.raises(ValueError):
        places.confirm_place({"address": "x"}, settings)
