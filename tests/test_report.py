import pytest

from napaudit.core.models import Observation
from napaudit.reporting import report


def _platform(result, key):
    return next(platform for platform in result["platforms"] if platform["key"] == key)


@pytest.mark.parametrize("score, status", [(85, "strong"), (84, "weak"), (40, "weak"), (39, "missing"), (None, "missing")])
def test_status_thresholds(score, status):
    assert report.status_for(score) == status


def test_report_weights_best_observation_per_platform(reference):
    observations = [
        {"source_url": "https://www.yellowpages.com.au/nsw/shadow", "source_type": "directory", "match_score": 90,
         "mismatch": {"flags": {"phone": True, "address": True, "name": False}}},
        {"source_url": "https://www.yellowpages.com.au/nsw/shadow-2", "source_type": "directory", "match_score": 30,
         "mismatch": {}},
        {"source_url": "https://www.yelp.com.au/biz/shadow", "source_type": "directory", "match_score": 50, "mismatch": {}},
        Observation(source_url="https://www.facebook.com/shadowplumbing", source_type="social", match_score=30),
        {"source_url": "https://unknown.example.com/", "source_type": "web", "match_score": 100, "mismatch": {}},
    ]

    result = report.build_report(reference, observations)

    yellow = _platform(result, "yellow_pages")
    assert yellow["status"] == "strong"
    assert yellow["bestScore"] == 90
    assert yellow["contribution"] == 6
    assert len(yellow["urls"]) == 2
    assert yellow["urls"][0]["fields"] == {"name": "MISSING", "address": "EXACT", "phone": "EXACT"}
    assert _platform(result, "yelp")["contribution"] == 2.5
    assert _platform(result, "facebook")["status"] == "missing"
    assert _platform(result, "white_pages")["bestScore"] is None

    scoring = result["scoring"]
    assert scoring["totalWeight"] == 82
    assert scoring["obtained"] == 8.5
    assert scoring["overallScore"] == 10
    assert result["golden"]["name"] == "Shadow Plumbing"
    assert all(platform["category"] != "maps" for platform in result["platforms"])


def test_report_can_include_maps(reference):
    result = report.build_report(reference, [], include_maps=True)

    assert _platform(result, "google_business_profile")["weight"] == 10
    assert result["scoring"]["totalWeight"] == 111
    assert result["scoring"]["overallScore"] == 0


def test_derive_opportunities_priority_and_order():
    observations = [Observation(source_url="https://www.yellowpages.com.au/x", source_type="directory", match_score=85)]

    opportunities = report.derive_opportunities(observations)

    keys = [opportunity.directory_key for opportunity in opportunities]
    assert keys[:3] == ["white_pages", "true_local", "localsearch"]
    assert "yellow_pages" not in keys
    assert all(opportunity.reason == report.OPPORTUNITY_REASON for opportunity in opportunities)
    priorities = {opportunity.directory_key: opportunity.priority for opportunity in opportunities}
    assert priorities["white_pages"] == 6
    assert priorities["brownbook"] == 9


def test_weak_listing_still_counts_as_opportunity():
    observations = [{"source_url": "https://www.yelp.com.au/biz/shadow", "match_score": 84}]

    keys = [opportunity.directory_key for opportunity in report.derive_opportunities(observations)]

    assert "yelp" in keys
