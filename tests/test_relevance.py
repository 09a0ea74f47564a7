import pytest

from napaudit.core.models import Candidate, ReferenceRecord
from napaudit.discovery import relevance


@pytest.fixture
def ctx(settings):
    reference = ReferenceRecord(
        business_id="biz-1",
        name="Shadow Plumbing",
        address="100 Pipe Rd, Sydney, NSW 2000",
        phone="+61 400 111 111",
    )
    return relevance.RelevanceContext.build(reference, settings)


def _candidate(url, host, source_type="web", title="", content=""):
    return Candidate(url=url, host=host, source_type=source_type, title=title, content=content, rank=1)


def test_context_strips_country_code_from_phone(ctx):
    assert ctx.phone_national == "400111111"
    assert ctx.brand_tokens == ("shadow", "plumbing")
    assert ctx.city == "sydney"
    assert ctx.state == "NSW"
    assert ctx.postcode == "2000"


def test_support_signals_are_detected(ctx):
    candidate = _candidate(
        "https://www.yelp.com.au/biz/shadow-plumbing-sydney",
        "yelp.com.au",
        source_type="directory",
        title="Shadow Plumbing - Sydney NSW",
        content="Call 0400 111 111 for a plumber in Sydney 2000",
    )

    result = relevance.score_candidate(candidate, ctx)

    assert (result.exact, result.bigram, result.phone, result.geo) == (True, True, True, True)
    assert result.score > 60
    assert "phone:+12" in result.trace


def test_job_board_without_support_never_exceeds_twenty(ctx):
    candidate = _candidate(
        "https://www.seek.com.au/plumbing-jobs",
        "seek.com.au",
        title="Plumbing jobs",
        content="Apply now for plumbing roles with top employers",
    )

    result = relevance.score_candidate(candidate, ctx)

    assert result.job_board is True
    assert result.score <= 20


def test_exact_phrase_never_lowers_the_score(ctx):
    base = _candidate("https://plumbers.com.au/", "plumbers.com.au", title="Plumbers in town", content="Call today")
    with_phrase = _candidate(
        "https://plumbers.com.au/", "plumbers.com.au", title="Shadow Plumbing - Plumbers in town", content="Call today"
    )

    assert relevance.score_candidate(with_phrase, ctx).score >= relevance.score_candidate(base, ctx).score


def test_wrong_location_guard_caps_and_never_raises(ctx):
    candidate = _candidate(
        "https://example.com.au/",
        "example.com.au",
        title="Shadow Plumbing Melbourne",
        content="Servicing Melbourne VIC 3000",
    )
    without_guard = tuple(rule for rule in relevance.RULES if rule is not relevance.rule_wrong_location)

    guarded = relevance.score_candidate(candidate, ctx)
    unguarded = relevance.score_candidate(candidate, ctx, rules=without_guard)

    assert guarded.wrong_location is True
    assert guarded.score <= 24
    assert guarded.score <= unguarded.score


def test_facebook_low_value_paths_are_demoted(ctx):
    candidate = _candidate(
        "https://www.facebook.com/groups/12345/", "facebook.com", source_type="social", title="Plumbers group"
    )

    result = relevance.score_candidate(candidate, ctx)

    assert result.score <= 18
    assert "facebook:low_value:cap18" in result.trace


def test_generic_brand_token_contribution_is_capped(settings):
    generic = relevance.RelevanceContext.build(ReferenceRecord(name="North Steel"), settings)
    candidate = _candidate("https://steel.com.au/", "steel.com.au", title="Steel north supplies")

    result = relevance.score_candidate(candidate, generic)

    assert "name_tokens:+4" in result.trace


def test_reduce_rules_applies_caps_as_running_minimum(ctx):
    view = relevance.CandidateView.build(_candidate("https://a.com.au/", "a.com.au"), ctx)

    def add_thirty(ctx, view):
        yield relevance.ScoreDelta(30, "thirty")

    def cap_twenty_four(ctx, view):
        yield relevance.ScoreCap(24, "cap")
        yield relevance.FlagSet("capped")

    def add_five(ctx, view):
        yield relevance.ScoreDelta(5, "five")

    score, flags, trace = relevance.reduce_rules(ctx, view, (add_thirty, cap_twenty_four, add_five, cap_twenty_four))

    assert score == 24
    assert flags == {"capped"}
    assert trace == ["thirty:+30", "cap:cap24", "five:+5", "cap:cap24"]


def test_apply_score_updates_candidate_in_place(ctx):
    candidate = _candidate(
        "https://www.seek.com.au/job/1", "seek.com.au", title="Plumbing jobs", content="Apply now"
    )

    relevance.apply_score(candidate, ctx)

    assert candidate.job_board is True
    assert candidate.to_dict()["jobBoard"] is True
