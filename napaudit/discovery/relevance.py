"""Relevance scoring for search results against a reference record.

The score is built by an ordered tuple of rules. Each rule is a pure function
``rule(ctx, view)`` yielding effects:

* :class:`ScoreDelta` adds (or subtracts) points,
* :class:`ScoreCap` clamps the running total with ``min``,
* :class:`FlagSet` raises an explanatory flag.

:func:`reduce_rules` folds the effects in order. Order matters: a cap only
sees the points accumulated by the rules before it, and several caps can
compound on the same candidate.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple, Union
from urllib.parse import urlparse

from napaudit.core.config import Settings
from napaudit.core.models import Candidate, ReferenceRecord
from napaudit.core.text import fuzzy_token_bonus, tokenise
from napaudit.discovery.directories import DIRECTORY_HOSTS, SOCIAL_HOSTS, host_matches
from napaudit.discovery.queries import (
    AU_STATES,
    city_from_address,
    first_address_line,
    phone_digits,
    postcode_from_address,
    state_from_address,
)

JOB_BOARD_HOSTS = (
    "healthcarelink.com.au",
    "seek.com.au",
    "indeed.com.au",
    "jora.com",
    "careerone.com.au",
    "glassdoor.com.au",
)
NEGATIVE_HOSTS = (
    "empire.edu",
    "walmart.com",
    "sensationnel.com",
    "empirebeautysupply.com",
    "empirebeautysupplies.com",
    "beautyempirepo.com",
)
MAJOR_CITIES = ("sydney", "melbourne", "brisbane", "perth", "adelaide", "hobart", "darwin", "canberra")
OCCUPATION_WORDS = (
    "physiotherapy",
    "physiotherapist",
    "chiropractor",
    "dentist",
    "dental",
    "doctor",
    "gp",
    "general practitioner",
    "clinic",
    "allied",
    "health",
    "massage",
    "podiatry",
    "podiatrist",
)
GENERIC_BRAND_WORDS = frozenset(
    {"north", "east", "south", "west", "steel", "plumbing", "electrical", "electric", "auto", "services", "pty", "ltd"}
)
BASE_BY_SOURCE = {"places": 12, "directory": 10, "social": 10, "web": 0}
FACEBOOK_HOSTS = ("facebook.com", "m.facebook.com")

_FOREIGN = re.compile(r"\b(united states|usa|tx|oh|ca|sc|ms|zip\s*\d{5})\b", re.IGNORECASE)
_FB_LOW_VALUE = (
    re.compile(r"/groups/"),
    re.compile(r"/(reel|reels|watch)/"),
    re.compile(r"/posts?/"),
    re.compile(r"/permalink/"),
    re.compile(r"/story\.php"),
    re.compile(r"/people/"),
    re.compile(r"/profile\.php"),
)
_BRAND_STRIP = re.compile(r"[^a-z0-9\s-]")
_STATE_PATTERNS = {state: re.compile(rf"\b{state}\b", re.IGNORECASE) for state in AU_STATES}


@dataclass(frozen=True)
class ScoreDelta:
    points: int
    reason: str


@dataclass(frozen=True)
class ScoreCap:
    limit: int
    reason: str


@dataclass(frozen=True)
class FlagSet:
    flag: str


Effect = Union[ScoreDelta, ScoreCap, FlagSet]


@dataclass(frozen=True)
class RelevanceContext:
    """Everything derived once from the reference record for a whole run."""

    brand_tokens: Tuple[str, ...] = ()
    phrase: str = ""
    bigrams: Tuple[str, ...] = ()
    city: Optional[str] = None
    state: Optional[str] = None
    postcode: Optional[str] = None
    address: str = ""
    address_line: str = ""
    phone_national: str = ""
    country_tld: str = "au"
    fuzzy_max_bonus: int = 6
    known_hosts: FrozenSet[str] = frozenset()

    @classmethod
    def build(cls, reference: ReferenceRecord, settings: Settings) -> "RelevanceContext":
        name = (reference.name or "").lower()
        tokens = tuple(token for token in _BRAND_STRIP.sub(" ", name).split() if token)
        digits = phone_digits(reference.phone)
        if digits.startswith(settings.country_code):
            digits = digits[len(settings.country_code):]
        city = city_from_address(reference.address)
        line = first_address_line(reference.address)
        return cls(
            brand_tokens=tokens,
            phrase=name.strip(),
            bigrams=tuple(f"{a} {b}" for a, b in zip(tokens, tokens[1:])),
            city=city.lower() if city else None,
            state=state_from_address(reference.address),
            postcode=postcode_from_address(reference.address),
            address=(reference.address or "").lower().strip(),
            address_line=(line or "").lower(),
            phone_national=digits,
            country_tld=settings.country_tld,
            fuzzy_max_bonus=settings.fuzzy_name_max_bonus,
            known_hosts=frozenset(DIRECTORY_HOSTS) | frozenset(SOCIAL_HOSTS),
        )

    @property
    def generic_brand(self) -> bool:
        return bool(self.brand_tokens) and all(token in GENERIC_BRAND_WORDS for token in self.brand_tokens)

    @property
    def has_generic_token(self) -> bool:
        return any(token in GENERIC_BRAND_WORDS for token in self.brand_tokens)


@dataclass
class CandidateView:
    """Lower-cased and tokenised projections of one result, plus its support signals."""

    host: str
    source_type: str
    title: str
    content: str
    path: str
    title_lower: str
    content_lower: str
    title_tokens: List[str]
    path_tokens: List[str]
    content_tokens: List[str]
    exact: bool = False
    bigram: bool = False
    phone: bool = False
    geo: bool = False

    @classmethod
    def build(cls, candidate: Candidate, ctx: RelevanceContext) -> "CandidateView":
        title = candidate.title or ""
        content = candidate.content or ""
        try:
            path = urlparse(candidate.url).path or ""
        except ValueError:
            path = ""
        view = cls(
            host=candidate.host,
            source_type=candidate.source_type,
            title=title,
            content=content,
            path=path.lower(),
            title_lower=title.lower(),
            content_lower=content.lower(),
            title_tokens=tokenise(title),
            path_tokens=tokenise(path.replace("/", " ")),
            content_tokens=tokenise(content),
        )
        view.exact = bool(ctx.phrase) and view.in_text(ctx.phrase)
        view.bigram = any(view.in_text(bigram) for bigram in ctx.bigrams)
        view.phone = bool(ctx.phone_national) and ctx.phone_national in phone_digits(content)
        view.geo = bool(ctx.city and view.in_text(ctx.city)) or bool(
            ctx.postcode and (ctx.postcode in title or ctx.postcode in content)
        )
        return view

    def in_text(self, needle: str) -> bool:
        return needle in self.title_lower or needle in self.content_lower

    @property
    def combined_tokens(self) -> List[str]:
        return list(dict.fromkeys(self.title_tokens + self.path_tokens + self.content_tokens))

    @property
    def strong_support_count(self) -> int:
        return sum((self.exact, self.bigram, self.phone, self.geo))

    def brand_overlap(self, ctx: RelevanceContext) -> int:
        combined: Set[str] = set(self.combined_tokens)
        return sum(1 for token in ctx.brand_tokens if token in combined)


@dataclass
class RelevanceResult:
    score: int
    exact: bool = False
    bigram: bool = False
    phone: bool = False
    geo: bool = False
    wrong_location: bool = False
    occupation_only: bool = False
    job_board: bool = False
    trace: List[str] = field(default_factory=list)


Rule = Callable[[RelevanceContext, CandidateView], Iterable[Effect]]


# ---------------------------------------------------------------------------
# Rules, in application order
# ---------------------------------------------------------------------------


def rule_source_base(ctx: RelevanceContext, view: CandidateView) -> Iterable[Effect]:
    points = BASE_BY_SOURCE.get(view.source_type, 0)
    if points:
        yield ScoreDelta(points, f"base:{view.source_type}")


def rule_country_host(ctx: RelevanceContext, view: CandidateView) -> Iterable[Effect]:
    if view.host.endswith(f".{ctx.country_tld}"):
        yield ScoreDelta(8, "country_tld")
    if view.host in ctx.known_hosts:
        yield ScoreDelta(2, "known_host")


def rule_name(ctx: RelevanceContext, view: CandidateView) -> Iterable[Effect]:
    if not ctx.brand_tokens:
        return
    in_title = sum(1 for token in ctx.brand_tokens if token in view.title_tokens)
    in_path = sum(1 for token in ctx.brand_tokens if token in view.path_tokens)
    in_host = sum(1 for token in ctx.brand_tokens if token in view.host)
    token_score = in_title * 4 + in_path * 2 + in_host * 2
    token_score += fuzzy_token_bonus(ctx.brand_tokens, view.combined_tokens, ctx.fuzzy_max_bonus)

    phrase_in_title = bool(ctx.phrase) and ctx.phrase in view.title_lower
    phrase_in_content = bool(ctx.phrase) and ctx.phrase in view.content_lower
    joined_path = " ".join(view.path_tokens)
    bigram_hit = any(view.in_text(bigram) or bigram in joined_path for bigram in ctx.bigrams)

    if phrase_in_title:
        yield ScoreDelta(12, "phrase:title")
    if phrase_in_content:
        yield ScoreDelta(6, "phrase:content")
    if bigram_hit:
        yield ScoreDelta(6, "bigram")

    if ctx.generic_brand:
        token_score = min(token_score, 10 if (phrase_in_title or phrase_in_content or bigram_hit) else 4)
    else:
        token_score = min(token_score, 16)
    if token_score:
        yield ScoreDelta(token_score, "name_tokens")


def rule_geography(ctx: RelevanceContext, view: CandidateView) -> Iterable[Effect]:
    if ctx.city:
        if ctx.city in view.title_lower:
            yield ScoreDelta(6, "city:title")
        if ctx.city in view.content_lower:
            yield ScoreDelta(6, "city:content")
        if ctx.city in view.path_tokens:
            yield ScoreDelta(4, "city:path")
    if ctx.state:
        pattern = _STATE_PATTERNS[ctx.state]
        if pattern.search(view.title_lower) or pattern.search(view.content_lower):
            yield ScoreDelta(5, "state")
    if ctx.postcode:
        if ctx.postcode in view.title:
            yield ScoreDelta(5, "postcode:title")
        if ctx.postcode in view.content:
            yield ScoreDelta(5, "postcode:content")


def rule_address(ctx: RelevanceContext, view: CandidateView) -> Iterable[Effect]:
    if ctx.address and view.in_text(ctx.address):
        yield ScoreDelta(20, "address")
    if ctx.address_line and view.in_text(ctx.address_line):
        yield ScoreDelta(10, "address_line")
        if ctx.postcode and (ctx.postcode in view.title or ctx.postcode in view.content):
            yield ScoreDelta(8, "address_line+postcode")


def rule_phone(ctx: RelevanceContext, view: CandidateView) -> Iterable[Effect]:
    if view.phone:
        yield ScoreDelta(12, "phone")


def rule_host_brand(ctx: RelevanceContext, view: CandidateView) -> Iterable[Effect]:
    distinct = {token for token in ctx.brand_tokens if len(token) >= 3 and token in view.host}
    if len(distinct) >= 2:
        yield ScoreDelta(8, "host_brand:multi")
        return
    hits = sum(1 for token in ctx.brand_tokens if token in view.host)
    if hits:
        yield ScoreDelta(min(6, hits * 2), "host_brand")


def rule_penalties(ctx: RelevanceContext, view: CandidateView) -> Iterable[Effect]:
    if any(view.host.endswith(host) for host in NEGATIVE_HOSTS):
        yield ScoreDelta(-20, "negative_host")
    if _FOREIGN.search(view.content_lower):
        yield ScoreDelta(-10, "foreign_country")
    if ctx.brand_tokens and view.strong_support_count == 0:
        yield ScoreDelta(-8, "weak_brand")


def rule_wrong_location(ctx: RelevanceContext, view: CandidateView) -> Iterable[Effect]:
    if not ctx.state:
        return
    hits = [
        state
        for state, pattern in _STATE_PATTERNS.items()
        if pattern.search(view.title_lower) or pattern.search(view.content_lower)
    ]
    has_expected = ctx.state in hits
    has_other = any(state != ctx.state for state in hits)
    has_city = bool(ctx.city) and view.in_text(ctx.city)
    other_city = any(view.in_text(city) for city in MAJOR_CITIES)
    if not has_city and (has_other or other_city) and not has_expected:
        yield ScoreDelta(-12, "wrong_location")
        yield ScoreCap(24, "wrong_location")
        yield FlagSet("wrong_location")


def rule_occupation_only(ctx: RelevanceContext, view: CandidateView) -> Iterable[Effect]:
    if view.brand_overlap(ctx) == 0 and any(view.in_text(word) for word in OCCUPATION_WORDS):
        yield ScoreDelta(-10, "occupation_only")
        yield ScoreCap(22, "occupation_only")
        yield FlagSet("occupation_only")


def rule_job_board(ctx: RelevanceContext, view: CandidateView) -> Iterable[Effect]:
    if not any(host_matches(view.host, host) for host in JOB_BOARD_HOSTS):
        return
    yield FlagSet("job_board")
    if view.strong_support_count == 0:
        yield ScoreDelta(-10, "job_board")
        yield ScoreCap(20, "job_board")


def rule_generic_web(ctx: RelevanceContext, view: CandidateView) -> Iterable[Effect]:
    if view.source_type != "web" or view.strong_support_count:
        return
    if ctx.has_generic_token and view.brand_overlap(ctx) <= 1:
        yield ScoreDelta(-6, "generic_web")
    yield ScoreCap(20, "unsupported_web")


def rule_facebook_shape(ctx: RelevanceContext, view: CandidateView) -> Iterable[Effect]:
    if view.host not in FACEBOOK_HOSTS:
        return
    low_value = any(pattern.search(view.path) for pattern in _FB_LOW_VALUE)
    if low_value and view.strong_support_count == 0:
        yield ScoreDelta(-12, "facebook:low_value")
        yield ScoreCap(18, "facebook:low_value")
    if not view.geo:
        yield ScoreDelta(-6, "facebook:no_geo")
        yield ScoreCap(22, "facebook:no_geo")
    segments = [segment for segment in view.path.split("/") if segment]
    if not low_value and (len(segments) == 1 or view.path.startswith("/pages/")):
        yield ScoreDelta(2, "facebook:page")


RULES: Tuple[Rule, ...] = (
    rule_source_base,
    rule_country_host,
    rule_name,
    rule_geography,
    rule_address,
    rule_phone,
    rule_host_brand,
    rule_penalties,
    rule_wrong_location,
    rule_occupation_only,
    rule_job_board,
    rule_generic_web,
    rule_facebook_shape,
)


def reduce_rules(
    ctx: RelevanceContext, view: CandidateView, rules: Sequence[Rule] = RULES
) -> Tuple[int, Set[str], List[str]]:
    """Fold rule effects into ``(score, flags, trace)``; caps are running minimums."""
    score = 0
    flags: Set[str] = set()
    trace: List[str] = []
    for rule in rules:
        for effect in rule(ctx, view):
            if isinstance(effect, ScoreDelta):
                score += effect.points
                trace.append(f"{effect.reason}:{effect.points:+d}")
            elif isinstance(effect, ScoreCap):
                score = min(score, effect.limit)
                trace.append(f"{effect.reason}:cap{effect.limit}")
            else:
                flags.add(effect.flag)
    return score, flags, trace


def score_candidate(candidate: Candidate, ctx: RelevanceContext, rules: Sequence[Rule] = RULES) -> RelevanceResult:
    view = CandidateView.build(candidate, ctx)
    score, flags, trace = reduce_rules(ctx, view, rules)
    return RelevanceResult(
        score=score,
        exact=view.exact,
        bigram=view.bigram,
        phone=view.phone,
        geo=view.geo,
        wrong_location="wrong_location" in flags,
        occupation_only="occupation_only" in flags,
        job_board="job_board" in flags,
        trace=trace,
    )


def apply_score(candidate: Candidate, ctx: RelevanceContext) -> Candidate:
    """Score ``candidate`` in place and return it."""
    result = score_candidate(candidate, ctx)
    candidate.score = result.score
    candidate.exact = result.exact
    candidate.bigram = result.bigram
    candidate.phone = result.phone
    candidate.geo = result.geo
    candidate.wrong_location = result.wrong_location
    candidate.occupation_only = result.occupation_only
    candidate.job_board = result.job_board
    return candidate
