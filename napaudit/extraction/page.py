"""Single-page extraction of NAP hints, structured data and outbound social links."""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import requests
from bs4 import BeautifulSoup

from napaudit.core.config import Settings
from napaudit.core.http import build_session, fetch_with_timeout
from napaudit.core.reference import detect_social_key

logger = logging.getLogger(__name__)

PAGE_HEADERS = {
    "Accept": "text/html,application/xhtml+xml",
    "Cache-Control": "no-cache",
}

MAX_TITLE = 500
MAX_DESCRIPTION = 1000
MAX_JSON_LD_BLOCKS = 5
MAX_JSON_LD_CHARS = 16000
MAX_PARSED_ENTRIES = 10
MAX_BUSINESS_ENTRIES = 5
MAX_NAP_HINTS = 5
MAX_PHONES = 20
MAX_ANCHORS = 200

OG_FIELDS = ("url", "title", "site_name", "description")
PUBLISH_META_NAMES = {"article:published_time", "og:updated_time", "published_time", "date", "dc.date"}

PHONE_PATTERN = re.compile(r"(\+61\s?\d[\d\s-]{7,12}|0\d[\d\s-]{7,10})")
_BUSINESS_TYPE = re.compile(r"LocalBusiness|Organization|Business$", re.IGNORECASE)
_HTML_COMMENT = re.compile(r"<!--([\s\S]*?)-->")
_ABSOLUTE_HTTP = re.compile(r"^https?://", re.IGNORECASE)
_JSON_LD_TYPE = re.compile(r"application/ld\+json", re.IGNORECASE)


@dataclass(slots=True)
class PageFetchFailure:
    url: str
    error: str
    status: Optional[int] = None


@dataclass(slots=True)
class PageExtraction:
    """Everything pulled from one fetched page; collections are already capped."""

    url: str
    final_url: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    og: Dict[str, Optional[str]] = field(default_factory=dict)
    json_ld_snippets: List[str] = field(default_factory=list)
    json_ld: List[Dict[str, Any]] = field(default_factory=list)
    local_business: List[Dict[str, Any]] = field(default_factory=list)
    names: List[str] = field(default_factory=list)
    addresses: List[str] = field(default_factory=list)
    same_as: List[str] = field(default_factory=list)
    phones: List[str] = field(default_factory=list)
    socials: Dict[str, str] = field(default_factory=dict)
    other_links: List[str] = field(default_factory=list)
    last_post_at: Optional[str] = None

    def best_nap(self) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        """Observed ``(name, address, phone)``; structured-data names sort ahead of the title."""
        return (
            self.names[0] if self.names else None,
            self.addresses[0] if self.addresses else None,
            self.phones[0] if self.phones else None,
        )

    def snapshot(self) -> Dict[str, Any]:
        socials: Dict[str, Any] = dict(self.socials)
        if self.other_links:
            socials["other"] = list(self.other_links)
        return {
            "url": self.url,
            "meta": {"title": self.title, "description": self.description, "og": dict(self.og)},
            "socials": socials,
            "jsonLd": {
                "snippets": list(self.json_ld_snippets),
                "parsed": list(self.json_ld),
                "localBusiness": list(self.local_business),
                "sameAs": list(self.same_as),
            },
            "napHints": {"phones": list(self.phones), "names": list(self.names), "addresses": list(self.addresses)},
            "capturedAt": datetime.now(timezone.utc).isoformat(),
        }


PageResult = Union[PageExtraction, PageFetchFailure]


def _unique(values: Iterable[Optional[str]]) -> List[str]:
    return list(dict.fromkeys(value for value in values if value))


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    return value.strip()[:limit]


def parse_json_ld(raw: str) -> Optional[Any]:
    """Parse one structured-data block; a retry drops HTML comments before giving up."""
    try:
        return json.loads(raw)
    except ValueError:
        pass
    try:
        return json.loads(_HTML_COMMENT.sub("", raw).strip())
    except ValueError:
        return None


def flatten_json_ld(payload: Any) -> List[Dict[str, Any]]:
    entries: List[Dict[str, Any]] = []
    stack = list(payload) if isinstance(payload, list) else [payload]
    for item in stack:
        if isinstance(item, list):
            entries.extend(flatten_json_ld(item))
        elif isinstance(item, dict):
            entries.append(item)
            graph = item.get("@graph")
            if isinstance(graph, list):
                entries.extend(flatten_json_ld(graph))
    return entries


def is_business_entry(entry: Dict[str, Any]) -> bool:
    raw = entry.get("@type")
    types = raw if isinstance(raw, list) else [raw]
    return any(isinstance(value, str) and _BUSINESS_TYPE.search(value) for value in types)


def format_address(address: Any) -> Optional[str]:
    if isinstance(address, str):
        return address.strip() or None
    if isinstance(address, list):
        for item in address:
            formatted = format_address(item)
            if formatted:
                return formatted
        return None
    if not isinstance(address, dict):
        return None
    parts = []
    for key in ("streetAddress", "addressLocality", "addressRegion", "postalCode", "addressCountry"):
        value = address.get(key)
        if isinstance(value, dict):
            value = value.get("name")
        if isinstance(value, (str, int)) and str(value).strip():
            parts.append(str(value).strip())
    return ", ".join(parts) or None


def classify_socials(urls: Iterable[str]) -> Tuple[Dict[str, str], List[str]]:
    """First URL per platform wins; everything else lands in ``other``."""
    mapping: Dict[str, str] = {}
    other: List[str] = []
    for url in urls:
        try:
            key, _ = detect_social_key(url)
        except ValueError:
            continue
        if key and key not in mapping:
            mapping[key] = url
        else:
            other.append(url)
    return mapping, other


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def extract_last_post_at(soup: BeautifulSoup) -> Optional[str]:
    """Newest publish time visible on the page, as an ISO-8601 UTC string."""
    stamps: List[datetime] = []
    for tag in soup.find_all("time", attrs={"datetime": True}):
        parsed = parse_timestamp(tag.get("datetime"))
        if parsed:
            stamps.append(parsed)
    for tag in soup.find_all("meta", attrs={"content": True}):
        name = (tag.get("property") or tag.get("name") or "").lower()
        if name in PUBLISH_META_NAMES:
            parsed = parse_timestamp(tag.get("content"))
            if parsed:
                stamps.append(parsed)
    for tag in soup.find_all(attrs={"data-utime": True}):
        raw = str(tag.get("data-utime") or "").strip()
        if not raw.isdigit() or not 9 <= len(raw) <= 13:
            continue
        number = int(raw)
        seconds = number / 1000.0 if number > 1e12 else float(number)
        try:
            stamps.append(datetime.fromtimestamp(seconds, tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            continue
    if not stamps:
        return None
    return max(stamps).astimezone(timezone.utc).isoformat()


def _meta_content(soup: BeautifulSoup, **attrs: str) -> Optional[str]:
    tag = soup.find("meta", attrs={key: re.compile(f"^{re.escape(value)}$", re.IGNORECASE) for key, value in attrs.items()})
    if tag is None:
        return None
    content = tag.get("content")
    return content if isinstance(content, str) else None


def extract_from_html(url: str, html: str, final_url: Optional[str] = None) -> PageExtraction:
    """Parse an HTML document into a :class:`PageExtraction`; never raises on malformed markup."""
    soup = BeautifulSoup(html or "", "html.parser")
    page = PageExtraction(url=url, final_url=final_url or url)

    if soup.title and soup.title.string:
        page.title = _clip(soup.title.string, MAX_TITLE)
    page.description = _clip(_meta_content(soup, name="description"), MAX_DESCRIPTION)
    page.og = {name: _clip(_meta_content(soup, property=f"og:{name}"), MAX_DESCRIPTION) for name in OG_FIELDS}

    scripts = soup.find_all("script", attrs={"type": _JSON_LD_TYPE})
    parsed: List[Dict[str, Any]] = []
    for script in scripts[:MAX_JSON_LD_BLOCKS]:
        snippet = (script.string or script.get_text() or "").strip()[:MAX_JSON_LD_CHARS]
        page.json_ld_snippets.append(snippet)
        payload = parse_json_ld(snippet)
        if payload is None:
            logger.debug("Skipping malformed JSON-LD block on %s", url)
            continue
        parsed.extend(flatten_json_ld(payload))

    business = [entry for entry in parsed if is_business_entry(entry)]
    same_as: List[str] = []
    for entry in parsed:
        value = entry.get("sameAs")
        if isinstance(value, str):
            same_as.append(value)
        elif isinstance(value, list):
            same_as.extend(item for item in value if isinstance(item, str))
    page.json_ld = parsed[:MAX_PARSED_ENTRIES]
    page.local_business = business[:MAX_BUSINESS_ENTRIES]
    page.same_as = _unique(same_as)

    names = [entry.get("name") for entry in business if isinstance(entry.get("name"), str)]
    if page.title:
        names.append(page.title)
    page.names = _unique(name.strip() for name in names)[:MAX_NAP_HINTS]
    page.addresses = _unique(format_address(entry.get("address")) for entry in business)[:MAX_NAP_HINTS]

    phones: List[str] = []
    anchors: List[str] = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if href.lower().startswith("tel:"):
            phones.append(href.split(":", 1)[1].strip())
        elif _ABSOLUTE_HTTP.match(href):
            anchors.append(href)
    phones.extend(match.strip() for match in PHONE_PATTERN.findall(soup.get_text(" ")))
    page.phones = _unique(phones)[:MAX_PHONES]

    page.socials, page.other_links = classify_socials(_unique(anchors[:MAX_ANCHORS] + page.same_as))
    page.last_post_at = extract_last_post_at(soup)
    return page


class PageExtractor:
    """Fetch one URL and extract it; fetch failures come back as :class:`PageFetchFailure`."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None) -> None:
        self.settings = settings
        self._owns_session = session is None
        self.session = session or build_session()

    def extract(self, url: str, *, cancel: Optional[threading.Event] = None) -> PageResult:
        result = fetch_with_timeout(
            url,
            timeout_ms=self.settings.worker_timeout_ms,
            headers=PAGE_HEADERS,
            session=self.session,
            cancel=cancel,
        )
        if result.error is not None:
            logger.info("Fetch failed for %s (%s): %s", url, result.error.kind, result.error)
            return PageFetchFailure(url=url, error=str(result.error) or "fetch_failed", status=result.status)
        return extract_from_html(url, result.text, final_url=result.final_url)

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

    def __enter__(self) -> "PageExtractor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
