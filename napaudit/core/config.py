"""Application configuration helpers.

Settings are read from the environment once, frozen, and passed explicitly
into the discovery, scoring and scrape components so a run can be replayed
with injected values in tests.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_SEARXNG_ENGINES = "google,bing,brave,duckduckgo,mojeek"
_TRUTHY = {"1", "true", "yes"}


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing or malformed."""


@dataclass(frozen=True)
class Settings:
    database_url: str = ""
    worker_port: int = 9000

    # Primary metasearch backend
    searxng_base_url: str = "http://localhost:8888"
    searxng_engines: str = DEFAULT_SEARXNG_ENGINES
    searxng_language: str = "en-AU"
    per_query_limit: int = 5
    query_delay_ms: int = 800
    search_timeout_ms: int = 10000
    search_provider: str = "searxng"

    # Commercial fallback
    serper_api_key: str = ""
    serper_gl: str = "au"
    serper_hl: str = "en"
    serper_parallel: bool = False
    serper_parallel_max_queries: int = 3
    serper_min_results: int = 3
    social_serper_force: bool = False
    social_serper_per_query: int = 10
    social_serper_max_query_count: int = 3
    probe_limit_per_host: int = 2

    # Delegated scripted-browser worker
    browser_worker_url: str = ""
    worker_timeout_ms: int = 10000

    # Google Places (reference record bootstrap)
    google_api_key: str = ""

    # Relevance and aggregation
    country_code: str = "61"
    country_tld: str = "au"
    fuzzy_name_max_bonus: int = 6
    min_item_score_default: int = 16
    min_item_score_social: int = 16
    min_item_score_directory: int = 16
    min_item_score_places: int = 16
    min_item_score_web: int = 16
    per_host_cap_default: int = 4
    per_host_cap_social: int = 4
    per_host_cap_directory: int = 4
    per_host_cap_places: int = 4
    per_host_cap_web: int = 4
    host_cap_overrides: Dict[str, int] = field(default_factory=dict)

    # Scraping
    scrape_delay_ms: int = 150
    scrape_max_urls: int = 80
    flush_every: int = 8

    def min_score_for(self, source_type: str) -> int:
        return {
            "social": self.min_item_score_social,
            "directory": self.min_item_score_directory,
            "places": self.min_item_score_places,
            "web": self.min_item_score_web,
        }.get(source_type, self.min_item_score_default)

    def cap_for(self, host: str, source_type: str) -> int:
        if host in self.host_cap_overrides:
            return self.host_cap_overrides[host]
        return {
            "social": self.per_host_cap_social,
            "directory": self.per_host_cap_directory,
            "places": self.per_host_cap_places,
            "web": self.per_host_cap_web,
        }.get(source_type, self.per_host_cap_default)

    @property
    def serper_enabled(self) -> bool:
        return bool(self.serper_api_key)


def parse_host_overrides(raw: Optional[str]) -> Dict[str, int]:
    """Parse ``host=n,host2:n`` pairs; malformed entries are ignored."""
    overrides: Dict[str, int] = {}
    if not raw:
        return overrides
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        pieces = re.split(r"[=:\s]", part, maxsplit=1)
        if len(pieces) != 2:
            continue
        host, value = pieces[0].strip(), pieces[1].strip()
        try:
            overrides[host] = int(value)
        except ValueError:
            logger.warning("Ignoring host cap override %r", part)
    return overrides


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _bool_env(name: str) -> bool:
    return os.getenv(name, "false").strip().lower() in _TRUTHY


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    serper_api_key = os.getenv("SERPER_API_KEY", "")
    searxng_base_url = os.getenv("SEARXNG_BASE_URL", "http://localhost:8888").rstrip("/")
    browser_worker_url = os.getenv("BROWSER_WORKER_URL", "").rstrip("/")

    min_default = _int_env("MIN_ITEM_SCORE", 16)
    cap_default = _int_env("PER_HOST_CAP_DEFAULT", 4)

    search_provider = os.getenv("SEARCH_PROVIDER", "searxng").strip().lower()
    if search_provider not in {"searxng", "worker"}:
        raise ConfigError(f"SEARCH_PROVIDER must be 'searxng' or 'worker', got {search_provider!r}")
    if search_provider == "worker" and not browser_worker_url:
        raise ConfigError("SEARCH_PROVIDER=worker requires BROWSER_WORKER_URL")

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not serper_api_key:
        logger.warning("SERPER_API_KEY is not configured; probes and commercial fallback are disabled.")

    return Settings(
        database_url=database_url,
        worker_port=_int_env("WORKER_PORT", 9000),
        searxng_base_url=searxng_base_url,
        searxng_engines=os.getenv("SEARXNG_ENGINES", DEFAULT_SEARXNG_ENGINES),
        searxng_language=os.getenv("SEARXNG_LANGUAGE", "en-AU"),
        per_query_limit=_int_env("SEARXNG_PER_QUERY_LIMIT", 5),
        query_delay_ms=_int_env("SEARXNG_QUERY_DELAY_MS", 800),
        search_timeout_ms=_int_env("SEARCH_TIMEOUT_MS", 10000),
        search_provider=search_provider,
        serper_api_key=serper_api_key,
        serper_gl=os.getenv("SERPER_GL", "au"),
        serper_hl=os.getenv("SERPER_HL", "en"),
        serper_parallel=_bool_env("SERPER_PARALLEL"),
        serper_parallel_max_queries=_int_env("SERPER_PARALLEL_MAX_QUERIES", 3),
        serper_min_results=_int_env("SERPER_MIN_RESULTS", 3),
        social_serper_force=_bool_env("SOCIAL_SERPER_FORCE"),
        social_serper_per_query=_int_env("SOCIAL_SERPER_PER_QUERY", 10),
        social_serper_max_query_count=_int_env("SOCIAL_SERPER_MAX_QUERY_COUNT", 3),
        probe_limit_per_host=_int_env("PROBE_LIMIT_PER_HOST", 2),
        browser_worker_url=browser_worker_url,
        worker_timeout_ms=_int_env("WORKER_TIMEOUT_MS", 10000),
        google_api_key=os.getenv("GOOGLE_API_KEY", ""),
        fuzzy_name_max_bonus=_int_env("FUZZY_NAME_MAX_BONUS", 6),
        min_item_score_default=min_default,
        min_item_score_social=_int_env("MIN_ITEM_SCORE_SOCIAL", min_default),
        min_item_score_directory=_int_env("MIN_ITEM_SCORE_DIRECTORY", min_default),
        min_item_score_places=_int_env("MIN_ITEM_SCORE_PLACES", min_default),
        min_item_score_web=_int_env("MIN_ITEM_SCORE_WEB", min_default),
        per_host_cap_default=cap_default,
        per_host_cap_social=_int_env("PER_HOST_CAP_SOCIAL", cap_default),
        per_host_cap_directory=_int_env("PER_HOST_CAP_DIRECTORY", cap_default),
        per_host_cap_places=_int_env("PER_HOST_CAP_PLACES", cap_default),
        per_host_cap_web=_int_env("PER_HOST_CAP_WEB", cap_default),
        host_cap_overrides=parse_host_overrides(os.getenv("HOST_CAP_OVERRIDES")),
        scrape_delay_ms=_int_env("SCRAPE_DELAY_MS", 150),
        scrape_max_urls=_int_env("SCRAPE_MAX_URLS", 80),
        flush_every=max(1, _int_env("FLUSH_EVERY", 8)),
    )
