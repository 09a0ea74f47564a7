"""Timeout-bounded, cancellable HTTP fetches.

Every network-facing component goes through :func:`fetch_with_timeout`, which
returns a :class:`FetchResult` instead of raising for routine failures
(timeouts, resets, non-2xx answers). Bodies are streamed against a wall-clock
deadline so a slow upstream cannot hold a run past its budget, and the
underlying response is always closed so its connection is released.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; NapAuditBot/1.0; +https://napaudit.app/bot)"
DEFAULT_MAX_BYTES = 2 * 1024 * 1024
CHUNK_SIZE = 16 * 1024

T = TypeVar("T")
R = TypeVar("R")


class FetchError(Exception):
    """Base class for routine retrieval failures."""

    def __init__(self, url: str, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status

    @property
    def kind(self) -> str:
        return "fetch_failed"


class FetchTimeout(FetchError):
    @property
    def kind(self) -> str:
        return "timeout"


class FetchCancelled(FetchError):
    @property
    def kind(self) -> str:
        return "cancelled"


class NetworkError(FetchError):
    @property
    def kind(self) -> str:
        return "network"


class HttpStatusError(FetchError):
    @property
    def kind(self) -> str:
        return "http_status"


class MalformedPayloadError(FetchError):
    @property
    def kind(self) -> str:
        return "malformed"


@dataclass
class FetchResult:
    url: str
    status: Optional[int] = None
    text: str = ""
    final_url: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    elapsed_ms: int = 0
    truncated: bool = False
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status is not None and 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "").lower()

    def json(self) -> Any:
        """Decode the body as JSON or raise :class:`MalformedPayloadError`."""
        try:
            return json.loads(self.text)
        except (TypeError, ValueError) as exc:
            raise MalformedPayloadError(self.url, f"invalid JSON body: {exc}", status=self.status) from exc

    def raise_for_error(self) -> "FetchResult":
        if self.error is not None:
            raise self.error
        return self


def build_session(user_agent: str = USER_AGENT, pool_size: int = 8) -> requests.Session:
    """Session with a bounded connection pool and no transparent retries."""
    session = requests.Session()
    retries = Retry(total=0, connect=0, read=False, status=0)
    adapter = HTTPAdapter(max_retries=retries, pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update(
        {
            "User-Agent": user_agent,
            "Accept-Language": "en-AU,en;q=0.9",
        }
    )
    return session


def _decode(body: bytes, response: requests.Response) -> str:
    content_type = response.headers.get("Content-Type", "").lower()
    encoding = response.encoding if "charset" in content_type and response.encoding else "utf-8"
    try:
        return body.decode(encoding, errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


def fetch_with_timeout(
    url: str,
    *,
    timeout_ms: int,
    headers: Optional[Mapping[str, str]] = None,
    method: str = "GET",
    params: Optional[Mapping[str, Any]] = None,
    json_body: Optional[Any] = None,
    session: Optional[requests.Session] = None,
    cancel: Optional[threading.Event] = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
) -> FetchResult:
    """Fetch ``url`` within ``timeout_ms`` and return a :class:`FetchResult`.

    Cancellation is cooperative: ``cancel`` is checked before the request is
    issued and between body chunks. On timeout or cancellation the response is
    closed before returning.
    """
    if cancel is not None and cancel.is_set():
        return FetchResult(url=url, error=FetchCancelled(url, "cancelled before request"))

    if session is None:
        with build_session() as owned:
            return fetch_with_timeout(
                url,
                timeout_ms=timeout_ms,
                headers=headers,
                method=method,
                params=params,
                json_body=json_body,
                session=owned,
                cancel=cancel,
                max_bytes=max_bytes,
            )

    http = session
    timeout_s = max(timeout_ms, 1) / 1000.0
    started = time.monotonic()
    deadline = started + timeout_s

    def elapsed() -> int:
        return int((time.monotonic() - started) * 1000)

    try:
        response = http.request(
            method,
            url,
            headers=dict(headers or {}),
            params=params,
            json=json_body,
            timeout=(min(timeout_s, 5.0), timeout_s),
            allow_redirects=True,
            stream=True,
        )
    except requests.Timeout as exc:
        logger.debug("Timed out connecting to %s: %s", url, exc)
        return FetchResult(url=url, elapsed_ms=elapsed(), error=FetchTimeout(url, "timeout"))
    except requests.RequestException as exc:
        logger.debug("Network error for %s: %s", url, exc)
        return FetchResult(url=url, elapsed_ms=elapsed(), error=NetworkError(url, str(exc) or "fetch_failed"))

    with response:
        chunks: List[bytes] = []
        size = 0
        truncated = False
        try:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if cancel is not None and cancel.is_set():
                    return FetchResult(
                        url=url,
                        status=response.status_code,
                        elapsed_ms=elapsed(),
                        error=FetchCancelled(url, "cancelled", status=response.status_code),
                    )
                if time.monotonic() > deadline:
                    return FetchResult(
                        url=url,
                        status=response.status_code,
                        elapsed_ms=elapsed(),
                        error=FetchTimeout(url, "timeout", status=response.status_code),
                    )
                if not chunk:
                    continue
                chunks.append(chunk)
                size += len(chunk)
                if size >= max_bytes:
                    truncated = True
                    break
        except requests.Timeout:
            return FetchResult(
                url=url,
                status=response.status_code,
                elapsed_ms=elapsed(),
                error=FetchTimeout(url, "timeout", status=response.status_code),
            )
        except requests.RequestException as exc:
            return FetchResult(
                url=url,
                status=response.status_code,
                elapsed_ms=elapsed(),
                error=NetworkError(url, str(exc) or "fetch_failed", status=response.status_code),
            )

        body = b"".join(chunks)[:max_bytes]
        result = FetchResult(
            url=url,
            status=response.status_code,
            text=_decode(body, response),
            final_url=response.url,
            headers={key.lower(): value for key, value in response.headers.items()},
            elapsed_ms=elapsed(),
            truncated=truncated,
        )

    if not 200 <= result.status < 300:
        result.error = HttpStatusError(url, f"HTTP {result.status}", status=result.status)
    return result


def collect_errors(
    items: Iterable[T],
    fn: Callable[[T], R],
    on_error: Callable[[T, FetchError], None],
    *,
    cancel: Optional[threading.Event] = None,
) -> List[R]:
    """Apply ``fn`` to every item, routing fetch failures to ``on_error`` and carrying on."""
    results: List[R] = []
    for item in items:
        if cancel is not None and cancel.is_set():
            break
        try:
            results.append(fn(item))
        except FetchError as exc:
            on_error(item, exc)
    return results
