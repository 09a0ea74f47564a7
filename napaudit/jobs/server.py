"""HTTP entrypoint for discovery, scraping, reporting and the reference side channel."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Tuple

from flask import Flask, Response, jsonify, request

from napaudit.core import db
from napaudit.core.config import ConfigError, get_settings
from napaudit.core.db import NotFoundError, PersistenceError
from napaudit.core.http import FetchError
from napaudit.core.reference import SocialConflictError, set_social, set_website
from napaudit.discovery.places import confirm_place, search_places
from napaudit.discovery.stream import PipelineError, collect_discovery, format_sse, resolve_reference, stream_discovery
from napaudit.extraction.crawl import crawl_website
from napaudit.extraction.scrape import run_scrape
from napaudit.reporting.report import build_report
from napaudit.vendors import searxng

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & store ----------
app = Flask(__name__)
store: Any = db


def _failure(exc: Exception) -> Tuple[Any, int]:
    """Map an exception onto the ``{ok: false, error}`` envelope and a status code."""
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, SocialConflictError):
        return jsonify({"ok": False, "error": message, "data": {"socials": exc.socials}}), 409
    if isinstance(exc, NotFoundError):
        return jsonify({"ok": False, "error": message}), 404
    if isinstance(exc, (ValueError, ConfigError)):
        return jsonify({"ok": False, "error": message}), 400
    if isinstance(exc, FetchError):
        return jsonify({"ok": False, "error": message}), 502
    if isinstance(exc, (PersistenceError, PipelineError)):
        logger.error("Request failed: %s", message)
    else:
        logger.exception("Unhandled error: %s", exc)
    return jsonify({"ok": False, "error": message}), 500


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _wants_stream() -> bool:
    if request.args.get("stream") in ("1", "true"):
        return True
    return "text/event-stream" in (request.headers.get("Accept") or "")


# ---------- Routes ----------


@app.get("/healthz")
def healthcheck() -> Any:
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": settings.worker_port,
                "search_provider": settings.search_provider,
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/discovery/urls")
def discover_urls() -> Any:
    """
    Discover candidate listing URLs for a business.
    JSON fields: businessId and/or auditId; optional includeWebsite (bool).
    Streams server-sent events when ?stream=1 or Accept: text/event-stream.
    """
    payload = _payload()
    business_id = payload.get("businessId")
    audit_id = payload.get("auditId")
    include_website = bool(payload.get("includeWebsite", False))
    settings = get_settings()

    try:
        if _wants_stream():
            business_id, reference = resolve_reference(store, business_id, audit_id)
            events = stream_discovery(
                reference,
                settings,
                store,
                business_id=business_id,
                audit_id=audit_id,
                include_website=include_website,
            )
            body = (format_sse(event) for event in events)
            return Response(
                body,
                mimetype="text/event-stream",
                headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
            )

        data = collect_discovery(
            settings,
            store,
            business_id=business_id,
            audit_id=audit_id,
            include_website=include_website,
        )
    except Exception as exc:  # noqa: BLE001
        return _failure(exc)
    return jsonify({"ok": True, "data": data}), 200


@app.post("/discovery/scrape")
def scrape_urls() -> Any:
    """
    Scrape explicit URLs (or the latest discovery snapshot) and score them.
    JSON fields: auditId, optional businessId, urls (list), useDiscovery (bool).
    """
    payload = _payload()
    urls = payload.get("urls")
    try:
        result = run_scrape(
            get_settings(),
            store,
            business_id=payload.get("businessId"),
            audit_id=payload.get("auditId"),
            urls=urls if isinstance(urls, list) else None,
            use_discovery=bool(payload.get("useDiscovery", False)),
        )
    except Exception as exc:  # noqa: BLE001
        return _failure(exc)
    return jsonify({"ok": True, "data": result.to_dict()}), 200


@app.get("/observations")
def list_observations() -> Any:
    audit_id = request.args.get("auditId")
    if not audit_id:
        return jsonify({"ok": False, "error": "Missing auditId"}), 400
    try:
        rows = store.list_observations(audit_id)
    except Exception as exc:  # noqa: BLE001
        return _failure(exc)
    return jsonify({"ok": True, "data": rows}), 200


@app.post("/report")
def report() -> Any:
    payload = _payload()
    business_id = payload.get("businessId")
    audit_id = payload.get("auditId")
    if not business_id or not audit_id:
        return jsonify({"ok": False, "error": "Missing businessId or auditId"}), 400
    try:
        reference = store.get_reference_record(business_id)
        observations = store.list_observations(audit_id)
        data = build_report(reference, observations, include_maps=bool(payload.get("includeMaps", False)))
    except Exception as exc:  # noqa: BLE001
        return _failure(exc)
    return jsonify({"ok": True, "data": data}), 200


@app.get("/status/<audit_id>")
def audit_status(audit_id: str) -> Any:
    try:
        data = store.audit_status(audit_id)
    except Exception as exc:  # noqa: BLE001
        return _failure(exc)
    return jsonify({"ok": True, "data": data}), 200


@app.post("/website")
def set_business_website() -> Any:
    payload = _payload()
    business_id = payload.get("businessId")
    website = payload.get("website")
    if not business_id or not website:
        return jsonify({"ok": False, "error": "Missing businessId or website"}), 400
    try:
        data = set_website(store, business_id, website, audit_id=payload.get("auditId"))
    except Exception as exc:  # noqa: BLE001
        return _failure(exc)
    return jsonify({"ok": True, "data": data}), 200


@app.post("/website/crawl")
def crawl_business_website() -> Any:
    payload = _payload()
    try:
        data = crawl_website(
            get_settings(),
            store,
            payload.get("businessId"),
            payload.get("url"),
            audit_id=payload.get("auditId"),
        )
    except Exception as exc:  # noqa: BLE001
        return _failure(exc)
    return jsonify({"ok": True, "data": data}), 200


@app.post("/socials")
def set_business_social() -> Any:
    payload = _payload()
    business_id = payload.get("businessId")
    if not business_id:
        return jsonify({"ok": False, "error": "Missing businessId or invalid url"}), 400
    try:
        data = set_social(
            store,
            business_id,
            payload.get("url"),
            key=payload.get("key"),
            replace=bool(payload.get("replace", False)),
            audit_id=payload.get("auditId"),
        )
    except Exception as exc:  # noqa: BLE001
        return _failure(exc)
    return jsonify({"ok": True, "data": data}), 200


@app.post("/places/search")
def places_search() -> Any:
    payload = _payload()
    try:
        candidates = search_places(payload.get("name"), payload.get("address"), payload.get("phone"), get_settings())
    except Exception as exc:  # noqa: BLE001
        return _failure(exc)
    return jsonify({"ok": True, "data": candidates}), 200


@app.post("/places/confirm")
def places_confirm() -> Any:
    payload = _payload()
    candidate = payload.get("candidate")
    if not isinstance(candidate, dict):
        return jsonify({"ok": False, "error": "Missing candidate.title"}), 400
    try:
        row = confirm_place(candidate, get_settings(), lead_id=payload.get("leadId"))
        data = store.create_profile_and_audit(row)
    except Exception as exc:  # noqa: BLE001
        return _failure(exc)
    return jsonify({"ok": True, "data": data}), 200


@app.get("/searxng/stats")
def searxng_stats() -> Any:
    settings = get_settings()
    try:
        stats = searxng.fetch_stats(settings)
    except FetchError as exc:
        logger.warning("SearXNG stats unavailable: %s", exc)
        return jsonify({"ok": False, "error": str(exc) or exc.kind}), 502
    return jsonify({"ok": True, "data": {"base": settings.searxng_base_url, "stats": stats}}), 200


def main() -> None:
    """Bind on $PORT when the platform injects one, otherwise WORKER_PORT."""
    env_port = os.getenv("PORT")
    port = int(env_port or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port, threaded=True)


if __name__ == "__main__":
    main()
