"""Database helpers for the audit worker.

A thin store over a shared psycopg2 connection pool. Functions take and return
plain dictionaries or model objects; all SQL lives here.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional

import psycopg2
from psycopg2 import extras, pool

from napaudit.core.config import Settings, get_settings
from napaudit.core.models import ListingOpportunity, ReferenceRecord

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None


class NotFoundError(LookupError):
    """Raised when an audit run or business profile does not exist."""


class PersistenceError(RuntimeError):
    """Raised when a read or write against the store fails."""


def init_pool(minconn: int = 1, maxconn: int = 5, settings: Optional[Settings] = None) -> pool.SimpleConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = settings or get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.SimpleConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


def _read(sql: str, params: Dict[str, Any], *, many: bool) -> Any:
    """Run one read statement; driver errors surface as :class:`PersistenceError`."""
    with get_connection() as conn:
        try:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                return cur.fetchall() if many else cur.fetchone()
        except psycopg2.Error as exc:
            conn.rollback()
            raise PersistenceError(str(exc).strip() or exc.__class__.__name__) from exc


def _fetch_one(sql: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    row = _read(sql, params, many=False)
    return dict(row) if row else None


def _fetch_all(sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
    rows = _read(sql, params, many=True)
    return [dict(row) for row in rows or []]


def _write(statements: Iterable[tuple]) -> List[Any]:
    """Run write statements in one transaction, returning each ``RETURNING`` row."""
    returned: List[Any] = []
    with get_connection() as conn:
        try:
            with conn.cursor() as cur:
                for sql, params in statements:
                    cur.execute(sql, params)
                    returned.append(cur.fetchone() if "RETURNING" in sql else None)
            conn.commit()
        except psycopg2.Error as exc:
            conn.rollback()
            raise PersistenceError(str(exc).strip() or exc.__class__.__name__) from exc
    return returned


# ---------------------------------------------------------------------------
# Reference records
# ---------------------------------------------------------------------------

_SELECT_AUDIT = "SELECT id, business_id FROM audit_runs WHERE id = %(audit_id)s"

_SELECT_PROFILE = """
SELECT id, business_id, golden_name, golden_address, golden_phone, website, socials
FROM business_profiles
WHERE business_id = %(business_id)s
LIMIT 1
"""


def resolve_business_id(audit_id: str) -> str:
    row = _fetch_one(_SELECT_AUDIT, {"audit_id": audit_id})
    if not row or not row.get("business_id"):
        raise NotFoundError(f"Audit not found: {audit_id}")
    return str(row["business_id"])


def get_profile(business_id: str) -> Dict[str, Any]:
    row = _fetch_one(_SELECT_PROFILE, {"business_id": business_id})
    if not row:
        raise NotFoundError(f"Business profile not found: {business_id}")
    return row


def get_reference_record(business_id: str) -> ReferenceRecord:
    """Load the golden identity for a business."""
    row = get_profile(business_id)
    socials = row.get("socials") or {}
    return ReferenceRecord(
        business_id=str(business_id),
        name=row.get("golden_name"),
        address=row.get("golden_address"),
        phone=row.get("golden_phone"),
        website=row.get("website"),
        socials={key: value for key, value in socials.items() if isinstance(value, str) and value},
    )


# ---------------------------------------------------------------------------
# Observations and snapshots
# ---------------------------------------------------------------------------

_INSERT_OBSERVATION = """
INSERT INTO nap_observations (
    audit_id,
    business_id,
    source_url,
    source_type,
    name,
    address,
    phone,
    match_score,
    mismatch
) VALUES (
    %(audit_id)s,
    %(business_id)s,
    %(source_url)s,
    %(source_type)s,
    %(name)s,
    %(address)s,
    %(phone)s,
    %(match_score)s,
    %(mismatch)s
)
"""

_SELECT_OBSERVATIONS = """
SELECT source_url, source_type, name, address, phone, match_score, mismatch
FROM nap_observations
WHERE audit_id = %(audit_id)s
ORDER BY id ASC
"""


def _prepare_observation(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "audit_id": str(row["audit_id"]),
        "business_id": str(row["business_id"]),
        "source_url": row.get("source_url"),
        "source_type": row.get("source_type"),
        "name": row.get("name"),
        "address": row.get("address"),
        "phone": row.get("phone"),
        "match_score": int(row.get("match_score") or 0),
        "mismatch": extras.Json(row.get("mismatch") or {}),
    }


def insert_observations(rows: List[Dict[str, Any]]) -> None:
    """Append a batch of observation rows in a single transaction."""
    if not rows:
        return
    _write((_INSERT_OBSERVATION, _prepare_observation(row)) for row in rows)
    logger.debug("Inserted %s observations", len(rows))


def list_observations(audit_id: str) -> List[Dict[str, Any]]:
    return _fetch_all(_SELECT_OBSERVATIONS, {"audit_id": audit_id})


_INSERT_SNAPSHOT = """
INSERT INTO business_snapshots (business_id, audit_id, source, data)
VALUES (%(business_id)s, %(audit_id)s, %(source)s, %(data)s)
"""

_SELECT_LATEST_DISCOVERY = """
SELECT data, created_at
FROM business_snapshots
WHERE audit_id = %(audit_id)s AND source = 'manual' AND data ? 'discovery'
ORDER BY created_at DESC
LIMIT 1
"""


def insert_snapshot(business_id: str, audit_id: Optional[str], source: str, data: Dict[str, Any]) -> None:
    _write(
        [
            (
                _INSERT_SNAPSHOT,
                {
                    "business_id": str(business_id),
                    "audit_id": str(audit_id) if audit_id else None,
                    "source": source,
                    "data": extras.Json(data),
                },
            )
        ]
    )


def latest_discovery_snapshot(audit_id: str) -> Optional[Dict[str, Any]]:
    """Return the ``discovery`` payload of the newest manual snapshot, if any."""
    row = _fetch_one(_SELECT_LATEST_DISCOVERY, {"audit_id": audit_id})
    if not row:
        return None
    data = row.get("data") or {}
    discovery = data.get("discovery")
    return discovery if isinstance(discovery, dict) else None


# ---------------------------------------------------------------------------
# Listing opportunities
# ---------------------------------------------------------------------------

_SELECT_OPPORTUNITY = """
SELECT id FROM listing_opportunities
WHERE audit_id = %(audit_id)s AND directory = %(directory)s
LIMIT 1
"""

_INSERT_OPPORTUNITY = """
INSERT INTO listing_opportunities (audit_id, directory, suggested_url, reason, priority)
VALUES (%(audit_id)s, %(directory)s, %(suggested_url)s, %(reason)s, %(priority)s)
"""


def opportunity_exists(audit_id: str, directory_key: str) -> bool:
    return _fetch_one(_SELECT_OPPORTUNITY, {"audit_id": audit_id, "directory": directory_key}) is not None


def insert_opportunity(audit_id: str, opportunity: ListingOpportunity) -> None:
    _write(
        [
            (
                _INSERT_OPPORTUNITY,
                {
                    "audit_id": str(audit_id),
                    "directory": opportunity.directory_key,
                    "suggested_url": opportunity.suggested_url,
                    "reason": opportunity.reason,
                    "priority": opportunity.priority,
                },
            )
        ]
    )


# ---------------------------------------------------------------------------
# Reference side channel
# ---------------------------------------------------------------------------

_UPDATE_WEBSITE = "UPDATE business_profiles SET website = %(website)s WHERE id = %(profile_id)s"
_UPDATE_SOCIALS = "UPDATE business_profiles SET socials = %(socials)s WHERE id = %(profile_id)s"

_MERGE_GOLDEN_WEBSITE = """
UPDATE businesses
SET golden_profile = COALESCE(golden_profile, '{}'::jsonb) || %(golden)s::jsonb
WHERE id = %(business_id)s
"""

_MERGE_SOCIALS_LAST = """
UPDATE businesses
SET golden_profile = jsonb_set(
    COALESCE(golden_profile, '{}'::jsonb),
    '{socials_last}',
    COALESCE(golden_profile -> 'socials_last', '{}'::jsonb) || %(socials_last)s::jsonb
)
WHERE id = %(business_id)s
"""


def update_website(business_id: str, url: str) -> Optional[str]:
    """Set the profile website and mirror the golden fields onto ``businesses``; returns the previous value."""
    profile = get_profile(business_id)
    golden = {
        "name": profile.get("golden_name"),
        "address": profile.get("golden_address"),
        "phone": profile.get("golden_phone"),
        "website": url,
    }
    _write(
        [
            (_UPDATE_WEBSITE, {"website": url, "profile_id": profile["id"]}),
            (_MERGE_GOLDEN_WEBSITE, {"golden": extras.Json(golden), "business_id": str(business_id)}),
        ]
    )
    return profile.get("website")


def update_socials(business_id: str, socials: Dict[str, str]) -> None:
    profile = get_profile(business_id)
    _write([(_UPDATE_SOCIALS, {"socials": extras.Json(socials), "profile_id": profile["id"]})])


def merge_socials_last(business_id: str, socials_last: Dict[str, str]) -> None:
    """Merge latest-post timestamps into ``businesses.golden_profile.socials_last``."""
    if not socials_last:
        return
    _write([(_MERGE_SOCIALS_LAST, {"socials_last": extras.Json(socials_last), "business_id": str(business_id)})])


# ---------------------------------------------------------------------------
# Confirmed places
# ---------------------------------------------------------------------------

_INSERT_PROFILE = """
INSERT INTO business_profiles (
    lead_id,
    place_cid,
    golden_name,
    golden_address,
    golden_phone,
    website,
    socials,
    categories
) VALUES (
    %(lead_id)s,
    %(place_cid)s,
    %(golden_name)s,
    %(golden_address)s,
    %(golden_phone)s,
    %(website)s,
    NULL,
    %(categories)s
)
RETURNING id
"""

_LINK_PROFILE = "UPDATE business_profiles SET business_id = id WHERE id = %(profile_id)s AND business_id IS NULL"

_INSERT_AUDIT = """
INSERT INTO audit_runs (business_id, status)
VALUES (%(business_id)s, 'pending')
RETURNING id
"""


def create_profile_and_audit(row: Dict[str, Any]) -> Dict[str, str]:
    """Insert a business profile from a confirmed place and open a pending audit run."""
    if not row.get("golden_name"):
        raise ValueError("golden_name is required to create a business profile")

    with get_connection() as conn:
        try:
            with conn.cursor() as cur:
                cur.execute(_INSERT_PROFILE, row)
                profile_id = cur.fetchone()[0]
                cur.execute(_LINK_PROFILE, {"profile_id": profile_id})
                cur.execute(_INSERT_AUDIT, {"business_id": profile_id})
                audit_id = cur.fetchone()[0]
            conn.commit()
        except psycopg2.Error as exc:
            conn.rollback()
            raise PersistenceError(str(exc).strip() or exc.__class__.__name__) from exc

    logger.info("Created business profile %s with audit %s", profile_id, audit_id)
    return {"auditId": str(audit_id), "businessId": str(profile_id)}


# ---------------------------------------------------------------------------
# Audit status
# ---------------------------------------------------------------------------

_SELECT_AUDIT_RUN = """
SELECT id, business_id, status, started_at, completed_at, summary
FROM audit_runs
WHERE id = %(audit_id)s
"""

_COUNT_FOR_AUDIT = {
    "snapshots": "SELECT COUNT(*) AS n FROM business_snapshots WHERE audit_id = %(audit_id)s",
    "nap_observations": "SELECT COUNT(*) AS n FROM nap_observations WHERE audit_id = %(audit_id)s",
    "listing_opportunities": "SELECT COUNT(*) AS n FROM listing_opportunities WHERE audit_id = %(audit_id)s",
}


def audit_status(audit_id: str) -> Dict[str, Any]:
    """Summarise an audit run: the run row, the profile basics and per-table counts."""
    audit = _fetch_one(_SELECT_AUDIT_RUN, {"audit_id": audit_id})
    if not audit:
        raise NotFoundError(f"Audit not found: {audit_id}")

    business = _fetch_one(_SELECT_PROFILE, {"business_id": audit["business_id"]})
    counts = {}
    for name, sql in _COUNT_FOR_AUDIT.items():
        row = _fetch_one(sql, {"audit_id": audit_id}) or {}
        counts[name] = int(row.get("n") or 0)

    steps = {
        "nap_confirmed": bool(
            business
            and (business.get("golden_name") or business.get("golden_address") or business.get("golden_phone"))
        ),
        "snapshot": counts["snapshots"] > 0,
        "discovery": counts["nap_observations"] > 0,
        "complete": audit.get("status") == "complete",
    }
    return {"audit": audit, "business": business, "counts": counts, "steps": steps}
