"""Search query synthesis from a reference record."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence

from napaudit.core.models import ReferenceRecord
from napaudit.core.text import name_variants, normalize, strip_apostrophes
from napaudit.discovery.directories import DIRECTORY_HOSTS, SOCIAL_HOSTS

AU_STATES = ("ACT", "NSW", "NT", "QLD", "SA", "TAS", "VIC", "WA")
FACEBOOK_HOSTS = ("facebook.com", "m.facebook.com")

_STATE_RE = re.compile(r"\b(ACT|NSW|NT|QLD|SA|TAS|VIC|WA)\b", re.IGNORECASE)
_POSTCODE_RE = re.compile(r"\b(\d{4})\b")
_NON_DIGIT = re.compile(r"\D")


def city_from_address(address: Optional[str]) -> Optional[str]:
    """Naive suburb guess: the second comma segment, else the first."""
    if not address:
        return None
    parts = [part.strip() for part in address.split(",") if part.strip()]
    if len(parts) >= 2:
        return parts[1]
    return parts[0] if parts else None


def state_from_address(address: Optional[str]) -> Optional[str]:
    if not address:
        return None
    match = _STATE_RE.search(address)
    return match.group(1).upper() if match else None


def postcode_from_address(address: Optional[str]) -> Optional[str]:
    if not address:
        return None
    match = _POSTCODE_RE.search(address)
    return match.group(1) if match else None


def first_address_line(address: Optional[str]) -> Optional[str]:
    if not address:
        return None
    line = address.split(",")[0].strip()
    return line or None


def phone_digits(phone: Optional[str]) -> str:
    return _NON_DIGIT.sub("", phone or "")


def _unique(queries: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(queries))


def build_queries(
    reference: ReferenceRecord,
    social_hosts: Sequence[str] = SOCIAL_HOSTS,
    directory_hosts: Sequence[str] = DIRECTORY_HOSTS,
    country_tld: str = "au",
) -> List[str]:
    """Build the de-duplicated discovery query list for ``reference``.

    Fields that are missing never produce a query, so an empty reference gives
    an empty list.
    """
    name = (reference.name or "").strip() or None
    address = (reference.address or "").strip() or None
    digits = phone_digits(reference.phone)
    city = city_from_address(address)
    state = state_from_address(address)
    postcode = postcode_from_address(address)
    line = first_address_line(address)
    site = f"site:.{country_tld}"

    no_apos = strip_apostrophes(name) if name else None
    if no_apos == name:
        no_apos = None
    variants = name_variants(name)
    base = normalize(name)

    q: List[str] = []
    if name:
        if digits:
            q.append(f'"{name}" {digits}')
        if address:
            q.append(f'"{name}" {address}')
        if city:
            q.append(f'"{name}" {city}')
            if state:
                q.append(f'"{name}" {city} {state}')
            q.append(f"{name} {city} {site}")
        if state:
            q.append(f"{name} {state} {site}")

    if no_apos:
        q.append(f'"{no_apos}"')
        if city:
            q.append(f'"{no_apos}" {city}')
        if state:
            q.append(f"{no_apos} {state} {site}")

    for variant in variants[:2]:
        if variant != base:
            q.append(f'"{variant}" {city}' if city else f'"{variant}"')

    if digits:
        q.append(digits)
        q.append(f"{digits} {site}")

    if address:
        q.append(f'"{address}"')
        if city:
            q.append(f'"{address}" {city}')
        if postcode:
            q.append(f'"{address}" {postcode}')
        if line:
            if city and state:
                q.append(f'"{line}" {city} {state}')
            if city:
                q.append(f'"{line}" {city}')
            if postcode:
                q.append(f'"{line}" {postcode}')

    for host in social_hosts:
        if name:
            if city:
                q.append(f'site:{host} "{name}" {city}')
            q.append(f'site:{host} "{name}"')
        if no_apos:
            if city:
                q.append(f'site:{host} "{no_apos}" {city}')
            q.append(f'site:{host} "{no_apos}"')
        for variant in variants[:1]:
            if city:
                q.append(f'site:{host} "{variant}" {city}')
            q.append(f'site:{host} "{variant}"')
        if digits:
            q.append(f"site:{host} {digits}")
        if line:
            q.append(f'site:{host} "{line}"')

    for host in directory_hosts:
        if name:
            if city:
                q.append(f'site:{host} "{name}" {city}')
            q.append(f'site:{host} "{name}"')
        if digits:
            q.append(f"site:{host} {digits}")
        if address:
            q.append(f'site:{host} "{address}"')

    return _unique(q)


def priority_social_query(reference: ReferenceRecord) -> Optional[str]:
    """Facebook-restricted query placed first in every commercial pass."""
    name = strip_apostrophes(reference.name or "").strip()
    if not name:
        return None
    city = city_from_address(reference.address)
    return f'site:facebook.com "{name}" {city}' if city else f'site:facebook.com "{name}"'


def build_facebook_queries(reference: ReferenceRecord) -> List[str]:
    name = (reference.name or "").strip()
    if not name:
        return []
    no_apos = strip_apostrophes(name)
    city = city_from_address(reference.address)
    state = state_from_address(reference.address)
    names = [value for value in dict.fromkeys([name, no_apos, normalize(no_apos)]) if value][:2]

    queries: List[str] = []
    for host in FACEBOOK_HOSTS:
        for value in names:
            if city:
                queries.append(f'site:{host} "{value}" {city}')
            if state:
                queries.append(f'site:{host} "{value}" {state}')
            queries.append(f'site:{host} "{value}"')
    return _unique(queries)


def build_probe_query(host: str, reference: ReferenceRecord) -> Optional[str]:
    """``site:<host> "<name>" <city> <state|postcode>``"""
    name = (reference.name or "").strip()
    if not name:
        return None
    parts = [f"site:{host}", f'"{name}"']
    city = city_from_address(reference.address)
    state = state_from_address(reference.address)
    if city:
        parts.append(city)
    if state:
        parts.append(state)
    else:
        postcode = postcode_from_address(reference.address)
        if postcode:
            parts.append(postcode)
    return " ".join(parts)
