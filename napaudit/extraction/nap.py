"""NAP comparison between an observed page and the reference record."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from napaudit.core.text import overlap_ratio, token_set

PHONE_POINTS = 60
ADDRESS_POINTS = 30
NAME_POINTS = 10
OVERLAP_THRESHOLD = 0.6

EXACT = "EXACT"
PARTIAL = "PARTIAL"
MISMATCH = "MISMATCH"
MISSING = "MISSING"

_NON_DIGIT = re.compile(r"\D")


@dataclass(frozen=True)
class Nap:
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None


@dataclass(slots=True)
class MatchResult:
    score: int
    mismatch: Dict[str, Any] = field(default_factory=dict)
    flags: Dict[str, bool] = field(default_factory=dict)

    def mismatch_with_flags(self) -> Dict[str, Any]:
        return {**self.mismatch, "flags": dict(self.flags)}


def normalize_phone(raw: Optional[str], country_code: str = "61") -> Optional[str]:
    """Normalise a phone to ``+<country><national>``; service numbers pass through as digits."""
    if not raw:
        return None
    digits = _NON_DIGIT.sub("", str(raw))
    if not digits:
        return None
    if digits.startswith(country_code):
        return f"+{country_code}{digits[len(country_code):]}"
    if digits.startswith("0"):
        return f"+{country_code}{digits[1:]}"
    # 13 / 1300 / 1800 style numbers have no geographic form
    if digits.startswith("1") and len(digits) >= 8:
        return digits
    if digits.startswith("4") and len(digits) == 9:
        return f"+{country_code}{digits}"
    return f"+{digits}"


def phones_match(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a == b or a.endswith(b) or b.endswith(a)


def score_match(reference: Any, observed: Any, country_code: str = "61") -> MatchResult:
    """Score how well ``observed`` agrees with ``reference`` (both expose name/address/phone)."""
    score = 0
    mismatch: Dict[str, Any] = {}

    golden_phone = normalize_phone(getattr(reference, "phone", None), country_code)
    observed_phone = normalize_phone(getattr(observed, "phone", None), country_code)
    phone_ok = phones_match(golden_phone, observed_phone)
    if phone_ok:
        score += PHONE_POINTS
    elif golden_phone or observed_phone:
        mismatch["phone"] = {"golden": golden_phone, "observed": observed_phone}

    flags = {"phone": phone_ok}
    for field_name, points in (("address", ADDRESS_POINTS), ("name", NAME_POINTS)):
        golden_value = getattr(reference, field_name, None)
        observed_value = getattr(observed, field_name, None)
        overlap = overlap_ratio(token_set(golden_value), token_set(observed_value))
        matched = overlap >= OVERLAP_THRESHOLD
        if matched:
            score += points
        elif overlap > 0:
            mismatch[field_name] = {"overlap": overlap, "golden": golden_value, "observed": observed_value}
        flags[field_name] = matched

    return MatchResult(score=score, mismatch=mismatch, flags=flags)


def classify_field(mismatch: Optional[Dict[str, Any]], field_name: str) -> str:
    """Classify one NAP field of a stored observation's mismatch payload."""
    if not isinstance(mismatch, dict) or mismatch.get("error"):
        return MISSING
    flags = mismatch.get("flags") or {}
    if flags.get(field_name):
        return EXACT
    detail = mismatch.get(field_name)
    if not isinstance(detail, dict):
        return MISSING
    if field_name == "phone":
        return MISMATCH if detail.get("golden") and detail.get("observed") else MISSING
    return PARTIAL if detail.get("overlap") else MISMATCH
