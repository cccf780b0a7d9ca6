"""String similarity primitives for duplicate detection.

No I/O; edit distance comes from rapidfuzz. Used by:
  - services/identity_service.py (duplicate detection, lookups)
"""

import re

from rapidfuzz.distance import Levenshtein

# ── Phone normalization ──────────────────────────────────────────────

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str | None) -> str:
    """Reduce a phone number to a comparable digit string.

    Strips everything but digits, then drops the North American "1" trunk
    prefix from 11-digit numbers and the Mexican "52" country code from
    12-digit numbers. Idempotent.

    Examples:
        "+1 (555) 123-4567"  → "5551234567"
        "+52 55 1234 5678"   → "5512345678"
        "ext"                → ""
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) == 12 and digits.startswith("52"):
        digits = digits[2:]
    return digits


# ── Edit distance ────────────────────────────────────────────────────


def levenshtein(a: str, b: str) -> int:
    """Unit-cost insert/delete/substitute edit distance."""
    return Levenshtein.distance(a or "", b or "")


def similarity(a: str | None, b: str | None) -> float:
    """Case-insensitive similarity in [0, 1]; 1.0 for two empty strings."""
    a = a or ""
    b = b or ""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - levenshtein(a.lower(), b.lower()) / longest
