"""Merchant name normalization.

Bank exports describe the same payee in many ways (``"COSTCO WHSE #4821"``,
``"Costco Whse   #4821"``, ``"POS 0042 COSTCO WHSE"``).  The normalized form
returned here is the merchant identity used for every downstream grouping:
recurrence detection, duplicate detection, and rule lookup.
"""

from __future__ import annotations

import re

UNKNOWN_MERCHANT = "Unknown"

# Point-of-sale noise: asterisks, hash marks with their store numbers,
# "POS" terminal ids, and authorization status words.
_NOISE_RE = re.compile(
    r"\*|#\s*\d*|\bPOS\s*\d+|\b(?:PAYMENT|AUTH|PENDING)\b",
    re.IGNORECASE,
)
_SPACE_RUN_RE = re.compile(r"\s{2,}")


def normalize_merchant(raw: str | None) -> str:
    """Canonicalize a raw merchant string into a stable merchant key.

    Strips point-of-sale noise, collapses interior whitespace, and
    upper-cases only the first character (``"MCDONALD'S #4821"`` becomes
    ``"Mcdonald's"``, not ``"McDonald's"``).  Empty input, or input that is
    nothing but noise, maps to ``"Unknown"``.

    The function is pure and idempotent: normalizing an already-normalized
    key returns it unchanged.

    Args:
        raw: Merchant or description text as reported by the bank.

    Returns:
        The normalized merchant key.  Never raises.
    """
    if not raw:
        return UNKNOWN_MERCHANT

    # Removing one token can expose another (e.g. "AUTH#1PENDING"), and case
    # mapping can change length (e.g. "ŉ" upper-cases to "ʼN"), so repeat
    # until nothing changes.
    key = raw
    while True:
        cleaned = _normalize_once(key)
        if cleaned == key:
            return key
        key = cleaned


def _normalize_once(text: str) -> str:
    cleaned = _NOISE_RE.sub("", text)
    cleaned = _SPACE_RUN_RE.sub(" ", cleaned).strip()
    if not cleaned:
        return UNKNOWN_MERCHANT
    return cleaned[0].upper() + cleaned[1:].lower()
