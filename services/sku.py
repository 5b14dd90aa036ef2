"""Deterministic SKU synthesis: ``{PREFIX}-{ABBR}-{NNN}``.

"Paper Towels" (cleaning) -> ``CLN-PAPTOW-001``.
"""
import re
from typing import Iterable, List, Optional

CATEGORY_PREFIXES = {
    # stock categories
    "snacks": "SNK",
    "beverages": "BEV",
    "dairy": "DRY",
    "meat": "MET",
    "produce": "PRD",
    "frozen": "FRZ",
    "bakery": "BKR",
    "dry goods": "DRG",
    "condiments": "CND",
    "alcohol": "ALC",
    "supplements": "SPL",
    "seafood": "SFD",
    "deli": "DLI",
    "pantry": "PNT",
    # operational categories
    "cleaning": "CLN",
    "office": "OFC",
    "kitchen": "KIT",
    "packaging": "PKG",
    "tableware": "TBW",
    "maintenance": "MNT",
    "safety": "SFT",
    "other": "OTH",
}
FALLBACK_PREFIX = "GEN"


def category_prefix(category: Optional[str] = None, operational_category: Optional[str] = None) -> str:
    key = (operational_category or category or "other").strip().lower()
    return CATEGORY_PREFIXES.get(key, FALLBACK_PREFIX)


def abbreviate_name(name: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9\s]", "", str(name or ""))
    words = [w for w in cleaned.split() if len(w) > 1]
    if not words:
        return "ITEM"
    if len(words) == 1:
        return words[0][:6].upper()
    return (words[0][:3] + words[1][:3]).upper()


def _sequence(sku: str, pattern: str) -> int:
    tail = sku[len(pattern):]
    match = re.match(r"\d+", tail)
    return int(match.group(0)) if match else 0


def generate_sku(
    name: str,
    category: Optional[str] = None,
    operational_category: Optional[str] = None,
    existing: Iterable[str] = (),
) -> str:
    pattern = f"{category_prefix(category, operational_category)}-{abbreviate_name(name)}-"
    sequences = [_sequence(s, pattern) for s in existing if s and s.startswith(pattern)]
    next_seq = max(sequences) + 1 if sequences else 1
    return f"{pattern}{next_seq:03d}"


class SkuAllocator:
    """Hands out SKUs that are unique across the organization and the current batch."""

    def __init__(self, existing: Iterable[str] = ()):
        self._taken: List[str] = [s for s in existing if s]

    def allocate(
        self,
        name: str,
        category: Optional[str] = None,
        operational_category: Optional[str] = None,
    ) -> str:
        # The sequence is one past the highest taken for the same prefix-abbr,
        # so the result never equals a code seen so far.
        sku = generate_sku(name, category, operational_category, self._taken)
        self._taken.append(sku)
        return sku
