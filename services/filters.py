"""Turns a filter descriptor into the candidate record set of one organization."""
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple

from services import inventory

logger = logging.getLogger(__name__)

DEFAULT_NAME_MAX_LENGTH = 100

FILTER_KEYS = ("invoice", "sku", "name_contains", "category", "item_type", "operational_category")
ITEM_TYPES = {"stock", "operational"}

# Implicit narrowing applied per action kind when the descriptor does not
# narrow the set itself. Kinds missing from this table get "none".
POLICY_NONE = "none"
POLICY_MISSING_SKU = "missing_sku_when_unscoped"

DEFAULT_FILTER_POLICIES: Dict[str, str] = {
    "generate_sku": POLICY_MISSING_SKU,
}


@dataclass(frozen=True)
class FilterDescriptor:
    invoice: Optional[str] = None
    sku: Optional[str] = None
    name_contains: Optional[str] = None
    category: Optional[str] = None
    item_type: Optional[str] = None
    operational_category: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "FilterDescriptor":
        if not isinstance(data, dict):
            return cls()
        values: Dict[str, Optional[str]] = {}
        for key in FILTER_KEYS:
            raw = data.get(key)
            if raw is None or isinstance(raw, (dict, list, bool)):
                continue
            text = str(raw).strip()
            if text:
                values[key] = text
        item_type = values.get("item_type")
        if item_type is not None:
            item_type = item_type.lower()
            values["item_type"] = item_type if item_type in ITEM_TYPES else None
        return cls(**values)

    def to_dict(self) -> Dict[str, str]:
        return {k: v for k, v in asdict(self).items() if v}

    def is_narrowing(self) -> bool:
        """True when an identifying filter (invoice, sku, name, category) is present."""
        return bool(self.invoice or self.sku or self.name_contains or self.category)


def sanitize_name_fragment(text: str, max_length: int = DEFAULT_NAME_MAX_LENGTH) -> str:
    """Bound the fragment and escape LIKE meta-characters (``\\``, ``%``, ``_``)."""
    value = str(text or "")[: max(0, int(max_length))]
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def default_policy(kind: Any) -> str:
    key = str(getattr(kind, "value", kind) or "")
    return DEFAULT_FILTER_POLICIES.get(key, POLICY_NONE)


def build_where(
    filters: FilterDescriptor,
    kind: Any = None,
    *,
    name_max_length: int = DEFAULT_NAME_MAX_LENGTH,
) -> Tuple[str, List[Any]]:
    clauses: List[str] = []
    params: List[Any] = []

    if filters.invoice:
        clauses.append("invoice = ?")
        params.append(filters.invoice)
    if filters.sku:
        clauses.append("sku = ?")
        params.append(filters.sku)
    if filters.name_contains:
        fragment = sanitize_name_fragment(filters.name_contains, name_max_length).casefold()
        # casefold() is registered on every connection by memory.get_conn
        clauses.append("casefold(name) LIKE ? ESCAPE '\\'")
        params.append(f"%{fragment}%")
    if filters.category:
        clauses.append("category = ?")
        params.append(filters.category)
    if filters.item_type:
        clauses.append("item_type = ?")
        params.append(filters.item_type)
    if filters.operational_category:
        clauses.append("operational_category = ?")
        params.append(filters.operational_category)

    if default_policy(kind) == POLICY_MISSING_SKU and not filters.is_narrowing():
        clauses.append("(sku IS NULL OR sku = '')")

    return " AND ".join(clauses), params


def resolve_candidates(
    org_id: str,
    filters: FilterDescriptor,
    kind: Any = None,
    *,
    name_max_length: int = DEFAULT_NAME_MAX_LENGTH,
) -> List[dict]:
    where, params = build_where(filters, kind, name_max_length=name_max_length)
    items = inventory.find_items(org_id, where, params)
    logger.debug(
        "Resolved %d candidate(s) for org=%s kind=%s filters=%s",
        len(items),
        org_id,
        getattr(kind, "value", kind),
        filters.to_dict(),
    )
    return items
