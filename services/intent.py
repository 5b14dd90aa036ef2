"""Free-text message -> validated ActionIntent.

The language model only proposes a structure; nothing it returns reaches a
handler before ``parse_intent_payload`` has checked it field by field.
"""
import calendar
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import requests

from services.metrics import metrics, record_llm_call
from services.errors import InterpreterUnavailable, ParseFailure
from services.filters import ITEM_TYPES, FilterDescriptor
from services.inventory import MAX_INTEGER
from services.retry import retry_with_backoff
from stock_brain.config import load_config
from stock_brain.llm.prompts import build_action_prompt

logger = logging.getLogger(__name__)


class ActionKind(str, Enum):
    SET_EXPIRY = "set_expiry"
    SET_QUANTITY = "update_quantity"
    INCREASE_QUANTITY = "add_quantity"
    DECREASE_QUANTITY = "subtract_quantity"
    SET_REORDER_THRESHOLD = "set_reorder_threshold"
    CREATE_ITEM = "add_item"
    DELETE_ITEM = "delete_item"
    EDIT_FIELD = "edit_item"
    MARK_ORDERED = "mark_ordered"
    MARK_RECEIVED = "mark_received"
    GENERATE_SKU = "generate_sku"
    NONE = "none"


INTEGER_KINDS = {
    ActionKind.SET_QUANTITY,
    ActionKind.INCREASE_QUANTITY,
    ActionKind.DECREASE_QUANTITY,
    ActionKind.SET_REORDER_THRESHOLD,
    ActionKind.MARK_RECEIVED,
}
DATE_KINDS = {ActionKind.SET_EXPIRY}
TEXT_KINDS = {ActionKind.EDIT_FIELD}

EDIT_FIELD_ALIASES = {
    "identifier": "sku",
    "sub_category": "operational_category",
    "subcategory": "operational_category",
    "operational_subcategory": "operational_category",
}

_INT_RE = re.compile(r"^\s*\+?(\d[\d,]*)")
_ISO_DATE_RE = re.compile(r"^\s*(\d{4})-(\d{2})-(\d{2})(?:T\S*)?\s*$")
_YEAR_MONTH_RE = re.compile(r"^\s*(\d{4})-(\d{2})\s*$")


@dataclass(frozen=True)
class ItemPayload:
    name: str
    quantity: int = 0
    reorder_threshold: int = 0
    category: Optional[str] = None
    item_type: str = "stock"
    operational_category: Optional[str] = None
    expiration_date: Optional[str] = None
    invoice: Optional[str] = None


@dataclass(frozen=True)
class ActionIntent:
    kind: ActionKind
    filters: FilterDescriptor = field(default_factory=FilterDescriptor)
    value: Optional[str] = None
    edit_field: Optional[str] = None
    item: Optional[ItemPayload] = None
    confidence: float = 0.0


def _clean_text(raw: Any) -> Optional[str]:
    if raw is None or isinstance(raw, (dict, list, bool)):
        return None
    text = str(raw).strip()
    return text or None


def normalize_integer(raw: Any) -> Optional[str]:
    """Bare non-negative integer string, or None ("20 units" -> "20").

    Values the datastore cannot hold are treated as missing.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, float):
        if not raw.is_integer():
            return None
        value = int(raw)
    else:
        match = _INT_RE.match(str(raw))
        if not match:
            return None
        value = int(match.group(1).replace(",", ""))
    if not 0 <= value <= MAX_INTEGER:
        return None
    return str(value)


def _to_int(raw: Any) -> int:
    value = normalize_integer(raw)
    return int(value) if value is not None else 0


def normalize_date(raw: Any) -> Optional[str]:
    """ISO calendar date, or None. ``YYYY-MM`` means the last day of that month."""
    text = _clean_text(raw)
    if not text:
        return None
    match = _ISO_DATE_RE.match(text)
    if match:
        try:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3))).isoformat()
        except ValueError:
            return None
    match = _YEAR_MONTH_RE.match(text)
    if match:
        year, month = int(match.group(1)), int(match.group(2))
        if not 1 <= month <= 12:
            return None
        return date(year, month, calendar.monthrange(year, month)[1]).isoformat()
    return None


def normalize_value(kind: ActionKind, raw: Any) -> Optional[str]:
    if kind in INTEGER_KINDS:
        return normalize_integer(raw)
    if kind in DATE_KINDS:
        return normalize_date(raw)
    if kind in TEXT_KINDS:
        return _clean_text(raw)
    return None


def _parse_confidence(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if value != value:  # NaN
        return 0.0
    return min(1.0, max(0.0, value))


def _parse_item(raw: Any) -> Optional[ItemPayload]:
    if not isinstance(raw, dict):
        return None
    name = _clean_text(raw.get("name"))
    if not name:
        return None
    item_type = str(raw.get("item_type") or "stock").strip().lower()
    if item_type not in ITEM_TYPES:
        item_type = "stock"
    return ItemPayload(
        name=name,
        quantity=_to_int(raw.get("quantity")),
        reorder_threshold=_to_int(raw.get("reorder_threshold")),
        category=_clean_text(raw.get("category")),
        item_type=item_type,
        operational_category=_clean_text(raw.get("operational_category")),
        expiration_date=normalize_date(raw.get("expiration_date")),
        invoice=_clean_text(raw.get("invoice")),
    )


def parse_intent_payload(data: Any) -> ActionIntent:
    if not isinstance(data, dict):
        raise ParseFailure("Interpreter reply is not a JSON object.")

    action = str(data.get("action") or "").strip().lower()
    try:
        kind = ActionKind(action)
    except ValueError as e:
        raise ParseFailure(f"Unknown action {action!r}.") from e

    edit_field = _clean_text(data.get("edit_field"))
    if edit_field:
        edit_field = edit_field.lower().replace(" ", "_")
        edit_field = EDIT_FIELD_ALIASES.get(edit_field, edit_field)

    return ActionIntent(
        kind=kind,
        filters=FilterDescriptor.from_dict(data.get("filters")),
        value=normalize_value(kind, data.get("value")),
        edit_field=edit_field if kind == ActionKind.EDIT_FIELD else None,
        item=_parse_item(data.get("item_data")) if kind == ActionKind.CREATE_ITEM else None,
        confidence=_parse_confidence(data.get("confidence")),
    )


def _summary_line(row: Dict[str, Any]) -> str:
    item_type = row.get("item_type") or "stock"
    if row.get("operational_category"):
        item_type = f"{item_type} ({row['operational_category']})"
    return (
        f"{row.get('name')} | SKU: {row.get('sku') or 'N/A'} | Invoice: {row.get('invoice') or 'N/A'}"
        f" | Category: {row.get('category') or 'N/A'} | Type: {item_type}"
        f" | Qty: {row.get('quantity') or 0} | Reorder: {row.get('reorder_threshold') or 0}"
        f" | Order: {row.get('order_status') or 'none'} | Expiry: {row.get('expiration_date') or 'Not set'}"
    )


def build_inventory_summary(rows: Iterable[Dict[str, Any]], limit: int = 100) -> str:
    lines: List[str] = [_summary_line(row) for row in list(rows)[: max(0, int(limit))]]
    return "\n".join(lines) if lines else "No inventory items"


class IntentInterpreter:
    """Calls an Ollama-compatible chat endpoint in JSON mode."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        cfg = config if config is not None else load_config()
        ollama_cfg = cfg.get("ollama", {}) or {}
        self.base_url = str(ollama_cfg.get("base_url", "http://localhost:11434")).rstrip("/")
        self.model = str(ollama_cfg.get("model", "llama3.1:8b"))
        self.timeout = float(ollama_cfg.get("timeout", 60))
        self.temperature = float(ollama_cfg.get("temperature", 0.1))
        self.max_retries = int(ollama_cfg.get("max_retries", 2))

    def complete(self, system: str, user: str) -> Optional[str]:
        payload = {
            "model": self.model,
            "stream": False,
            "format": "json",
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "options": {"temperature": self.temperature},
        }

        @retry_with_backoff(
            max_retries=self.max_retries,
            base_delay=1.0,
            max_delay=10.0,
            retry_on=(requests.exceptions.ConnectionError, requests.exceptions.Timeout),
        )
        def _call_ollama() -> Optional[str]:
            logger.debug(f"Calling interpreter model={self.model}")
            response = requests.post(f"{self.base_url}/api/chat", json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
            if not isinstance(data, dict):
                return None
            content = (data.get("message") or {}).get("content")
            return str(content).strip() if content else None

        success = False
        try:
            with metrics.timer("llm_call", {"model": self.model}):
                content = _call_ollama()
            success = True
            return content
        except requests.exceptions.JSONDecodeError as e:
            raise ParseFailure(f"Interpreter returned an unreadable body: {e}") from e
        except requests.exceptions.RequestException as e:
            raise InterpreterUnavailable(f"Interpreter request failed: {e}") from e
        finally:
            record_llm_call(model=self.model, success=success)

    def interpret(self, message: str, inventory_summary: str) -> ActionIntent:
        content = self.complete(build_action_prompt(inventory_summary), message)
        if not content:
            raise ParseFailure("Interpreter returned no content.")
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ParseFailure(f"Interpreter returned invalid JSON: {e}") from e
        intent = parse_intent_payload(data)
        logger.info(
            "Interpreted message as kind=%s confidence=%.2f filters=%s",
            intent.kind.value,
            intent.confidence,
            intent.filters.to_dict(),
        )
        return intent
