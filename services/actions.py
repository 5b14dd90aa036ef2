"""Per-action-kind handlers that apply a validated intent to one organization.

Handlers share one outcome shape. Multi-record mutations are best effort:
records already written stay written when a later one fails.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from services import filters, inventory, tier_limits
from services.errors import PersistenceError
from services.intent import ActionIntent, ActionKind
from services.sku import SkuAllocator
from stock_brain.config import ActionPolicy

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "category", "sku", "operational_category")
NO_MATCH_MESSAGE = "No items matched your criteria. Please be more specific."


@dataclass
class ActionOutcome:
    success: bool
    action: str
    affected: int
    message: str
    errors: List[str] = field(default_factory=list)
    affected_names: List[str] = field(default_factory=list)
    more_count: int = 0
    item_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": self.success,
            "action": self.action,
            "items_affected": self.affected,
            "message": self.message,
        }
        if self.errors:
            body["errors"] = list(self.errors)
        if self.affected_names:
            body["affected_names"] = list(self.affected_names)
            body["more_count"] = self.more_count
        return body


@dataclass
class ExecutionContext:
    org_id: str
    tier: str = "free"
    billing_exempt: bool = False
    policy: ActionPolicy = field(default_factory=ActionPolicy)
    config: Optional[Dict[str, Any]] = None


@dataclass
class BatchResult:
    succeeded: List[dict]
    failed: Optional[dict] = None
    error: Optional[str] = None


def apply_sequentially(records: List[dict], apply: Callable[[dict], None]) -> BatchResult:
    """Apply ``apply`` to each record in order, stopping at the first PersistenceError."""
    succeeded: List[dict] = []
    for record in records:
        try:
            apply(record)
        except PersistenceError as e:
            logger.warning(
                "Stopped after %d of %d record(s); item %s failed: %s",
                len(succeeded),
                len(records),
                record.get("id"),
                e,
            )
            return BatchResult(succeeded, record, str(e))
        succeeded.append(record)
    return BatchResult(succeeded)


def _failure(action: ActionKind, message: str, **kwargs: Any) -> ActionOutcome:
    return ActionOutcome(success=False, action=action.value, affected=0, message=message, **kwargs)


def _success(ctx: ExecutionContext, action: ActionKind, records: List[dict], message: str) -> ActionOutcome:
    size = ctx.policy.sample_size
    return ActionOutcome(
        success=True,
        action=action.value,
        affected=len(records),
        message=message,
        affected_names=[str(r.get("name") or "") for r in records[:size]],
        more_count=max(0, len(records) - size),
        item_ids=[int(r["id"]) for r in records if r.get("id") is not None],
    )


def _batch_outcome(
    ctx: ExecutionContext,
    action: ActionKind,
    records: List[dict],
    batch: BatchResult,
    message: str,
) -> ActionOutcome:
    if batch.error is None:
        return _success(ctx, action, batch.succeeded, message)
    done = len(batch.succeeded)
    failed_name = str((batch.failed or {}).get("name") or (batch.failed or {}).get("id"))
    size = ctx.policy.sample_size
    return ActionOutcome(
        success=False,
        action=action.value,
        affected=done,
        message=(
            f"{action.value} stopped after updating {done} of {len(records)} item(s): "
            f"error updating {failed_name}."
        ),
        errors=[f"{failed_name}: {batch.error}"],
        affected_names=[str(r.get("name") or "") for r in batch.succeeded[:size]],
        more_count=max(0, done - size),
        item_ids=[int(r["id"]) for r in batch.succeeded],
    )


def _overwrite(
    ctx: ExecutionContext,
    action: ActionKind,
    records: List[dict],
    fields: Dict[str, Any],
    message: str,
) -> ActionOutcome:
    try:
        inventory.update_items(ctx.org_id, [r["id"] for r in records], fields)
    except PersistenceError as e:
        return _failure(action, f"Error updating items: {e}", errors=[str(e)])
    return _success(ctx, action, records, message)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _adjust_quantity(
    ctx: ExecutionContext,
    record: dict,
    compute: Callable[[int], int],
    change_type: str,
    extra_fields: Optional[Dict[str, Any]] = None,
) -> int:
    """Read-modify-write one record with a conditional write.

    A write that loses a race re-reads the record and recomputes, at most
    ``policy.cas_retries`` times.
    """
    current = int(record.get("quantity") or 0)
    for _ in range(ctx.policy.cas_retries + 1):
        new = compute(current)
        if new > inventory.MAX_INTEGER:
            raise PersistenceError(f"Quantity for item {record['id']} would exceed {inventory.MAX_INTEGER}")
        if inventory.compare_and_set_quantity(ctx.org_id, record["id"], current, new, extra_fields):
            inventory.record_history(ctx.org_id, record, current, new, change_type)
            record["quantity"] = new
            return new
        fresh = inventory.get_item(ctx.org_id, record["id"])
        if fresh is None:
            raise PersistenceError(f"Item {record['id']} no longer exists")
        current = int(fresh.get("quantity") or 0)
    raise PersistenceError(f"Item {record['id']} changed concurrently; gave up after retries")


# ---- handlers ----


def _set_expiry(ctx: ExecutionContext, intent: ActionIntent, records: List[dict]) -> ActionOutcome:
    return _overwrite(
        ctx,
        intent.kind,
        records,
        {"expiration_date": intent.value},
        f"Set expiration date to {intent.value} for {len(records)} item(s)",
    )


def _set_quantity(ctx: ExecutionContext, intent: ActionIntent, records: List[dict]) -> ActionOutcome:
    quantity = int(intent.value or 0)
    outcome = _overwrite(
        ctx,
        intent.kind,
        records,
        {"quantity": quantity},
        f"Set quantity to {quantity} for {len(records)} item(s)",
    )
    if outcome.success:
        for record in records:
            previous = int(record.get("quantity") or 0)
            if previous != quantity:
                inventory.record_history(ctx.org_id, record, previous, quantity, "adjustment")
    return outcome


def _increase_quantity(ctx: ExecutionContext, intent: ActionIntent, records: List[dict]) -> ActionOutcome:
    delta = int(intent.value or 0)
    batch = apply_sequentially(
        records, lambda r: _adjust_quantity(ctx, r, lambda q: q + delta, "restock")
    )
    return _batch_outcome(
        ctx, intent.kind, records, batch, f"Added {delta} units to {len(records)} item(s)"
    )


def _decrease_quantity(ctx: ExecutionContext, intent: ActionIntent, records: List[dict]) -> ActionOutcome:
    delta = int(intent.value or 0)
    batch = apply_sequentially(
        records, lambda r: _adjust_quantity(ctx, r, lambda q: max(0, q - delta), "sale")
    )
    return _batch_outcome(
        ctx, intent.kind, records, batch, f"Removed {delta} units from {len(records)} item(s)"
    )


def _set_reorder_threshold(ctx: ExecutionContext, intent: ActionIntent, records: List[dict]) -> ActionOutcome:
    threshold = int(intent.value or 0)
    return _overwrite(
        ctx,
        intent.kind,
        records,
        {"reorder_threshold": threshold},
        f"Set reorder threshold to {threshold} for {len(records)} item(s)",
    )


def _delete_items(ctx: ExecutionContext, intent: ActionIntent, records: List[dict]) -> ActionOutcome:
    cap = ctx.policy.delete_cap
    if len(records) > cap:
        logger.warning("Refused delete of %d item(s) for org=%s (cap %d)", len(records), ctx.org_id, cap)
        return _failure(
            intent.kind,
            f"Found {len(records)} matching items. That's too many to delete at once - please be "
            "more specific (use exact name, SKU, or invoice) to avoid accidentally deleting items.",
        )
    try:
        inventory.delete_items(ctx.org_id, [r["id"] for r in records])
    except PersistenceError as e:
        return _failure(intent.kind, f"Error deleting items: {e}", errors=[str(e)])
    return _success(ctx, intent.kind, records, f"Deleted {len(records)} item(s) from inventory")


def _check_edit_field(ctx: ExecutionContext, intent: ActionIntent) -> Optional[ActionOutcome]:
    if intent.edit_field in EDITABLE_FIELDS:
        return None
    return _failure(
        intent.kind,
        f"I need to know which field to edit. Supported: {', '.join(EDITABLE_FIELDS)}. "
        'Try: "Rename [item] to [new name]" or "Change category of [item] to [category]"',
    )


def _edit_field(ctx: ExecutionContext, intent: ActionIntent, records: List[dict]) -> ActionOutcome:
    edit_field = str(intent.edit_field)
    if edit_field == "sku":
        if len(records) > 1:
            return _failure(
                intent.kind,
                f"Found {len(records)} matching items. A SKU can only belong to one item - "
                "please narrow it down to a single item.",
            )
        try:
            taken = set(inventory.list_skus(ctx.org_id)) - {records[0].get("sku")}
        except PersistenceError as e:
            return _failure(intent.kind, f"Error reading existing SKUs: {e}", errors=[str(e)])
        if intent.value in taken:
            return _failure(intent.kind, f'SKU "{intent.value}" is already used by another item.')
    return _overwrite(
        ctx,
        intent.kind,
        records,
        {edit_field: intent.value},
        f'Updated {edit_field} to "{intent.value}" for {len(records)} item(s)',
    )


def _mark_ordered(ctx: ExecutionContext, intent: ActionIntent, records: List[dict]) -> ActionOutcome:
    return _overwrite(
        ctx,
        intent.kind,
        records,
        {"order_status": "ordered"},
        f"Marked {len(records)} item(s) as ordered",
    )


def _mark_received(ctx: ExecutionContext, intent: ActionIntent, records: List[dict]) -> ActionOutcome:
    received = int(intent.value or 0)
    stamp = {"order_status": None, "last_restock": _now()}

    def _receive(record: dict) -> None:
        if received > 0:
            _adjust_quantity(ctx, record, lambda q: q + received, "received", stamp)
        else:
            inventory.update_items(ctx.org_id, [record["id"]], stamp)

    batch = apply_sequentially(records, _receive)
    message = f"Marked {len(records)} item(s) as received"
    if received > 0:
        message += f" (+{received} units restocked)"
    return _batch_outcome(ctx, intent.kind, records, batch, message)


def _generate_skus(ctx: ExecutionContext, intent: ActionIntent, records: List[dict]) -> ActionOutcome:
    missing = [r for r in records if not r.get("sku")]
    if not missing:
        return _failure(intent.kind, f"All {len(records)} matching item(s) already have a SKU.")
    try:
        allocator = SkuAllocator(inventory.list_skus(ctx.org_id))
    except PersistenceError as e:
        return _failure(intent.kind, f"Error reading existing SKUs: {e}", errors=[str(e)])

    def _assign(record: dict) -> None:
        sku = allocator.allocate(
            str(record.get("name") or ""), record.get("category"), record.get("operational_category")
        )
        inventory.update_items(ctx.org_id, [record["id"]], {"sku": sku})
        record["sku"] = sku

    batch = apply_sequentially(missing, _assign)
    return _batch_outcome(
        ctx, intent.kind, missing, batch, f"Generated SKU(s) for {len(missing)} item(s)"
    )


def _create_item(ctx: ExecutionContext, intent: ActionIntent) -> ActionOutcome:
    item = intent.item
    if item is None:
        return _failure(
            intent.kind,
            'Item name is required to add a new item. Try: "Add [name] with [quantity] units"',
        )

    limit = tier_limits.check_item_limit(ctx.org_id, ctx.tier, ctx.billing_exempt, ctx.config)
    if not limit.allowed:
        return _failure(
            intent.kind,
            limit.message or "Inventory limit reached for your plan. Please upgrade to add more items.",
        )

    operational_category = item.operational_category if item.item_type == "operational" else None
    try:
        sku = SkuAllocator(inventory.list_skus(ctx.org_id)).allocate(
            item.name, item.category, operational_category
        )
        item_id = inventory.insert_item(
            ctx.org_id,
            {
                "name": item.name,
                "sku": sku,
                "quantity": item.quantity,
                "reorder_threshold": item.reorder_threshold,
                "category": item.category,
                "item_type": item.item_type,
                "operational_category": operational_category,
                "expiration_date": item.expiration_date,
                "invoice": item.invoice,
            },
        )
    except PersistenceError as e:
        return _failure(intent.kind, f"Error creating item: {e}", errors=[str(e)])

    return ActionOutcome(
        success=True,
        action=intent.kind.value,
        affected=1,
        message=f'Created "{item.name}" (SKU: {sku}, Type: {item.item_type}) with {item.quantity} units',
        affected_names=[item.name],
        item_ids=[item_id],
    )


RecordHandler = Callable[[ExecutionContext, ActionIntent, List[dict]], ActionOutcome]

HANDLERS: Dict[ActionKind, RecordHandler] = {
    ActionKind.SET_EXPIRY: _set_expiry,
    ActionKind.SET_QUANTITY: _set_quantity,
    ActionKind.INCREASE_QUANTITY: _increase_quantity,
    ActionKind.DECREASE_QUANTITY: _decrease_quantity,
    ActionKind.SET_REORDER_THRESHOLD: _set_reorder_threshold,
    ActionKind.DELETE_ITEM: _delete_items,
    ActionKind.EDIT_FIELD: _edit_field,
    ActionKind.MARK_ORDERED: _mark_ordered,
    ActionKind.MARK_RECEIVED: _mark_received,
    ActionKind.GENERATE_SKU: _generate_skus,
}

PRECHECKS: Dict[ActionKind, Callable[[ExecutionContext, ActionIntent], Optional[ActionOutcome]]] = {
    ActionKind.EDIT_FIELD: _check_edit_field,
}


def resolve(ctx: ExecutionContext, intent: ActionIntent) -> Tuple[List[dict], Optional[ActionOutcome]]:
    try:
        records = filters.resolve_candidates(
            ctx.org_id,
            intent.filters,
            intent.kind,
            name_max_length=ctx.policy.name_filter_max_length,
        )
    except PersistenceError as e:
        return [], _failure(intent.kind, f"Error finding items: {e}", errors=[str(e)])
    if not records:
        return [], _failure(intent.kind, NO_MATCH_MESSAGE)
    return records, None


def execute(ctx: ExecutionContext, intent: ActionIntent) -> ActionOutcome:
    if intent.kind == ActionKind.CREATE_ITEM:
        return _create_item(ctx, intent)

    handler = HANDLERS.get(intent.kind)
    if handler is None:
        return _failure(intent.kind, "Unknown action type")

    precheck = PRECHECKS.get(intent.kind)
    if precheck is not None:
        rejected = precheck(ctx, intent)
        if rejected is not None:
            return rejected

    records, failed = resolve(ctx, intent)
    if failed is not None:
        return failed
    return handler(ctx, intent, records)
