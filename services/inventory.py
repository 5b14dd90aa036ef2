"""Organization-scoped access to the inventory_items table.

Every statement in this module carries ``org_id = ?``; callers never see a
record that belongs to another organization.
"""
import logging
import sqlite3
from typing import Any, Dict, Iterable, List, Optional, Sequence

from services import memory
from services.errors import PersistenceError

logger = logging.getLogger(__name__)

# Largest value an SQLite INTEGER column holds
MAX_INTEGER = 2**63 - 1

# sqlite3 raises OverflowError, not sqlite3.Error, for ints past MAX_INTEGER
DB_ERRORS = (sqlite3.Error, OverflowError)

WRITABLE_FIELDS = {
    "name",
    "sku",
    "invoice",
    "quantity",
    "reorder_threshold",
    "category",
    "item_type",
    "operational_category",
    "expiration_date",
    "order_status",
    "last_restock",
}

SUMMARY_COLUMNS = (
    "name, sku, invoice, category, expiration_date, item_type, "
    "operational_category, order_status, quantity, reorder_threshold"
)


def _get_conn() -> sqlite3.Connection:
    return memory.get_conn()


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join(["?"] * len(values))


def _check_fields(fields: Iterable[str]) -> None:
    unknown = set(fields) - WRITABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not writable: {', '.join(sorted(unknown))}")


def find_items(org_id: str, where: str = "", params: Sequence[Any] = ()) -> List[dict]:
    """Return records of one organization matching an extra SQL predicate."""
    sql = "SELECT * FROM inventory_items WHERE org_id = ?"
    if where:
        sql += f" AND ({where})"
    sql += " ORDER BY name, id"
    con = _get_conn()
    try:
        cur = con.execute(sql, (org_id, *params))
        return [dict(row) for row in cur.fetchall()]
    except DB_ERRORS as e:
        raise PersistenceError(f"Error finding items: {e}") from e
    finally:
        con.close()


def get_item(org_id: str, item_id: int) -> Optional[dict]:
    con = _get_conn()
    try:
        row = con.execute(
            "SELECT * FROM inventory_items WHERE org_id = ? AND id = ?",
            (org_id, int(item_id)),
        ).fetchone()
        return dict(row) if row else None
    except DB_ERRORS as e:
        raise PersistenceError(f"Error reading item {item_id}: {e}") from e
    finally:
        con.close()


def update_items(org_id: str, ids: Sequence[int], fields: Dict[str, Any]) -> int:
    """Overwrite the same fields on every id in one statement."""
    if not ids:
        return 0
    _check_fields(fields)
    set_clause = ", ".join(f"{k} = ?" for k in fields)
    values = (*fields.values(), org_id, *[int(i) for i in ids])
    con = _get_conn()
    try:
        cur = con.execute(
            f"UPDATE inventory_items SET {set_clause}, updated_at = CURRENT_TIMESTAMP "
            f"WHERE org_id = ? AND id IN ({_placeholders(ids)})",
            values,
        )
        con.commit()
        return cur.rowcount
    except DB_ERRORS as e:
        raise PersistenceError(f"Error updating items: {e}") from e
    finally:
        con.close()


def compare_and_set_quantity(
    org_id: str,
    item_id: int,
    expected: int,
    new: int,
    extra_fields: Optional[Dict[str, Any]] = None,
) -> bool:
    """Write ``new`` only if the stored quantity still equals ``expected``.

    Returns False when another writer changed the record in between.
    """
    fields: Dict[str, Any] = {"quantity": int(new)}
    fields.update(extra_fields or {})
    _check_fields(fields)
    set_clause = ", ".join(f"{k} = ?" for k in fields)
    con = _get_conn()
    try:
        cur = con.execute(
            f"UPDATE inventory_items SET {set_clause}, updated_at = CURRENT_TIMESTAMP "
            "WHERE org_id = ? AND id = ? AND quantity = ?",
            (*fields.values(), org_id, int(item_id), int(expected)),
        )
        con.commit()
        return cur.rowcount == 1
    except DB_ERRORS as e:
        raise PersistenceError(f"Error updating item {item_id}: {e}") from e
    finally:
        con.close()


def insert_item(org_id: str, data: Dict[str, Any]) -> int:
    fields = {k: v for k, v in data.items() if k in WRITABLE_FIELDS}
    if not fields.get("name"):
        raise ValueError("Item name is required.")
    columns = ", ".join(["org_id", *fields.keys()])
    values = (org_id, *fields.values())
    con = _get_conn()
    try:
        cur = con.execute(
            f"INSERT INTO inventory_items ({columns}) VALUES ({_placeholders(values)})",
            values,
        )
        con.commit()
        return int(cur.lastrowid)
    except DB_ERRORS as e:
        raise PersistenceError(f"Error creating item: {e}") from e
    finally:
        con.close()


def delete_items(org_id: str, ids: Sequence[int]) -> int:
    if not ids:
        return 0
    con = _get_conn()
    try:
        cur = con.execute(
            f"DELETE FROM inventory_items WHERE org_id = ? AND id IN ({_placeholders(ids)})",
            (org_id, *[int(i) for i in ids]),
        )
        con.commit()
        return cur.rowcount
    except DB_ERRORS as e:
        raise PersistenceError(f"Error deleting items: {e}") from e
    finally:
        con.close()


def count_items(org_id: str) -> int:
    con = _get_conn()
    try:
        row = con.execute(
            "SELECT COUNT(*) AS total FROM inventory_items WHERE org_id = ?", (org_id,)
        ).fetchone()
        return int(row["total"] or 0)
    except DB_ERRORS as e:
        raise PersistenceError(f"Error counting items: {e}") from e
    finally:
        con.close()


def list_skus(org_id: str) -> List[str]:
    con = _get_conn()
    try:
        cur = con.execute(
            "SELECT sku FROM inventory_items WHERE org_id = ? AND sku IS NOT NULL AND sku != ''",
            (org_id,),
        )
        return [str(row["sku"]) for row in cur.fetchall()]
    except DB_ERRORS as e:
        raise PersistenceError(f"Error reading SKUs: {e}") from e
    finally:
        con.close()


def summary_rows(org_id: str, limit: int = 100) -> List[dict]:
    """Bounded read used to ground the intent interpreter."""
    con = _get_conn()
    try:
        cur = con.execute(
            f"SELECT {SUMMARY_COLUMNS} FROM inventory_items WHERE org_id = ? ORDER BY name, id LIMIT ?",
            (org_id, int(limit)),
        )
        return [dict(row) for row in cur.fetchall()]
    except DB_ERRORS as e:
        raise PersistenceError(f"Error reading inventory summary: {e}") from e
    finally:
        con.close()


def record_history(
    org_id: str,
    item: Dict[str, Any],
    previous_quantity: int,
    new_quantity: int,
    change_type: str,
    source: str = "ai_action",
) -> None:
    """Log a quantity change. History is best-effort and never fails the caller."""
    con = _get_conn()
    try:
        con.execute(
            """
            INSERT INTO inventory_history (
                org_id, item_id, item_name, sku,
                previous_quantity, new_quantity, quantity_change, change_type, source
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                org_id,
                item.get("id"),
                str(item.get("name") or ""),
                item.get("sku"),
                int(previous_quantity),
                int(new_quantity),
                int(new_quantity) - int(previous_quantity),
                change_type,
                source,
            ),
        )
        con.commit()
    except DB_ERRORS as e:
        logger.error(f"Error recording history for item {item.get('id')}: {e}")
    finally:
        con.close()


def get_history(org_id: str, item_id: Optional[int] = None) -> List[dict]:
    sql = "SELECT * FROM inventory_history WHERE org_id = ?"
    params: List[Any] = [org_id]
    if item_id is not None:
        sql += " AND item_id = ?"
        params.append(int(item_id))
    sql += " ORDER BY id"
    con = _get_conn()
    try:
        cur = con.execute(sql, tuple(params))
        return [dict(row) for row in cur.fetchall()]
    except DB_ERRORS as e:
        raise PersistenceError(f"Error reading history: {e}") from e
    finally:
        con.close()
