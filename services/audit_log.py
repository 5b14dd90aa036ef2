import json
import logging
import sqlite3
from typing import Any, Optional

from services import memory
from services.errors import PersistenceError

logger = logging.getLogger(__name__)


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=True, sort_keys=True, default=str)
    return str(value)


def record_event(
    *,
    org_id: str,
    actor_user_id: Optional[str],
    action_type: str,
    entity_type: str,
    entity_id: Any = None,
    old_value: Any = None,
    new_value: Any = None,
    note: Optional[str] = None,
) -> Optional[int]:
    """Append an audit row. Returns the row id, or None if the write failed."""
    con = memory.get_conn()
    try:
        cur = con.execute(
            """
            INSERT INTO audit_events (
                org_id,
                actor_user_id,
                action_type,
                entity_type,
                entity_id,
                old_value,
                new_value,
                note
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(org_id),
                str(actor_user_id or "") or None,
                str(action_type or "").strip(),
                str(entity_type or "").strip(),
                None if entity_id is None else str(entity_id),
                _stringify(old_value),
                _stringify(new_value),
                str(note or "")[:1000],
            ),
        )
        con.commit()
        return int(cur.lastrowid)
    except sqlite3.Error as e:
        logger.error(f"Error recording audit event {action_type}: {e}")
        return None
    finally:
        con.close()


def list_events(org_id: str, limit: int = 50) -> list:
    con = memory.get_conn()
    try:
        cur = con.execute(
            "SELECT * FROM audit_events WHERE org_id = ? ORDER BY id DESC LIMIT ?",
            (str(org_id), int(limit)),
        )
        return [dict(row) for row in cur.fetchall()]
    except sqlite3.Error as e:
        raise PersistenceError(f"Error reading audit events: {e}") from e
    finally:
        con.close()
