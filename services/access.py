import sqlite3
from dataclasses import dataclass
from typing import Optional

from services import memory
from services.errors import PersistenceError

MUTATING_ROLES = {"owner", "admin"}


@dataclass(frozen=True)
class AccessResult:
    authorized: bool
    role: Optional[str] = None


@dataclass(frozen=True)
class Organization:
    id: str
    name: str
    subscription_tier: str
    billing_exempt: bool


def _get_conn() -> sqlite3.Connection:
    return memory.get_conn()


def authorize(user_id: Optional[str], org_id: str) -> AccessResult:
    """A caller is authorized only for the organization it belongs to."""
    if not user_id:
        return AccessResult(False)
    con = _get_conn()
    try:
        row = con.execute("SELECT org_id, role FROM users WHERE id = ?", (str(user_id),)).fetchone()
    except sqlite3.Error as e:
        raise PersistenceError(f"Error reading user {user_id}: {e}") from e
    finally:
        con.close()
    if not row or row["org_id"] != org_id:
        return AccessResult(False)
    return AccessResult(True, str(row["role"] or "member"))


def can_mutate(role: Optional[str]) -> bool:
    return role in MUTATING_ROLES


def get_organization(org_id: str) -> Optional[Organization]:
    con = _get_conn()
    try:
        row = con.execute(
            "SELECT id, name, subscription_tier, billing_exempt FROM organizations WHERE id = ?",
            (org_id,),
        ).fetchone()
    except sqlite3.Error as e:
        raise PersistenceError(f"Error reading organization {org_id}: {e}") from e
    finally:
        con.close()
    if not row:
        return None
    return Organization(
        id=str(row["id"]),
        name=str(row["name"] or ""),
        subscription_tier=str(row["subscription_tier"] or "free"),
        billing_exempt=bool(row["billing_exempt"]),
    )
