import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from services import inventory, memory
from services.errors import PersistenceError
from stock_brain.config import get_plans

logger = logging.getLogger(__name__)

UNLIMITED = -1
UNLIMITED_LIMITS = {"items": UNLIMITED, "ai_requests": UNLIMITED}
FALLBACK_LIMITS = {"items": 50, "ai_requests": 50}


@dataclass
class TierLimitResult:
    allowed: bool
    current: Optional[int] = None
    limit: Optional[int] = None
    message: Optional[str] = None


def _get_conn() -> sqlite3.Connection:
    return memory.get_conn()


def get_tier_limits(
    tier: str,
    billing_exempt: bool = False,
    config: Optional[Dict[str, Any]] = None,
) -> Dict[str, int]:
    """Limits for a plan tier; billing-exempt organizations are unlimited."""
    if billing_exempt:
        return dict(UNLIMITED_LIMITS)
    plan = get_plans(config).get(str(tier or "free"))
    if not isinstance(plan, dict):
        return dict(FALLBACK_LIMITS)
    return {
        "items": int(plan.get("items", FALLBACK_LIMITS["items"])),
        "ai_requests": int(plan.get("ai_requests", FALLBACK_LIMITS["ai_requests"])),
    }


def check_item_limit(
    org_id: str,
    tier: str,
    billing_exempt: bool = False,
    config: Optional[Dict[str, Any]] = None,
) -> TierLimitResult:
    limit = get_tier_limits(tier, billing_exempt, config)["items"]
    if limit == UNLIMITED:
        return TierLimitResult(allowed=True)

    try:
        current = inventory.count_items(org_id)
    except PersistenceError as e:
        logger.error(f"Error checking inventory count: {e}")
        return TierLimitResult(allowed=False, message="Failed to check inventory limit")
    allowed = current < limit
    return TierLimitResult(
        allowed=allowed,
        current=current,
        limit=limit,
        message=None
        if allowed
        else f"You've reached the {limit} product limit for the {tier} plan. Upgrade to add more products.",
    )


def _month_start(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0).isoformat()


def check_request_limit(
    org_id: str,
    tier: str,
    billing_exempt: bool = False,
    config: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> TierLimitResult:
    limit = get_tier_limits(tier, billing_exempt, config)["ai_requests"]
    if limit == UNLIMITED:
        return TierLimitResult(allowed=True)

    con = _get_conn()
    try:
        row = con.execute(
            "SELECT COUNT(*) AS total FROM ai_requests WHERE org_id = ? AND created_at >= ?",
            (org_id, _month_start(now)),
        ).fetchone()
        current = int(row["total"] or 0)
    except sqlite3.Error as e:
        logger.error(f"Error checking AI request count: {e}")
        return TierLimitResult(allowed=False, message="Failed to check AI request limit")
    finally:
        con.close()

    allowed = current < limit
    return TierLimitResult(
        allowed=allowed,
        current=current,
        limit=limit,
        message=None
        if allowed
        else f"You've used all {limit} AI requests for this month. Upgrade for more AI capabilities.",
    )


def log_request(org_id: str, request_type: str = "action", now: Optional[datetime] = None) -> None:
    """Record one request for usage accounting. Never fails the caller."""
    created_at = (now or datetime.now(timezone.utc)).isoformat()
    con = _get_conn()
    try:
        con.execute(
            "INSERT INTO ai_requests (org_id, request_type, created_at) VALUES (?, ?, ?)",
            (org_id, request_type, created_at),
        )
        con.commit()
    except sqlite3.Error as e:
        logger.error(f"Error logging AI request: {e}")
    finally:
        con.close()
