"""Runs one free-text inventory command end to end.

Order per request: rate limit, authorize, tier check, interpret, gate,
resolve and execute, usage accounting, audit. Any refusal before
interpretation short-circuits without calling the interpreter.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from services import access, actions, audit_log, inventory, tier_limits
from services.errors import (
    Forbidden,
    InterpreterUnavailable,
    OrganizationNotFound,
    ParseFailure,
    PersistenceError,
    RateLimited,
    TierLimitExceeded,
    Unauthorized,
)
from services.gate import NOT_AN_ACTION_MESSAGE, Verdict, evaluate_intent
from services.intent import IntentInterpreter, build_inventory_summary
from services.metrics import metrics, record_action, record_error, record_gate
from services.rate_limit import RateLimiter, limiter as default_limiter, policy_from_config
from stock_brain.config import get_action_policy, get_rate_limits, load_config
from stock_brain.logging import bind_action, command_context

logger = logging.getLogger(__name__)


@dataclass
class CommandResponse:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


def _error(status_code: int, message: str, **extra: Any) -> CommandResponse:
    return CommandResponse(status_code, {"error": message, **extra})


def _preflight(
    org_id: str,
    user_id: Optional[str],
    limiter: RateLimiter,
    config: Dict[str, Any],
) -> access.Organization:
    """Checks that run before any interpretation; raise on refusal."""
    rate = limiter.check(f"ai:{org_id}", policy_from_config("ai", get_rate_limits(config)))
    if not rate.allowed:
        raise RateLimited(reset_at=rate.reset_at)

    auth = access.authorize(user_id, org_id)
    if not auth.authorized:
        raise Unauthorized("Unauthorized")
    if not access.can_mutate(auth.role):
        raise Forbidden("Only owners and admins can modify inventory.")

    org = access.get_organization(org_id)
    if org is None:
        raise OrganizationNotFound("Organization not found")

    usage = tier_limits.check_request_limit(org_id, org.subscription_tier, org.billing_exempt, config)
    if not usage.allowed:
        raise TierLimitExceeded(
            usage.message or "AI request limit reached for your plan.",
            current=usage.current,
            limit=usage.limit,
        )
    return org


def _audit(org_id: str, user_id: Optional[str], message: str, outcome: actions.ActionOutcome, filters: Dict[str, Any]) -> None:
    audit_log.record_event(
        org_id=org_id,
        actor_user_id=user_id,
        action_type=outcome.action,
        entity_type="inventory_command",
        entity_id=",".join(str(i) for i in outcome.item_ids) or None,
        new_value={"filters": filters, "affected": outcome.affected, "success": outcome.success},
        note=message,
    )


def _run(
    message: str,
    org_id: str,
    user_id: Optional[str],
    interpreter: Optional[IntentInterpreter],
    limiter: RateLimiter,
    config: Dict[str, Any],
) -> CommandResponse:
    org = _preflight(org_id, user_id, limiter, config)
    policy = get_action_policy(config)

    summary = build_inventory_summary(inventory.summary_rows(org_id, policy.summary_limit), policy.summary_limit)
    interpreter = interpreter or IntentInterpreter(config)
    try:
        intent = interpreter.interpret(message, summary)
    except ParseFailure as e:
        logger.info(f"Treating message as non-action: {e}")
        record_gate(Verdict.NOT_AN_ACTION.value)
        return CommandResponse(200, {"is_action": False, "message": NOT_AN_ACTION_MESSAGE})

    bind_action(intent.kind.value)
    decision = evaluate_intent(intent, policy.confidence_threshold)
    record_gate(decision.verdict.value)
    if decision.verdict == Verdict.NOT_AN_ACTION:
        logger.info(f"Gate: not an action ({decision.reason})")
        return CommandResponse(200, {"is_action": False, "message": decision.message})
    if decision.verdict == Verdict.NEEDS_CONFIRMATION:
        logger.info(f"Gate: {intent.kind.value} needs a value")
        return CommandResponse(
            200,
            {
                "is_action": True,
                "needs_confirmation": True,
                "action": intent.kind.value,
                "filters": intent.filters.to_dict(),
                "message": decision.message,
            },
        )

    ctx = actions.ExecutionContext(
        org_id=org_id,
        tier=org.subscription_tier,
        billing_exempt=org.billing_exempt,
        policy=policy,
        config=config,
    )
    with metrics.timer("action", {"action": intent.kind.value}):
        outcome = actions.execute(ctx, intent)
    record_action(outcome.action, outcome.success, outcome.affected)
    logger.info(
        f"Executed {outcome.action}: {outcome.message}",
        extra={"extra_data": {"affected": outcome.affected, "success": outcome.success}},
    )

    tier_limits.log_request(org_id, "action")
    _audit(org_id, user_id, message, outcome, intent.filters.to_dict())
    return CommandResponse(200, {"is_action": True, **outcome.to_dict()})


def handle_command(
    message: str,
    org_id: str,
    user_id: Optional[str],
    *,
    interpreter: Optional[IntentInterpreter] = None,
    limiter: Optional[RateLimiter] = None,
    config: Optional[Dict[str, Any]] = None,
) -> CommandResponse:
    message = str(message or "").strip()
    org_id = str(org_id or "").strip()
    if not message or not org_id:
        return _error(400, "Message and organization ID required")

    cfg = config if config is not None else load_config()
    with command_context(org_id):
        try:
            return _run(message, org_id, user_id, interpreter, limiter or default_limiter, cfg)
        except RateLimited as e:
            logger.warning("Rate limited")
            return _error(429, str(e), reset_at=e.reset_at)
        except Unauthorized as e:
            return _error(401, str(e))
        except Forbidden as e:
            return _error(403, str(e))
        except OrganizationNotFound as e:
            return _error(404, str(e))
        except TierLimitExceeded as e:
            return _error(403, e.message, upgrade_required=True, current=e.current, limit=e.limit)
        except InterpreterUnavailable as e:
            logger.error(f"Interpreter unavailable: {e}")
            record_error("intent", "unavailable")
            return _error(503, "The assistant is unavailable right now. Please try again shortly.")
        except PersistenceError as e:
            logger.exception(f"Datastore failure while handling command: {e}")
            record_error("command_engine", "persistence")
            return _error(500, "Failed to process action")
        except Exception as e:
            logger.exception(f"Unexpected error while handling command: {e}")
            record_error("command_engine", type(e).__name__)
            return _error(500, "Failed to process action")
