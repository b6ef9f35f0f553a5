"""
Action runner: the transaction boundary for engine operations.

Wraps a lifecycle call, commits on success and rolls back on failure,
converting engine exceptions into a structured result so UI and API callers
branch on ``error_kind`` instead of catching exception classes:

    {"success": True, "data": {...}}
    {"success": False, "error_kind": "NO_NEXT_STEP", "error": "...",
     "retryable": False, "details": {...}}

Usage:
    from grievance_engine.services.engine_actions import run_action
    from grievance_engine.services.grievance_lifecycle import settle

    result = run_action(settle, ctx, grievance_id, "Paid lump sum")
"""

import logging

from sqlalchemy.orm.exc import StaleDataError

from grievance_engine.core.exceptions import (
    EngineError,
    ErrorKind,
    InvalidTransitionError,
)
from grievance_engine.models import db

logger = logging.getLogger(__name__)

USER_MESSAGES = {
    ErrorKind.NO_NEXT_STEP: "No further steps are defined for this grievance",
    ErrorKind.UPSTREAM_UNAVAILABLE: "The guidance service is temporarily unavailable. Please try again.",
    ErrorKind.FORBIDDEN: "You do not have permission to perform this action",
    ErrorKind.NOT_FOUND: "Grievance not found",
}

RESOLVED_MESSAGE = "This grievance has already been resolved"
CONCURRENT_MESSAGE = "This grievance was modified by someone else. Reload and try again."


def user_message(exc: EngineError) -> str:
    if isinstance(exc, InvalidTransitionError):
        if exc.current_status != "ACTIVE":
            return RESOLVED_MESSAGE
        return str(exc)
    if exc.kind == ErrorKind.NOT_FOUND:
        return f"{getattr(exc, 'resource', 'Resource')} not found"
    return USER_MESSAGES.get(exc.kind, str(exc))


def failure(exc: EngineError) -> dict:
    return {
        "success": False,
        "error_kind": exc.kind.value,
        "error": user_message(exc),
        "retryable": exc.retryable,
        "details": dict(exc.details),
    }


def run_action(fn, *args, **kwargs) -> dict:
    """Run ``fn`` in a transaction and return a structured success/failure result."""
    action = getattr(fn, "__name__", "action")
    try:
        data = fn(*args, **kwargs)
        db.session.commit()
    except EngineError as exc:
        db.session.rollback()
        logger.info("Action %s rejected: %s (%s)", action, exc, exc.kind.value)
        return failure(exc)
    except StaleDataError:
        db.session.rollback()
        logger.warning("Action %s lost an optimistic-lock race", action)
        return {
            "success": False,
            "error_kind": ErrorKind.INVALID_TRANSITION.value,
            "error": CONCURRENT_MESSAGE,
            "retryable": False,
            "details": {"reason": "concurrent_modification"},
        }
    except Exception:
        db.session.rollback()
        logger.exception("Action %s failed unexpectedly", action)
        raise
    return {"success": True, "data": data}
