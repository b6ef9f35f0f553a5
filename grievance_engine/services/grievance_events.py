"""
Grievance Event Log

Every state change of a grievance appends one ``GrievanceEvent`` row inside
the caller's transaction. Calendar, reporting and notification views read
this log; in-process subscribers (e.g. notification fan-out) are called only
after the transaction commits, so a rolled-back transition never notifies.

Usage:
    from grievance_engine.services import grievance_events

    grievance_events.emit(grievance, GrievanceEventType.SETTLED, actor="u-1",
                          payload={"details": "..."})

    grievance_events.subscribe(lambda event: print(event["type"]))
"""

import logging
from threading import Lock
from typing import Callable

from sqlalchemy import event
from sqlalchemy.orm import Session

from grievance_engine.models import db
from grievance_engine.models.grievance import Grievance, GrievanceEvent, GrievanceEventType

logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_grievance_events"

Subscriber = Callable[[dict], None]

_subscribers: list[Subscriber] = []
_subscribers_lock = Lock()


def emit(
    grievance: Grievance,
    event_type: GrievanceEventType | str,
    actor: str = "system",
    payload: dict | None = None,
) -> GrievanceEvent:
    """Append an event row. Uses ``flush`` so callers keep transaction control."""
    event_type = GrievanceEventType(event_type).value
    row = GrievanceEvent(
        grievance_id=grievance.id,
        organization_id=grievance.organization_id,
        event_type=event_type,
        actor=actor or "system",
        payload=payload or {},
    )
    db.session.add(row)
    db.session.flush()

    db.session.info.setdefault(_PENDING_KEY, []).append(row.to_dict())
    logger.info(
        "Grievance %s: %s by %s",
        grievance.id, event_type, row.actor,
        extra={
            "organization_id": grievance.organization_id,
            "grievance_id": grievance.id,
            "event_type": event_type,
        },
    )
    return row


def subscribe(callback: Subscriber) -> None:
    with _subscribers_lock:
        if callback not in _subscribers:
            _subscribers.append(callback)


def unsubscribe(callback: Subscriber) -> None:
    with _subscribers_lock:
        if callback in _subscribers:
            _subscribers.remove(callback)


def clear_subscribers() -> None:
    with _subscribers_lock:
        _subscribers.clear()


def events_for(grievance_id: str, organization_id: int | None = None) -> list[GrievanceEvent]:
    """Chronological event history of one grievance."""
    q = GrievanceEvent.query.filter_by(grievance_id=grievance_id)
    if organization_id is not None:
        q = q.filter_by(organization_id=organization_id)
    return q.order_by(GrievanceEvent.timestamp, GrievanceEvent.id).all()


# ── Session hooks ────────────────────────────────────────────────────────────

def _notify(events: list[dict]) -> None:
    with _subscribers_lock:
        callbacks = list(_subscribers)
    for payload in events:
        for callback in callbacks:
            try:
                callback(payload)
            except Exception:
                logger.warning(
                    "Event subscriber %r failed for %s; transition unaffected",
                    callback, payload.get("type"), exc_info=True,
                )


def _after_commit(session):
    events = session.info.pop(_PENDING_KEY, None)
    if events:
        _notify(events)


def _after_rollback(session):
    session.info.pop(_PENDING_KEY, None)


def register_session_hooks():
    """Deliver pending events on commit and drop them on rollback."""
    if not event.contains(Session, "after_commit", _after_commit):
        event.listen(Session, "after_commit", _after_commit)
    if not event.contains(Session, "after_rollback", _after_rollback):
        event.listen(Session, "after_rollback", _after_rollback)
