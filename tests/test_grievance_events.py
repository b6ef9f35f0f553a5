"""
Grievance event log tests: ordering, post-commit delivery and subscriber
isolation.
"""

import logging

from grievance_engine.models import db
from grievance_engine.services import grievance_events
from grievance_engine.services.grievance_lifecycle import advance_step, settle


def test_events_in_chronological_order(steward_ctx, grievance):
    advance_step(steward_ctx, grievance.id, "Still disputed")
    settle(steward_ctx, grievance.id, "Resolved at step 2")
    db.session.commit()

    events = grievance_events.events_for(grievance.id)
    assert [e.event_type for e in events] == ["FILED", "ADVANCED", "SETTLED"]
    assert all(e.organization_id == grievance.organization_id for e in events)
    assert events[-1].to_dict()["payload"]["final_step"] == 2


def test_events_scoped_by_organization(grievance, other_organization):
    assert grievance_events.events_for(grievance.id, organization_id=other_organization.id) == []


def test_subscribers_notified_after_commit(steward_ctx, grievance):
    received = []
    grievance_events.subscribe(received.append)

    advance_step(steward_ctx, grievance.id, "Escalating")
    assert received == []

    db.session.commit()
    assert [e["type"] for e in received] == ["ADVANCED"]
    assert received[0]["grievance_id"] == grievance.id
    assert received[0]["payload"]["new_step"] == 2


def test_rollback_discards_pending_events(steward_ctx, grievance):
    received = []
    grievance_events.subscribe(received.append)

    advance_step(steward_ctx, grievance.id, "Escalating")
    db.session.rollback()
    db.session.commit()

    assert received == []
    assert [e.event_type for e in grievance_events.events_for(grievance.id)] == ["FILED"]


def test_failing_subscriber_does_not_break_commit(steward_ctx, grievance, caplog):
    received = []

    def broken(event):
        raise RuntimeError("mail server down")

    grievance_events.subscribe(broken)
    grievance_events.subscribe(received.append)

    settle(steward_ctx, grievance.id, "Paid in full")
    with caplog.at_level(logging.WARNING, logger="grievance_engine.services.grievance_events"):
        db.session.commit()

    assert [e["type"] for e in received] == ["SETTLED"]
    assert "Event subscriber" in caplog.text
    db.session.expire_all()
    assert grievance.status == "SETTLED"


def test_unsubscribe(steward_ctx, grievance):
    received = []
    grievance_events.subscribe(received.append)
    grievance_events.unsubscribe(received.append)

    settle(steward_ctx, grievance.id, "Paid")
    db.session.commit()
    assert received == []
