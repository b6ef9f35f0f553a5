"""
Grievance schedule tests: current step panel, deadline calendar and
upcoming deadlines.
"""

from datetime import date, datetime, timezone

import pytest

from grievance_engine.models import db
from grievance_engine.services.grievance_lifecycle import advance_step, settle
from grievance_engine.services.grievance_schedule import (
    current_due_date,
    current_step_info,
    deadline_calendar,
    step_history,
    upcoming_deadlines,
)

STEP_START = datetime(2025, 12, 1, 9, 0, tzinfo=timezone.utc)  # Monday


@pytest.fixture()
def anchored(grievance):
    """Grievance whose current step started on a known Monday."""
    step = grievance.current_step()
    step.created_at = STEP_START
    db.session.commit()
    return grievance


class TestCurrentStep:
    def test_due_date_recomputed_from_step_start(self, anchored):
        due = current_due_date(anchored)
        assert due.date() == date(2025, 12, 15)

    def test_info_panel(self, anchored):
        info = current_step_info(anchored, today=date(2025, 12, 10))
        assert info["step_number"] == 1
        assert info["step_name"] == "Step 1: Informal discussion"
        assert info["time_limit_days"] == 10
        assert info["is_calendar_days"] is False
        assert info["required_participants"] == ["grievor", "steward"]
        assert info["required_documents"] == ["grievance form"]
        assert info["days_remaining"] == 5
        assert info["is_overdue"] is False
        assert info["next_step_name"] == "Step 2: Formal grievance meeting"

    def test_info_panel_overdue(self, anchored):
        info = current_step_info(anchored, today=date(2025, 12, 16))
        assert info["is_overdue"] is True
        assert info["days_remaining"] == -1

    def test_no_deadline_at_arbitration(self, steward_ctx, grievance):
        advance_step(steward_ctx, grievance.id, "a")
        advance_step(steward_ctx, grievance.id, "b")
        assert current_due_date(grievance) is None
        info = current_step_info(grievance)
        assert info["due_date"] is None
        assert info["is_overdue"] is False
        assert info["next_step_name"] is None

    def test_resolved_has_no_deadline(self, steward_ctx, anchored):
        settle(steward_ctx, anchored.id, "Settled")
        assert current_due_date(anchored) is None
        assert current_step_info(anchored, today=date(2026, 3, 1))["is_overdue"] is False

    def test_step_history(self, steward_ctx, grievance):
        advance_step(steward_ctx, grievance.id, "Unresolved items remain")
        history = step_history(grievance)
        assert [h["step_number"] for h in history] == [1, 2]
        assert history[1]["remaining_issues_note"] == "Unresolved items remain"


class TestCalendar:
    def test_filed_and_deadline_entries(self, anchored):
        entries = deadline_calendar(anchored.organization_id, today=date(2025, 12, 10))
        by_type = {e["type"]: e for e in entries}

        assert by_type["filed"]["status"] == "active"
        assert by_type["deadline"]["date"] == "2025-12-15"
        assert by_type["deadline"]["status"] == "active"
        assert by_type["deadline"]["days_remaining"] == 5
        assert by_type["deadline"]["stage"] == "INFORMAL"

    def test_overdue_entry(self, anchored):
        entries = deadline_calendar(anchored.organization_id, today=date(2025, 12, 20))
        deadline = next(e for e in entries if e["type"] == "deadline")
        assert deadline["status"] == "overdue"

    def test_resolved_grievance_only_filed(self, steward_ctx, anchored):
        settle(steward_ctx, anchored.id, "Settled")
        db.session.commit()
        entries = deadline_calendar(anchored.organization_id)
        assert [e["type"] for e in entries] == ["filed"]
        assert entries[0]["status"] == "completed"

    def test_other_organization_is_empty(self, anchored, other_organization):
        assert deadline_calendar(other_organization.id) == []

    def test_sorted_by_date(self, anchored):
        entries = deadline_calendar(anchored.organization_id, today=date(2025, 12, 10))
        dates = [e["date"] for e in entries]
        assert dates == sorted(dates)


class TestUpcoming:
    def test_within_window(self, anchored):
        upcoming = upcoming_deadlines(anchored.organization_id, days_ahead=7, today=date(2025, 12, 10))
        assert [e["grievance_id"] for e in upcoming] == [anchored.id]

    def test_outside_window(self, anchored):
        assert upcoming_deadlines(anchored.organization_id, days_ahead=7, today=date(2025, 12, 1)) == []

    def test_overdue_not_upcoming(self, anchored):
        assert upcoming_deadlines(anchored.organization_id, days_ahead=7, today=date(2025, 12, 16)) == []

    def test_due_today_included(self, anchored):
        upcoming = upcoming_deadlines(anchored.organization_id, days_ahead=0, today=date(2025, 12, 15))
        assert len(upcoming) == 1
