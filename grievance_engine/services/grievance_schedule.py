"""
Grievance schedule: read-only deadline views.

    current_step_info(grievance)        → detail panel for one grievance
    deadline_calendar(organization_id)  → calendar entries (filed + deadlines)
    upcoming_deadlines(organization_id) → deadlines due within N days

The deadline of the current step is always recomputed from the step's
``created_at`` and the template's time limit. A zero time limit means the
step has no deadline; resolved grievances have none either.
"""

import logging
from datetime import date, datetime

from grievance_engine.core.exceptions import NotFoundError
from grievance_engine.models.grievance import Grievance, GrievanceStatus, GrievanceStep
from grievance_engine.services.deadline_calculator import compute_due_date, days_remaining, is_overdue
from grievance_engine.services.step_registry import step_registry
from grievance_engine.utils.helpers import as_utc, iso, utcnow

logger = logging.getLogger(__name__)


def _today(today: date | datetime | None) -> date:
    if today is None:
        return utcnow().date()
    return today.date() if isinstance(today, datetime) else today


def current_due_date(grievance: Grievance) -> datetime | None:
    """Due date of the grievance's current step, or None."""
    if grievance.status != GrievanceStatus.ACTIVE.value:
        return None
    try:
        template = step_registry.template_at(
            grievance.agreement_id, grievance.current_step_number, grievance.type,
        )
    except NotFoundError:
        logger.warning(
            "Grievance %s is at step %s which its agreement no longer defines",
            grievance.id, grievance.current_step_number,
            extra={"grievance_id": grievance.id},
        )
        return None
    if not template.has_deadline:
        return None
    step = grievance.current_step()
    anchor = as_utc(step.created_at) if step else as_utc(grievance.filed_at)
    return compute_due_date(anchor, template.time_limit_days, template.is_calendar_days)


def current_step_info(grievance: Grievance, today: date | datetime | None = None) -> dict:
    today = _today(today)
    template = None
    if grievance.current_step_number is not None:
        try:
            template = step_registry.template_at(
                grievance.agreement_id, grievance.current_step_number, grievance.type,
            )
        except NotFoundError:
            template = None
    next_template = None
    if grievance.current_step_number is not None:
        next_template = step_registry.next_template(
            grievance.agreement_id, grievance.current_step_number, grievance.type,
        )

    step = grievance.current_step()
    due = current_due_date(grievance)
    return {
        "grievance_id": grievance.id,
        "status": grievance.status,
        "step_number": grievance.current_step_number,
        "stage": grievance.current_stage,
        "step_name": template.name if template else None,
        "time_limit_days": template.time_limit_days if template else None,
        "is_calendar_days": template.is_calendar_days if template else None,
        "required_participants": sorted(template.required_participants) if template else [],
        "required_documents": sorted(template.required_documents) if template else [],
        "step_started_at": iso(as_utc(step.created_at)) if step else None,
        "due_date": iso(due),
        "is_overdue": is_overdue(grievance.status, due, today),
        "days_remaining": days_remaining(due, today),
        "next_step_name": next_template.name if next_template and grievance.is_active else None,
    }


def step_history(grievance: Grievance) -> list[dict]:
    steps = (
        GrievanceStep.query
        .filter_by(grievance_id=grievance.id)
        .order_by(GrievanceStep.created_at, GrievanceStep.id)
        .all()
    )
    return [s.to_dict() for s in steps]


def deadline_calendar(organization_id: int, today: date | datetime | None = None) -> list[dict]:
    """
    Calendar entries for every grievance of an organization.

    Each grievance contributes a ``filed`` entry; ACTIVE grievances whose
    current step has a time limit also contribute a ``deadline`` entry.
    """
    today = _today(today)
    entries = []
    grievances = (
        Grievance.query_for_organization(organization_id)
        .order_by(Grievance.filed_at)
        .all()
    )
    for g in grievances:
        filed = as_utc(g.filed_at)
        entries.append({
            "id": f"filed-{g.id}",
            "grievance_id": g.id,
            "type": "filed",
            "date": iso(filed.date()) if filed else None,
            "title": f"Grievance filed ({g.type.lower()})",
            "status": "active" if g.is_active else "completed",
        })

        due = current_due_date(g)
        if due is None:
            continue
        entries.append({
            "id": f"deadline-{g.id}",
            "grievance_id": g.id,
            "type": "deadline",
            "date": iso(due.date()),
            "title": f"Step {g.current_step_number} deadline",
            "stage": g.current_stage,
            "status": "overdue" if is_overdue(g.status, due, today) else "active",
            "days_remaining": days_remaining(due, today),
        })
    return sorted(entries, key=lambda e: (e["date"] or "", e["type"]))


def upcoming_deadlines(
    organization_id: int, days_ahead: int = 7, today: date | datetime | None = None,
) -> list[dict]:
    """Deadlines falling between today and ``days_ahead`` days from now (inclusive)."""
    return [
        e for e in deadline_calendar(organization_id, today)
        if e["type"] == "deadline" and 0 <= e["days_remaining"] <= days_ahead
    ]
