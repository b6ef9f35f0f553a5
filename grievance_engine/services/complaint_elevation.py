"""
Complaint → Grievance elevation.

Invoked by the complaint-management collaborator when a complaint is
escalated. The complaint id is the idempotency key: a complaint produces at
most one grievance, enforced by the unique ``grievances.source_complaint_id``
column.

The new grievance, its first step row and the complaint's GRIEVED status are
written inside one savepoint. If a concurrent elevation of the same
complaint commits first, the unique constraint fails our insert, the
savepoint rolls back, and the winner's grievance id is returned with
``is_new=False``.
"""

import logging

from sqlalchemy.exc import IntegrityError

from grievance_engine.core.context import ActorContext
from grievance_engine.core.exceptions import NotFoundError, ValidationError
from grievance_engine.models import db
from grievance_engine.models.complaint import Complaint
from grievance_engine.models.grievance import Grievance, GrievanceEventType, GrievanceStatus
from grievance_engine.services import grievance_events
from grievance_engine.services.grievance_lifecycle import GRIEVANCE_TYPES, enter_step, require_role
from grievance_engine.services.step_registry import step_registry
from grievance_engine.utils.helpers import utcnow

logger = logging.getLogger(__name__)


def _full_name(first, last) -> str:
    return " ".join(part for part in (first, last) if part)


def grievors_from_complaint(complaint: Complaint) -> list[dict]:
    """GROUP complaints list their employees; everything else has one complainant."""
    if complaint.type == "GROUP" and complaint.employees:
        return [
            {
                "name": _full_name(e.get("firstName"), e.get("lastName")),
                "email": e.get("email"),
                "phone": e.get("phoneNumber"),
            }
            for e in complaint.employees
        ]
    name = _full_name(complaint.complainant_first_name, complaint.complainant_last_name)
    if not name and not complaint.complainant_email:
        return []
    return [{
        "name": name,
        "email": complaint.complainant_email,
        "phone": complaint.complainant_phone,
    }]


def work_information_from_complaint(complaint: Complaint) -> dict:
    return {
        "job_title": complaint.complainant_position,
        "department": complaint.complainant_department,
        "supervisor": complaint.complainant_supervisor,
    }


def _existing(complaint_id: str) -> Grievance | None:
    return Grievance.query.filter_by(source_complaint_id=complaint_id).first()


def elevate_from_complaint(ctx: ActorContext, complaint_id: str) -> dict:
    """
    Create (or return) the grievance for a complaint.

    Returns:
        {"grievance_id", "is_new"}

    Raises:
        NotFoundError: complaint unknown or owned by another organization
        ValidationError: complaint has no collective agreement, or the
            agreement has no steps configured
    """
    require_role(ctx, "elevate_from_complaint")
    complaint = Complaint.query.filter_by(id=complaint_id, organization_id=ctx.organization_id).first()
    if complaint is None:
        raise NotFoundError(resource="Complaint", resource_id=complaint_id, organization_id=ctx.organization_id)

    existing = _existing(complaint.id)
    if existing is not None:
        return {"grievance_id": existing.id, "is_new": False}

    if complaint.agreement_id is None:
        raise ValidationError(
            "Complaint has no collective agreement; cannot elevate",
            details={"agreement_id": "missing"},
        )
    grievance_type = complaint.type if complaint.type in GRIEVANCE_TYPES else "INDIVIDUAL"
    template = step_registry.first_template(complaint.agreement_id, grievance_type)

    now = utcnow()
    try:
        with db.session.begin_nested():
            grievance = Grievance(
                organization_id=complaint.organization_id,
                agreement_id=complaint.agreement_id,
                source_complaint_id=complaint.id,
                type=grievance_type,
                category=complaint.category,
                status=GrievanceStatus.ACTIVE.value,
                statement=complaint.issue or "",
                settlement_desired=complaint.settlement_desired or "",
                articles_violated=list(complaint.articles_violated or []),
                grievors=grievors_from_complaint(complaint),
                work_information=work_information_from_complaint(complaint),
                created_by=ctx.user_id,
                filed_at=now,
                created_at=now,
            )
            db.session.add(grievance)
            db.session.flush()
            enter_step(grievance, template, ctx.user_id, now)
            complaint.status = "GRIEVED"
            db.session.flush()
    except IntegrityError:
        winner = _existing(complaint_id)
        if winner is None:
            raise
        logger.info(
            "Complaint %s was elevated concurrently; returning grievance %s",
            complaint_id, winner.id,
            extra={"organization_id": ctx.organization_id, "grievance_id": winner.id},
        )
        return {"grievance_id": winner.id, "is_new": False}

    grievance_events.emit(
        grievance,
        GrievanceEventType.ELEVATED,
        actor=ctx.user_id,
        payload={
            "complaint_id": complaint.id,
            "complaint_number": complaint.complaint_number,
            "step": template.step_number,
            "stage": template.stage,
        },
    )
    return {"grievance_id": grievance.id, "is_new": True}
