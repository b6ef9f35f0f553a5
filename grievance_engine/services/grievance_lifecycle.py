"""
Grievance Lifecycle Service

Owns the status / stage / step of a grievance and executes its transitions:

    ACTIVE(stage, step) ──advance_step──▶ ACTIVE(next stage, next step)
    ACTIVE ──settle──────────────────────▶ SETTLED
    ACTIVE ──withdraw────────────────────▶ WITHDRAWN
    ACTIVE at an ARBITRATION step ──resolve_at_arbitration──▶ RESOLVED_ARBITRATION

Terminal statuses are final: every mutating call on a resolved grievance
raises InvalidTransitionError and leaves stage/step untouched. There is no
reopen.

Step number is the only ordering key. Stage is a label copied from the
template and is never compared for ordering.

Each call:
  1. loads the grievance inside the actor's organization (NotFoundError otherwise)
  2. checks the actor's role (PermissionDenied)
  3. validates the transition
  4. mutates rows with ``flush`` only; the caller owns the commit
  5. appends a GrievanceEvent

Usage:
    from grievance_engine.services.grievance_lifecycle import advance_step

    result = advance_step(ctx, grievance_id, "Wage issue remains unresolved")
"""

import logging
from datetime import datetime

from grievance_engine.core.context import ActorContext
from grievance_engine.core.exceptions import (
    InvalidTransitionError,
    NoNextStepError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from grievance_engine.models import db
from grievance_engine.models.agreement import CollectiveAgreement, GrievanceStage
from grievance_engine.models.grievance import (
    RESOLUTION_STATUS,
    Grievance,
    GrievanceEventType,
    GrievanceStatus,
    GrievanceStep,
    ResolutionType,
)
from grievance_engine.services import grievance_events
from grievance_engine.services.deadline_calculator import compute_due_date
from grievance_engine.services.step_registry import StepTemplate, step_registry
from grievance_engine.utils.helpers import iso, utcnow

logger = logging.getLogger(__name__)


# Action → statuses it may start from
GRIEVANCE_TRANSITIONS = {
    "advance_step": {"from": [GrievanceStatus.ACTIVE.value], "to": GrievanceStatus.ACTIVE.value},
    "settle": {"from": [GrievanceStatus.ACTIVE.value], "to": GrievanceStatus.SETTLED.value},
    "withdraw": {"from": [GrievanceStatus.ACTIVE.value], "to": GrievanceStatus.WITHDRAWN.value},
    "resolve_at_arbitration": {
        "from": [GrievanceStatus.ACTIVE.value],
        "to": GrievanceStatus.RESOLVED_ARBITRATION.value,
    },
}

GRIEVANCE_TYPES = ("INDIVIDUAL", "GROUP", "POLICY")


# ── Guards ───────────────────────────────────────────────────────────────────

def require_role(ctx: ActorContext, action: str) -> None:
    if not ctx.can(action):
        raise PermissionDenied(ctx.role, action)


def require_text(value, field: str) -> str:
    """Return the stripped value; blank or missing narrative text is rejected."""
    text = value.strip() if isinstance(value, str) else ""
    if not text:
        raise ValidationError(f"{field} is required", details={field: "blank"})
    return text


def load_grievance(ctx: ActorContext, grievance_id: str) -> Grievance:
    """Grievance owned by the actor's organization, or NotFoundError."""
    grievance = Grievance.query.filter_by(
        id=grievance_id, organization_id=ctx.organization_id,
    ).first()
    if grievance is None:
        raise NotFoundError(
            resource="Grievance", resource_id=grievance_id, organization_id=ctx.organization_id,
        )
    return grievance


def validate_transition(grievance: Grievance, action: str) -> dict:
    """Validate whether an action is valid for the grievance's current status."""
    rule = GRIEVANCE_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": grievance.status, "to": None,
                "reason": f"Unknown action: {action}"}

    if grievance.status not in rule["from"]:
        return {"valid": False, "from": grievance.status, "to": rule["to"],
                "reason": "grievance has already been resolved"}

    if action == "resolve_at_arbitration" and grievance.current_stage != GrievanceStage.ARBITRATION.value:
        return {"valid": False, "from": grievance.status, "to": rule["to"],
                "reason": f"current stage is {grievance.current_stage}, not ARBITRATION"}

    return {"valid": True, "from": grievance.status, "to": rule["to"], "reason": None}


def _check_transition(grievance: Grievance, action: str) -> None:
    validation = validate_transition(grievance, action)
    if not validation["valid"]:
        raise InvalidTransitionError(grievance.id, action, grievance.status, validation["reason"])


def _step_due_date(template: StepTemplate, started_at: datetime) -> datetime | None:
    if not template.has_deadline:
        return None
    return compute_due_date(started_at, template.time_limit_days, template.is_calendar_days)


def enter_step(
    grievance: Grievance,
    template: StepTemplate,
    actor: str,
    started_at: datetime,
    note: str | None = None,
) -> GrievanceStep:
    """Append the history row for ``template`` and point the grievance at it."""
    step = GrievanceStep(
        grievance_id=grievance.id,
        step_number=template.step_number,
        stage=template.stage,
        created_at=started_at,
        due_date=_step_due_date(template, started_at),
        remaining_issues_note=note,
        created_by=actor,
    )
    db.session.add(step)
    grievance.current_stage = template.stage
    grievance.current_step_number = template.step_number
    return step


# ── Transitions ──────────────────────────────────────────────────────────────

def advance_step(ctx: ActorContext, grievance_id: str, remaining_issues_note: str) -> dict:
    """
    Move an ACTIVE grievance to the next configured step.

    Raises:
        NotFoundError, PermissionDenied, InvalidTransitionError,
        ValidationError (blank note), NoNextStepError (already at last step)
    """
    grievance = load_grievance(ctx, grievance_id)
    require_role(ctx, "advance_step")
    _check_transition(grievance, "advance_step")
    note = require_text(remaining_issues_note, "remaining_issues_note")

    template = step_registry.next_template(
        grievance.agreement_id, grievance.current_step_number, grievance.type,
    )
    if template is None:
        raise NoNextStepError(grievance.id, grievance.current_step_number)

    previous_step = grievance.current_step_number
    previous_stage = grievance.current_stage
    step = enter_step(grievance, template, ctx.user_id, utcnow(), note=note)
    db.session.flush()

    grievance_events.emit(
        grievance,
        GrievanceEventType.ADVANCED,
        actor=ctx.user_id,
        payload={
            "remaining_issues_note": note,
            "previous_step": previous_step,
            "previous_stage": previous_stage,
            "new_step": template.step_number,
            "new_stage": template.stage,
            "due_date": iso(step.due_date),
        },
    )

    return {
        "grievance_id": grievance.id,
        "action": "advance_step",
        "previous_step": previous_step,
        "new_step": template.step_number,
        "stage": template.stage,
        "step_name": template.name,
        "due_date": iso(step.due_date),
    }


def _resolve(
    ctx: ActorContext,
    grievance_id: str,
    action: str,
    resolution_type: ResolutionType,
    event_type: GrievanceEventType,
    details,
    details_field: str,
) -> dict:
    grievance = load_grievance(ctx, grievance_id)
    require_role(ctx, action)
    _check_transition(grievance, action)
    text = require_text(details, details_field)

    previous_status = grievance.status
    resolved_at = utcnow()
    grievance.status = RESOLUTION_STATUS[resolution_type].value
    grievance.resolution_type = resolution_type.value
    grievance.resolution_details = text
    grievance.resolution_date = resolved_at
    grievance.resolved_by = ctx.user_id
    db.session.flush()

    grievance_events.emit(
        grievance,
        event_type,
        actor=ctx.user_id,
        payload={
            "resolution_type": resolution_type.value,
            "details": text,
            "final_step": grievance.current_step_number,
            "final_stage": grievance.current_stage,
        },
    )

    return {
        "grievance_id": grievance.id,
        "action": action,
        "previous_status": previous_status,
        "new_status": grievance.status,
        "resolution": grievance.resolution_dict(),
    }


def settle(ctx: ActorContext, grievance_id: str, settlement_details: str) -> dict:
    """Resolve an ACTIVE grievance as SETTLED."""
    return _resolve(
        ctx, grievance_id, "settle", ResolutionType.SETTLEMENT,
        GrievanceEventType.SETTLED, settlement_details, "settlement_details",
    )


def withdraw(ctx: ActorContext, grievance_id: str, withdrawal_details: str) -> dict:
    """Resolve an ACTIVE grievance as WITHDRAWN."""
    return _resolve(
        ctx, grievance_id, "withdraw", ResolutionType.WITHDRAWAL,
        GrievanceEventType.WITHDRAWN, withdrawal_details, "withdrawal_details",
    )


def resolve_at_arbitration(ctx: ActorContext, grievance_id: str, award_details: str) -> dict:
    """Record the arbitrator's award. Only allowed while at an ARBITRATION step."""
    return _resolve(
        ctx, grievance_id, "resolve_at_arbitration", ResolutionType.ARBITRATION_AWARD,
        GrievanceEventType.RESOLVED, award_details, "award_details",
    )


# ── Creation / facts ─────────────────────────────────────────────────────────

def file_grievance(
    ctx: ActorContext,
    agreement_id: int,
    *,
    statement: str,
    grievance_type: str = "INDIVIDUAL",
    category: str | None = None,
    settlement_desired: str = "",
    articles_violated: list | None = None,
    grievors: list | None = None,
    work_information: dict | None = None,
) -> dict:
    """
    File a grievance directly (no originating complaint).

    The grievance starts ACTIVE at the agreement's first configured step.
    """
    require_role(ctx, "file_grievance")
    agreement = CollectiveAgreement.query.filter_by(
        id=agreement_id, organization_id=ctx.organization_id,
    ).first()
    if agreement is None:
        raise NotFoundError(
            resource="CollectiveAgreement", resource_id=agreement_id, organization_id=ctx.organization_id,
        )
    if grievance_type not in GRIEVANCE_TYPES:
        raise ValidationError(
            f"Unknown grievance type: {grievance_type}",
            details={"grievance_type": grievance_type},
        )
    text = require_text(statement, "statement")
    template = step_registry.first_template(agreement.id, grievance_type)

    now = utcnow()
    grievance = Grievance(
        organization_id=ctx.organization_id,
        agreement_id=agreement.id,
        type=grievance_type,
        category=category,
        status=GrievanceStatus.ACTIVE.value,
        statement=text,
        settlement_desired=settlement_desired or "",
        articles_violated=list(articles_violated or []),
        grievors=list(grievors or []),
        work_information=dict(work_information or {}),
        created_by=ctx.user_id,
        filed_at=now,
        created_at=now,
    )
    db.session.add(grievance)
    db.session.flush()
    enter_step(grievance, template, ctx.user_id, now)
    db.session.flush()

    grievance_events.emit(
        grievance,
        GrievanceEventType.FILED,
        actor=ctx.user_id,
        payload={"step": template.step_number, "stage": template.stage},
    )
    return {"grievance_id": grievance.id, "action": "file_grievance", "grievance": grievance.to_dict()}


def update_case_facts(
    ctx: ActorContext,
    grievance_id: str,
    *,
    statement: str | None = None,
    articles_violated: list | None = None,
    settlement_desired: str | None = None,
) -> dict:
    """
    Edit the narrative facts of an ACTIVE grievance.

    Cached discipline guidance was derived from the old facts, so it is
    dropped in the same transaction.
    """
    from grievance_engine.ai.discipline_cache import discipline_cache

    grievance = load_grievance(ctx, grievance_id)
    require_role(ctx, "update_case_facts")
    if not grievance.is_active:
        raise InvalidTransitionError(
            grievance.id, "update_case_facts", grievance.status, "grievance has already been resolved",
        )

    changed = []
    if statement is not None:
        grievance.statement = require_text(statement, "statement")
        changed.append("statement")
    if articles_violated is not None:
        grievance.articles_violated = list(articles_violated)
        changed.append("articles_violated")
    if settlement_desired is not None:
        grievance.settlement_desired = settlement_desired
        changed.append("settlement_desired")
    if not changed:
        raise ValidationError("No case facts supplied", details={"fields": "empty"})
    db.session.flush()

    invalidated = False
    if "statement" in changed or "articles_violated" in changed:
        invalidated = discipline_cache.invalidate(grievance.id)

    grievance_events.emit(
        grievance,
        GrievanceEventType.FACTS_UPDATED,
        actor=ctx.user_id,
        payload={"fields": changed, "guidance_invalidated": invalidated},
    )
    return {
        "grievance_id": grievance.id,
        "action": "update_case_facts",
        "fields": changed,
        "guidance_invalidated": invalidated,
    }


def available_actions(grievance: Grievance) -> list[str]:
    """Actions currently possible for the grievance (ignores the actor's role)."""
    actions = []
    for action in GRIEVANCE_TRANSITIONS:
        if not validate_transition(grievance, action)["valid"]:
            continue
        if action == "advance_step" and step_registry.next_template(
            grievance.agreement_id, grievance.current_step_number, grievance.type,
        ) is None:
            continue
        actions.append(action)
    return actions
