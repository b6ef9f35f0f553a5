"""
Grievance blueprint: lifecycle transitions, history and deadline calendar.

Endpoints summary:
    GRIEVANCE  /api/v1/grievances                         GET, POST
               /api/v1/grievances/<gid>                   GET
               /api/v1/grievances/<gid>/steps             GET   (history)
               /api/v1/grievances/<gid>/events            GET
               /api/v1/grievances/<gid>/facts             PATCH
    TRANSITION /api/v1/grievances/<gid>/advance           POST  {remaining_issues_note}
               /api/v1/grievances/<gid>/settle            POST  {settlement_details}
               /api/v1/grievances/<gid>/withdraw          POST  {withdrawal_details}
               /api/v1/grievances/<gid>/resolve           POST  {award_details}
    COMPLAINT  /api/v1/complaints/<cid>/elevate           POST
    AGREEMENT  /api/v1/agreements/<aid>/steps             GET   (?grievance_type=)
    CALENDAR   /api/v1/calendar                           GET
               /api/v1/calendar/upcoming                  GET   (?days=)

Every endpoint requires the actor headers (see middleware/actor_context.py).
Mutations go through ``run_action`` so the transaction boundary and error
mapping are the same as for non-HTTP callers.
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request

from grievance_engine.blueprints import paginate_query, require_actor
from grievance_engine.core.exceptions import EngineError, NotFoundError
from grievance_engine.models.agreement import CollectiveAgreement
from grievance_engine.models.grievance import Grievance
from grievance_engine.services import grievance_events
from grievance_engine.services.complaint_elevation import elevate_from_complaint
from grievance_engine.services.engine_actions import run_action
from grievance_engine.services.grievance_lifecycle import (
    advance_step,
    available_actions,
    file_grievance,
    load_grievance,
    resolve_at_arbitration,
    settle,
    update_case_facts,
    withdraw,
)
from grievance_engine.services.grievance_schedule import (
    current_step_info,
    deadline_calendar,
    step_history,
    upcoming_deadlines,
)
from grievance_engine.services.step_registry import step_registry
from grievance_engine.utils.errors import E, api_error, engine_error_response, failure_response

logger = logging.getLogger(__name__)

grievance_bp = Blueprint("grievances", __name__, url_prefix="/api/v1")


@grievance_bp.errorhandler(EngineError)
def handle_engine_error(e):
    return engine_error_response(e)


def _respond(result: dict, status: int = 200):
    if not result["success"]:
        return failure_response(result)
    return jsonify(result["data"]), status


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


# ═══════════════════════════════════════════════════════════════
# Grievances
# ═══════════════════════════════════════════════════════════════

@grievance_bp.route("/grievances", methods=["GET"])
@require_actor
def list_grievances():
    q = Grievance.query_for_organization(g.actor.organization_id)
    status = request.args.get("status")
    if status:
        q = q.filter(Grievance.status == status.upper())
    items, total = paginate_query(q.order_by(Grievance.filed_at.desc()))
    return jsonify({"items": [i.to_dict() for i in items], "total": total})


@grievance_bp.route("/grievances", methods=["POST"])
@require_actor
def create_grievance():
    data = _json_body()
    agreement_id = data.get("agreement_id")
    if not isinstance(agreement_id, int):
        return api_error(E.VALIDATION_REQUIRED, "agreement_id is required")
    result = run_action(
        file_grievance,
        g.actor,
        agreement_id,
        statement=data.get("statement"),
        grievance_type=(data.get("type") or "INDIVIDUAL").upper(),
        category=data.get("category"),
        settlement_desired=data.get("settlement_desired") or "",
        articles_violated=data.get("articles_violated"),
        grievors=data.get("grievors"),
        work_information=data.get("work_information"),
    )
    return _respond(result, 201)


@grievance_bp.route("/grievances/<gid>", methods=["GET"])
@require_actor
def get_grievance(gid):
    grievance = load_grievance(g.actor, gid)
    payload = grievance.to_dict()
    payload["current_step"] = current_step_info(grievance)
    payload["available_actions"] = [a for a in available_actions(grievance) if g.actor.can(a)]
    return jsonify(payload)


@grievance_bp.route("/grievances/<gid>/steps", methods=["GET"])
@require_actor
def get_step_history(gid):
    grievance = load_grievance(g.actor, gid)
    return jsonify({"grievance_id": grievance.id, "steps": step_history(grievance)})


@grievance_bp.route("/grievances/<gid>/events", methods=["GET"])
@require_actor
def get_events(gid):
    grievance = load_grievance(g.actor, gid)
    events = grievance_events.events_for(grievance.id, organization_id=g.actor.organization_id)
    return jsonify({"grievance_id": grievance.id, "events": [e.to_dict() for e in events]})


@grievance_bp.route("/grievances/<gid>/facts", methods=["PATCH"])
@require_actor
def patch_facts(gid):
    data = _json_body()
    result = run_action(
        update_case_facts,
        g.actor,
        gid,
        statement=data.get("statement"),
        articles_violated=data.get("articles_violated"),
        settlement_desired=data.get("settlement_desired"),
    )
    return _respond(result)


# ═══════════════════════════════════════════════════════════════
# Transitions
# ═══════════════════════════════════════════════════════════════

@grievance_bp.route("/grievances/<gid>/advance", methods=["POST"])
@require_actor
def advance(gid):
    result = run_action(advance_step, g.actor, gid, _json_body().get("remaining_issues_note"))
    return _respond(result)


@grievance_bp.route("/grievances/<gid>/settle", methods=["POST"])
@require_actor
def settle_grievance(gid):
    result = run_action(settle, g.actor, gid, _json_body().get("settlement_details"))
    return _respond(result)


@grievance_bp.route("/grievances/<gid>/withdraw", methods=["POST"])
@require_actor
def withdraw_grievance(gid):
    result = run_action(withdraw, g.actor, gid, _json_body().get("withdrawal_details"))
    return _respond(result)


@grievance_bp.route("/grievances/<gid>/resolve", methods=["POST"])
@require_actor
def resolve_grievance(gid):
    result = run_action(resolve_at_arbitration, g.actor, gid, _json_body().get("award_details"))
    return _respond(result)


@grievance_bp.route("/complaints/<cid>/elevate", methods=["POST"])
@require_actor
def elevate(cid):
    result = run_action(elevate_from_complaint, g.actor, cid)
    if result["success"] and result["data"]["is_new"]:
        return _respond(result, 201)
    return _respond(result)


# ═══════════════════════════════════════════════════════════════
# Agreement procedure & calendar
# ═══════════════════════════════════════════════════════════════

@grievance_bp.route("/agreements/<int:aid>/steps", methods=["GET"])
@require_actor
def get_agreement_steps(aid):
    agreement = CollectiveAgreement.query.filter_by(id=aid, organization_id=g.actor.organization_id).first()
    if agreement is None:
        raise NotFoundError(resource="CollectiveAgreement", resource_id=aid)
    grievance_type = request.args.get("grievance_type")
    steps = step_registry.steps_for(agreement.id, grievance_type.upper() if grievance_type else None)
    return jsonify({"agreement": agreement.to_dict(), "steps": [s.to_dict() for s in steps]})


@grievance_bp.route("/calendar", methods=["GET"])
@require_actor
def calendar():
    return jsonify({"entries": deadline_calendar(g.actor.organization_id)})


@grievance_bp.route("/calendar/upcoming", methods=["GET"])
@require_actor
def calendar_upcoming():
    days = request.args.get("days", current_app.config.get("UPCOMING_DEADLINE_DAYS", 7), type=int)
    if days is None or days < 0:
        return api_error(E.VALIDATION_INVALID, "days must be a non-negative integer")
    return jsonify({"days": days, "entries": upcoming_deadlines(g.actor.organization_id, days_ahead=days)})
