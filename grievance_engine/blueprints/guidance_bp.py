"""
Discipline guidance blueprint.

Endpoints:
    GET    /api/v1/grievances/<gid>/discipline-guidance           cached or computed
    POST   /api/v1/grievances/<gid>/discipline-guidance/refresh   force recompute
    DELETE /api/v1/grievances/<gid>/discipline-guidance           invalidate
    GET    /api/v1/discipline-guidance/stats                      cache statistics (admin)
    POST   /api/v1/discipline-guidance/cleanup                    purge expired (admin)

Upstream failures return 503 with ``retryable: true``.
"""

import logging

from flask import Blueprint, current_app, g, jsonify

from grievance_engine.ai.discipline_cache import discipline_cache
from grievance_engine.blueprints import require_actor
from grievance_engine.core.context import ROLE_ADMIN, ROLE_SUPER_ADMIN
from grievance_engine.core.exceptions import EngineError
from grievance_engine.models import db
from grievance_engine.services.engine_actions import run_action
from grievance_engine.services.grievance_lifecycle import load_grievance, require_role
from grievance_engine.utils.errors import E, api_error, engine_error_response, failure_response

logger = logging.getLogger(__name__)

guidance_bp = Blueprint("guidance", __name__, url_prefix="/api/v1")


@guidance_bp.errorhandler(EngineError)
def handle_engine_error(e):
    return engine_error_response(e)


def _service():
    return current_app.extensions["discipline_guidance"]


def _guidance(gid, force_refresh):
    def get_guidance(ctx, grievance_id):
        return _service().get_guidance(ctx, grievance_id, force_refresh=force_refresh).to_dict()

    result = run_action(get_guidance, g.actor, gid)
    if not result["success"]:
        return failure_response(result)
    return jsonify(result["data"])


@guidance_bp.route("/grievances/<gid>/discipline-guidance", methods=["GET"])
@require_actor
def get_guidance(gid):
    return _guidance(gid, force_refresh=False)


@guidance_bp.route("/grievances/<gid>/discipline-guidance/refresh", methods=["POST"])
@require_actor
def refresh_guidance(gid):
    return _guidance(gid, force_refresh=True)


@guidance_bp.route("/grievances/<gid>/discipline-guidance", methods=["DELETE"])
@require_actor
def invalidate_guidance(gid):
    grievance = load_grievance(g.actor, gid)
    require_role(g.actor, "refresh_guidance")
    removed = discipline_cache.invalidate(grievance.id)
    db.session.commit()
    return jsonify({"grievance_id": grievance.id, "invalidated": removed})


def _require_admin():
    if g.actor.role not in (ROLE_ADMIN, ROLE_SUPER_ADMIN):
        return api_error(E.FORBIDDEN, "Admin role required")
    return None


@guidance_bp.route("/discipline-guidance/stats", methods=["GET"])
@require_actor
def cache_stats():
    denied = _require_admin()
    if denied:
        return denied
    return jsonify(discipline_cache.get_stats())


@guidance_bp.route("/discipline-guidance/cleanup", methods=["POST"])
@require_actor
def cache_cleanup():
    denied = _require_admin()
    if denied:
        return denied
    deleted = discipline_cache.cleanup_expired()
    db.session.commit()
    logger.info("Purged %d expired discipline guidance entries", deleted)
    return jsonify({"deleted": deleted})
