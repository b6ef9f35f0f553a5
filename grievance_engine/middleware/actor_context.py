"""
Actor Context Middleware: builds the ActorContext for API requests.

The authentication gateway in front of this service resolves the session
and organization membership, then forwards the result as headers:

    X-Organization-ID   integer organization (tenant) id
    X-User-ID           user identifier recorded in history/events
    X-Actor-Role        viewer | steward | admin | super_admin

This middleware validates the organization, and sets ``g.actor``. Requests
without the organization header get ``g.actor = None``; endpoints that need
an actor reject them with 401.
"""

import logging

from flask import g, jsonify, request

from grievance_engine.core.context import ACTOR_ROLES, ROLE_VIEWER, ActorContext
from grievance_engine.models import db
from grievance_engine.models.organization import Organization

logger = logging.getLogger(__name__)

ACTOR_SKIP_PREFIXES = (
    "/api/v1/health",
)


def actor_from_request() -> ActorContext | None:
    """Build an ActorContext from forwarded identity headers, or None."""
    raw_org = request.headers.get("X-Organization-ID", "").strip()
    if not raw_org:
        return None
    try:
        organization_id = int(raw_org)
    except ValueError:
        return None
    role = request.headers.get("X-Actor-Role", ROLE_VIEWER).strip().lower() or ROLE_VIEWER
    if role not in ACTOR_ROLES:
        role = ROLE_VIEWER
    user_id = request.headers.get("X-User-ID", "").strip() or "anonymous"
    return ActorContext(organization_id=organization_id, user_id=user_id, role=role)


def init_actor_context(app):
    """Register actor context middleware as a before_request hook."""

    @app.before_request
    def _actor_context():
        g.actor = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in ACTOR_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        actor = actor_from_request()
        if actor is None:
            return None

        organization = db.session.get(Organization, actor.organization_id)
        if organization is None or not organization.is_active:
            logger.warning(
                "Rejected request for unknown/inactive organization %s",
                actor.organization_id,
                extra={"organization_id": actor.organization_id},
            )
            return jsonify({"error": "Organization not found"}), 403

        g.actor = actor
        return None
