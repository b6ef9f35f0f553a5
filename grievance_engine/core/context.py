"""
ActorContext: who is performing an engine operation.

Every public lifecycle operation receives an ActorContext explicitly rather
than reading session globals, so transition rules are testable without an
HTTP request. Session/membership resolution is done upstream; this package
only consumes the result.
"""

from dataclasses import dataclass

# Roles that may execute mutating lifecycle actions.
ROLE_VIEWER = "viewer"
ROLE_STEWARD = "steward"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"

ACTOR_ROLES = {ROLE_VIEWER, ROLE_STEWARD, ROLE_ADMIN, ROLE_SUPER_ADMIN}

# Action → roles allowed to perform it
ACTION_ROLES = {
    "advance_step": {ROLE_STEWARD, ROLE_ADMIN, ROLE_SUPER_ADMIN},
    "settle": {ROLE_STEWARD, ROLE_ADMIN, ROLE_SUPER_ADMIN},
    "withdraw": {ROLE_STEWARD, ROLE_ADMIN, ROLE_SUPER_ADMIN},
    "resolve_at_arbitration": {ROLE_ADMIN, ROLE_SUPER_ADMIN},
    "elevate_from_complaint": {ROLE_STEWARD, ROLE_ADMIN, ROLE_SUPER_ADMIN},
    "file_grievance": {ROLE_STEWARD, ROLE_ADMIN, ROLE_SUPER_ADMIN},
    "update_case_facts": {ROLE_STEWARD, ROLE_ADMIN, ROLE_SUPER_ADMIN},
    "refresh_guidance": {ROLE_STEWARD, ROLE_ADMIN, ROLE_SUPER_ADMIN},
}


@dataclass(frozen=True)
class ActorContext:
    organization_id: int
    user_id: str = "system"
    role: str = ROLE_STEWARD

    def can(self, action: str) -> bool:
        return self.role in ACTION_ROLES.get(action, set())
