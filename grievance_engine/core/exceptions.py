"""
Engine-wide exception hierarchy.

Every service in this package raises one of these types. The action runner
(``grievance_engine.services.engine_actions``) converts them into structured
failure results, and blueprints register handlers against them once to get
consistent HTTP status codes everywhere.

Each exception carries an ``ErrorKind`` so callers can branch on the failure
category without importing the concrete class.

Usage:
    from grievance_engine.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Grievance", resource_id=gid)
    raise ValidationError("Settlement details are required", details={"settlement_details": "blank"})
"""

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    NO_NEXT_STEP = "NO_NEXT_STEP"
    NOT_FOUND = "NOT_FOUND"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    FORBIDDEN = "FORBIDDEN"


class EngineError(Exception):
    """Base class. ``retryable`` is True only for upstream failures."""

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR
    retryable: bool = False

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class NotFoundError(EngineError):
    """Raised when a requested resource does not exist within the given scope.

    Security note: used for BOTH genuinely missing records AND cross-organization
    access attempts. A 403 would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable entity name (e.g. "Grievance", "StepTemplate").
        resource_id: The key that was looked up. Included in logs, not in HTTP response.
        organization_id: Optional: the scope that was enforced. For debug logging only.
    """

    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        organization_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.organization_id = organization_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if organization_id is not None:
            msg += f" (organization={organization_id})"
        super().__init__(msg)


class ValidationError(EngineError):
    """Raised when a required narrative field is missing or blank, or input
    otherwise violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    kind = ErrorKind.VALIDATION_ERROR


class InvalidArgumentError(ValidationError):
    """Raised by pure helpers (deadline math) on out-of-range input."""

    kind = ErrorKind.INVALID_ARGUMENT


class InvalidTransitionError(EngineError):
    """Raised when an operation is attempted on a grievance whose state forbids it.

    Covers double resolution and lost optimistic-lock races.
    """

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, grievance_id: str, action: str, current: str, reason: str | None = None):
        msg = f"Cannot '{action}' grievance {grievance_id} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={"action": action, "status": current})
        self.grievance_id = grievance_id
        self.action = action
        self.current_status = current
        self.reason = reason


class NoNextStepError(EngineError):
    """Raised when advance is attempted at the last configured step."""

    kind = ErrorKind.NO_NEXT_STEP

    def __init__(self, grievance_id: str, step_number: int):
        super().__init__(
            f"Grievance {grievance_id} is at step {step_number}; no further step is configured",
            details={"step_number": step_number},
        )
        self.grievance_id = grievance_id
        self.step_number = step_number


class UpstreamUnavailableError(EngineError):
    """Raised when the text-generation or retrieval collaborator fails or times out."""

    kind = ErrorKind.UPSTREAM_UNAVAILABLE
    retryable = True

    def __init__(self, collaborator: str, reason: str):
        super().__init__(f"{collaborator} unavailable: {reason}", details={"collaborator": collaborator})
        self.collaborator = collaborator
        self.reason = reason


class PermissionDenied(EngineError):
    """Raised when the actor's role may not perform the action."""

    kind = ErrorKind.FORBIDDEN

    def __init__(self, role: str, action: str):
        super().__init__(f"Role '{role}' may not '{action}'", details={"role": role, "action": action})
        self.role = role
        self.action = action
