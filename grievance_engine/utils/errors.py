"""Standardised API error responses.

Usage
-----
    from grievance_engine.utils.errors import api_error, engine_error_response, E

    return api_error(E.NOT_FOUND, "Grievance not found")
    return api_error(E.VALIDATION_REQUIRED, "settlement_details is required")
    return engine_error_response(exc)   # any EngineError
"""

from __future__ import annotations

from flask import jsonify

from grievance_engine.core.exceptions import EngineError, ErrorKind


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation: HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Authentication / permissions: HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found: HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict: HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    NO_NEXT_STEP = "ERR_NO_NEXT_STEP"

    # Upstream: HTTP 503
    UPSTREAM_UNAVAILABLE = "ERR_UPSTREAM_UNAVAILABLE"

    # Server: HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.NO_NEXT_STEP: 409,
    E.UPSTREAM_UNAVAILABLE: 503,
    E.INTERNAL: 500,
}

# ErrorKind → error code
KIND_CODES: dict[str, str] = {
    ErrorKind.VALIDATION_ERROR.value: E.VALIDATION_REQUIRED,
    ErrorKind.INVALID_ARGUMENT.value: E.VALIDATION_INVALID,
    ErrorKind.INVALID_TRANSITION.value: E.CONFLICT_STATE,
    ErrorKind.NO_NEXT_STEP.value: E.NO_NEXT_STEP,
    ErrorKind.NOT_FOUND.value: E.NOT_FOUND,
    ErrorKind.UPSTREAM_UNAVAILABLE.value: E.UPSTREAM_UNAVAILABLE,
    ErrorKind.FORBIDDEN.value: E.FORBIDDEN,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
    **extra,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, step numbers, etc.).
    **extra
        Additional top-level keys (``error_kind``, ``retryable``).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)``: drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    body.update(extra)
    if details:
        body["details"] = details

    return jsonify(body), http_status


def failure_response(result: dict):
    """HTTP response for a failed ``run_action`` result."""
    kind = result["error_kind"]
    return api_error(
        KIND_CODES.get(kind, E.INTERNAL),
        result["error"],
        details=result.get("details"),
        error_kind=kind,
        retryable=result.get("retryable", False),
    )


def engine_error_response(exc: EngineError):
    """HTTP response for an EngineError raised outside ``run_action``."""
    from grievance_engine.services.engine_actions import failure

    return failure_response(failure(exc))
