"""Standardised API error responses.

Usage
-----
    from sitetrack.utils.errors import api_error, refusal, E

    return api_error(E.NOT_FOUND, "Acceptance stage not found")
    return api_error(E.VALIDATION_REQUIRED, "reason is required")

    ok, reason = approve_owner(stage, user_id)
    if not ok:
        return refusal(reason)
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 (malformed) / 422 (business rule)
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


# ── Refusal reasons → developer-facing text ───────────────────────────
# Services return bare reason codes; wording lives only at the HTTP edge.
REFUSAL_MESSAGES: dict[str, str] = {
    "invalid_state": "Transition not allowed from the current status",
    "open_defects": "Unresolved defects block this approval",
    "cannot_accept": "Item is not ready for acceptance (end date not reached or not pending)",
    "not_supported": "Step is not part of the configured acceptance workflow",
    "concurrent_update": "Record was changed by another request; reload and retry",
    "locked": "Approved records cannot be modified",
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
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
        Extra structured payload.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def refusal(reason: str):
    """Translate a guarded-transition refusal into a 409 response."""
    return api_error(
        E.CONFLICT_STATE,
        REFUSAL_MESSAGES.get(reason, reason),
        details={"reason": reason},
    )
