"""Standardised API error responses.

Usage
-----
    from portfolio.utils.errors import api_error, error_response, E

    return api_error(E.NOT_FOUND, "Initiative not found")
    return error_response(exc)        # any PortfolioError

    @bp.errorhandler(PortfolioError)
    def _handle(exc):
        return error_response(exc)
"""

from __future__ import annotations

import logging

from flask import jsonify

from portfolio.core.exceptions import ErrorKind, PortfolioError

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error codes: the kebab-case form of each ErrorKind."""

    INVALID_INPUT = "invalid-input"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not-found"
    WORKSTREAM_NOT_FOUND = "workstream-not-found"
    APPROVAL_NOT_FOUND = "approval-not-found"
    VERSION_CONFLICT = "version-conflict"
    STAGE_PENDING = "stage-pending"
    STAGE_ALREADY_APPROVED = "stage-already-approved"
    MISSING_APPROVERS = "missing-approvers"

    # Not workflow kinds; raised by Flask / the database layer
    RATE_LIMITED = "rate-limited"
    INTERNAL = "internal-error"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.INVALID_INPUT: 400,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.WORKSTREAM_NOT_FOUND: 404,
    E.APPROVAL_NOT_FOUND: 404,
    E.VERSION_CONFLICT: 409,
    E.STAGE_PENDING: 409,
    E.STAGE_ALREADY_APPROVED: 409,
    E.MISSING_APPROVERS: 422,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
}


def code_for(kind: ErrorKind) -> str:
    return kind.value.lower().replace("_", "-")


def status_for(kind: ErrorKind) -> int:
    return _DEFAULT_STATUS.get(code_for(kind), 400)


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
        Extra structured payload (missing role, expected version, …).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)
    body: dict = {
        "error": message,
        "code": code,
        "details": details or {},
    }
    return jsonify(body), http_status


def error_response(exc: PortfolioError):
    """Map a PortfolioError to its HTTP response via its kind."""
    status = status_for(exc.kind)
    log = logger.warning if status in (403, 409, 422) else logger.info
    log("%s: %s", exc.kind.value, exc, extra={"status": status})
    return api_error(code_for(exc.kind), str(exc), status=status, details=exc.details)
