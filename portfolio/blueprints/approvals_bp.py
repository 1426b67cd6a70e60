"""
Approvals Blueprint — reviewer inbox and decisions.

Routes:
  GET    /approvals?status=&account_id=   – approval tasks with round progress
  POST   /approvals/<id>/decision         – approve / return / reject one task
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from portfolio.core.exceptions import PortfolioError
from portfolio.models.initiative import APPROVAL_STATUSES
from portfolio.utils.errors import E, api_error, error_response
from portfolio.utils.helpers import current_actor, json_body

logger = logging.getLogger(__name__)

approvals_bp = Blueprint("approvals", __name__, url_prefix="/api/v1/approvals")


def _service():
    return current_app.extensions["portfolio.initiatives"]


@approvals_bp.errorhandler(PortfolioError)
def _handle_portfolio_error(error: PortfolioError):
    return error_response(error)


@approvals_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in approvals endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


@approvals_bp.route("", methods=["GET"])
def list_approvals():
    status = (request.args.get("status") or "").strip() or None
    if status and status not in APPROVAL_STATUSES:
        return api_error(
            E.INVALID_INPUT,
            f"status must be one of: {', '.join(APPROVAL_STATUSES)}",
            details={"status": status},
        )
    account_id = (request.args.get("account_id") or "").strip() or None
    return jsonify(_service().list_approval_tasks(status=status, account_id=account_id))


@approvals_bp.route("/<approval_id>/decision", methods=["POST"])
def decide(approval_id):
    """Body: { decision: approve|return|reject, account_id?, comment? }

    ``account_id`` falls back to the X-Account-Id header.
    """
    data = json_body()
    actor = current_actor()
    account_id = (data.get("account_id") or "").strip() if isinstance(data.get("account_id"), str) else ""
    account_id = account_id or actor.account_id
    if actor.account_id is None:
        actor.account_id = account_id
    initiative = _service().decide_approval(
        approval_id,
        data.get("decision"),
        account_id=account_id,
        comment=data.get("comment"),
        actor=actor,
    )
    return jsonify(initiative)
