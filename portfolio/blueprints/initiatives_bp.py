"""
Initiatives Blueprint.

Routes:
  GET    /initiatives                 – list initiatives (with totals)
  POST   /initiatives                 – create initiative
  GET    /initiatives/<id>            – initiative detail
  PUT    /initiatives/<id>            – update (body.expected_version required)
  DELETE /initiatives/<id>            – delete with approvals and events
  POST   /initiatives/<id>/submit     – submit the active stage for approval
  GET    /initiatives/<id>/events     – change timeline, newest first
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from portfolio.core.exceptions import PortfolioError
from portfolio.utils.errors import E, api_error, error_response
from portfolio.utils.helpers import current_actor, json_body

logger = logging.getLogger(__name__)

initiatives_bp = Blueprint("initiatives", __name__, url_prefix="/api/v1/initiatives")


def _service():
    return current_app.extensions["portfolio.initiatives"]


@initiatives_bp.errorhandler(PortfolioError)
def _handle_portfolio_error(error: PortfolioError):
    return error_response(error)


@initiatives_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in initiatives endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════════

@initiatives_bp.route("", methods=["GET"])
def list_initiatives():
    return jsonify(_service().list_initiatives())


@initiatives_bp.route("", methods=["POST"])
def create_initiative():
    """Body: { workstream_id, name, description?, owner_*, stages?, plan? }"""
    initiative = _service().create_initiative(json_body(), actor=current_actor())
    return jsonify(initiative), 201


@initiatives_bp.route("/<initiative_id>", methods=["GET"])
def get_initiative(initiative_id):
    return jsonify(_service().get_initiative(initiative_id))


@initiatives_bp.route("/<initiative_id>", methods=["PUT"])
def update_initiative(initiative_id):
    data = json_body()
    initiative = _service().update_initiative(
        initiative_id,
        data,
        data.get("expected_version"),
        actor=current_actor(),
    )
    return jsonify(initiative)


@initiatives_bp.route("/<initiative_id>", methods=["DELETE"])
def delete_initiative(initiative_id):
    return jsonify({"id": _service().delete_initiative(initiative_id)})


# ═════════════════════════════════════════════════════════════════════════════
# Workflow
# ═════════════════════════════════════════════════════════════════════════════

@initiatives_bp.route("/<initiative_id>/submit", methods=["POST"])
def submit_stage(initiative_id):
    """Body (optional): { expected_version }"""
    data = json_body()
    initiative = _service().submit_stage(
        initiative_id,
        expected_version=data.get("expected_version"),
        actor=current_actor(),
    )
    return jsonify(initiative)


@initiatives_bp.route("/<initiative_id>/events", methods=["GET"])
def list_events(initiative_id):
    return jsonify(_service().list_events(initiative_id))
