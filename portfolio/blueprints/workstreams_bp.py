"""
Workstreams Blueprint — gate configuration and role assignments.

Routes:
  GET    /workstreams                      – list workstreams
  POST   /workstreams                      – create workstream
  GET    /workstreams/<id>                 – workstream detail (gates)
  PUT    /workstreams/<id>                 – update (body.expected_version required)
  DELETE /workstreams/<id>                 – delete (rejected while initiatives exist)
  GET    /workstreams/<id>/assignments     – account → role assignments
  PUT    /workstreams/<id>/assignments     – replace all assignments
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from portfolio.core.exceptions import PortfolioError
from portfolio.utils.errors import E, api_error, error_response
from portfolio.utils.helpers import json_body

logger = logging.getLogger(__name__)

workstreams_bp = Blueprint("workstreams", __name__, url_prefix="/api/v1/workstreams")


def _service():
    return current_app.extensions["portfolio.workstreams"]


@workstreams_bp.errorhandler(PortfolioError)
def _handle_portfolio_error(error: PortfolioError):
    return error_response(error)


@workstreams_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in workstreams endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


@workstreams_bp.route("", methods=["GET"])
def list_workstreams():
    return jsonify([w.to_dict() for w in _service().list_workstreams()])


@workstreams_bp.route("", methods=["POST"])
def create_workstream():
    """Body: { name, description?, gates?: {gate_key: [{rule?, approvers: [{role, rule?}]}]} }"""
    return jsonify(_service().create_workstream(json_body()).to_dict()), 201


@workstreams_bp.route("/<workstream_id>", methods=["GET"])
def get_workstream(workstream_id):
    return jsonify(_service().get_workstream(workstream_id).to_dict())


@workstreams_bp.route("/<workstream_id>", methods=["PUT"])
def update_workstream(workstream_id):
    data = json_body()
    record = _service().update_workstream(workstream_id, data, data.get("expected_version"))
    return jsonify(record.to_dict())


@workstreams_bp.route("/<workstream_id>", methods=["DELETE"])
def delete_workstream(workstream_id):
    return jsonify({"id": _service().delete_workstream(workstream_id)})


@workstreams_bp.route("/<workstream_id>/assignments", methods=["GET"])
def list_assignments(workstream_id):
    return jsonify([a.to_dict() for a in _service().list_assignments(workstream_id)])


@workstreams_bp.route("/<workstream_id>/assignments", methods=["PUT"])
def replace_assignments(workstream_id):
    """Body: { assignments: [{account_id, role}] }"""
    data = json_body()
    assignments = _service().replace_assignments(workstream_id, data.get("assignments", []))
    return jsonify([a.to_dict() for a in assignments])
