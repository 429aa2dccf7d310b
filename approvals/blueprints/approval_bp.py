"""
Approval Blueprint — submit entities and decide their steps.

Routes:
  POST   /approvals                                  – submit entity for approval
  GET    /approvals/<aid>                            – request detail with decisions
  POST   /approvals/<aid>/decide                     – approve / reject current step
  GET    /approvals/pending                          – my pending approvals
  GET    /approvals/overdue                          – requests past their step timeout
  GET    /<entity_type>/<entity_id>/approval-status  – entity approval status
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import Blueprint, jsonify, request

import approvals.services.approval_engine as engine
from approvals.blueprints import actor_required, json_object
from approvals.integrations import get_directory
from approvals.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

approval_bp = Blueprint("approvals", __name__, url_prefix="/api/v1")

register_error_handlers(approval_bp)


# ═════════════════════════════════════════════════════════════════════════════
# SUBMISSION & DECISIONS
# ═════════════════════════════════════════════════════════════════════════════

@approval_bp.route("/approvals", methods=["POST"])
def submit():
    """Start an approval run; the caller is recorded as requester.

    Body: { entity_type, entity_id, process_id }
    """
    actor, err = actor_required()
    if err:
        return err
    data, err = json_object()
    if err:
        return err

    missing = [f for f in ("entity_type", "entity_id", "process_id") if data.get(f) in (None, "")]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"{', '.join(missing)} required")
    process_id = data["process_id"]
    if isinstance(process_id, bool) or not isinstance(process_id, int):
        return api_error(E.VALIDATION_INVALID, "process_id must be an integer")

    approval = engine.submit(data["entity_type"], data["entity_id"], process_id, requester_id=actor)
    return jsonify(approval.to_dict()), 201


@approval_bp.route("/approvals/<int:aid>", methods=["GET"])
def get_approval(aid):
    return jsonify(engine.get_request(aid).to_dict())


@approval_bp.route("/approvals/<int:aid>/decide", methods=["POST"])
def decide(aid):
    """Approve or reject the current step.

    Body: { outcome: "Approve" | "Reject", note?, version? }
    Passing the version last read turns a concurrent decision into a 409.
    """
    actor, err = actor_required()
    if err:
        return err
    data, err = json_object()
    if err:
        return err

    if not data.get("outcome"):
        return api_error(E.VALIDATION_REQUIRED, "outcome is required")
    version = data.get("version")
    if version is not None and (isinstance(version, bool) or not isinstance(version, int)):
        return api_error(E.VALIDATION_INVALID, "version must be an integer")
    note = data.get("note")
    if note is not None and not isinstance(note, str):
        return api_error(E.VALIDATION_INVALID, "note must be a string")

    approval = engine.decide(
        aid,
        actor,
        data["outcome"],
        note,
        expected_version=version,
        directory=get_directory(),
    )
    return jsonify(approval.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# QUEUES & STATUS
# ═════════════════════════════════════════════════════════════════════════════

@approval_bp.route("/approvals/pending", methods=["GET"])
def pending():
    """Requests the caller can decide right now."""
    actor, err = actor_required()
    if err:
        return err
    items = engine.pending_for_actor(actor, get_directory())
    return jsonify([a.to_dict() for a in items])


@approval_bp.route("/approvals/overdue", methods=["GET"])
def overdue():
    """Advisory report; ?now=<ISO-8601> evaluates at another instant."""
    now = None
    raw = request.args.get("now")
    if raw:
        try:
            now = datetime.fromisoformat(raw)
        except ValueError:
            return api_error(E.VALIDATION_INVALID, "now must be an ISO-8601 timestamp")
    return jsonify(engine.list_overdue(now))


@approval_bp.route("/<entity_type>/<entity_id>/approval-status", methods=["GET"])
def entity_status(entity_type, entity_id):
    return jsonify(engine.get_entity_status(entity_type, entity_id))
