"""
Process Catalog & Step Store Blueprint.

Routes:
  GET    /processes                          – list processes (?status=, ?active=)
  POST   /processes                          – create process (optionally with steps)
  GET    /processes/<pid>                    – process detail (?include=steps)
  PUT    /processes/<pid>                    – update process
  DELETE /processes/<pid>                    – soft delete process and its steps
  POST   /processes/<pid>/toggle-active      – flip is_active
  PUT    /processes/<pid>/status             – change status only

  GET    /processes/<pid>/steps              – ordered steps
  POST   /processes/<pid>/steps              – append a step
  POST   /processes/<pid>/steps/reorder      – apply a new order
  PUT    /steps/<sid>                        – update a step
  DELETE /steps/<sid>                        – remove a step (survivors renumbered)
  GET    /steps/<sid>/approver               – suggested approver (?requester_id=)

Write routes need a resolved actor (JWT or, with auth disabled, X-User-Id).
Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import approvals.services.process_catalog_service as catalog
import approvals.services.reorder_service as reorder_service
import approvals.services.step_service as step_service
from approvals.blueprints import actor_required, json_object, parse_bool_arg
from approvals.integrations import get_directory
from approvals.services.step_resolver import suggest_approver
from approvals.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

process_bp = Blueprint("processes", __name__, url_prefix="/api/v1")

register_error_handlers(process_bp)


# ═════════════════════════════════════════════════════════════════════════════
# PROCESS CRUD
# ═════════════════════════════════════════════════════════════════════════════

@process_bp.route("/processes", methods=["GET"])
def list_processes():
    """List live processes ordered by id."""
    active, err = parse_bool_arg("active")
    if err:
        return err
    listing = catalog.list_processes(status=request.args.get("status") or None, is_active=active)
    return jsonify([p.to_dict() for p in listing])


@process_bp.route("/processes", methods=["POST"])
def create_process():
    """Create a process.

    Body: { title, status?, description?, is_active?, steps?: [
              {approver_user_id | approver_designation_id, description, timeout_days?, name?}
          ] }
    """
    actor, err = actor_required()
    if err:
        return err
    data, err = json_object()
    if err:
        return err

    if "title" not in data:
        return api_error(E.VALIDATION_REQUIRED, "title is required")
    steps = data.get("steps")
    if steps is not None and not isinstance(steps, list):
        return api_error(E.VALIDATION_INVALID, "steps must be a list")

    process = catalog.create_process(
        data["title"],
        data.get("status") or "Draft",
        description=data.get("description"),
        is_active=data.get("is_active", True),
        steps=steps,
        actor_id=actor,
    )
    return jsonify(process.to_dict(include_steps=True)), 201


@process_bp.route("/processes/<int:pid>", methods=["GET"])
def get_process(pid):
    include_steps = request.args.get("include") == "steps"
    process = catalog.get_process(pid, include_steps=include_steps)
    return jsonify(process.to_dict(include_steps=include_steps))


@process_bp.route("/processes/<int:pid>", methods=["PUT"])
def update_process(pid):
    """Partial update. Body: any of { title, description, status, is_active }."""
    actor, err = actor_required()
    if err:
        return err
    data, err = json_object()
    if err:
        return err
    process = catalog.update_process(pid, data, actor_id=actor)
    return jsonify(process.to_dict())


@process_bp.route("/processes/<int:pid>", methods=["DELETE"])
def delete_process(pid):
    actor, err = actor_required()
    if err:
        return err
    catalog.delete_process(pid, actor_id=actor)
    return "", 204


@process_bp.route("/processes/<int:pid>/toggle-active", methods=["POST"])
def toggle_active(pid):
    actor, err = actor_required()
    if err:
        return err
    process = catalog.toggle_active(pid, actor_id=actor)
    return jsonify(process.to_dict())


@process_bp.route("/processes/<int:pid>/status", methods=["PUT"])
def set_status(pid):
    """Body: { status: Draft | Active | Pending | Rejected | Expired }"""
    actor, err = actor_required()
    if err:
        return err
    data, err = json_object()
    if err:
        return err
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    process = catalog.set_status(pid, data["status"], actor_id=actor)
    return jsonify(process.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# STEPS
# ═════════════════════════════════════════════════════════════════════════════

@process_bp.route("/processes/<int:pid>/steps", methods=["GET"])
def list_steps(pid):
    return jsonify([s.to_dict() for s in step_service.get_ordered_steps(pid)])


@process_bp.route("/processes/<int:pid>/steps", methods=["POST"])
def add_step(pid):
    """Append a step.

    Body: { approver_user_id | approver_designation_id, description?, timeout_days?, name? }
    """
    actor, err = actor_required()
    if err:
        return err
    data, err = json_object()
    if err:
        return err
    step = step_service.add_step_from_payload(pid, data, actor_id=actor)
    return jsonify(step.to_dict()), 201


@process_bp.route("/processes/<int:pid>/steps/reorder", methods=["POST"])
def reorder_steps(pid):
    """Apply a new order and return the re-fetched step list.

    Body: { steps: [{id, order}, ...] } — sorted by order; ids are step ids.
    """
    actor, err = actor_required()
    if err:
        return err
    data, err = json_object()
    if err:
        return err
    if "steps" not in data:
        return api_error(E.VALIDATION_REQUIRED, "steps is required")

    sequence = reorder_service.sequence_from_payload(pid, data["steps"])
    steps = reorder_service.reorder(pid, sequence, actor_id=actor)
    return jsonify([s.to_dict() for s in steps])


@process_bp.route("/steps/<int:sid>", methods=["PUT"])
def update_step(sid):
    """Body: any of { approver_user_id | approver_designation_id, description, timeout_days, name }"""
    actor, err = actor_required()
    if err:
        return err
    data, err = json_object()
    if err:
        return err
    if "order" in data:
        return api_error(E.VALIDATION_INVALID, "order can only be changed through reorder")
    step = step_service.update_step(sid, data, actor_id=actor)
    return jsonify(step.to_dict())


@process_bp.route("/steps/<int:sid>", methods=["DELETE"])
def remove_step(sid):
    actor, err = actor_required()
    if err:
        return err
    step_service.remove_step(sid, actor_id=actor)
    return "", 204


@process_bp.route("/steps/<int:sid>/approver", methods=["GET"])
def suggested_approver(sid):
    """Who a step would be routed to for a given requester."""
    requester_id = request.args.get("requester_id", type=int)
    step = step_service.get_step(sid)
    return jsonify({
        "step_id": step.id,
        "requester_id": requester_id,
        "approver": step.approver.to_dict(),
        "suggested_user_id": suggest_approver(step, requester_id, get_directory()),
    })
