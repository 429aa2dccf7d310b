"""Step Store — persistence of the ordered steps that make up a process.

Live steps of a process always form positions 1..N without gaps. Appends
take the next position under a row lock on the owning process; removal
soft-deletes the step and closes the gap in the same transaction.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from approvals.core.exceptions import ConflictError, NotFoundError, ValidationError
from approvals.models import db
from approvals.models.process import (
    Approver,
    DesignationApprover,
    Process,
    ProcessStep,
    UserApprover,
    approver_from_fields,
)
from approvals.services.helpers.lookups import get_live

logger = logging.getLogger(__name__)


# ─── Validation helpers ────────────────────────────────────────────────────────


def _clean_timeout(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(
            "timeout_days must be a non-negative integer",
            details={"timeout_days": "invalid"},
        )
    return value


def _clean_text(value: Any, field: str, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={field: "invalid"})
    cleaned = value.strip() or None
    if cleaned and max_length and len(cleaned) > max_length:
        raise ValidationError(
            f"{field} must be at most {max_length} characters",
            details={field: "too long"},
        )
    return cleaned


def _check_approver(approver: Any) -> Approver:
    if not isinstance(approver, (UserApprover, DesignationApprover)):
        raise ValidationError("approver must be a user or designation approver",
                              details={"approver": "invalid"})
    if isinstance(approver, UserApprover):
        return approver_from_fields(user_id=approver.user_id)
    return approver_from_fields(designation_id=approver.designation_id)


def _approver_from_payload(payload: dict) -> Approver:
    if "approver" in payload:
        return _check_approver(payload["approver"])
    return approver_from_fields(
        payload.get("approver_user_id"),
        payload.get("approver_designation_id"),
    )


def build_step(process_id: int, position: int, payload: dict, *, actor_id: int | None = None) -> ProcessStep:
    """Build (but do not add) a step from an API-style payload.

    Shared by `add_step` and inline step creation in the catalog.
    """
    return ProcessStep(
        process_id=process_id,
        order=position,
        approver=_approver_from_payload(payload),
        name=_clean_text(payload.get("name"), "name", 255),
        description=_clean_text(payload.get("description"), "description"),
        timeout_days=_clean_timeout(payload.get("timeout_days")),
        created_by=actor_id,
        updated_by=actor_id,
    )


def _next_position(process_id: int) -> int:
    current = db.session.execute(
        select(func.max(ProcessStep.order)).where(
            ProcessStep.process_id == process_id,
            ProcessStep.deleted_at.is_(None),
        )
    ).scalar()
    return (current or 0) + 1


# ─── Public API ────────────────────────────────────────────────────────────────


def add_step(
    process_id: int,
    approver: Approver,
    description: str | None = None,
    timeout_days: int | None = None,
    *,
    name: str | None = None,
    actor_id: int | None = None,
) -> ProcessStep:
    """Append a step at position N+1.

    Raises:
        NotFoundError: Unknown or deleted process.
        ValidationError: Bad approver or negative timeout.
        ConflictError: A concurrent append took the same position.
    """
    process = get_live(Process, process_id, for_update=True)
    step = ProcessStep(
        process_id=process.id,
        order=_next_position(process.id),
        approver=_check_approver(approver),
        name=_clean_text(name, "name", 255),
        description=_clean_text(description, "description"),
        timeout_days=_clean_timeout(timeout_days),
        created_by=actor_id,
        updated_by=actor_id,
    )
    db.session.add(step)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.warning("Concurrent append collided process_id=%s", process_id,
                       extra={"process_id": process_id})
        raise ConflictError("ProcessStep", "order", str(step.order)) from None

    logger.info(
        "Step added id=%s process_id=%s order=%s approver=%s",
        step.id, process_id, step.order, step.approver.kind,
        extra={"process_id": process_id, "step_id": step.id, "actor_id": actor_id},
    )
    return step


def add_step_from_payload(process_id: int, payload: dict, *, actor_id: int | None = None) -> ProcessStep:
    """`add_step` for a JSON body using approver_user_id / approver_designation_id."""
    return add_step(
        process_id,
        _approver_from_payload(payload),
        payload.get("description"),
        payload.get("timeout_days"),
        name=payload.get("name"),
        actor_id=actor_id,
    )


def get_step(step_id: int, *, process_id: int | None = None) -> ProcessStep:
    """Return a live step, optionally checking it belongs to `process_id`."""
    step = get_live(ProcessStep, step_id)
    if process_id is not None and step.process_id != process_id:
        raise NotFoundError(resource="ProcessStep", resource_id=step_id)
    return step


def get_ordered_steps(process_id: int) -> list[ProcessStep]:
    """Return the live steps of a process in ascending order.

    Raises:
        NotFoundError: Unknown or deleted process.
    """
    get_live(Process, process_id)
    return list(
        db.session.execute(
            select(ProcessStep)
            .where(
                ProcessStep.process_id == process_id,
                ProcessStep.deleted_at.is_(None),
                ProcessStep.order.is_not(None),
            )
            .order_by(ProcessStep.order)
        ).scalars()
    )


def update_step(step_id: int, fields: dict, *, actor_id: int | None = None) -> ProcessStep:
    """Update approver, name, description or timeout of a step.

    The approver may be passed as an ``approver`` value object or as
    ``approver_user_id`` / ``approver_designation_id``. Order is changed only
    through reorder. Every field is validated before any is applied.
    """
    step = get_live(ProcessStep, step_id)

    changes: dict[str, Any] = {}
    if (
        "approver" in fields
        or "approver_user_id" in fields
        or "approver_designation_id" in fields
    ):
        changes["approver"] = _approver_from_payload(fields)
    if "name" in fields:
        changes["name"] = _clean_text(fields["name"], "name", 255)
    if "description" in fields:
        changes["description"] = _clean_text(fields["description"], "description")
    if "timeout_days" in fields:
        changes["timeout_days"] = _clean_timeout(fields["timeout_days"])

    for key, value in changes.items():
        setattr(step, key, value)
    step.updated_by = actor_id if actor_id is not None else step.updated_by

    db.session.commit()
    logger.info("Step updated id=%s process_id=%s", step.id, step.process_id,
                extra={"process_id": step.process_id, "step_id": step.id, "actor_id": actor_id})
    return step


def remove_step(step_id: int, *, actor_id: int | None = None) -> None:
    """Soft-delete a step and renumber the survivors to 1..N-1.

    Both writes happen in one transaction. Approval requests that already
    passed the step keep their decision rows pointing at it.
    """
    from approvals.services.reorder_service import apply_order

    step = get_live(ProcessStep, step_id)
    process_id = step.process_id
    get_live(Process, process_id, for_update=True)

    try:
        step.soft_delete()
        step.order = None
        step.updated_by = actor_id if actor_id is not None else step.updated_by
        db.session.flush()

        remaining = [
            s for s in get_ordered_steps(process_id) if s.id != step.id
        ]
        apply_order(remaining)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Step removed id=%s process_id=%s remaining=%d",
                step_id, process_id, len(remaining),
                extra={"process_id": process_id, "step_id": step_id, "actor_id": actor_id})
