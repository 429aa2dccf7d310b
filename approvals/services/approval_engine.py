"""Approval State Machine — advance approvable entities through a process.

    Pending ──(Approve, not last step)──▶ Pending (cursor + 1)
    Pending ──(Approve, last step)──────▶ Approved   [terminal]
    Pending ──(Reject, any step)────────▶ Rejected   [terminal]

Every `decide` is one read-modify-write transaction:
    1. load the request (row lock where supported), refuse terminal ones
    2. load the live ordered steps and pick the one at the cursor
    3. ask the Step Resolver whether the actor may decide it
    4. append the decision and move the cursor / finalise

The request row carries an optimistic `version`. A caller that read
version N and passes it back as `expected_version` is refused if anyone
decided in between; two racing writers that both pass the pre-checks are
separated by the version-checked UPDATE (StaleDataError) or the
(request_id, step_order) unique constraint on decisions.

db.session.commit() is called only in the service layer.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from approvals.core.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    NoStepsError,
    NotFoundError,
    TerminalStateError,
    UnauthorizedActorError,
    ValidationError,
)
from approvals.integrations.directory import DirectoryAdapter
from approvals.models import db
from approvals.models.approval import (
    APPROVAL_ENTITY_TYPES,
    OUTCOME_APPROVE,
    OUTCOME_REJECT,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    ApprovalDecision,
    ApprovalRequest,
)
from approvals.models.process import Process, ProcessStep
from approvals.services.helpers.lookups import get_live
from approvals.services.step_resolver import can_act
from approvals.services.step_service import get_ordered_steps

logger = logging.getLogger(__name__)

_OUTCOME_ALIASES = {
    "approve": OUTCOME_APPROVE,
    "approved": OUTCOME_APPROVE,
    "reject": OUTCOME_REJECT,
    "rejected": OUTCOME_REJECT,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalise_outcome(outcome) -> str:
    """Map Approve/Reject (any case, or approved/rejected) to the stored value."""
    canonical = _OUTCOME_ALIASES.get(str(outcome or "").strip().lower())
    if canonical is None:
        raise ValidationError(
            "outcome must be Approve or Reject",
            details={"outcome": "invalid"},
        )
    return canonical


def _clean_entity(entity_type, entity_id) -> tuple[str, str]:
    if entity_type not in APPROVAL_ENTITY_TYPES:
        raise ValidationError(
            f"entity_type must be one of: {', '.join(sorted(APPROVAL_ENTITY_TYPES))}",
            details={"entity_type": "invalid"},
        )
    cleaned_id = str(entity_id).strip() if entity_id is not None else ""
    if not cleaned_id:
        raise ValidationError("entity_id is required", details={"entity_id": "required"})
    return entity_type, cleaned_id


# ═════════════════════════════════════════════════════════════════════════════
# Submission
# ═════════════════════════════════════════════════════════════════════════════


def submit(entity_type: str, entity_id, process_id: int, requester_id: int | None = None) -> ApprovalRequest:
    """Bind an approvable entity to a process and start it at step 1.

    Raises:
        ValidationError: Unknown entity type, or the process is inactive or deleted.
        NotFoundError: Unknown process.
        NoStepsError: The process has no live steps.
        ConflictError: The entity already has a Pending request.
    """
    entity_type, entity_id = _clean_entity(entity_type, entity_id)

    process = db.session.get(Process, process_id)
    if process is None:
        raise NotFoundError(resource="Process", resource_id=process_id)
    if process.deleted_at is not None or not process.is_active:
        raise ValidationError(
            f"Process {process_id} is not active",
            details={"process_id": "inactive"},
        )

    if not get_ordered_steps(process_id):
        raise NoStepsError(process_id)

    existing = db.session.execute(
        select(ApprovalRequest.id).where(
            ApprovalRequest.entity_type == entity_type,
            ApprovalRequest.entity_id == entity_id,
            ApprovalRequest.status == STATUS_PENDING,
        )
    ).first()
    if existing is not None:
        raise ConflictError("ApprovalRequest", "entity", f"{entity_type}/{entity_id}")

    now = _utcnow()
    approval = ApprovalRequest(
        entity_type=entity_type,
        entity_id=entity_id,
        process_id=process_id,
        requester_id=requester_id,
        current_step_order=1,
        status=STATUS_PENDING,
        submitted_at=now,
        current_step_started_at=now,
    )
    db.session.add(approval)
    db.session.commit()

    logger.info(
        "Approval submitted id=%s %s/%s process_id=%s",
        approval.id, entity_type, entity_id, process_id,
        extra={
            "approval_request_id": approval.id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "process_id": process_id,
            "actor_id": requester_id,
        },
    )
    return approval


# ═════════════════════════════════════════════════════════════════════════════
# Decisions
# ═════════════════════════════════════════════════════════════════════════════


def decide(
    request_id: int,
    actor_user_id: int | None,
    outcome: str,
    note: str | None = None,
    *,
    expected_version: int | None = None,
    directory: DirectoryAdapter,
) -> ApprovalRequest:
    """Record one actor's decision on the request's current step.

    Args:
        request_id: Approval request to decide.
        actor_user_id: User deciding.
        outcome: "Approve" or "Reject".
        note: Optional free-text comment stored with the decision.
        expected_version: Version the caller last read; a mismatch is a
            concurrent modification.
        directory: Directory port used to resolve designations.

    Raises:
        NotFoundError: Unknown request.
        ValidationError: Bad outcome, or the chain was shortened below the cursor.
        TerminalStateError: The request is already Approved or Rejected.
        NoStepsError: Every step of the process has been removed.
        UnauthorizedActorError: The actor may not decide the current step.
        ConcurrentModificationError: Version mismatch or lost race.
    """
    outcome = normalise_outcome(outcome)
    approval = get_live(ApprovalRequest, request_id, for_update=True)
    log_extra = {
        "approval_request_id": approval.id,
        "process_id": approval.process_id,
        "actor_id": actor_user_id,
        "outcome": outcome,
    }

    if approval.is_terminal:
        logger.warning("Decision on terminal request id=%s status=%s",
                       approval.id, approval.status, extra=log_extra)
        raise TerminalStateError(approval.id, approval.status)

    if expected_version is not None and expected_version != approval.version:
        raise ConcurrentModificationError(approval.id, expected=expected_version, actual=approval.version)

    steps = get_ordered_steps(approval.process_id)
    if not steps:
        raise NoStepsError(approval.process_id)

    cursor = approval.current_step_order
    if cursor > len(steps):
        raise ValidationError(
            f"Process {approval.process_id} now has {len(steps)} step(s); "
            f"request {approval.id} is waiting on step {cursor}",
            details={"current_step_order": cursor, "step_count": len(steps)},
        )
    step = steps[cursor - 1]

    if not can_act(step, actor_user_id, directory):
        logger.warning("Unauthorized decision attempt request_id=%s step_order=%s",
                       approval.id, cursor, extra={**log_extra, "step_id": step.id})
        raise UnauthorizedActorError(actor_user_id, approval.id, cursor)

    now = _utcnow()
    approval.decisions.append(
        ApprovalDecision(
            step_order=cursor,
            step_id=step.id,
            actor_id=actor_user_id,
            outcome=outcome,
            note=(note or "").strip() or None,
            decided_at=now,
        )
    )

    if outcome == OUTCOME_REJECT:
        approval.status = STATUS_REJECTED
        approval.completed_at = now
    elif cursor == len(steps):
        approval.status = STATUS_APPROVED
        approval.completed_at = now
    else:
        approval.current_step_order = cursor + 1
        approval.current_step_started_at = now

    try:
        db.session.commit()
    except (StaleDataError, IntegrityError):
        db.session.rollback()
        logger.warning("Concurrent decision lost request_id=%s", request_id, extra=log_extra)
        raise ConcurrentModificationError(request_id) from None

    logger.info(
        "Decision recorded request_id=%s step_order=%s outcome=%s status=%s",
        approval.id, cursor, outcome, approval.status,
        extra={**log_extra, "step_id": step.id},
    )
    return approval


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def get_request(request_id: int) -> ApprovalRequest:
    return get_live(ApprovalRequest, request_id)


def get_entity_status(entity_type: str, entity_id) -> dict:
    """Latest approval state of an entity, or ``not_submitted``."""
    entity_type, entity_id = _clean_entity(entity_type, entity_id)
    latest = db.session.execute(
        select(ApprovalRequest)
        .where(
            ApprovalRequest.entity_type == entity_type,
            ApprovalRequest.entity_id == entity_id,
        )
        .order_by(ApprovalRequest.id.desc())
        .limit(1)
    ).scalar_one_or_none()

    if latest is None:
        return {"entity_type": entity_type, "entity_id": entity_id, "status": "not_submitted"}
    return {
        "entity_type": entity_type,
        "entity_id": entity_id,
        "status": latest.status,
        "request": latest.to_dict(),
    }


def _pending_with_current_step():
    """SELECT (request, step) pairs: each Pending request with the step at its cursor."""
    return (
        select(ApprovalRequest, ProcessStep)
        .join(
            ProcessStep,
            and_(
                ProcessStep.process_id == ApprovalRequest.process_id,
                ProcessStep.order == ApprovalRequest.current_step_order,
                ProcessStep.deleted_at.is_(None),
            ),
        )
        .where(ApprovalRequest.status == STATUS_PENDING)
        .order_by(ApprovalRequest.id)
    )


def pending_for_actor(actor_user_id: int, directory: DirectoryAdapter) -> list[ApprovalRequest]:
    """Pending requests whose current step `actor_user_id` may decide."""
    designation_id = directory.designation_of(actor_user_id)
    clauses = [ProcessStep.user_id == actor_user_id]
    if designation_id is not None:
        clauses.append(ProcessStep.designation_id == designation_id)

    rows = db.session.execute(_pending_with_current_step().where(or_(*clauses))).all()
    return [approval for approval, _step in rows]


def list_overdue(now: datetime | None = None) -> list[dict]:
    """Pending requests whose current step has waited longer than its timeout.

    Advisory only: nothing is changed. Steps with no timeout, or a timeout
    of 0 days, never become overdue.
    """
    now = _as_utc(now) or _utcnow()
    rows = db.session.execute(
        _pending_with_current_step().where(ProcessStep.timeout_days > 0)
    ).all()

    overdue = []
    for approval, step in rows:
        started = _as_utc(approval.current_step_started_at)
        due_at = started + timedelta(days=step.timeout_days)
        if now <= due_at:
            continue
        overdue.append({
            "approval_request_id": approval.id,
            "entity_type": approval.entity_type,
            "entity_id": approval.entity_id,
            "process_id": approval.process_id,
            "step_id": step.id,
            "step_order": step.order,
            "timeout_days": step.timeout_days,
            "waiting_since": started.isoformat(),
            "due_at": due_at.isoformat(),
            "overdue_hours": round((now - due_at).total_seconds() / 3600, 1),
        })
    return overdue
