"""Process Catalog service — create, edit, activate and list approval chains.

A Process is a reusable approval chain template ("Material Request",
"RFQ Approval", ...). This service owns its lifecycle:

1. **Authoring** — create (optionally with an inline list of steps, appended
   in order inside the same transaction) and update.

2. **Activation** — deactivate / toggle / status changes. Deactivating a
   process only blocks *new* submissions; requests already mid-chain keep
   advancing.

3. **Listing** — a lazy, restartable keyset scan ordered by id.

Processes are never physically deleted: `delete_process` flags the process
and its steps so historical approval requests stay resolvable.

db.session.commit() is called only in the service layer.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from approvals.core.exceptions import ConflictError, ValidationError
from approvals.models import db
from approvals.models.approval import STATUS_PENDING, ApprovalRequest
from approvals.models.process import (
    MAX_TITLE_LENGTH,
    PROCESS_STATUSES,
    Process,
)
from approvals.services.helpers.lookups import get_live

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("title", "description", "status", "is_active")


# ─── Internal helpers ──────────────────────────────────────────────────────────


def _clean_title(title: Any) -> str:
    cleaned = (title or "").strip() if isinstance(title, str) or title is None else None
    if cleaned is None:
        raise ValidationError("title must be a string", details={"title": "invalid"})
    if not cleaned:
        raise ValidationError("title is required", details={"title": "required"})
    if len(cleaned) > MAX_TITLE_LENGTH:
        raise ValidationError(
            f"title must be at most {MAX_TITLE_LENGTH} characters",
            details={"title": "too long"},
        )
    return cleaned


def _clean_status(status: Any) -> str:
    """Accept a status case-insensitively and return its canonical spelling."""
    by_lower = {s.lower(): s for s in PROCESS_STATUSES}
    canonical = by_lower.get(str(status or "").strip().lower())
    if canonical is None:
        raise ValidationError(
            f"status must be one of: {', '.join(PROCESS_STATUSES)}",
            details={"status": "invalid"},
        )
    return canonical


def _clean_bool(value: Any, field: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be a boolean", details={field: "invalid"})
    return value


def _clean_description(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("description must be a string", details={"description": "invalid"})
    return value.strip() or None


# ─── Public API ────────────────────────────────────────────────────────────────


def create_process(
    title: str,
    status: str = "Draft",
    *,
    description: str | None = None,
    is_active: bool = True,
    steps: list[dict] | None = None,
    actor_id: int | None = None,
) -> Process:
    """Create a process, optionally with its initial steps.

    Args:
        title:       Non-empty display name.
        status:      One of Draft | Active | Pending | Rejected | Expired.
        description: Optional free text.
        is_active:   Whether new requests may be submitted against it.
        steps:       Optional list of step payloads, each
                     ``{approver_user_id | approver_designation_id, description,
                     timeout_days, name}``; appended at orders 1..N.
        actor_id:    User performing the change (audit columns).

    Raises:
        ValidationError: Empty title, unknown status, or an invalid step payload.
    """
    from approvals.services.step_service import build_step

    process = Process(
        title=_clean_title(title),
        status=_clean_status(status),
        description=_clean_description(description),
        is_active=_clean_bool(is_active, "is_active"),
        created_by=actor_id,
        updated_by=actor_id,
    )
    db.session.add(process)
    try:
        db.session.flush()
        for position, payload in enumerate(steps or [], 1):
            if not isinstance(payload, dict):
                raise ValidationError(
                    "each step must be an object",
                    details={"steps": f"item {position} is not an object"},
                )
            db.session.add(build_step(process.id, position, payload, actor_id=actor_id))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Process created id=%s title=%r steps=%d",
        process.id, process.title, len(steps or []),
        extra={"process_id": process.id, "actor_id": actor_id},
    )
    return process


def get_process(process_id: int, include_steps: bool = False) -> Process:
    """Return a live process, eager-loading its steps when asked.

    Raises:
        NotFoundError: Unknown or soft-deleted id.
    """
    options = [selectinload(Process.steps)] if include_steps else ()
    return get_live(Process, process_id, options=options)


def update_process(process_id: int, fields: dict, *, actor_id: int | None = None) -> Process:
    """Apply a partial update (title, description, status, is_active).

    Unknown keys are ignored.

    Raises:
        NotFoundError: Unknown or soft-deleted id.
        ValidationError: Empty title, unknown status or non-boolean is_active.
    """
    process = get_live(Process, process_id)

    changes: dict[str, Any] = {}
    if "title" in fields:
        changes["title"] = _clean_title(fields["title"])
    if "description" in fields:
        changes["description"] = _clean_description(fields["description"])
    if "status" in fields:
        changes["status"] = _clean_status(fields["status"])
    if "is_active" in fields:
        changes["is_active"] = _clean_bool(fields["is_active"], "is_active")

    for key in _UPDATABLE_FIELDS:
        if key in changes:
            setattr(process, key, changes[key])
    process.updated_by = actor_id if actor_id is not None else process.updated_by
    db.session.commit()

    logger.info(
        "Process updated id=%s fields=%s",
        process.id, sorted(changes),
        extra={"process_id": process.id, "actor_id": actor_id},
    )
    return process


def set_status(process_id: int, status: str, *, actor_id: int | None = None) -> Process:
    """Change only the lifecycle status of a process."""
    return update_process(process_id, {"status": status}, actor_id=actor_id)


def deactivate(process_id: int, *, actor_id: int | None = None) -> Process:
    """Stop new submissions against a process.

    Requests already mid-chain are not touched and can still be decided.
    """
    process = get_live(Process, process_id)
    if process.is_active:
        process.is_active = False
        process.updated_by = actor_id if actor_id is not None else process.updated_by
        db.session.commit()
        logger.info("Process deactivated id=%s", process.id,
                    extra={"process_id": process.id, "actor_id": actor_id})
    return process


def toggle_active(process_id: int, *, actor_id: int | None = None) -> Process:
    """Flip is_active and return the process."""
    process = get_live(Process, process_id)
    process.is_active = not process.is_active
    process.updated_by = actor_id if actor_id is not None else process.updated_by
    db.session.commit()
    logger.info(
        "Process %s id=%s",
        "activated" if process.is_active else "deactivated", process.id,
        extra={"process_id": process.id, "actor_id": actor_id},
    )
    return process


def delete_process(process_id: int, *, actor_id: int | None = None) -> None:
    """Soft-delete a process and its live steps.

    The rows stay in place so approval requests that reference them remain
    resolvable; the process disappears from every catalog read.

    Raises:
        NotFoundError: Unknown or already deleted id.
        ConflictError: Pending approval requests still run through the process.
    """
    process = get_live(Process, process_id, for_update=True)
    pending = db.session.execute(
        select(func.count(ApprovalRequest.id)).where(
            ApprovalRequest.process_id == process.id,
            ApprovalRequest.status == STATUS_PENDING,
        )
    ).scalar()
    if pending:
        raise ConflictError(
            "Process", "pending_requests", str(pending),
            message=f"Process id={process.id} has {pending} pending approval request(s)",
        )
    for step in process.live_steps:
        step.soft_delete()
        step.order = None
    process.soft_delete()
    process.is_active = False
    process.updated_by = actor_id if actor_id is not None else process.updated_by
    db.session.commit()
    logger.info("Process soft-deleted id=%s", process_id,
                extra={"process_id": process_id, "actor_id": actor_id})


class ProcessListing:
    """Lazy, finite, restartable listing of live processes ordered by id.

    Each ``iter()`` starts a fresh keyset-paginated scan, fetching
    ``batch_size`` rows per query; nothing is loaded until iteration begins.

    Usage:
        listing = list_processes(is_active=True)
        for process in listing:
            ...
        again = list(listing)   # re-runs the scan
    """

    def __init__(
        self,
        *,
        status: str | None = None,
        is_active: bool | None = None,
        batch_size: int = 100,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.status = _clean_status(status) if status is not None else None
        self.is_active = is_active
        self.batch_size = batch_size

    def _batch_stmt(self, after_id: int):
        stmt = (
            select(Process)
            .where(Process.deleted_at.is_(None), Process.id > after_id)
            .order_by(Process.id)
            .limit(self.batch_size)
        )
        if self.status is not None:
            stmt = stmt.where(Process.status == self.status)
        if self.is_active is not None:
            stmt = stmt.where(Process.is_active.is_(self.is_active))
        return stmt

    def __iter__(self) -> Iterator[Process]:
        last_id = 0
        while True:
            batch = db.session.execute(self._batch_stmt(last_id)).scalars().all()
            yield from batch
            if len(batch) < self.batch_size:
                return
            last_id = batch[-1].id


def list_processes(
    *,
    status: str | None = None,
    is_active: bool | None = None,
    batch_size: int = 100,
) -> ProcessListing:
    """Return a restartable listing of live processes ordered by id."""
    return ProcessListing(status=status, is_active=is_active, batch_size=batch_size)


# ─── Seeding ───────────────────────────────────────────────────────────────────

DEFAULT_PROCESS_TITLES = (
    "Material Request",
    "RFQ Approval",
    "Purchase Order Approval",
    "Maharat Invoice Approval",
    "Payment Order Approval",
    "Budget Request Approval",
    "Total Budget Approval",
)


def seed_default_processes(*, actor_id: int | None = None) -> int:
    """Create the standard procurement chains that do not exist yet.

    Matching is by title among live processes, so re-running is a no-op.
    Seeded processes are Active and start without steps.

    Returns:
        Number of processes created.
    """
    existing = set(
        db.session.execute(
            select(Process.title).where(Process.deleted_at.is_(None))
        ).scalars()
    )
    created = 0
    for title in DEFAULT_PROCESS_TITLES:
        if title in existing:
            continue
        db.session.add(Process(
            title=title,
            status="Active",
            is_active=True,
            created_by=actor_id,
            updated_by=actor_id,
        ))
        created += 1
    db.session.commit()
    logger.info("Seeded %d default processes", created)
    return created
