"""
Approval chain templates — Process and ProcessStep models.

A Process is a named, reusable chain; each ProcessStep occupies one
position in it and names its approver.

Approver variant:
    Every step is approved either by one specific user or by any holder of
    a designation. Callers work with the `UserApprover` / `DesignationApprover`
    value objects; storage keeps two nullable FK-style columns guarded by a
    CHECK constraint so exactly one of them is set.

Ordering:
    Live steps of a process always carry positions 1..N. The `position`
    column is exposed as the `order` attribute. Removed steps keep their row
    (soft delete) with position NULL, so the (process_id, position) unique
    constraint only covers live steps.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from approvals.core.exceptions import ValidationError
from approvals.models import db
from approvals.models.soft_delete import SoftDeleteMixin

# ── Constants ─────────────────────────────────────────────────────────────────

PROCESS_STATUSES = ("Draft", "Active", "Pending", "Rejected", "Expired")

MAX_TITLE_LENGTH = 255


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Approver variant ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class UserApprover:
    """Step decided by exactly one user."""

    user_id: int

    kind = "user"

    def to_dict(self) -> dict:
        return {"type": self.kind, "user_id": self.user_id}


@dataclass(frozen=True)
class DesignationApprover:
    """Step decided by any user holding the designation at decision time."""

    designation_id: int

    kind = "designation"

    def to_dict(self) -> dict:
        return {"type": self.kind, "designation_id": self.designation_id}


Approver = UserApprover | DesignationApprover


def _positive_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive integer", details={field: "invalid"})
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a positive integer", details={field: "invalid"}) from None
    if number <= 0:
        raise ValidationError(f"{field} must be a positive integer", details={field: "invalid"})
    return number


def approver_from_fields(user_id=None, designation_id=None) -> Approver:
    """Build an Approver from the two mutually exclusive request fields.

    Raises:
        ValidationError: both or neither field supplied, or a non-positive id.
    """
    has_user = user_id is not None
    has_designation = designation_id is not None
    if has_user and has_designation:
        raise ValidationError(
            "Provide exactly one of approver_user_id or approver_designation_id, not both",
            details={"approver": "both set"},
        )
    if not has_user and not has_designation:
        raise ValidationError(
            "One of approver_user_id or approver_designation_id is required",
            details={"approver": "missing"},
        )
    if has_user:
        return UserApprover(_positive_int(user_id, "approver_user_id"))
    return DesignationApprover(_positive_int(designation_id, "approver_designation_id"))


# ── Models ────────────────────────────────────────────────────────────────────


class Process(SoftDeleteMixin, db.Model):
    """Named approval chain template (e.g. "Material Request", "RFQ Approval")."""

    __tablename__ = "processes"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(MAX_TITLE_LENGTH), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(20),
        nullable=False,
        default="Draft",
        comment="Draft | Active | Pending | Rejected | Expired",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    steps = db.relationship(
        "ProcessStep",
        back_populates="process",
        lazy="select",
        order_by="ProcessStep.order",
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('Draft', 'Active', 'Pending', 'Rejected', 'Expired')",
            name="ck_processes_status",
        ),
    )

    @property
    def live_steps(self) -> list[ProcessStep]:
        return sorted(
            (s for s in self.steps if not s.is_deleted and s.order is not None),
            key=lambda s: s.order,
        )

    def to_dict(self, include_steps: bool = False) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "is_active": self.is_active,
            "step_count": len(self.live_steps),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_steps:
            data["steps"] = [s.to_dict() for s in self.live_steps]
        return data

    def __repr__(self) -> str:
        return f"<Process #{self.id} {self.title!r} {self.status}>"


class ProcessStep(SoftDeleteMixin, db.Model):
    """One position in a process's approval chain."""

    __tablename__ = "process_steps"

    id = db.Column(db.Integer, primary_key=True)
    process_id = db.Column(
        db.Integer,
        db.ForeignKey("processes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # "order" is reserved in SQL; the column is named position
    order = db.Column("position", db.Integer, nullable=True, comment="1..N among live steps; NULL once removed")

    user_id = db.Column(db.Integer, nullable=True, comment="Approver: a specific user")
    designation_id = db.Column(db.Integer, nullable=True, comment="Approver: any holder of the designation")

    name = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True, comment="Task label shown to the approver")
    timeout_days = db.Column(db.Integer, nullable=True, comment="Advisory only; reported, never enforced")

    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    process = db.relationship("Process", back_populates="steps")

    __table_args__ = (
        db.UniqueConstraint("process_id", "position", name="uq_process_steps_position"),
        db.CheckConstraint(
            "(user_id IS NULL) <> (designation_id IS NULL)",
            name="ck_process_steps_single_approver",
        ),
        db.CheckConstraint("position IS NULL OR position <> 0", name="ck_process_steps_position_nonzero"),
    )

    @property
    def approver(self) -> Approver:
        if self.user_id is not None:
            return UserApprover(self.user_id)
        return DesignationApprover(self.designation_id)

    @approver.setter
    def approver(self, value: Approver) -> None:
        if isinstance(value, UserApprover):
            self.user_id, self.designation_id = value.user_id, None
        elif isinstance(value, DesignationApprover):
            self.user_id, self.designation_id = None, value.designation_id
        else:
            raise ValidationError(f"Unsupported approver {value!r}")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "process_id": self.process_id,
            "order": self.order,
            "approver": self.approver.to_dict(),
            "approver_user_id": self.user_id,
            "approver_designation_id": self.designation_id,
            "name": self.name,
            "description": self.description,
            "timeout_days": self.timeout_days,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<ProcessStep #{self.id} process={self.process_id} order={self.order}>"
