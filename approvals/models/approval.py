"""
Approval state — ApprovalRequest and ApprovalDecision models.

An ApprovalRequest is the engine's handle on any approvable domain object
(material request item, RFQ, purchase order, budget transfer, ...). The
owning object is identified polymorphically by (entity_type, entity_id);
the engine only ever writes the approval fields kept here.

Business rules:
- status starts at Pending and moves once, to Approved or Rejected.
- current_step_order == len(decisions) + 1 while Pending.
- ApprovalDecision rows are append-only.
- `version` is SQLAlchemy's optimistic lock counter: a flush that finds a
  different version in the database raises StaleDataError.
"""

from datetime import datetime, timezone

from approvals.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

APPROVAL_ENTITY_TYPES = frozenset({
    "material_request_item",
    "rfq",
    "purchase_order",
    "invoice",
    "payment_order",
    "budget_request",
    "budget_transfer",
})

STATUS_PENDING = "Pending"
STATUS_APPROVED = "Approved"
STATUS_REJECTED = "Rejected"
APPROVAL_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)

OUTCOME_APPROVE = "Approve"
OUTCOME_REJECT = "Reject"
DECISION_OUTCOMES = (OUTCOME_APPROVE, OUTCOME_REJECT)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalRequest(db.Model):
    """One run of an approvable entity through a process."""

    __tablename__ = "approval_requests"

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(40), nullable=False)
    entity_id = db.Column(
        db.String(64),
        nullable=False,
        comment="PK of the owning domain object, serialised as str()",
    )
    process_id = db.Column(
        db.Integer,
        db.ForeignKey("processes.id"),
        nullable=False,
        index=True,
    )
    requester_id = db.Column(db.Integer, nullable=True)

    current_step_order = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING, index=True)
    version = db.Column(db.Integer, nullable=False)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    current_step_started_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    process = db.relationship("Process")
    decisions = db.relationship(
        "ApprovalDecision",
        back_populates="request",
        order_by="ApprovalDecision.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.Index("ix_approval_requests_entity", "entity_type", "entity_id"),
        db.CheckConstraint(
            "status IN ('Pending', 'Approved', 'Rejected')",
            name="ck_approval_requests_status",
        ),
        db.CheckConstraint("current_step_order >= 1", name="ck_approval_requests_cursor"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != STATUS_PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "process_id": self.process_id,
            "requester_id": self.requester_id,
            "current_step_order": self.current_step_order,
            "status": self.status,
            "version": self.version,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "current_step_started_at": (
                self.current_step_started_at.isoformat() if self.current_step_started_at else None
            ),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "decisions": [d.to_dict() for d in self.decisions],
        }

    def __repr__(self) -> str:
        return f"<ApprovalRequest #{self.id} {self.entity_type}/{self.entity_id} {self.status}>"


class ApprovalDecision(db.Model):
    """Immutable record of one actor's outcome on one step of a request."""

    __tablename__ = "approval_decisions"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_order = db.Column(db.Integer, nullable=False)
    step_id = db.Column(
        db.Integer,
        db.ForeignKey("process_steps.id"),
        nullable=True,
        comment="Step decided; kept resolvable after the step is soft-deleted",
    )
    actor_id = db.Column(db.Integer, nullable=False)
    outcome = db.Column(db.String(10), nullable=False, comment="Approve | Reject")
    note = db.Column(db.Text, nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    request = db.relationship("ApprovalRequest", back_populates="decisions")

    __table_args__ = (
        db.UniqueConstraint("request_id", "step_order", name="uq_approval_decisions_step"),
        db.CheckConstraint("outcome IN ('Approve', 'Reject')", name="ck_approval_decisions_outcome"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "step_order": self.step_order,
            "step_id": self.step_id,
            "actor_id": self.actor_id,
            "outcome": self.outcome,
            "note": self.note,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
        }

    def __repr__(self) -> str:
        return f"<ApprovalDecision request={self.request_id} step={self.step_order} {self.outcome}>"
