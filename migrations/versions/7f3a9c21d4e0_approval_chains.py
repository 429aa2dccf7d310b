"""approval_chains

Creates the approval engine tables:
  - processes            — reusable approval chain templates (soft delete)
  - process_steps        — ordered steps; live positions form 1..N per process
  - approval_requests    — one run of an approvable entity through a process
  - approval_decisions   — append-only Approve / Reject records

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 7f3a9c21d4e0
Revises:
Create Date: 2026-10-19 09:12:44.518302
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7f3a9c21d4e0'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Process ───────────────────────────────────────────────────────────
    if "processes" not in existing:
        op.create_table(
            "processes",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column(
                "status", sa.String(length=20), nullable=False,
                server_default="Draft",
                comment="Draft | Active | Pending | Rejected | Expired",
            ),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("updated_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "status IN ('Draft', 'Active', 'Pending', 'Rejected', 'Expired')",
                name="ck_processes_status",
            ),
        )
        op.create_index("ix_processes_deleted_at", "processes", ["deleted_at"])

    # ── ProcessStep ───────────────────────────────────────────────────────
    if "process_steps" not in existing:
        op.create_table(
            "process_steps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("process_id", sa.Integer(), nullable=False),
            sa.Column(
                "position", sa.Integer(), nullable=True,
                comment="1..N among live steps; NULL once removed",
            ),
            sa.Column("user_id", sa.Integer(), nullable=True, comment="Approver: a specific user"),
            sa.Column(
                "designation_id", sa.Integer(), nullable=True,
                comment="Approver: any holder of the designation",
            ),
            sa.Column("name", sa.String(length=255), nullable=True),
            sa.Column("description", sa.Text(), nullable=True, comment="Task label shown to the approver"),
            sa.Column(
                "timeout_days", sa.Integer(), nullable=True,
                comment="Advisory only; reported, never enforced",
            ),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("updated_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["process_id"], ["processes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("process_id", "position", name="uq_process_steps_position"),
            sa.CheckConstraint(
                "(user_id IS NULL) <> (designation_id IS NULL)",
                name="ck_process_steps_single_approver",
            ),
            sa.CheckConstraint(
                "position IS NULL OR position <> 0",
                name="ck_process_steps_position_nonzero",
            ),
        )
        op.create_index("ix_process_steps_process_id", "process_steps", ["process_id"])
        op.create_index("ix_process_steps_deleted_at", "process_steps", ["deleted_at"])

    # ── ApprovalRequest ───────────────────────────────────────────────────
    if "approval_requests" not in existing:
        op.create_table(
            "approval_requests",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=40), nullable=False),
            sa.Column(
                "entity_id", sa.String(length=64), nullable=False,
                comment="PK of the owning domain object, serialised as str()",
            ),
            sa.Column("process_id", sa.Integer(), nullable=False),
            sa.Column("requester_id", sa.Integer(), nullable=True),
            sa.Column("current_step_order", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Pending"),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("current_step_started_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["process_id"], ["processes.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "status IN ('Pending', 'Approved', 'Rejected')",
                name="ck_approval_requests_status",
            ),
            sa.CheckConstraint("current_step_order >= 1", name="ck_approval_requests_cursor"),
        )
        op.create_index("ix_approval_requests_process_id", "approval_requests", ["process_id"])
        op.create_index("ix_approval_requests_status", "approval_requests", ["status"])
        op.create_index(
            "ix_approval_requests_entity", "approval_requests", ["entity_type", "entity_id"],
        )

    # ── ApprovalDecision ──────────────────────────────────────────────────
    if "approval_decisions" not in existing:
        op.create_table(
            "approval_decisions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("request_id", sa.Integer(), nullable=False),
            sa.Column("step_order", sa.Integer(), nullable=False),
            sa.Column(
                "step_id", sa.Integer(), nullable=True,
                comment="Step decided; kept resolvable after the step is soft-deleted",
            ),
            sa.Column("actor_id", sa.Integer(), nullable=False),
            sa.Column("outcome", sa.String(length=10), nullable=False, comment="Approve | Reject"),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("decided_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["request_id"], ["approval_requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["step_id"], ["process_steps.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("request_id", "step_order", name="uq_approval_decisions_step"),
            sa.CheckConstraint(
                "outcome IN ('Approve', 'Reject')",
                name="ck_approval_decisions_outcome",
            ),
        )
        op.create_index("ix_approval_decisions_request_id", "approval_decisions", ["request_id"])


def downgrade():
    op.drop_table("approval_decisions")
    op.drop_table("approval_requests")
    op.drop_table("process_steps")
    op.drop_table("processes")
