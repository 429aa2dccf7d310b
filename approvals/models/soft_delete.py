"""
Soft Delete Mixin.

Adds a `deleted_at` timestamp column. Processes and steps are never
physically removed while approval requests may still reference them;
they are flagged instead and every catalog read filters the flag out.

Usage:
    class Process(SoftDeleteMixin, db.Model):
        ...

    process.soft_delete()
    db.session.commit()
"""

from datetime import datetime, timezone

from approvals.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    def soft_delete(self):
        """Mark this record as deleted."""
        self.deleted_at = datetime.now(timezone.utc)

    @property
    def is_deleted(self):
        return self.deleted_at is not None
