"""
Live-row lookup helper shared by the catalog, step store and engine.

Every get-by-id on a soft-deletable model goes through `get_live` so a
flagged row is reported exactly like a missing one.

Usage:
    process = get_live(Process, process_id)
    process = get_live(Process, process_id, for_update=True)   # row lock where supported
    process = get_live(Process, process_id, options=[selectinload(Process.steps)])
"""

import logging

from sqlalchemy import select

from approvals.core.exceptions import NotFoundError
from approvals.models import db

logger = logging.getLogger(__name__)


def get_live(model, pk: int, *, for_update: bool = False, options=()):
    """Fetch a non-deleted entity by PK.

    Args:
        model: SQLAlchemy model class with `id` and (optionally) `deleted_at`.
        pk: Primary key value to look up.
        for_update: Emit SELECT ... FOR UPDATE. SQLite ignores the clause;
                    PostgreSQL serialises concurrent writers on the row.
        options: Loader options passed to the SELECT.

    Raises:
        NotFoundError: If the row does not exist or is soft-deleted.
    """
    stmt = select(model).where(model.id == pk)
    if hasattr(model, "deleted_at"):
        stmt = stmt.where(model.deleted_at.is_(None))
    if options:
        stmt = stmt.options(*options)
    if for_update:
        stmt = stmt.with_for_update()

    result = db.session.execute(stmt).scalar_one_or_none()
    if result is None:
        logger.debug("get_live: %s id=%s not found", model.__name__, pk)
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    return result
