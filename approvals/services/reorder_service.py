"""Reorder Engine — atomically apply a new permutation to a process's steps.

The (process_id, position) unique constraint is enforced on every flush, so
a plain in-place rewrite (swap 1 and 2) would collide mid-way. Positions
are therefore written in two passes inside one transaction:

    1. park every step at a unique negative position  (-1, -2, ...)
    2. write the final positions 1..N

Either the whole permutation lands or nothing does; readers never see a
duplicate, a gap or a mix of old and new positions.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Sequence

from approvals.core.exceptions import InvalidReorderError
from approvals.models import db
from approvals.models.process import Process, ProcessStep
from approvals.services.helpers.lookups import get_live

logger = logging.getLogger(__name__)


def apply_order(ordered_steps: Sequence[ProcessStep]) -> None:
    """Write positions 1..N to `ordered_steps` in the given order.

    Flushes but never commits; the caller owns the transaction.
    """
    if all(step.order == idx for idx, step in enumerate(ordered_steps, 1)):
        return

    for idx, step in enumerate(ordered_steps, 1):
        step.order = -idx
    db.session.flush()

    for idx, step in enumerate(ordered_steps, 1):
        step.order = idx
    db.session.flush()


def _coerce_ids(process_id: int, proposed_sequence: Iterable) -> list[int]:
    ids: list[int] = []
    for raw in proposed_sequence:
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise InvalidReorderError(
                process_id,
                message=f"Step ids must be integers, got {raw!r}",
            )
        ids.append(raw)
    return ids


def reorder(process_id: int, proposed_sequence: Sequence[int], *, actor_id: int | None = None) -> list[ProcessStep]:
    """Replace the order of a process's live steps.

    Args:
        process_id: Process whose steps are reordered.
        proposed_sequence: Every live step id exactly once, in the new order.
        actor_id: User performing the change (audit columns).

    Returns:
        The live steps in their new order.

    Raises:
        NotFoundError: Unknown or deleted process.
        InvalidReorderError: The proposal is not a permutation of the live
            step ids; ``missing``, ``extra`` and ``duplicates`` say why.
    """
    from approvals.services.step_service import get_ordered_steps

    get_live(Process, process_id, for_update=True)
    current = get_ordered_steps(process_id)
    by_id = {step.id: step for step in current}

    proposed = _coerce_ids(process_id, proposed_sequence)
    counts = Counter(proposed)
    duplicates = [step_id for step_id, n in counts.items() if n > 1]
    extra = [step_id for step_id in counts if step_id not in by_id]
    missing = [step_id for step_id in by_id if step_id not in counts]

    if duplicates or extra or missing:
        logger.info(
            "Reorder rejected process_id=%s missing=%s extra=%s duplicates=%s",
            process_id, missing, extra, duplicates,
            extra={"process_id": process_id, "actor_id": actor_id},
        )
        raise InvalidReorderError(process_id, missing=missing, extra=extra, duplicates=duplicates)

    ordered = [by_id[step_id] for step_id in proposed]
    if [s.id for s in current] == proposed:
        logger.debug("Reorder is a no-op process_id=%s", process_id)
        return current

    try:
        apply_order(ordered)
        for step in ordered:
            step.updated_by = actor_id if actor_id is not None else step.updated_by
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Steps reordered process_id=%s order=%s", process_id, proposed,
                extra={"process_id": process_id, "actor_id": actor_id})
    return get_ordered_steps(process_id)


def sequence_from_payload(process_id: int, items) -> list[int]:
    """Turn ``[{"id": 5, "order": 2}, ...]`` into an id sequence.

    Order values only matter relative to each other; ties are rejected
    because they leave the resulting sequence undefined.

    Raises:
        InvalidReorderError: Malformed items or tied order values.
    """
    if not isinstance(items, list):
        raise InvalidReorderError(process_id, message="steps must be a list of {id, order} objects")

    pairs: list[tuple[int, int]] = []
    for item in items:
        if not isinstance(item, dict):
            raise InvalidReorderError(process_id, message="steps must be a list of {id, order} objects")
        step_id, order = item.get("id"), item.get("order")
        for value in (step_id, order):
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidReorderError(
                    process_id,
                    message="Each step needs integer 'id' and 'order' fields",
                )
        if order < 0:
            raise InvalidReorderError(process_id, message="order values must be >= 0")
        pairs.append((order, step_id))

    tied = [order for order, n in Counter(o for o, _ in pairs).items() if n > 1]
    if tied:
        raise InvalidReorderError(
            process_id,
            message=f"order values must be distinct; repeated: {sorted(tied)}",
        )
    return [step_id for _, step_id in sorted(pairs)]
