"""
Reorder Engine tests.

Tests cover:
  - permutation applied atomically, swaps included
  - idempotence
  - missing / extra / duplicate ids reported and nothing written
  - a failure mid-write leaves the previous order intact
  - {id, order} payload normalisation
"""
import pytest

from approvals.core.exceptions import InvalidReorderError, NotFoundError
from approvals.models import db
from approvals.models.process import UserApprover
from approvals.services import process_catalog_service as catalog
from approvals.services import reorder_service, step_service


def _ids(process_id):
    return [s.id for s in step_service.get_ordered_steps(process_id)]


class TestReorder:
    def test_rotate_three_steps(self, chain):
        process, (a, b, c) = chain
        result = reorder_service.reorder(process.id, [c.id, a.id, b.id])
        assert [s.id for s in result] == [c.id, a.id, b.id]
        assert [s.order for s in result] == [1, 2, 3]
        assert _ids(process.id) == [c.id, a.id, b.id]

    def test_adjacent_swap(self, chain):
        process, (a, b, c) = chain
        reorder_service.reorder(process.id, [b.id, a.id, c.id])
        assert _ids(process.id) == [b.id, a.id, c.id]

    def test_idempotent(self, chain):
        process, (a, b, c) = chain
        first = [(s.id, s.order) for s in reorder_service.reorder(process.id, [c.id, b.id, a.id])]
        second = [(s.id, s.order) for s in reorder_service.reorder(process.id, [c.id, b.id, a.id])]
        assert first == second

    def test_identity_permutation_is_noop(self, chain):
        process, steps = chain
        result = reorder_service.reorder(process.id, [s.id for s in steps])
        assert [s.id for s in result] == [s.id for s in steps]

    def test_empty_process_empty_sequence(self, process):
        assert reorder_service.reorder(process.id, []) == []

    def test_unknown_process(self):
        with pytest.raises(NotFoundError):
            reorder_service.reorder(12345, [1])


class TestInvalidReorder:
    def test_foreign_step_id(self, chain):
        process, (a, b, c) = chain
        other = catalog.create_process("Other chain")
        foreign = step_service.add_step(other.id, UserApprover(4), "Elsewhere")

        with pytest.raises(InvalidReorderError) as exc:
            reorder_service.reorder(process.id, [a.id, b.id, foreign.id])
        assert exc.value.extra == [foreign.id]
        assert exc.value.missing == [c.id]
        assert exc.value.duplicates == []
        assert _ids(process.id) == [a.id, b.id, c.id]

    def test_missing_id(self, chain):
        process, (a, b, c) = chain
        with pytest.raises(InvalidReorderError) as exc:
            reorder_service.reorder(process.id, [a.id, c.id])
        assert exc.value.missing == [b.id]
        assert exc.value.extra == []

    def test_duplicate_id(self, chain):
        process, (a, b, c) = chain
        with pytest.raises(InvalidReorderError) as exc:
            reorder_service.reorder(process.id, [a.id, a.id, b.id, c.id])
        assert exc.value.duplicates == [a.id]
        assert exc.value.details["duplicates"] == [a.id]
        assert _ids(process.id) == [a.id, b.id, c.id]

    def test_removed_step_counts_as_extra(self, chain):
        process, (a, b, c) = chain
        step_service.remove_step(b.id)
        with pytest.raises(InvalidReorderError) as exc:
            reorder_service.reorder(process.id, [c.id, b.id, a.id])
        assert exc.value.extra == [b.id]

    def test_non_integer_ids(self, chain):
        process, (a, b, c) = chain
        with pytest.raises(InvalidReorderError):
            reorder_service.reorder(process.id, [str(a.id), b.id, c.id])


class TestReorderAtomicity:
    def test_failure_after_parking_keeps_original_order(self, chain, monkeypatch):
        process, (a, b, c) = chain
        real_flush = db.session.flush
        flushes = []

        def flaky_flush(*args, **kwargs):
            flushes.append(1)
            if len(flushes) == 2:
                raise RuntimeError("connection lost")
            return real_flush(*args, **kwargs)

        monkeypatch.setattr(db.session, "flush", flaky_flush)
        with pytest.raises(RuntimeError):
            reorder_service.reorder(process.id, [c.id, a.id, b.id])
        monkeypatch.undo()

        assert len(flushes) == 2
        steps = step_service.get_ordered_steps(process.id)
        assert [(s.id, s.order) for s in steps] == [(a.id, 1), (b.id, 2), (c.id, 3)]


class TestSequenceFromPayload:
    def test_sorted_by_order_keyed_by_id(self):
        items = [{"id": 10, "order": 2}, {"id": 20, "order": 3}, {"id": 30, "order": 1}]
        assert reorder_service.sequence_from_payload(1, items) == [30, 10, 20]

    def test_order_values_are_relative(self):
        items = [{"id": 10, "order": 40}, {"id": 20, "order": 0}, {"id": 30, "order": 7}]
        assert reorder_service.sequence_from_payload(1, items) == [20, 30, 10]

    def test_tied_orders_rejected(self):
        with pytest.raises(InvalidReorderError):
            reorder_service.sequence_from_payload(1, [{"id": 10, "order": 1}, {"id": 20, "order": 1}])

    @pytest.mark.parametrize(
        "items",
        [
            "not a list",
            [{"id": 10}],
            [{"order": 1}],
            [{"id": "10", "order": 1}],
            [{"id": 10, "order": -1}],
            [[10, 1]],
        ],
    )
    def test_malformed(self, items):
        with pytest.raises(InvalidReorderError):
            reorder_service.sequence_from_payload(1, items)
