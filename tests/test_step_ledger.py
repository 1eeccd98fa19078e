"""
Step ledger tests.

    pending -> in_progress -> completed   (completed is terminal)

Covers:
    - transition table (validate_step_transition)
    - derived operation status
    - current_step / next_pending_step / get_step scoping
    - advance(): ordering, single-active-step, document gate, CAS write
"""

import pytest

from saleflow.core.exceptions import (
    DocumentsNotReady,
    InvalidTransition,
    NotFoundError,
    OutOfOrderTransition,
    StepLedgerInconsistent,
)
from saleflow.models import db
from saleflow.models.document import DOC_REJECTED, DOC_UPLOADED, DOC_VALIDATED, StepDocument
from saleflow.models.operation import (
    STEP_COMPLETED,
    STEP_IN_PROGRESS,
    STEP_PENDING,
    STEP_TRANSITIONS,
    derive_operation_status,
    validate_step_transition,
)
from saleflow.services import step_ledger


def _doc(step, status):
    """Insert a document at an arbitrary status (bypasses the registry)."""
    d = StepDocument(
        operation_id=step.operation_id,
        step_id=step.id,
        uploader_id="buyer-x",
        uploader_role="buyer",
        document_type="otros",
        file_url="https://files.example.com/x.pdf",
        file_name="x.pdf",
        status=status,
    )
    db.session.add(d)
    db.session.flush()
    return d


# ═════════════════════════════════════════════════════════════════════════════
# Transition table
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitionTable:
    @pytest.mark.parametrize("old,new", [
        (old, new) for old, targets in STEP_TRANSITIONS.items() for new in targets
    ])
    def test_valid_edges(self, old, new):
        assert validate_step_transition(old, new)

    @pytest.mark.parametrize("old,new", [
        (STEP_PENDING, STEP_COMPLETED),
        (STEP_IN_PROGRESS, STEP_PENDING),
        (STEP_COMPLETED, STEP_PENDING),
        (STEP_COMPLETED, STEP_IN_PROGRESS),
        (STEP_PENDING, STEP_PENDING),
        ("unknown", STEP_IN_PROGRESS),
    ])
    def test_invalid_edges(self, old, new):
        assert not validate_step_transition(old, new)

    def test_completed_is_terminal(self):
        assert STEP_TRANSITIONS[STEP_COMPLETED] == []


class TestDerivedStatus:
    def test_all_pending_is_not_started(self):
        assert derive_operation_status(["pending", "pending"]) == "not_started"

    def test_no_steps_is_not_started(self):
        assert derive_operation_status([]) == "not_started"

    def test_mixed_is_active(self):
        assert derive_operation_status(["completed", "pending"]) == "active"
        assert derive_operation_status(["completed", "in_progress", "pending"]) == "active"

    def test_all_completed(self):
        assert derive_operation_status(["completed"] * 3) == "completed"

    def test_cancelled_wins(self):
        assert derive_operation_status(["completed"] * 3, cancelled=True) == "cancelled"


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


class TestQueries:
    def test_list_steps_ordered(self, operation):
        steps = step_ledger.list_steps(operation.id)
        assert [s.step_order for s in steps] == [1, 2, 3, 4]
        assert steps[0].step_name == "Reservation"
        assert all(s.status == STEP_PENDING for s in steps)

    def test_current_step_none_before_start(self, operation):
        assert step_ledger.current_step(operation.id) is None
        assert step_ledger.next_pending_step(operation.id).step_order == 1
        assert step_ledger.operation_status(operation.id) == "not_started"

    def test_get_step_of_other_operation_is_not_found(self, make_operation):
        op_a = make_operation()
        op_b = make_operation()
        foreign = step_ledger.list_steps(op_b.id)[0]
        with pytest.raises(NotFoundError):
            step_ledger.get_step(op_a.id, foreign.id)

    def test_get_missing_step(self, operation):
        with pytest.raises(NotFoundError):
            step_ledger.get_step(operation.id, 99999)

    def test_two_active_steps_reported_as_inconsistent(self, operation, monkeypatch):
        steps = step_ledger.list_steps(operation.id)

        class _Rows:
            def scalars(self):
                return self

            def all(self):
                return steps[:2]

        monkeypatch.setattr(db.session, "execute", lambda *a, **k: _Rows())
        with pytest.raises(StepLedgerInconsistent):
            step_ledger.current_step(operation.id)


# ═════════════════════════════════════════════════════════════════════════════
# advance()
# ═════════════════════════════════════════════════════════════════════════════


class TestAdvance:
    def test_start_first_step(self, operation):
        first = step_ledger.list_steps(operation.id)[0]
        step = step_ledger.advance(operation.id, first.id, STEP_IN_PROGRESS)
        assert step.status == STEP_IN_PROGRESS
        assert step.started_at is not None
        assert step.version == 2
        assert step_ledger.current_step(operation.id).id == first.id

    def test_start_out_of_order(self, operation):
        steps = step_ledger.list_steps(operation.id)
        with pytest.raises(OutOfOrderTransition):
            step_ledger.advance(operation.id, steps[2].id, STEP_IN_PROGRESS)
        db.session.refresh(steps[2])
        assert steps[2].status == STEP_PENDING

    def test_start_while_another_active(self, operation):
        steps = step_ledger.list_steps(operation.id)
        step_ledger.advance(operation.id, steps[0].id, STEP_IN_PROGRESS)
        with pytest.raises(OutOfOrderTransition):
            step_ledger.advance(operation.id, steps[1].id, STEP_IN_PROGRESS)

    def test_pending_to_completed_is_invalid(self, operation):
        first = step_ledger.list_steps(operation.id)[0]
        with pytest.raises(InvalidTransition):
            step_ledger.advance(operation.id, first.id, STEP_COMPLETED)

    def test_complete_without_documents(self, operation):
        first = step_ledger.list_steps(operation.id)[0]
        step_ledger.advance(operation.id, first.id, STEP_IN_PROGRESS)
        with pytest.raises(DocumentsNotReady) as exc:
            step_ledger.advance(operation.id, first.id, STEP_COMPLETED)
        assert exc.value.details == {"step_id": first.id, "validated": 0, "outstanding": 0}

    def test_complete_with_only_rejected(self, operation):
        first = step_ledger.list_steps(operation.id)[0]
        step_ledger.advance(operation.id, first.id, STEP_IN_PROGRESS)
        _doc(first, DOC_REJECTED)
        with pytest.raises(DocumentsNotReady):
            step_ledger.advance(operation.id, first.id, STEP_COMPLETED)

    def test_complete_with_outstanding_document(self, operation):
        first = step_ledger.list_steps(operation.id)[0]
        step_ledger.advance(operation.id, first.id, STEP_IN_PROGRESS)
        _doc(first, DOC_VALIDATED)
        _doc(first, DOC_UPLOADED)
        with pytest.raises(DocumentsNotReady) as exc:
            step_ledger.advance(operation.id, first.id, STEP_COMPLETED)
        assert exc.value.details["outstanding"] == 1

    def test_complete_with_validated_document(self, operation):
        first = step_ledger.list_steps(operation.id)[0]
        step_ledger.advance(operation.id, first.id, STEP_IN_PROGRESS)
        _doc(first, DOC_REJECTED)
        _doc(first, DOC_VALIDATED)
        step = step_ledger.advance(operation.id, first.id, STEP_COMPLETED)
        assert step.status == STEP_COMPLETED
        assert step.completed_at is not None
        # Next step is not auto-started
        assert step_ledger.current_step(operation.id) is None
        assert step_ledger.next_pending_step(operation.id).step_order == 2

    def test_completed_step_cannot_restart(self, operation):
        first = step_ledger.list_steps(operation.id)[0]
        step_ledger.advance(operation.id, first.id, STEP_IN_PROGRESS)
        _doc(first, DOC_VALIDATED)
        step_ledger.advance(operation.id, first.id, STEP_COMPLETED)
        with pytest.raises(InvalidTransition):
            step_ledger.advance(operation.id, first.id, STEP_IN_PROGRESS)

    def test_stale_version_loses(self, operation):
        """A write based on an outdated read matches no row."""
        from sqlalchemy import update

        from saleflow.models.operation import OperationStep

        first = step_ledger.list_steps(operation.id)[0]
        db.session.execute(
            update(OperationStep)
            .where(OperationStep.id == first.id)
            .values(version=OperationStep.version + 1)
            .execution_options(synchronize_session=False)
        )
        with pytest.raises(OutOfOrderTransition):
            step_ledger.advance(operation.id, first.id, STEP_IN_PROGRESS)
