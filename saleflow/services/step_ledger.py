"""
Step Ledger — the ordered stages of an operation and their status.

This is the authoritative state machine:

    pending ──start──▶ in_progress ──complete──▶ completed   (terminal)

Invariants:
    - at most one step per operation is 'in_progress'
      (also a partial unique index, uq_operation_steps_one_active)
    - a step starts only when every lower-order step is 'completed'
    - a step completes only when the Document Gate holds at that moment

Writes use a status/version-guarded UPDATE: if another caller advanced the
step between our read and our write, no row matches and the late caller gets
OutOfOrderTransition / InvalidTransition instead of double-advancing.

Only services.workflow_coordinator calls ``advance``.  This module flushes;
it never commits.

Usage:
    from saleflow.services import step_ledger

    step_ledger.current_step(operation_id)
    step_ledger.advance(operation_id, step_id, "in_progress")
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from saleflow.core.exceptions import (
    DocumentsNotReady,
    InvalidTransition,
    NotFoundError,
    OutOfOrderTransition,
    StepLedgerInconsistent,
)
from saleflow.models import db
from saleflow.models.operation import (
    STEP_COMPLETED,
    STEP_IN_PROGRESS,
    STEP_PENDING,
    OperationStep,
    derive_operation_status,
    validate_step_transition,
)
from saleflow.services import document_registry

logger = logging.getLogger(__name__)


def list_steps(operation_id: int) -> list[OperationStep]:
    """All steps of an operation ordered by step_order."""
    return db.session.execute(
        select(OperationStep)
        .where(OperationStep.operation_id == operation_id)
        .order_by(OperationStep.step_order)
    ).scalars().all()


def get_step(operation_id: int, step_id: int) -> OperationStep:
    """Fetch a step that must belong to the given operation.

    A step of another operation is reported as not found.
    """
    step = db.session.execute(
        select(OperationStep).where(
            OperationStep.id == step_id,
            OperationStep.operation_id == operation_id,
        )
    ).scalar_one_or_none()
    if step is None:
        raise NotFoundError("Step", step_id, parent=f"Operation id={operation_id}")
    return step


def current_step(operation_id: int) -> OperationStep | None:
    """Return the unique 'in_progress' step, or None.

    None means the workflow has not started, is between stages, or is
    finished.  More than one active step is an internal-consistency error.
    """
    active = db.session.execute(
        select(OperationStep)
        .where(
            OperationStep.operation_id == operation_id,
            OperationStep.status == STEP_IN_PROGRESS,
        )
        .order_by(OperationStep.step_order)
    ).scalars().all()
    if not active:
        return None
    if len(active) > 1:
        logger.error(
            "Step ledger inconsistent: %d steps in progress", len(active),
            extra={"operation_id": operation_id},
        )
        raise StepLedgerInconsistent(
            f"Operation {operation_id} has {len(active)} steps in progress",
            details={"step_ids": [s.id for s in active]},
        )
    return active[0]


def next_pending_step(operation_id: int) -> OperationStep | None:
    """Return the 'pending' step with the smallest step_order, or None."""
    return db.session.execute(
        select(OperationStep)
        .where(
            OperationStep.operation_id == operation_id,
            OperationStep.status == STEP_PENDING,
        )
        .order_by(OperationStep.step_order)
        .limit(1)
    ).scalar_one_or_none()


def operation_status(operation_id: int, cancelled: bool = False) -> str:
    """Overall operation status recomputed from the ledger."""
    return derive_operation_status(
        (s.status for s in list_steps(operation_id)), cancelled=cancelled,
    )


def advance(operation_id: int, step_id: int, target_status: str) -> OperationStep:
    """Move a step to ``target_status`` if the ledger rules allow it.

    pending → in_progress:
        only for the next pending step and only while no step is active,
        otherwise OutOfOrderTransition.
    in_progress → completed:
        only when the Document Gate holds, otherwise DocumentsNotReady.
    Anything else:
        InvalidTransition.

    Returns the refreshed step.
    """
    step = get_step(operation_id, step_id)
    old = step.status

    if not validate_step_transition(old, target_status):
        raise InvalidTransition(
            f"Invalid transition for step {step.id} ({step.step_name}): {old} → {target_status}",
            details={"step_id": step.id, "from": old, "to": target_status},
        )

    if target_status == STEP_IN_PROGRESS:
        active = current_step(operation_id)
        if active is not None:
            raise OutOfOrderTransition(
                f"Step {active.id} ({active.step_name}) is still in progress; "
                "complete it before starting another step.",
                details={"step_id": step.id, "active_step_id": active.id},
            )
        nxt = next_pending_step(operation_id)
        if nxt is None or nxt.id != step.id:
            raise OutOfOrderTransition(
                f"Step {step.id} ({step.step_name}) is not the next step; "
                f"steps must be started in order.",
                details={"step_id": step.id, "next_step_id": nxt.id if nxt else None},
            )
    elif target_status == STEP_COMPLETED:
        if not document_registry.is_step_ready(step.id):
            validated, outstanding = document_registry.gate_counts(step.id)
            raise DocumentsNotReady(step.id, validated=validated, outstanding=outstanding)

    _guarded_write(step, old, target_status)
    logger.debug(
        "Step advanced %s → %s", old, target_status,
        extra={"operation_id": operation_id, "step_id": step.id},
    )
    return step


def _guarded_write(step: OperationStep, old: str, new: str) -> None:
    """Compare-and-set the step status on (status, version)."""
    now = datetime.now(timezone.utc)
    values = {"status": new, "version": step.version + 1}
    if new == STEP_IN_PROGRESS:
        values["started_at"] = now
    elif new == STEP_COMPLETED:
        values["completed_at"] = now

    try:
        result = db.session.execute(
            update(OperationStep)
            .where(
                OperationStep.id == step.id,
                OperationStep.status == old,
                OperationStep.version == step.version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
    except IntegrityError as exc:
        # uq_operation_steps_one_active: another step went active concurrently.
        raise OutOfOrderTransition(
            f"Another step of operation {step.operation_id} was started concurrently.",
            details={"step_id": step.id},
        ) from exc

    if result.rowcount != 1:
        error_cls = OutOfOrderTransition if new == STEP_IN_PROGRESS else InvalidTransition
        raise error_cls(
            f"Step {step.id} was changed concurrently; reload and try again.",
            details={"step_id": step.id, "from": old, "to": new},
        )
    db.session.refresh(step)
