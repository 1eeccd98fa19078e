"""
Workflow Coordinator — the only entry point callers use to drive an
operation through its steps.

Every public function is one logical transaction:

    1. lock the operation row (serialises writers on the same operation)
    2. re-read ledger / registry state and apply the gating rules
    3. mutate, append the audit row
    4. commit, or roll back everything on any error

No caller can observe a half-applied change.  No external I/O happens in
here: file references and identities are resolved by the caller first.

Error handling:
    Business-rule violations raise WorkflowError subclasses and are never
    retried internally.  Database failures surface as InfrastructureError
    (retryable).  See saleflow.core.exceptions.

Usage:
    from saleflow.services import workflow_coordinator as wf

    step = wf.start_next_step(operation_id, actor_id="org-user-1")
    doc = wf.upload_document(operation_id, step.id, "buyer-7", "buyer",
                             "boleto_reserva", file_ref)
    wf.review_document(doc.id, "validated", reviewer_id="org-user-1")
    wf.complete_current_step(operation_id, actor_id="org-user-1")
"""

from __future__ import annotations

import logging

from saleflow.core.exceptions import InvalidTransition, NotFoundError, StepNotActive
from saleflow.models import db
from saleflow.models.audit import write_audit
from saleflow.models.comment import StepComment
from saleflow.models.document import DOC_REJECTED, DOC_UPLOADED, FileReference, StepDocument
from saleflow.models.operation import (
    STEP_COMPLETED,
    STEP_IN_PROGRESS,
    STEP_PENDING,
    Operation,
    OperationStep,
)
from saleflow.services import annotation_log, document_registry, step_ledger
from saleflow.services.helpers.transaction import atomic, lock_operation

logger = logging.getLogger(__name__)


def _ensure_open(operation: Operation) -> None:
    if operation.is_cancelled:
        raise InvalidTransition(
            f"Operation {operation.id} was cancelled; its workflow can no longer change.",
            details={"operation_id": operation.id},
        )


# ── Documents ────────────────────────────────────────────────────────────────


def upload_document(
    operation_id: int,
    step_id: int,
    uploader_id: str,
    uploader_role: str,
    document_type: str,
    file_reference: FileReference,
    *,
    title: str | None = None,
) -> StepDocument:
    """Attach a document to the operation's current step.

    Raises:
        NotFoundError:   operation missing, or step not part of it.
        StepNotActive:   step is not the current 'in_progress' step.
        DocumentPending: a document for the step is awaiting review.
        ValidationError: unknown role / document type.
        InvalidTransition: operation cancelled.
    """
    with atomic("upload_document", operation_id=operation_id, step_id=step_id):
        operation = lock_operation(operation_id)
        _ensure_open(operation)
        step = step_ledger.get_step(operation_id, step_id)
        current = step_ledger.current_step(operation_id)
        if current is None or current.id != step.id:
            raise StepNotActive(
                f"Step {step.id} ({step.step_name}) is not the current step of operation "
                f"{operation_id}; documents can only be uploaded to the step in progress.",
                details={
                    "step_id": step.id,
                    "status": step.status,
                    "current_step_id": current.id if current else None,
                },
            )
        document = document_registry.submit(
            step.id, uploader_id, uploader_role, document_type, file_reference, title=title,
        )
        write_audit(
            entity_type="document",
            entity_id=document.id,
            action="document.upload",
            actor=uploader_id,
            operation_id=operation_id,
            organization_id=operation.organization_id,
            diff={
                "step_id": step.id,
                "document_type": document_type,
                "file_name": file_reference.file_name,
                "uploader_role": uploader_role,
            },
        )

    logger.info(
        "Document uploaded",
        extra={"operation_id": operation_id, "step_id": step_id, "document_id": document.id},
    )
    return document


def review_document(
    document_id: int,
    decision: str,
    notes: str | None = None,
    *,
    reviewer_id: str | None = None,
) -> StepDocument:
    """Validate or reject an outstanding document.

    Never changes step status: completing the step is a separate, explicit
    ``complete_current_step`` call.

    Raises:
        NotFoundError, ValidationError, AlreadyReviewed, InvalidTransition.
    """
    operation_id = get_document(document_id).operation_id

    with atomic("review_document", operation_id=operation_id, document_id=document_id):
        operation = lock_operation(operation_id)
        _ensure_open(operation)
        document = document_registry.review(
            document_id, decision, notes, reviewer_id=reviewer_id,
        )
        write_audit(
            entity_type="document",
            entity_id=document.id,
            action="document.reject" if decision == DOC_REJECTED else "document.validate",
            actor=reviewer_id,
            operation_id=operation_id,
            organization_id=operation.organization_id,
            diff={"status": {"old": DOC_UPLOADED, "new": document.status}, "notes": document.notes},
        )

    logger.info(
        "Document %s", document.status,
        extra={"operation_id": operation_id, "step_id": document.step_id, "document_id": document.id},
    )
    return document


# ── Step ledger ──────────────────────────────────────────────────────────────


def start_next_step(operation_id: int, *, actor_id: str | None = None) -> OperationStep:
    """Start the lowest-order pending step.

    Raises:
        OutOfOrderTransition: a step is still in progress.
        InvalidTransition:    no pending step left, or operation cancelled.
    """
    with atomic("start_next_step", operation_id=operation_id):
        operation = lock_operation(operation_id)
        _ensure_open(operation)
        nxt = step_ledger.next_pending_step(operation_id)
        if nxt is None:
            raise InvalidTransition(
                f"Operation {operation_id} has no pending step to start.",
                details={"operation_id": operation_id},
            )
        step = step_ledger.advance(operation_id, nxt.id, STEP_IN_PROGRESS)
        write_audit(
            entity_type="step",
            entity_id=step.id,
            action="step.start",
            actor=actor_id,
            operation_id=operation_id,
            organization_id=operation.organization_id,
            diff={"status": {"old": STEP_PENDING, "new": STEP_IN_PROGRESS}, "step_order": step.step_order},
        )

    logger.info(
        "Step started: %s", step.step_name,
        extra={"operation_id": operation_id, "step_id": step.id},
    )
    return step


def complete_current_step(operation_id: int, *, actor_id: str | None = None) -> OperationStep:
    """Complete the step in progress if its Document Gate holds.

    The next pending step is left 'pending'; starting it is a distinct
    ``start_next_step`` decision.

    Raises:
        DocumentsNotReady: gate not satisfied (nothing is changed).
        InvalidTransition: no step in progress, or operation cancelled.
    """
    with atomic("complete_current_step", operation_id=operation_id):
        operation = lock_operation(operation_id)
        _ensure_open(operation)
        current = step_ledger.current_step(operation_id)
        if current is None:
            raise InvalidTransition(
                f"Operation {operation_id} has no step in progress to complete.",
                details={"operation_id": operation_id},
            )
        step = step_ledger.advance(operation_id, current.id, STEP_COMPLETED)
        write_audit(
            entity_type="step",
            entity_id=step.id,
            action="step.complete",
            actor=actor_id,
            operation_id=operation_id,
            organization_id=operation.organization_id,
            diff={"status": {"old": STEP_IN_PROGRESS, "new": STEP_COMPLETED}, "step_order": step.step_order},
        )

    logger.info(
        "Step completed: %s", step.step_name,
        extra={"operation_id": operation_id, "step_id": step.id},
    )
    return step


def step_readiness(operation_id: int) -> dict:
    """Read-only summary used by the dashboard to enable/disable actions.

    Display only; gating decisions are always re-evaluated inside the
    mutating transaction.
    """
    current = step_ledger.current_step(operation_id)
    nxt = step_ledger.next_pending_step(operation_id)
    summary = {
        "current_step_id": current.id if current else None,
        "next_step_id": nxt.id if nxt else None,
        "can_start_next": current is None and nxt is not None,
        "can_complete": False,
        "can_upload": False,
        "validated": 0,
        "outstanding": 0,
    }
    if current is not None:
        validated, outstanding = document_registry.gate_counts(current.id)
        summary.update(
            validated=validated,
            outstanding=outstanding,
            can_complete=validated > 0 and outstanding == 0,
            can_upload=outstanding == 0,
        )
    return summary


# ── Annotations ──────────────────────────────────────────────────────────────


def add_comment(
    operation_id: int,
    step_id: int,
    author_id: str,
    author_name: str | None,
    content: str,
    is_internal: bool = False,
) -> StepComment:
    """Append a comment to any step of the operation, whatever its status.

    Raises:
        NotFoundError: operation missing, or step not part of it.
        EmptyContent:  blank content.
    """
    with atomic("add_comment", operation_id=operation_id, step_id=step_id):
        operation = db.session.get(Operation, operation_id)
        if operation is None:
            raise NotFoundError("Operation", operation_id)
        step = step_ledger.get_step(operation_id, step_id)
        comment = annotation_log.add(step.id, author_id, author_name, content, is_internal)
        write_audit(
            entity_type="comment",
            entity_id=comment.id,
            action="comment.add",
            actor=author_id,
            operation_id=operation_id,
            organization_id=operation.organization_id,
            diff={"step_id": step.id, "is_internal": comment.is_internal},
        )

    logger.info(
        "Comment added",
        extra={"operation_id": operation_id, "step_id": step_id},
    )
    return comment


# ── Reads ────────────────────────────────────────────────────────────────────


def list_documents(operation_id: int, step_id: int) -> list[StepDocument]:
    """Documents of a step that must belong to the operation, newest first."""
    step = step_ledger.get_step(operation_id, step_id)
    return document_registry.list_for_step(step.id)


def list_comments(operation_id: int, step_id: int, include_internal: bool = True) -> list[StepComment]:
    """Comments of a step that must belong to the operation, newest first."""
    step = step_ledger.get_step(operation_id, step_id)
    return annotation_log.list_for_step(step.id, include_internal=include_internal)


def get_document(document_id: int) -> StepDocument:
    document = db.session.get(StepDocument, document_id)
    if document is None:
        raise NotFoundError("Document", document_id)
    return document
