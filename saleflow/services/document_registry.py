"""
Document Registry — documents attached to an operation step.

Responsibilities:
    - submit():         accept a new document for an in-progress step
    - review():         validate or reject an outstanding document, once
    - is_step_ready():  the Document Gate used before a step may complete
    - list_for_step():  newest-first history for the document panel

Rules enforced here:
    - Documents are accepted only while their step is 'in_progress'.
    - At most one 'uploaded' (outstanding) document per step.  Checked up
      front for a clear error, and backed by the partial unique index
      ``uq_step_documents_one_outstanding`` so a racing uploader loses with
      DocumentPending instead of creating a second outstanding row.
    - A review is a conditional UPDATE ``… WHERE status = 'uploaded'``; a
      racing reviewer that finds no row to update gets AlreadyReviewed.
    - Rejections require non-empty notes; notes are never edited afterwards.

This module only flushes.  Commit/rollback belongs to the caller
(see services.workflow_coordinator).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from saleflow.core.exceptions import (
    AlreadyReviewed,
    DocumentPending,
    NotFoundError,
    StepNotActive,
    ValidationError,
)
from saleflow.models import db
from saleflow.models.document import (
    DOC_REJECTED,
    DOC_UPLOADED,
    DOC_VALIDATED,
    DOCUMENT_TYPES,
    REVIEW_DECISIONS,
    UPLOADER_ROLES,
    FileReference,
    StepDocument,
)
from saleflow.models.operation import STEP_IN_PROGRESS, OperationStep

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 255


# ── Private helpers ────────────────────────────────────────────────────────────


def _get_step(step_id: int) -> OperationStep:
    step = db.session.get(OperationStep, step_id)
    if step is None:
        raise NotFoundError("Step", step_id)
    return step


def _outstanding_document(step_id: int) -> StepDocument | None:
    return db.session.execute(
        select(StepDocument)
        .where(StepDocument.step_id == step_id, StepDocument.status == DOC_UPLOADED)
        .limit(1)
    ).scalar_one_or_none()


def _status_counts(step_id: int) -> dict[str, int]:
    rows = db.session.execute(
        select(StepDocument.status, func.count(StepDocument.id))
        .where(StepDocument.step_id == step_id)
        .group_by(StepDocument.status)
    ).all()
    return {status: count for status, count in rows}


# ── Public API ─────────────────────────────────────────────────────────────────


def submit(
    step_id: int,
    uploader_id: str,
    uploader_role: str,
    document_type: str,
    file_reference: FileReference,
    *,
    title: str | None = None,
) -> StepDocument:
    """Create a new 'uploaded' document for an in-progress step.

    Args:
        step_id:        Owning step; its operation_id is copied onto the document.
        uploader_id:    Identity-provider user id.
        uploader_role:  "organization" or "buyer".
        document_type:  One of DOCUMENT_TYPES.
        file_reference: Reference returned by the document store.
        title:          Optional display title; defaults to "<step> - <file>".

    Raises:
        NotFoundError:   step does not exist.
        ValidationError: unknown role or document type, or a bad title.
        StepNotActive:   step is not 'in_progress'.
        DocumentPending: another document for the step awaits review.
    """
    step = _get_step(step_id)

    if not isinstance(uploader_role, str) or uploader_role not in UPLOADER_ROLES:
        raise ValidationError(
            f"Invalid uploader_role '{uploader_role}'. "
            f"Must be one of: {', '.join(sorted(UPLOADER_ROLES))}",
            details={"uploader_role": "invalid"},
        )
    if not isinstance(document_type, str) or document_type not in DOCUMENT_TYPES:
        raise ValidationError(
            f"Invalid document_type '{document_type}'. "
            f"Must be one of: {', '.join(sorted(DOCUMENT_TYPES))}",
            details={"document_type": "invalid"},
        )
    if title is not None and not isinstance(title, str):
        raise ValidationError("title must be text.", details={"title": "must be a string"})
    title = (title or "").strip()
    if len(title) > TITLE_MAX_LENGTH:
        raise ValidationError(
            f"title must be ≤ {TITLE_MAX_LENGTH} characters", details={"title": "too_long"},
        )

    if step.status != STEP_IN_PROGRESS:
        raise StepNotActive(
            f"Step {step.id} ({step.step_name}) is '{step.status}'; "
            "documents can only be uploaded to the step in progress.",
            details={"step_id": step.id, "status": step.status},
        )

    outstanding = _outstanding_document(step.id)
    if outstanding is not None:
        raise DocumentPending(
            f"Document {outstanding.id} for step {step.id} is still awaiting review; "
            "validate or reject it before uploading another.",
            details={"step_id": step.id, "document_id": outstanding.id},
        )

    document = StepDocument(
        operation_id=step.operation_id,
        step_id=step.id,
        uploader_id=str(uploader_id),
        uploader_role=uploader_role,
        document_type=document_type,
        title=title or f"{step.step_name} - {file_reference.file_name}"[:TITLE_MAX_LENGTH],
        file_url=file_reference.url,
        file_name=file_reference.file_name,
        file_size=file_reference.file_size,
        mime_type=file_reference.mime_type,
        status=DOC_UPLOADED,
    )
    db.session.add(document)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # Lost the race against a concurrent upload for the same step.
        raise DocumentPending(
            f"Another document for step {step.id} was uploaded concurrently and is awaiting review.",
            details={"step_id": step.id},
        ) from exc

    logger.debug(
        "Document submitted",
        extra={"operation_id": step.operation_id, "step_id": step.id, "document_id": document.id},
    )
    return document


def review(
    document_id: int,
    decision: str,
    notes: str | None = None,
    *,
    reviewer_id: str | None = None,
) -> StepDocument:
    """Move an 'uploaded' document to 'validated' or 'rejected'.

    Re-reviewing is never accepted: once a decision is recorded it cannot be
    flipped, and a concurrent reviewer that loses the race gets
    AlreadyReviewed rather than overwriting the winner.

    Raises:
        NotFoundError:   document does not exist.
        ValidationError: unknown decision, non-text notes, or rejection without notes.
        AlreadyReviewed: document is no longer 'uploaded'.
    """
    if not isinstance(decision, str) or decision not in REVIEW_DECISIONS:
        raise ValidationError(
            f"Invalid decision '{decision}'. Must be one of: {', '.join(sorted(REVIEW_DECISIONS))}",
            details={"decision": "invalid"},
        )

    document = db.session.get(StepDocument, document_id)
    if document is None:
        raise NotFoundError("Document", document_id)

    if document.status != DOC_UPLOADED:
        raise AlreadyReviewed(
            f"Document {document.id} was already {document.status}; decisions cannot be changed.",
            details={"document_id": document.id, "status": document.status},
        )

    if notes is not None and not isinstance(notes, str):
        raise ValidationError("notes must be text.", details={"notes": "must be a string"})
    notes = (notes or "").strip() or None
    if decision == DOC_REJECTED and not notes:
        raise ValidationError(
            "A rejection reason (notes) is required to reject a document.",
            details={"notes": "required"},
        )
    max_notes = current_app.config.get("REVIEW_NOTES_MAX_LENGTH", 1000)
    if notes and len(notes) > max_notes:
        raise ValidationError(
            f"notes must be ≤ {max_notes} characters",
            details={"notes": "too_long"},
        )

    result = db.session.execute(
        update(StepDocument)
        .where(StepDocument.id == document.id, StepDocument.status == DOC_UPLOADED)
        .values(
            status=decision,
            notes=notes,
            reviewed_by=str(reviewer_id) if reviewer_id is not None else None,
            reviewed_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise AlreadyReviewed(
            f"Document {document.id} was reviewed concurrently; decisions cannot be changed.",
            details={"document_id": document.id},
        )

    db.session.refresh(document)
    return document


def is_step_ready(step_id: int) -> bool:
    """The Document Gate.

    True iff the step has at least one 'validated' document AND no
    'uploaded' one.  A step with no documents, or only rejected ones, is
    never ready.  Always reads current rows; call it inside the transaction
    that acts on the answer.
    """
    counts = _status_counts(step_id)
    return counts.get(DOC_VALIDATED, 0) > 0 and counts.get(DOC_UPLOADED, 0) == 0


def gate_counts(step_id: int) -> tuple[int, int]:
    """Return (validated, outstanding) document counts for a step."""
    counts = _status_counts(step_id)
    return counts.get(DOC_VALIDATED, 0), counts.get(DOC_UPLOADED, 0)


def list_for_step(step_id: int) -> list[StepDocument]:
    """All documents for a step, newest first."""
    return db.session.execute(
        select(StepDocument)
        .where(StepDocument.step_id == step_id)
        .order_by(StepDocument.created_at.desc(), StepDocument.id.desc())
    ).scalars().all()
