"""
Annotation Log — append-only comment trail per operation step.

Comments have no status and no gating semantics.  They can be added to a
step in any status, including completed steps (historical discussion), and
are never edited or deleted.  This module flushes; the caller commits.
"""

import logging

from flask import current_app
from sqlalchemy import select

from saleflow.core.exceptions import EmptyContent, NotFoundError, ValidationError
from saleflow.models import db
from saleflow.models.comment import StepComment
from saleflow.models.operation import OperationStep

logger = logging.getLogger(__name__)

AUTHOR_NAME_MAX_LENGTH = 200


def add(
    step_id: int,
    author_id: str,
    author_name: str | None,
    content: str,
    is_internal: bool = False,
) -> StepComment:
    """Append a comment to a step.

    Raises:
        NotFoundError:   step does not exist.
        EmptyContent:    content is blank after trimming.
        ValidationError: content is not text or longer than COMMENT_MAX_LENGTH,
                         or author_name longer than AUTHOR_NAME_MAX_LENGTH.
    """
    if db.session.get(OperationStep, step_id) is None:
        raise NotFoundError("Step", step_id)

    if content is not None and not isinstance(content, str):
        raise ValidationError("Comment content must be text.", details={"content": "must be a string"})
    text = (content or "").strip()
    if not text:
        raise EmptyContent("Comment content cannot be empty.", details={"content": "required"})

    max_len = current_app.config.get("COMMENT_MAX_LENGTH", 2000)
    if len(text) > max_len:
        raise ValidationError(
            f"Comment must be ≤ {max_len} characters",
            details={"content": "too_long"},
        )

    name = (author_name or "").strip() or None
    if name and len(name) > AUTHOR_NAME_MAX_LENGTH:
        raise ValidationError(
            f"author_name must be ≤ {AUTHOR_NAME_MAX_LENGTH} characters",
            details={"author_name": "too_long"},
        )

    comment = StepComment(
        step_id=step_id,
        author_id=str(author_id),
        author_name=name,
        content=text,
        is_internal=bool(is_internal),
    )
    db.session.add(comment)
    db.session.flush()
    return comment


def list_for_step(step_id: int, include_internal: bool = True) -> list[StepComment]:
    """Comments for a step, newest first.  Buyers pass include_internal=False."""
    stmt = select(StepComment).where(StepComment.step_id == step_id)
    if not include_internal:
        stmt = stmt.where(StepComment.is_internal.is_(False))
    return db.session.execute(
        stmt.order_by(StepComment.created_at.desc(), StepComment.id.desc())
    ).scalars().all()
