"""Unit-of-work helper for workflow writes.

Every coordinator operation runs its precondition checks and mutations inside
``atomic()``: either the whole sequence commits, or the session is rolled back
and nothing is visible to other callers.

Error mapping on the way out:
    WorkflowError     → rollback, re-raised unchanged (business rule)
    IntegrityError    → rollback, ConflictError (constraint hit at commit time)
    OperationalError /
    other DBAPIError  → rollback, InfrastructureError (retryable)
    anything else     → rollback, re-raised
"""

import logging
from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError

from saleflow.core.exceptions import (
    ConflictError,
    InfrastructureError,
    NotFoundError,
    WorkflowError,
)
from saleflow.models import db
from saleflow.models.operation import Operation

logger = logging.getLogger(__name__)


@contextmanager
def atomic(action: str, **log_extra):
    """Commit on success, roll back on any failure.

    Args:
        action: Short name used in log lines (e.g. "start_next_step").
        log_extra: Structured fields (operation_id, step_id, …) attached to
            log records.
    """
    try:
        yield db.session
        db.session.commit()
    except WorkflowError as exc:
        db.session.rollback()
        logger.info(
            "Workflow rule rejected %s: %s", action, exc,
            extra={**log_extra, "event_type": action, "error_code": exc.code},
        )
        raise
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning(
            "Integrity error during %s: %s", action, exc.orig,
            extra={**log_extra, "event_type": action},
        )
        raise ConflictError(action, "constraint", str(exc.orig)[:120]) from exc
    except DBAPIError as exc:
        db.session.rollback()
        logger.exception(
            "Database failure during %s", action,
            extra={**log_extra, "event_type": action},
        )
        raise InfrastructureError(
            "The workflow store is temporarily unavailable; nothing was changed. Retry the request.",
        ) from exc
    except Exception:
        db.session.rollback()
        raise


def lock_operation(operation_id: int) -> Operation:
    """Load an operation with a row lock held until the transaction ends.

    Serialises concurrent writes on the same operation (``SELECT … FOR
    UPDATE`` on PostgreSQL; SQLite already serialises writers).  An instance
    already in the session is overwritten with the locked row, so a cancel
    committed after an earlier read is seen.
    """
    operation = db.session.execute(
        select(Operation)
        .where(Operation.id == operation_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if operation is None:
        raise NotFoundError("Operation", operation_id)
    return operation
