"""
Workflow exception hierarchy.

Every business-rule violation raised by the step ledger, document registry,
annotation log or workflow coordinator is a ``WorkflowError`` subclass.
Each carries:

  code       machine-readable ``E.*`` constant, surfaced verbatim to clients
  http_status status the API layer answers with
  retryable  False for every rule violation: the caller must change its
             request (pick another step, wait for review, supply notes).
             Only ``InfrastructureError`` is safe to retry as-is.

Blueprints register one handler against ``WorkflowError`` and get consistent
responses everywhere.

Usage:
    from saleflow.core.exceptions import NotFoundError, DocumentsNotReady

    raise NotFoundError(resource="Operation", resource_id=42)
    raise DocumentsNotReady(step_id=7, validated=0, outstanding=1)
"""

from saleflow.utils.errors import E, status_for


class WorkflowError(Exception):
    """Base class for every error the workflow core reports to its callers.

    Args:
        message: Human-readable explanation, safe to show in the dashboard.
        details: Optional structured context (ids, counts) for API responses.
    """

    code = E.INTERNAL
    retryable = False

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)

    @property
    def http_status(self) -> int:
        return status_for(self.code)

    def to_dict(self) -> dict:
        body = {"error": str(self), "code": self.code, "retryable": self.retryable}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(WorkflowError):
    """Raised when a referenced operation/step/document does not exist within
    the given parent.

    A step that exists but belongs to another operation is reported exactly
    like a missing one.

    Args:
        resource: Human-readable entity name (e.g. "Operation", "Step").
        resource_id: The PK that was looked up.
        parent: Optional "(Operation id=3)"-style scope that was enforced.
    """

    code = E.NOT_FOUND

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        parent: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if parent:
            msg += f" in {parent}"
        super().__init__(msg, details={"resource": resource, "resource_id": resource_id})


class ValidationError(WorkflowError):
    """Raised when input is well-formed but violates a business rule that is
    not a state transition (unknown document type, missing rejection notes,
    unsupported currency, …).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    code = E.VALIDATION_INVALID


class ConflictError(WorkflowError):
    """Raised when an operation would duplicate something that must be unique
    (e.g. a second active operation for the same buyer).

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    code = E.CONFLICT_DUPLICATE

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg, details={"field": field})


# ── Step ledger ──────────────────────────────────────────────────────────────


class OutOfOrderTransition(WorkflowError):
    """Starting a step other than the next pending one, or while another step
    is already in progress."""

    code = E.OUT_OF_ORDER_TRANSITION


class InvalidTransition(WorkflowError):
    """Unsupported status change (e.g. completed → anything), or a workflow
    write against a cancelled operation."""

    code = E.INVALID_TRANSITION


class DocumentsNotReady(WorkflowError):
    """Completing a step whose document gate is not satisfied."""

    code = E.DOCUMENTS_NOT_READY

    def __init__(self, step_id: int, validated: int = 0, outstanding: int = 0) -> None:
        if outstanding:
            reason = f"{outstanding} document(s) still awaiting review"
        else:
            reason = "at least one validated document is required"
        super().__init__(
            f"Step {step_id} cannot be completed: {reason}",
            details={"step_id": step_id, "validated": validated, "outstanding": outstanding},
        )


class StepLedgerInconsistent(WorkflowError):
    """More than one step of an operation is in progress.  Never a normal
    outcome; indicates data repaired or written outside the ledger."""

    code = E.INTERNAL


# ── Document registry ────────────────────────────────────────────────────────


class StepNotActive(WorkflowError):
    """Uploading against a step that is not currently in progress."""

    code = E.STEP_NOT_ACTIVE


class DocumentPending(WorkflowError):
    """Uploading while another document for the step awaits review."""

    code = E.DOCUMENT_PENDING


class AlreadyReviewed(WorkflowError):
    """Validating or rejecting a document that is no longer 'uploaded'."""

    code = E.ALREADY_REVIEWED


# ── Annotation log ───────────────────────────────────────────────────────────


class EmptyContent(WorkflowError):
    """Adding a comment whose content is blank after trimming."""

    code = E.EMPTY_CONTENT


# ── Infrastructure ───────────────────────────────────────────────────────────


class InfrastructureError(WorkflowError):
    """Storage unavailable, connection lost, lock timeout.  Nothing was
    committed; the same request may be retried."""

    code = E.INFRASTRUCTURE
    retryable = True
