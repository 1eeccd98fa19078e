"""JSON error responses for the workflow API.

Every error body has the same shape::

    {"error": "<message>", "code": "ERR_…", "retryable": bool?, "details": {…}?}

so the dashboard can branch on ``code`` and decide whether to offer a retry
from ``retryable``.

Usage:
    from saleflow.utils.errors import E, api_error

    return api_error(E.VALIDATION_REQUIRED, "document_type is required",
                     details={"document_type": "required"})
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes.  Workflow rule codes are named after the broken rule."""

    # input
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    EMPTY_CONTENT = "ERR_EMPTY_CONTENT"

    # lookup / uniqueness
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # step ledger
    OUT_OF_ORDER_TRANSITION = "ERR_OUT_OF_ORDER_TRANSITION"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    DOCUMENTS_NOT_READY = "ERR_DOCUMENTS_NOT_READY"

    # document registry
    STEP_NOT_ACTIVE = "ERR_STEP_NOT_ACTIVE"
    DOCUMENT_PENDING = "ERR_DOCUMENT_PENDING"
    ALREADY_REVIEWED = "ERR_ALREADY_REVIEWED"

    # identity
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # server
    INFRASTRUCTURE = "ERR_INFRASTRUCTURE"
    INTERNAL = "ERR_INTERNAL"


_STATUS_BY_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.EMPTY_CONTENT: 422,
    E.NOT_FOUND: 404,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.INFRASTRUCTURE: 503,
    E.INTERNAL: 500,
}
# Every workflow rule violation is a state conflict
for _code in (
    E.CONFLICT_DUPLICATE,
    E.OUT_OF_ORDER_TRANSITION,
    E.INVALID_TRANSITION,
    E.DOCUMENTS_NOT_READY,
    E.STEP_NOT_ACTIVE,
    E.DOCUMENT_PENDING,
    E.ALREADY_REVIEWED,
):
    _STATUS_BY_CODE[_code] = 409
del _code


def status_for(code: str) -> int:
    """HTTP status for an error code; 400 for codes not listed here."""
    return _STATUS_BY_CODE.get(code, 400)


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
    retryable: bool | None = None,
):
    """Build ``(response, status)`` for a Flask view.

    ``status`` overrides the code's default.  ``details`` and ``retryable``
    are omitted from the body when not given.
    """
    body: dict = {"error": message, "code": code}
    if retryable is not None:
        body["retryable"] = retryable
    if details:
        body["details"] = details
    return jsonify(body), status or status_for(code)
