"""
Workflow Blueprint — operation step workflow over HTTP.

Serialization only: every rule lives in services.workflow_coordinator and
services.operation_service.  Identity comes from upstream headers (see
services.identity).

Endpoints:
  Operation:   POST /operations
               GET  /operations/<id>
               POST /operations/<id>/cancel                        (organization)
               GET  /operations/<id>/audit                         (organization)
  Steps:       POST /operations/<id>/steps/start-next              (organization)
               POST /operations/<id>/steps/complete-current        (organization)
  Documents:   GET/POST /operations/<id>/steps/<sid>/documents
               POST /documents/<did>/review                        (organization)
  Comments:    GET/POST /operations/<id>/steps/<sid>/comments
"""

import logging

from flask import Blueprint, g, jsonify, request

from saleflow.core.exceptions import ValidationError, WorkflowError
from saleflow.models.document import ROLE_ORGANIZATION, FileReference
from saleflow.services import operation_service, workflow_coordinator
from saleflow.services.identity import require_identity
from saleflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")


# ── Error handlers ────────────────────────────────────────────────────────────


@workflow_bp.errorhandler(WorkflowError)
def _handle_workflow_error(error: WorkflowError):
    return api_error(
        error.code,
        str(error),
        details=error.details or None,
        retryable=error.retryable,
    )


# ── Helpers ───────────────────────────────────────────────────────────────────


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _text_field(data: dict, key: str, default: str | None = "") -> str | None:
    """A string field from the request body; any other JSON type is a 422."""
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", details={key: "must be a string"})
    return value


def _scoped_operation(operation_id: int):
    """Load the operation within the caller's scope (buyer: own; org: own tenant)."""
    identity = g.identity
    if identity.is_buyer:
        return operation_service.get_operation(operation_id, buyer_id=identity.user_id)
    return operation_service.get_operation(operation_id, organization_id=identity.organization_id)


# ═════════════════════════════════════════════════════════════════════════
# Operations
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/operations", methods=["POST"])
@require_identity()
def create_operation():
    """Open an operation.

    Buyers open their own operation (organization_id in the body);
    organization users open one on behalf of a buyer (buyer_id in the body).
    """
    data = _json_body()
    identity = g.identity
    if identity.is_buyer:
        buyer_id = identity.user_id
        organization_id = data.get("organization_id")
    else:
        buyer_id = data.get("buyer_id")
        organization_id = identity.organization_id

    if not organization_id or not buyer_id:
        missing = "organization_id" if not organization_id else "buyer_id"
        return api_error(E.VALIDATION_REQUIRED, f"{missing} is required", details={missing: "required"})

    operation = operation_service.create_operation(
        organization_id,
        buyer_id,
        data.get("units") or [],
        currency=_text_field(data, "currency", None),
        notes=_text_field(data, "notes"),
        step_names=data.get("step_names"),
        created_by=identity.user_id,
    )
    return jsonify(operation.to_dict(include_children=True)), 201


@workflow_bp.route("/operations/<int:operation_id>", methods=["GET"])
@require_identity()
def get_operation(operation_id):
    operation = _scoped_operation(operation_id)
    result = operation.to_dict(include_children=True)
    result["readiness"] = workflow_coordinator.step_readiness(operation.id)
    return jsonify(result), 200


@workflow_bp.route("/operations/<int:operation_id>/cancel", methods=["POST"])
@require_identity(ROLE_ORGANIZATION)
def cancel_operation(operation_id):
    _scoped_operation(operation_id)
    data = _json_body()
    operation = operation_service.cancel_operation(
        operation_id, g.identity.user_id, _text_field(data, "reason"),
    )
    return jsonify(operation.to_dict()), 200


@workflow_bp.route("/operations/<int:operation_id>/audit", methods=["GET"])
@require_identity(ROLE_ORGANIZATION)
def list_audit(operation_id):
    _scoped_operation(operation_id)
    limit = max(1, min(request.args.get("limit", 200, type=int), 1000))
    rows = operation_service.list_audit(
        operation_id, action=request.args.get("action"), limit=limit,
    )
    return jsonify([r.to_dict() for r in rows]), 200


# ═════════════════════════════════════════════════════════════════════════
# Steps
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/operations/<int:operation_id>/steps/start-next", methods=["POST"])
@require_identity(ROLE_ORGANIZATION)
def start_next_step(operation_id):
    _scoped_operation(operation_id)
    step = workflow_coordinator.start_next_step(operation_id, actor_id=g.identity.user_id)
    return jsonify(step.to_dict()), 200


@workflow_bp.route("/operations/<int:operation_id>/steps/complete-current", methods=["POST"])
@require_identity(ROLE_ORGANIZATION)
def complete_current_step(operation_id):
    _scoped_operation(operation_id)
    step = workflow_coordinator.complete_current_step(operation_id, actor_id=g.identity.user_id)
    return jsonify(step.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Documents
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/operations/<int:operation_id>/steps/<int:step_id>/documents", methods=["GET"])
@require_identity()
def list_documents(operation_id, step_id):
    _scoped_operation(operation_id)
    docs = workflow_coordinator.list_documents(operation_id, step_id)
    return jsonify([d.to_dict() for d in docs]), 200


@workflow_bp.route("/operations/<int:operation_id>/steps/<int:step_id>/documents", methods=["POST"])
@require_identity()
def upload_document(operation_id, step_id):
    _scoped_operation(operation_id)
    data = _json_body()
    document_type = _text_field(data, "document_type").strip()
    if not document_type:
        return api_error(E.VALIDATION_REQUIRED, "document_type is required",
                         details={"document_type": "required"})

    file_reference = FileReference.from_payload(data)
    document = workflow_coordinator.upload_document(
        operation_id,
        step_id,
        g.identity.user_id,
        g.identity.role,
        document_type,
        file_reference,
        title=_text_field(data, "title", None),
    )
    return jsonify(document.to_dict()), 201


@workflow_bp.route("/documents/<int:document_id>/review", methods=["POST"])
@require_identity(ROLE_ORGANIZATION)
def review_document(document_id):
    _scoped_operation(workflow_coordinator.get_document(document_id).operation_id)
    data = _json_body()
    decision = _text_field(data, "decision").strip()
    if not decision:
        return api_error(E.VALIDATION_REQUIRED, "decision is required",
                         details={"decision": "required"})

    document = workflow_coordinator.review_document(
        document_id, decision, _text_field(data, "notes", None), reviewer_id=g.identity.user_id,
    )
    return jsonify(document.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Comments
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/operations/<int:operation_id>/steps/<int:step_id>/comments", methods=["GET"])
@require_identity()
def list_comments(operation_id, step_id):
    _scoped_operation(operation_id)
    comments = workflow_coordinator.list_comments(
        operation_id, step_id, include_internal=g.identity.is_organization,
    )
    return jsonify([c.to_dict() for c in comments]), 200


@workflow_bp.route("/operations/<int:operation_id>/steps/<int:step_id>/comments", methods=["POST"])
@require_identity()
def add_comment(operation_id, step_id):
    _scoped_operation(operation_id)
    data = _json_body()
    identity = g.identity
    # Only organization users may write internal notes
    is_internal = bool(data.get("is_internal")) and identity.is_organization
    comment = workflow_coordinator.add_comment(
        operation_id,
        step_id,
        identity.user_id,
        identity.name,
        _text_field(data, "content"),
        is_internal=is_internal,
    )
    return jsonify(comment.to_dict()), 201
