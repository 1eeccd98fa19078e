"""
SaleFlow — Transaction Step Workflow Engine
Step document model.

A StepDocument is a file submitted against one OperationStep.  The file
itself lives in the external document store; only its reference
(url, file_name, file_size, mime_type) is recorded here.

Lifecycle:
    uploaded → validated | rejected   (both terminal, reviewed exactly once)

Database-level guards:
    - (step_id, operation_id) references operation_steps(id, operation_id),
      so a document can never point at a step of another operation.
    - Partial unique index on step_id WHERE status = 'uploaded': at most one
      outstanding document per step.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from saleflow.core.exceptions import ValidationError
from saleflow.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

DOC_UPLOADED = "uploaded"
DOC_VALIDATED = "validated"
DOC_REJECTED = "rejected"

DOCUMENT_STATUSES = frozenset({DOC_UPLOADED, DOC_VALIDATED, DOC_REJECTED})

REVIEW_DECISIONS = frozenset({DOC_VALIDATED, DOC_REJECTED})

ROLE_ORGANIZATION = "organization"
ROLE_BUYER = "buyer"

UPLOADER_ROLES = frozenset({ROLE_ORGANIZATION, ROLE_BUYER})

DOCUMENT_TYPES = frozenset({
    "boleto_reserva",
    "compromiso_compraventa",
    "comprobante_pago",
    "cedula_identidad",
    "certificado_ingresos",
    "escritura",
    "plano_unidad",
    "reglamento_copropiedad",
    "otros",
})


def _payload_text(data: dict, key: str, errors: dict) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        errors[key] = "must be a string"
        return ""
    return value.strip()


@dataclass(frozen=True)
class FileReference:
    """Opaque pointer returned by the document store after an upload."""

    url: str
    file_name: str
    file_size: int | None = None
    mime_type: str | None = None

    @classmethod
    def from_payload(cls, data: dict) -> "FileReference":
        """Build a reference from request JSON, raising ValidationError on bad input."""
        errors = {}
        url = _payload_text(data, "file_url", errors) or _payload_text(data, "url", errors)
        file_name = _payload_text(data, "file_name", errors)
        if not url:
            errors.setdefault("file_url", "required")
        elif len(url) > 1000:
            errors["file_url"] = "must be ≤ 1000 characters"
        if not file_name:
            errors.setdefault("file_name", "required")
        elif len(file_name) > 255:
            errors["file_name"] = "must be ≤ 255 characters"

        file_size = data.get("file_size")
        if file_size is not None:
            try:
                file_size = int(file_size)
            except (TypeError, ValueError):
                errors["file_size"] = "must be an integer"
            else:
                if file_size < 0:
                    errors["file_size"] = "must be ≥ 0"

        mime_type = _payload_text(data, "mime_type", errors) or None
        if mime_type and len(mime_type) > 100:
            errors["mime_type"] = "must be ≤ 100 characters"

        if errors:
            raise ValidationError("Invalid file reference", details=errors)
        return cls(url=url, file_name=file_name, file_size=file_size, mime_type=mime_type)


class StepDocument(db.Model):
    """
    Document submitted against a step, with its single review decision.

    Business rules:
    - operation_id is copied from the owning step, never taken from input.
    - status moves exactly once from 'uploaded' to 'validated' or 'rejected'
      via a conditional UPDATE (see services.document_registry.review).
    - notes is mandatory on rejection and immutable afterwards.
    """

    __tablename__ = "step_documents"

    id = db.Column(db.Integer, primary_key=True)
    operation_id = db.Column(
        db.Integer,
        db.ForeignKey("operations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_id = db.Column(db.Integer, nullable=False, index=True)

    uploader_id = db.Column(db.String(64), nullable=False)
    uploader_role = db.Column(
        db.String(20), nullable=False,
        comment="organization | buyer",
    )
    document_type = db.Column(db.String(40), nullable=False)
    title = db.Column(db.String(255), nullable=True)

    # Document store reference (opaque)
    file_url = db.Column(db.String(1000), nullable=False)
    file_name = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.Integer, nullable=True)
    mime_type = db.Column(db.String(100), nullable=True)

    status = db.Column(
        db.String(20), nullable=False, default=DOC_UPLOADED,
        comment="uploaded | validated | rejected",
    )
    notes = db.Column(
        db.Text, nullable=True,
        comment="Reviewer notes; mandatory rejection reason when status=rejected",
    )
    reviewed_by = db.Column(db.String(64), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.ForeignKeyConstraint(
            ["step_id", "operation_id"],
            ["operation_steps.id", "operation_steps.operation_id"],
            name="fk_step_documents_step_operation",
            ondelete="CASCADE",
        ),
        db.CheckConstraint(
            "status IN ('uploaded','validated','rejected')",
            name="ck_step_document_status",
        ),
        db.CheckConstraint(
            "uploader_role IN ('organization','buyer')",
            name="ck_step_document_uploader_role",
        ),
        db.Index(
            "uq_step_documents_one_outstanding", "step_id",
            unique=True,
            sqlite_where=db.text("status = 'uploaded'"),
            postgresql_where=db.text("status = 'uploaded'"),
        ),
        db.Index("ix_step_documents_step_created", "step_id", "created_at"),
    )

    @property
    def file_reference(self) -> FileReference:
        return FileReference(
            url=self.file_url,
            file_name=self.file_name,
            file_size=self.file_size,
            mime_type=self.mime_type,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operation_id": self.operation_id,
            "step_id": self.step_id,
            "uploader_id": self.uploader_id,
            "uploader_role": self.uploader_role,
            "document_type": self.document_type,
            "title": self.title,
            "file_url": self.file_url,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "status": self.status,
            "notes": self.notes,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<StepDocument #{self.id} step={self.step_id} {self.document_type} [{self.status}]>"
