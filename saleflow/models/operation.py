"""
SaleFlow — Transaction Step Workflow Engine
Operation domain models.

Models:
    - Operation:      one buyer's purchase transaction for one or more units
    - OperationUnit:  unit reserved by an operation, with its price snapshot
    - OperationStep:  one ordered legal/administrative stage of an operation

Architecture:
    Operation ──1:N──▶ OperationUnit
    Operation ──1:N──▶ OperationStep ──1:N──▶ StepDocument
                                     ──1:N──▶ StepComment

Lifecycle states:
    OperationStep:  pending → in_progress → completed  (completed is terminal)
    Operation:      derived from its steps, never stored
                    not_started | active | completed | cancelled
"""

from datetime import datetime, timezone

from saleflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

STEP_PENDING = "pending"
STEP_IN_PROGRESS = "in_progress"
STEP_COMPLETED = "completed"

STEP_STATUSES = {STEP_PENDING, STEP_IN_PROGRESS, STEP_COMPLETED}

OPERATION_NOT_STARTED = "not_started"
OPERATION_ACTIVE = "active"
OPERATION_COMPLETED = "completed"
OPERATION_CANCELLED = "cancelled"

OPERATION_STATUSES = {
    OPERATION_NOT_STARTED, OPERATION_ACTIVE,
    OPERATION_COMPLETED, OPERATION_CANCELLED,
}

# Stage template used when an operation is created without explicit steps.
# suggested_document_type is a hint for the upload form, not a gate.
DEFAULT_STEP_TEMPLATE = (
    {"step_name": "Reservation", "suggested_document_type": "boleto_reserva"},
    {"step_name": "Purchase Agreement", "suggested_document_type": "compromiso_compraventa"},
    {"step_name": "Payment", "suggested_document_type": "comprobante_pago"},
    {"step_name": "Deed", "suggested_document_type": "escritura"},
)


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

STEP_TRANSITIONS = {
    STEP_PENDING:     [STEP_IN_PROGRESS],
    STEP_IN_PROGRESS: [STEP_COMPLETED],
    STEP_COMPLETED:   [],
}


def validate_step_transition(old_status, new_status):
    """Return True if OperationStep status transition is valid."""
    return new_status in STEP_TRANSITIONS.get(old_status, [])


def derive_operation_status(step_statuses, cancelled=False):
    """Compute the overall operation status from its step statuses."""
    if cancelled:
        return OPERATION_CANCELLED
    statuses = list(step_statuses)
    if not statuses or all(s == STEP_PENDING for s in statuses):
        return OPERATION_NOT_STARTED
    if all(s == STEP_COMPLETED for s in statuses):
        return OPERATION_COMPLETED
    return OPERATION_ACTIVE


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. Operation
# ═════════════════════════════════════════════════════════════════════════════


class Operation(db.Model):
    """
    One purchase transaction for one buyer and one or more units.

    The overall status is derived from the step ledger (see ``status``);
    only cancellation is recorded directly because it happens out of band.
    Operations are never deleted.
    """

    __tablename__ = "operations"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.String(64), nullable=False, index=True,
        comment="Selling organization (tenant) reference from the identity provider",
    )
    buyer_id = db.Column(
        db.String(64), nullable=False, index=True,
        comment="Buyer user reference from the identity provider",
    )

    total_amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    platform_fee = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    notes = db.Column(db.Text, default="")

    created_by = db.Column(db.String(64), nullable=True)

    # Cancellation (out of band, never reverted)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.String(64), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Relationships ────────────────────────────────────────────────────
    steps = db.relationship(
        "OperationStep", backref="operation", lazy="select",
        cascade="all, delete-orphan", order_by="OperationStep.step_order",
    )
    units = db.relationship(
        "OperationUnit", backref="operation", lazy="select",
        cascade="all, delete-orphan", order_by="OperationUnit.id",
    )

    @property
    def is_cancelled(self):
        return self.cancelled_at is not None

    @property
    def status(self):
        return derive_operation_status(
            (s.status for s in self.steps), cancelled=self.is_cancelled,
        )

    @property
    def current_step(self):
        """In-memory view of the active step, for serialisation only."""
        for step in self.steps:
            if step.status == STEP_IN_PROGRESS:
                return step
        return None

    def to_dict(self, include_children=False):
        current = self.current_step
        result = {
            "id": self.id,
            "organization_id": self.organization_id,
            "buyer_id": self.buyer_id,
            "status": self.status,
            "total_amount": float(self.total_amount or 0),
            "platform_fee": float(self.platform_fee or 0),
            "currency": self.currency,
            "notes": self.notes,
            "created_by": self.created_by,
            "current_step_id": current.id if current else None,
            "cancelled_at": _iso(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "cancellation_reason": self.cancellation_reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "step_count": len(self.steps),
            "unit_count": len(self.units),
        }
        if include_children:
            result["steps"] = [s.to_dict() for s in self.steps]
            result["units"] = [u.to_dict() for u in self.units]
        return result

    def __repr__(self):
        return f"<Operation {self.id}: buyer={self.buyer_id} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. OperationUnit
# ═════════════════════════════════════════════════════════════════════════════


class OperationUnit(db.Model):
    """Unit reserved by an operation; price is frozen at reservation time."""

    __tablename__ = "operation_units"

    id = db.Column(db.Integer, primary_key=True)
    operation_id = db.Column(
        db.Integer, db.ForeignKey("operations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    unit_id = db.Column(
        db.String(64), nullable=False,
        comment="Catalogue unit reference; the listing itself lives outside the core",
    )
    price_at_reservation = db.Column(db.Numeric(15, 2), nullable=False)

    __table_args__ = (
        db.UniqueConstraint("operation_id", "unit_id", name="uq_operation_units_unit"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "operation_id": self.operation_id,
            "unit_id": self.unit_id,
            "price_at_reservation": float(self.price_at_reservation or 0),
        }


# ═════════════════════════════════════════════════════════════════════════════
# 3. OperationStep
# ═════════════════════════════════════════════════════════════════════════════


class OperationStep(db.Model):
    """
    One stage of an operation (Reservation, Purchase Agreement, …).

    Status changes go through ``services.step_ledger.advance`` only, which
    writes with a status/version-guarded UPDATE.  The partial unique index
    below backs the "one in_progress step per operation" rule at the
    database level.
    """

    __tablename__ = "operation_steps"

    id = db.Column(db.Integer, primary_key=True)
    operation_id = db.Column(
        db.Integer, db.ForeignKey("operations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_order = db.Column(db.Integer, nullable=False)
    step_name = db.Column(db.String(120), nullable=False)
    suggested_document_type = db.Column(
        db.String(40), nullable=True,
        comment="Default document type offered when uploading against this step",
    )
    status = db.Column(
        db.String(20), nullable=False, default=STEP_PENDING,
        comment="pending | in_progress | completed",
    )
    version = db.Column(
        db.Integer, nullable=False, default=1,
        comment="Bumped on every status write; guards concurrent advances",
    )

    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("operation_id", "step_order", name="uq_operation_steps_order"),
        db.UniqueConstraint("id", "operation_id", name="uq_operation_steps_id_operation"),
        db.CheckConstraint(
            "status IN ('pending','in_progress','completed')",
            name="ck_operation_step_status",
        ),
        db.Index(
            "uq_operation_steps_one_active", "operation_id",
            unique=True,
            sqlite_where=db.text("status = 'in_progress'"),
            postgresql_where=db.text("status = 'in_progress'"),
        ),
    )

    documents = db.relationship(
        "StepDocument", backref="step", lazy="dynamic",
        cascade="all, delete-orphan", order_by="StepDocument.created_at.desc()",
    )
    comments = db.relationship(
        "StepComment", backref="step", lazy="dynamic",
        cascade="all, delete-orphan", order_by="StepComment.created_at.desc()",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "operation_id": self.operation_id,
            "step_order": self.step_order,
            "step_name": self.step_name,
            "suggested_document_type": self.suggested_document_type,
            "status": self.status,
            "version": self.version,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<OperationStep {self.id}: #{self.step_order} {self.step_name} [{self.status}]>"
