"""
SaleFlow — Transaction Step Workflow Engine
Audit trail model.

Every committed workflow mutation appends one AuditLog row in the same
transaction (see ``write_audit``).  A rolled-back mutation therefore leaves
no audit row.  Rows are never updated or deleted by the application.
"""

import json
from datetime import datetime, timezone

from saleflow.models import db

AUDIT_ENTITY_TYPES = frozenset({"operation", "step", "document", "comment"})

AUDIT_ACTIONS = frozenset({
    "operation.create",
    "operation.cancel",
    "step.start",
    "step.complete",
    "document.upload",
    "document.validate",
    "document.reject",
    "comment.add",
})

SYSTEM_ACTOR = "system"


class AuditLog(db.Model):
    """One workflow event: who did what to which entity, with a JSON diff."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_operation", "operation_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.String(64), nullable=True, index=True)
    operation_id = db.Column(
        db.Integer, db.ForeignKey("operations.id", ondelete="CASCADE"), nullable=True,
    )

    entity_type = db.Column(db.String(30), nullable=False, comment="operation | step | document | comment")
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor = db.Column(
        db.String(150), nullable=False, default=SYSTEM_ACTOR,
        comment="Identity-provider user id, or 'system' for unattributed writes",
    )
    diff = db.Column(db.JSON, nullable=False, default=dict)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "operation_id": self.operation_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff or {},
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} {self.entity_type}/{self.entity_id} by {self.actor}>"


def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor: str | None = None,
    operation_id: int | None = None,
    organization_id: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """Add an audit row to the current transaction and flush it.

    The caller owns commit/rollback.  ``diff`` is normalised to plain JSON
    (Decimals, datetimes → strings).
    """
    row = AuditLog(
        organization_id=organization_id,
        operation_id=operation_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=str(actor) if actor else SYSTEM_ACTOR,
        diff=json.loads(json.dumps(diff or {}, default=str)),
    )
    db.session.add(row)
    db.session.flush()
    return row
