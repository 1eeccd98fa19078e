"""
SaleFlow — Transaction Step Workflow Engine
Step comment model.

Comments are an append-only discussion trail per step.  They carry no
status and never gate anything; they may be added to completed steps too.
author_name is a snapshot taken at write time so the trail stays readable
if the identity provider later renames or removes the user.
"""

from datetime import datetime, timezone

from saleflow.models import db


class StepComment(db.Model):
    """Append-only annotation on an OperationStep.  Never updated or deleted."""

    __tablename__ = "step_comments"

    id = db.Column(db.Integer, primary_key=True)
    step_id = db.Column(
        db.Integer,
        db.ForeignKey("operation_steps.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    author_id = db.Column(db.String(64), nullable=False)
    author_name = db.Column(db.String(200), nullable=True)
    content = db.Column(db.Text, nullable=False)
    is_internal = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="Organization-only note; hidden from buyers",
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "step_id": self.step_id,
            "author_id": self.author_id,
            "author_name": self.author_name,
            "content": self.content,
            "is_internal": self.is_internal,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<StepComment #{self.id} step={self.step_id} by {self.author_id}>"
