"""create_workflow_tables

Create operations, operation_units, operation_steps, step_documents,
step_comments and audit_logs.

Revision ID: 5f1c2a7e9b10
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5f1c2a7e9b10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "operations" not in existing_tables:
        op.create_table(
            "operations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.String(length=64), nullable=False),
            sa.Column("buyer_id", sa.String(length=64), nullable=False),
            sa.Column("total_amount", sa.Numeric(15, 2), nullable=False),
            sa.Column("platform_fee", sa.Numeric(15, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_by", sa.String(length=64), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cancelled_by", sa.String(length=64), nullable=True),
            sa.Column("cancellation_reason", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_operations_organization_id", "operations", ["organization_id"])
        op.create_index("ix_operations_buyer_id", "operations", ["buyer_id"])

    if "operation_units" not in existing_tables:
        op.create_table(
            "operation_units",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("operation_id", sa.Integer(), nullable=False),
            sa.Column("unit_id", sa.String(length=64), nullable=False),
            sa.Column("price_at_reservation", sa.Numeric(15, 2), nullable=False),
            sa.ForeignKeyConstraint(["operation_id"], ["operations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("operation_id", "unit_id", name="uq_operation_units_unit"),
        )
        op.create_index("ix_operation_units_operation_id", "operation_units", ["operation_id"])

    if "operation_steps" not in existing_tables:
        op.create_table(
            "operation_steps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("operation_id", sa.Integer(), nullable=False),
            sa.Column("step_order", sa.Integer(), nullable=False),
            sa.Column("step_name", sa.String(length=120), nullable=False),
            sa.Column("suggested_document_type", sa.String(length=40), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["operation_id"], ["operations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("operation_id", "step_order", name="uq_operation_steps_order"),
            sa.UniqueConstraint("id", "operation_id", name="uq_operation_steps_id_operation"),
            sa.CheckConstraint(
                "status IN ('pending','in_progress','completed')",
                name="ck_operation_step_status",
            ),
        )
        op.create_index("ix_operation_steps_operation_id", "operation_steps", ["operation_id"])
        op.create_index(
            "uq_operation_steps_one_active",
            "operation_steps",
            ["operation_id"],
            unique=True,
            postgresql_where=sa.text("status = 'in_progress'"),
            sqlite_where=sa.text("status = 'in_progress'"),
        )

    if "step_documents" not in existing_tables:
        op.create_table(
            "step_documents",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("operation_id", sa.Integer(), nullable=False),
            sa.Column("step_id", sa.Integer(), nullable=False),
            sa.Column("uploader_id", sa.String(length=64), nullable=False),
            sa.Column("uploader_role", sa.String(length=20), nullable=False),
            sa.Column("document_type", sa.String(length=40), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=True),
            sa.Column("file_url", sa.String(length=1000), nullable=False),
            sa.Column("file_name", sa.String(length=255), nullable=False),
            sa.Column("file_size", sa.Integer(), nullable=True),
            sa.Column("mime_type", sa.String(length=100), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="uploaded"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("reviewed_by", sa.String(length=64), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["operation_id"], ["operations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(
                ["step_id", "operation_id"],
                ["operation_steps.id", "operation_steps.operation_id"],
                name="fk_step_documents_step_operation",
                ondelete="CASCADE",
            ),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "status IN ('uploaded','validated','rejected')",
                name="ck_step_document_status",
            ),
            sa.CheckConstraint(
                "uploader_role IN ('organization','buyer')",
                name="ck_step_document_uploader_role",
            ),
        )
        op.create_index("ix_step_documents_operation_id", "step_documents", ["operation_id"])
        op.create_index("ix_step_documents_step_id", "step_documents", ["step_id"])
        op.create_index("ix_step_documents_step_created", "step_documents", ["step_id", "created_at"])
        op.create_index(
            "uq_step_documents_one_outstanding",
            "step_documents",
            ["step_id"],
            unique=True,
            postgresql_where=sa.text("status = 'uploaded'"),
            sqlite_where=sa.text("status = 'uploaded'"),
        )

    if "step_comments" not in existing_tables:
        op.create_table(
            "step_comments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("step_id", sa.Integer(), nullable=False),
            sa.Column("author_id", sa.String(length=64), nullable=False),
            sa.Column("author_name", sa.String(length=200), nullable=True),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["step_id"], ["operation_steps.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_step_comments_step_id", "step_comments", ["step_id"])

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.String(length=64), nullable=True),
            sa.Column("operation_id", sa.Integer(), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False),
            sa.Column("diff", sa.JSON(), nullable=False),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["operation_id"], ["operations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_organization_id", "audit_logs", ["organization_id"])
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_operation", "audit_logs", ["operation_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("step_comments")
    op.drop_table("step_documents")
    op.drop_table("operation_steps")
    op.drop_table("operation_units")
    op.drop_table("operations")
