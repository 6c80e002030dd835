"""Add automation rules, execution logs, and notifications.

Revision ID: 20250501_000001
Revises:
Create Date: 2025-05-01 00:00:01
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20250501_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create rule, execution log, and notification tables."""
    op.create_table(
        "automation_rules",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("conditions", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("actions", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_automation_rules_owner_id"), "automation_rules", ["owner_id"], unique=False)
    op.create_index(op.f("ix_automation_rules_enabled"), "automation_rules", ["enabled"], unique=False)

    op.create_table(
        "automation_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("rule_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.Enum("success", "error", name="automation_log_status"), nullable=False),
        sa.Column("context", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("error", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_automation_logs_rule_id"), "automation_logs", ["rule_id"], unique=False)
    op.create_index(op.f("ix_automation_logs_owner_id"), "automation_logs", ["owner_id"], unique=False)
    op.create_index(op.f("ix_automation_logs_created_at"), "automation_logs", ["created_at"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_notifications_owner_id"), "notifications", ["owner_id"], unique=False)


def downgrade() -> None:
    """Drop automation tables."""
    op.drop_index(op.f("ix_notifications_owner_id"), table_name="notifications")
    op.drop_table("notifications")
    op.drop_index(op.f("ix_automation_logs_created_at"), table_name="automation_logs")
    op.drop_index(op.f("ix_automation_logs_owner_id"), table_name="automation_logs")
    op.drop_index(op.f("ix_automation_logs_rule_id"), table_name="automation_logs")
    op.drop_table("automation_logs")
    sa.Enum(name="automation_log_status").drop(op.get_bind(), checkfirst=True)
    op.drop_index(op.f("ix_automation_rules_enabled"), table_name="automation_rules")
    op.drop_index(op.f("ix_automation_rules_owner_id"), table_name="automation_rules")
    op.drop_table("automation_rules")
