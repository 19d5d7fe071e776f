"""Initial automation tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create initial automation tables."""
    # Create automation_graphs table
    op.create_table(
        "automation_graphs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("graph_id", sa.String(length=255), nullable=False),
        sa.Column("version", sa.String(length=50), nullable=False),
        sa.Column("plan_version", sa.String(length=400), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, default=True),
        sa.Column("is_latest", sa.Boolean(), nullable=False, default=True),
        sa.Column("definition_json", sa.JSON(), nullable=False),
        sa.Column("sa_orm_sentinel", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_automation_graphs_graph_id",
        "automation_graphs",
        ["graph_id"],
    )
    op.create_index(
        "ix_automation_graphs_plan_version",
        "automation_graphs",
        ["plan_version"],
        unique=True,
    )
    op.create_index(
        "ix_automation_graphs_graph_id_latest",
        "automation_graphs",
        ["graph_id", "is_latest"],
    )

    # Create automation_instances table
    op.create_table(
        "automation_instances",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("graph_id", sa.String(length=255), nullable=False),
        sa.Column("plan_version", sa.String(length=400), nullable=False),
        sa.Column("current_node_id", sa.String(length=255), nullable=False),
        sa.Column("event_context", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("resume_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.JSON(), nullable=False),
        sa.Column("dispatching", sa.String(length=255), nullable=True),
        sa.Column("owner", sa.String(length=255), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, default=0),
        sa.Column("dedupe_key", sa.String(length=255), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sa_orm_sentinel", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_automation_instances_due",
        "automation_instances",
        ["status", "owner", "resume_at"],
    )
    op.create_index(
        "ix_automation_instances_graph_id",
        "automation_instances",
        ["graph_id"],
    )
    op.create_index(
        "ix_automation_instances_dedupe",
        "automation_instances",
        ["graph_id", "dedupe_key"],
        unique=True,
    )

    # Create automation_audit_entries table
    op.create_table(
        "automation_audit_entries",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), autoincrement=True, nullable=False),
        sa.Column("instance_id", sa.Uuid(), nullable=False),
        sa.Column("node_id", sa.String(length=255), nullable=True),
        sa.Column("outcome", sa.String(length=50), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["instance_id"],
            ["automation_instances.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_automation_audit_entries_instance_id",
        "automation_audit_entries",
        ["instance_id"],
    )


def downgrade() -> None:
    """Drop automation tables."""
    op.drop_table("automation_audit_entries")
    op.drop_table("automation_instances")
    op.drop_table("automation_graphs")
