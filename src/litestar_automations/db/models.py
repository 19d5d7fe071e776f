"""SQLAlchemy models for automation persistence.

This module defines the database models for persisting automation state:
- AutomationGraphModel: Stores every saved version of an authored graph
- WorkflowInstanceModel: Stores running/completed workflow instances
- AuditEntryModel: Append-only audit trail of node visits
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from advanced_alchemy.base import BigIntAuditBase, UUIDAuditBase
from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import JSON, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from litestar_automations.core.types import AuditOutcome, InstanceStatus

__all__ = [
    "AuditEntryModel",
    "AutomationGraphModel",
    "WorkflowInstanceModel",
]


# Cross-database JSON type: uses JSONB for PostgreSQL, JSON for others (SQLite, MySQL, etc.)
JSONType = JSON().with_variant(JSONB, "postgresql")


class AutomationGraphModel(UUIDAuditBase):
    """One saved version of an authored automation graph.

    Every save that changes the graph's content adds a row, so the plans of
    in-flight instances can be rebuilt after a restart.

    Attributes:
        graph_id: Stable identifier of the automation.
        version: Authored version string.
        plan_version: Content-addressed version of the compiled plan.
        name: Display name.
        description: Free-form description.
        enabled: Whether the graph accepts new events.
        is_latest: Whether new events bind to this version.
        definition_json: The graph in its canonical authored JSON shape.
    """

    __tablename__ = "automation_graphs"
    __table_args__ = (
        Index("ix_automation_graphs_plan_version", "plan_version", unique=True),
        Index("ix_automation_graphs_graph_id_latest", "graph_id", "is_latest"),
    )

    graph_id: Mapped[str] = mapped_column(String(255), index=True)
    version: Mapped[str] = mapped_column(String(50))
    plan_version: Mapped[str] = mapped_column(String(400))
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    enabled: Mapped[bool] = mapped_column(default=True)
    is_latest: Mapped[bool] = mapped_column(default=True)
    definition_json: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)


class WorkflowInstanceModel(UUIDAuditBase):
    """Persisted workflow instance.

    Attributes:
        graph_id: Identifier of the automation graph.
        plan_version: Plan version the instance is bound to.
        current_node_id: Cursor of the instance.
        event_context: Data of the triggering event.
        status: Current execution status.
        resume_at: Earliest time the instance may be claimed.
        attempts: Invocation counters per action node.
        dispatching: Action node whose outcome is not recorded yet.
        owner: Worker holding the claim.
        version: Optimistic concurrency counter.
        dedupe_key: Upstream event key; unique per graph.
        error: Final error message.
        completed_at: Timestamp when the instance finished.
    """

    __tablename__ = "automation_instances"
    __table_args__ = (
        Index("ix_automation_instances_due", "status", "owner", "resume_at"),
        Index("ix_automation_instances_graph_id", "graph_id"),
        Index("ix_automation_instances_dedupe", "graph_id", "dedupe_key", unique=True),
    )

    graph_id: Mapped[str] = mapped_column(String(255))
    plan_version: Mapped[str] = mapped_column(String(400))
    current_node_id: Mapped[str] = mapped_column(String(255))
    event_context: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    status: Mapped[InstanceStatus] = mapped_column(
        Enum(InstanceStatus, native_enum=False, length=50),
        default=InstanceStatus.RUNNING,
    )
    resume_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    attempts: Mapped[dict[str, int]] = mapped_column(JSONType, default=dict)
    dispatching: Mapped[str | None] = mapped_column(String(255), nullable=True)
    owner: Mapped[str | None] = mapped_column(String(255), nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=0)
    dedupe_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)

    # Relationships
    audit_entries: Mapped[list[AuditEntryModel]] = relationship(
        back_populates="instance",
        lazy="noload",
        order_by="AuditEntryModel.id",
    )


class AuditEntryModel(BigIntAuditBase):
    """Append-only record of one node visit.

    The auto-incrementing primary key preserves append order even when
    several entries share a timestamp.

    Attributes:
        instance_id: Foreign key to the workflow instance.
        node_id: The visited node.
        outcome: What happened at the node.
        detail: Structured information about the visit.
        timestamp: When the visit happened.
    """

    __tablename__ = "automation_audit_entries"
    __table_args__ = (Index("ix_automation_audit_entries_instance_id", "instance_id"),)

    instance_id: Mapped[UUID] = mapped_column(
        ForeignKey("automation_instances.id", ondelete="CASCADE"),
    )
    node_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    outcome: Mapped[AuditOutcome] = mapped_column(Enum(AuditOutcome, native_enum=False, length=50))
    detail: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    timestamp: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))

    # Relationships
    instance: Mapped[WorkflowInstanceModel] = relationship(back_populates="audit_entries")
