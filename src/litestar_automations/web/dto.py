"""Data Transfer Objects for the automation web API.

This module defines DTOs for serializing and deserializing automation data
in REST API requests and responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from litestar_automations.core.models import AuditEntry, WorkflowInstance
    from litestar_automations.engine.plan import ExecutionPlan

__all__ = [
    "AuditEntryDTO",
    "AutomationGraphDTO",
    "AutomationGraphDetailDTO",
    "DispatchEventDTO",
    "EmitEventDTO",
    "EventResultDTO",
    "GraphDTO",
    "WorkflowInstanceDTO",
    "WorkflowInstanceDetailDTO",
]


@dataclass
class EmitEventDTO:
    """DTO for reporting an event to one automation.

    Attributes:
        event_context: Data of the event.
        trigger_kind: Kind of the event. Defaults to the kind the graph's
            trigger listens for.
        dedupe_key: Upstream identifier of the event, used to ignore redeliveries.
    """

    event_context: dict[str, Any] = field(default_factory=dict)
    trigger_kind: str | None = None
    dedupe_key: str | None = None


@dataclass
class DispatchEventDTO:
    """DTO for reporting an event to every automation listening for its kind.

    Attributes:
        trigger_kind: Kind of the event.
        event_context: Data of the event.
        dedupe_key: Upstream identifier of the event.
    """

    trigger_kind: str
    event_context: dict[str, Any] = field(default_factory=dict)
    dedupe_key: str | None = None


@dataclass
class EventResultDTO:
    """DTO for the instances an event started.

    Attributes:
        accepted: Whether at least one automation accepted the event.
        instance_ids: Ids of the started (or, on redelivery, existing) instances.
    """

    accepted: bool
    instance_ids: list[UUID]


@dataclass
class AutomationGraphDTO:
    """DTO for automation graph metadata.

    Attributes:
        graph_id: Automation identifier.
        name: Display name.
        version: Authored version.
        plan_version: Version of the compiled plan new events bind to.
        enabled: Whether the automation accepts new events.
        trigger_kind: Kind of event the automation listens for.
        nodes: Node ids in execution order.
    """

    graph_id: str
    name: str
    version: str
    plan_version: str
    enabled: bool
    trigger_kind: str
    nodes: list[str]

    @classmethod
    def from_plan(cls, plan: ExecutionPlan) -> AutomationGraphDTO:
        return cls(
            graph_id=plan.graph_id,
            name=plan.name,
            version=plan.graph_version,
            plan_version=plan.plan_version,
            enabled=plan.enabled,
            trigger_kind=str(plan.trigger.trigger_kind),
            nodes=list(plan.order),
        )


@dataclass
class AutomationGraphDetailDTO:
    """DTO for an automation graph with its authored definition.

    Attributes:
        graph_id: Automation identifier.
        name: Display name.
        version: Authored version.
        plan_version: Version of the compiled plan new events bind to.
        enabled: Whether the automation accepts new events.
        trigger_kind: Kind of event the automation listens for.
        nodes: Node ids in execution order.
        definition: The graph in its canonical authored shape.
        plan_versions: Every registered plan version of the graph.
    """

    graph_id: str
    name: str
    version: str
    plan_version: str
    enabled: bool
    trigger_kind: str
    nodes: list[str]
    definition: dict[str, Any]
    plan_versions: list[str]


@dataclass
class AuditEntryDTO:
    """DTO for one audit trail entry.

    Attributes:
        node_id: The visited node.
        outcome: What happened at the node.
        detail: Structured information about the visit.
        timestamp: When the visit happened.
    """

    node_id: str | None
    outcome: str
    detail: dict[str, Any]
    timestamp: datetime

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> AuditEntryDTO:
        return cls(
            node_id=entry.node_id,
            outcome=str(entry.outcome),
            detail=dict(entry.detail),
            timestamp=entry.timestamp,
        )


@dataclass
class WorkflowInstanceDTO:
    """DTO for workflow instance summary.

    Attributes:
        id: Instance ID.
        graph_id: Automation identifier.
        plan_version: Plan version the instance is bound to.
        status: Current execution status.
        current_node_id: Node the instance is at.
        resume_at: When a waiting instance resumes.
        created_at: When the instance was created.
        completed_at: When the instance finished (if finished).
        error: Error message if the instance failed.
    """

    id: UUID
    graph_id: str
    plan_version: str
    status: str
    current_node_id: str
    resume_at: datetime | None
    created_at: datetime
    completed_at: datetime | None = None
    error: str | None = None

    @classmethod
    def from_instance(cls, instance: WorkflowInstance) -> WorkflowInstanceDTO:
        return cls(
            id=instance.id,
            graph_id=instance.graph_id,
            plan_version=instance.plan_version,
            status=str(instance.status),
            current_node_id=instance.current_node_id,
            resume_at=instance.resume_at,
            created_at=instance.created_at,
            completed_at=instance.completed_at,
            error=instance.error,
        )


@dataclass
class WorkflowInstanceDetailDTO:
    """DTO for detailed workflow instance information.

    Extends WorkflowInstanceDTO with the event context, retry counters and
    the audit trail.

    Attributes:
        id: Instance ID.
        graph_id: Automation identifier.
        plan_version: Plan version the instance is bound to.
        status: Current execution status.
        current_node_id: Node the instance is at.
        resume_at: When a waiting instance resumes.
        created_at: When the instance was created.
        completed_at: When the instance finished (if finished).
        event_context: Data of the triggering event.
        attempts: Invocation counts per action node.
        audit_trail: Audit entries in append order.
        error: Error message if the instance failed.
    """

    id: UUID
    graph_id: str
    plan_version: str
    status: str
    current_node_id: str
    resume_at: datetime | None
    created_at: datetime
    completed_at: datetime | None
    event_context: dict[str, Any]
    attempts: dict[str, int]
    audit_trail: list[AuditEntryDTO]
    error: str | None = None


@dataclass
class GraphDTO:
    """DTO for automation graph visualization.

    Attributes:
        mermaid_source: MermaidJS graph definition.
        nodes: List of node definitions.
        edges: List of edge definitions.
    """

    mermaid_source: str
    nodes: list[dict[str, Any]]
    edges: list[dict[str, Any]]
