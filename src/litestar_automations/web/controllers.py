"""REST API controllers for automation management.

This module provides three controller classes:
- AutomationGraphController: Save, list, visualize and delete automation
  graphs, list their instances, and report events to a single automation
- AutomationEventController: Fan events out to every listening automation
- WorkflowInstanceController: Inspect and cancel workflow instances
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar
from uuid import UUID

from litestar import Controller, delete, get, post
from litestar.exceptions import NotFoundException, ValidationException
from litestar.params import Dependency, Parameter

from litestar_automations.core.graph import AutomationGraph
from litestar_automations.core.protocols import AuditReader
from litestar_automations.core.types import InstanceStatus, TriggerKind
from litestar_automations.db.store import SQLAlchemyGraphStore  # noqa: TC001 - needed for DI
from litestar_automations.engine.executor import AutomationEngine  # noqa: TC001 - needed for DI
from litestar_automations.engine.intake import EventIntake  # noqa: TC001 - needed for DI
from litestar_automations.engine.registry import PlanRegistry  # noqa: TC001 - needed for DI
from litestar_automations.exceptions import GraphNotFoundError
from litestar_automations.web.dto import (
    AuditEntryDTO,
    AutomationGraphDetailDTO,
    AutomationGraphDTO,
    DispatchEventDTO,
    EmitEventDTO,
    EventResultDTO,
    GraphDTO,
    WorkflowInstanceDetailDTO,
    WorkflowInstanceDTO,
)
from litestar_automations.web.graph import (
    generate_mermaid_graph,
    generate_mermaid_graph_with_state,
    node_states_from_audit,
    parse_plan_to_dict,
)

__all__ = [
    "AutomationEventController",
    "AutomationGraphController",
    "WorkflowInstanceController",
]

logger = logging.getLogger(__name__)


def _trigger_kind(value: str) -> TriggerKind:
    try:
        return TriggerKind(value)
    except ValueError as e:
        raise ValidationException(detail=f"Unknown trigger kind '{value}'") from e


class AutomationGraphController(Controller):
    """API controller for automation graphs.

    Provides endpoints for saving authored graphs, listing and retrieving
    them, rendering their graph, and reporting events to one automation.

    Tags: Automation Graphs
    """

    path = "/graphs"
    tags: ClassVar[list[str]] = ["Automation Graphs"]

    @post("/")
    async def save_graph(
        self,
        data: dict[str, Any],
        automation_registry: PlanRegistry,
        automation_graph_store: SQLAlchemyGraphStore | None = Dependency(skip_validation=True),
    ) -> AutomationGraphDTO:
        """Compile an authored graph and make it the latest version.

        Instances already running keep their plan; new events bind to the
        saved one.

        Args:
            data: The graph in its authored JSON shape.
            automation_registry: Injected plan registry.
            automation_graph_store: Injected graph store, if persistence is configured.

        Returns:
            The compiled graph's metadata.

        Raises:
            CompileError: If the graph is invalid (mapped to 422).
        """
        graph = AutomationGraph.from_dict(data)
        plan = automation_registry.register(graph)
        if automation_graph_store is not None:
            await automation_graph_store.save(graph, plan)
        logger.info("Saved graph %s as plan %s", graph.graph_id, plan.plan_version)
        return AutomationGraphDTO.from_plan(plan)

    @get("/")
    async def list_graphs(self, automation_registry: PlanRegistry) -> list[AutomationGraphDTO]:
        """List the latest version of every registered graph."""
        return [AutomationGraphDTO.from_plan(plan) for plan in automation_registry.list_latest()]

    @get("/{graph_id:str}")
    async def get_graph(
        self,
        graph_id: str,
        automation_registry: PlanRegistry,
        plan_version: str | None = Parameter(
            default=None,
            description="Specific plan version to retrieve. If omitted, returns latest.",
        ),
    ) -> AutomationGraphDetailDTO:
        """Get a graph's metadata and authored definition.

        Args:
            graph_id: The automation identifier.
            automation_registry: Injected plan registry.
            plan_version: Optional specific plan version.

        Returns:
            Graph detail DTO.
        """
        plan = automation_registry.get_plan(graph_id, plan_version)
        summary = AutomationGraphDTO.from_plan(plan)
        return AutomationGraphDetailDTO(
            graph_id=summary.graph_id,
            name=summary.name,
            version=summary.version,
            plan_version=summary.plan_version,
            enabled=summary.enabled,
            trigger_kind=summary.trigger_kind,
            nodes=summary.nodes,
            definition=dict(plan.source),
            plan_versions=automation_registry.get_versions(graph_id),
        )

    @delete("/{graph_id:str}")
    async def delete_graph(
        self,
        graph_id: str,
        automation_registry: PlanRegistry,
        automation_graph_store: SQLAlchemyGraphStore | None = Dependency(skip_validation=True),
    ) -> None:
        """Remove a graph and every one of its plan versions.

        Instances still bound to a removed plan fail the next time a worker
        claims them.

        Args:
            graph_id: The automation identifier.
            automation_registry: Injected plan registry.
            automation_graph_store: Injected graph store, if persistence is configured.

        Raises:
            GraphNotFoundError: If the graph is not registered (mapped to 404).
        """
        if not automation_registry.has_graph(graph_id):
            raise GraphNotFoundError(graph_id)
        automation_registry.unregister(graph_id)
        if automation_graph_store is not None:
            await automation_graph_store.delete(graph_id)
        logger.info("Deleted graph %s", graph_id)

    @get("/{graph_id:str}/instances")
    async def list_graph_instances(
        self,
        graph_id: str,
        automation_engine: AutomationEngine,
        status: str | None = Parameter(
            default=None,
            description="Filter by status",
        ),
        limit: int = Parameter(
            default=50,
            ge=1,
            le=100,
            description="Maximum number of results",
        ),
        offset: int = Parameter(
            default=0,
            ge=0,
            description="Number of results to skip",
        ),
    ) -> list[WorkflowInstanceDTO]:
        """List the instances of a graph, newest first.

        Args:
            graph_id: The automation identifier.
            automation_engine: Injected automation engine.
            status: Optional status filter.
            limit: Maximum number of results.
            offset: Pagination offset.

        Returns:
            List of workflow instance DTOs.
        """
        try:
            instance_status = InstanceStatus(status) if status else None
        except ValueError as e:
            raise ValidationException(detail=f"Unknown instance status '{status}'") from e

        instances, _ = await automation_engine.store.list_for_graph(
            graph_id,
            status=instance_status,
            limit=limit,
            offset=offset,
        )
        return [WorkflowInstanceDTO.from_instance(instance) for instance in instances]

    @get("/{graph_id:str}/graph")
    async def get_graph_visualization(
        self,
        graph_id: str,
        automation_registry: PlanRegistry,
        graph_format: str = Parameter(
            default="mermaid",
            description="Graph format: 'mermaid' or 'json'",
        ),
    ) -> GraphDTO:
        """Get a visual representation of the latest plan of a graph.

        Args:
            graph_id: The automation identifier.
            automation_registry: Injected plan registry.
            graph_format: Graph format ('mermaid' or 'json').

        Returns:
            Graph DTO with visualization data.

        Raises:
            NotFoundException: If the format is unknown.
        """
        plan = automation_registry.latest(graph_id)
        graph_dict = parse_plan_to_dict(plan)
        if graph_format == "mermaid":
            return GraphDTO(
                mermaid_source=generate_mermaid_graph(plan),
                nodes=graph_dict["nodes"],
                edges=graph_dict["edges"],
            )
        if graph_format == "json":
            return GraphDTO(mermaid_source="", nodes=graph_dict["nodes"], edges=graph_dict["edges"])
        raise NotFoundException(detail=f"Unknown format: {graph_format}")

    @post("/{graph_id:str}/events")
    async def emit_event(
        self,
        graph_id: str,
        data: EmitEventDTO,
        automation_registry: PlanRegistry,
        automation_intake: EventIntake,
    ) -> EventResultDTO:
        """Report an event to one automation.

        Args:
            graph_id: The automation identifier.
            data: The event.
            automation_registry: Injected plan registry.
            automation_intake: Injected event intake.

        Returns:
            The started instance, if the automation accepted the event.
        """
        if data.trigger_kind is None:
            kind = automation_registry.latest(graph_id).trigger.trigger_kind
        else:
            kind = _trigger_kind(data.trigger_kind)
        instance_id = await automation_intake.emit(kind, graph_id, data.event_context, data.dedupe_key)
        if instance_id is None:
            return EventResultDTO(accepted=False, instance_ids=[])
        return EventResultDTO(accepted=True, instance_ids=[instance_id])


class AutomationEventController(Controller):
    """API controller for trigger sources.

    Tags: Automation Events
    """

    path = "/events"
    tags: ClassVar[list[str]] = ["Automation Events"]

    @post("/")
    async def dispatch_event(self, data: DispatchEventDTO, automation_intake: EventIntake) -> EventResultDTO:
        """Report an event to every enabled automation listening for its kind.

        Args:
            data: The event.
            automation_intake: Injected event intake.

        Returns:
            The instances the event started.
        """
        kind = _trigger_kind(data.trigger_kind)
        started = await automation_intake.dispatch(kind, data.event_context, data.dedupe_key)
        return EventResultDTO(accepted=bool(started), instance_ids=started)


class WorkflowInstanceController(Controller):
    """API controller for workflow instances.

    Tags: Workflow Instances
    """

    path = "/instances"
    tags: ClassVar[list[str]] = ["Workflow Instances"]

    @get("/{instance_id:uuid}")
    async def get_instance(
        self,
        instance_id: UUID,
        automation_engine: AutomationEngine,
    ) -> WorkflowInstanceDetailDTO:
        """Get detailed workflow instance information.

        Returns the instance state together with its audit trail.

        Args:
            instance_id: The workflow instance ID.
            automation_engine: Injected automation engine.

        Returns:
            Detailed workflow instance DTO.

        Raises:
            InstanceNotFoundError: If the instance does not exist (mapped to 404).
        """
        instance = await automation_engine.store.load(instance_id)
        entries = []
        if isinstance(automation_engine.recorder, AuditReader):
            entries = await automation_engine.recorder.list_for_instance(instance_id)

        return WorkflowInstanceDetailDTO(
            id=instance.id,
            graph_id=instance.graph_id,
            plan_version=instance.plan_version,
            status=str(instance.status),
            current_node_id=instance.current_node_id,
            resume_at=instance.resume_at,
            created_at=instance.created_at,
            completed_at=instance.completed_at,
            event_context=instance.event_context,
            attempts=instance.attempts,
            audit_trail=[AuditEntryDTO.from_entry(entry) for entry in entries],
            error=instance.error,
        )

    @get("/{instance_id:uuid}/graph")
    async def get_instance_graph(
        self,
        instance_id: UUID,
        automation_engine: AutomationEngine,
    ) -> GraphDTO:
        """Get the instance's plan with execution state highlighting.

        Args:
            instance_id: The workflow instance ID.
            automation_engine: Injected automation engine.

        Returns:
            Graph DTO with state highlighting.
        """
        instance = await automation_engine.store.load(instance_id)
        plan = automation_engine.registry.get_plan(instance.graph_id, instance.plan_version)

        completed: list[str] = []
        failed: list[str] = []
        if isinstance(automation_engine.recorder, AuditReader):
            completed, failed = node_states_from_audit(
                await automation_engine.recorder.list_for_instance(instance_id)
            )

        graph_dict = parse_plan_to_dict(plan)
        return GraphDTO(
            mermaid_source=generate_mermaid_graph_with_state(
                plan,
                current_node=None if instance.is_terminal else instance.current_node_id,
                completed_nodes=completed,
                failed_nodes=failed,
            ),
            nodes=graph_dict["nodes"],
            edges=graph_dict["edges"],
        )

    @post("/{instance_id:uuid}/cancel")
    async def cancel_instance(
        self,
        instance_id: UUID,
        automation_engine: AutomationEngine,
        reason: str | None = Parameter(
            default=None,
            description="Reason for cancellation",
        ),
    ) -> WorkflowInstanceDTO:
        """Cancel a running or waiting workflow instance.

        Args:
            instance_id: The workflow instance ID.
            automation_engine: Injected automation engine.
            reason: Cancellation reason.

        Returns:
            Updated workflow instance DTO.

        Raises:
            InstanceNotFoundError: If the instance does not exist (mapped to 404).
            InstanceTerminalError: If the instance already finished (mapped to 409).
        """
        instance = await automation_engine.cancel(instance_id, reason=reason)
        return WorkflowInstanceDTO.from_instance(instance)
