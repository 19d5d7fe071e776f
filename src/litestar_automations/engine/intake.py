"""Event intake.

Trigger sources report events here. Each accepted event creates one workflow
instance at the trigger node of the graph's latest plan and puts it in the
scheduler's ready set.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from litestar_automations.core.models import WorkflowInstance
from litestar_automations.core.types import TriggerKind

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from uuid import UUID

    from litestar_automations.core.protocols import InstanceStore
    from litestar_automations.engine.registry import PlanRegistry

__all__ = ["EventIntake"]

logger = logging.getLogger(__name__)


class EventIntake:
    """Creates workflow instances from triggering events.

    Attributes:
        registry: Registry providing the latest plan of each graph.
        store: The instance store new instances are created in.
    """

    def __init__(
        self,
        registry: PlanRegistry,
        store: InstanceStore,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def emit(
        self,
        trigger_kind: TriggerKind | str,
        graph_id: str,
        event_context: Mapping[str, Any],
        dedupe_key: str | None = None,
    ) -> UUID | None:
        """Start an instance of one graph for an event.

        Idempotent per ``(graph_id, dedupe_key)``: redelivering an event with
        the same key returns the id of the instance created the first time.

        Args:
            trigger_kind: Kind of the event.
            graph_id: The graph to start.
            event_context: Data of the event; becomes the instance's context.
            dedupe_key: Upstream identifier of the event, if the source has one.

        Returns:
            The instance id, or ``None`` when the graph is disabled, its
            trigger listens for another kind of event, or the trigger's
            filters reject the event.

        Raises:
            GraphNotFoundError: If the graph is not registered.
            ValueError: If ``trigger_kind`` is not a known trigger kind.

        Example:
            >>> instance_id = await intake.emit(
            ...     "message_received", "welcome-flow", {"message": "hi", "session_id": "s1"}, dedupe_key="msg-42"
            ... )
        """
        kind = TriggerKind(trigger_kind)
        plan = self.registry.latest(graph_id)
        trigger = plan.trigger

        if not plan.enabled:
            logger.debug("Graph %s is disabled, ignoring %s event", graph_id, kind)
            return None
        if trigger.trigger_kind != kind:
            logger.debug("Graph %s listens for %s, ignoring %s event", graph_id, trigger.trigger_kind, kind)
            return None
        if trigger.filters is not None and not trigger.filters.matches(kind, event_context):
            logger.debug("Event rejected by the trigger filters of graph %s", graph_id)
            return None

        now = self._clock()
        instance = WorkflowInstance(
            graph_id=graph_id,
            plan_version=plan.plan_version,
            current_node_id=trigger.id,
            event_context=dict(event_context),
            dedupe_key=dedupe_key,
            created_at=now,
            updated_at=now,
        )
        stored, created = await self.store.create(instance)
        if created:
            logger.info("Instance %s created for graph %s (plan %s)", stored.id, graph_id, plan.plan_version)
        else:
            logger.info(
                "Duplicate %s event %r for graph %s, reusing instance %s", kind, dedupe_key, graph_id, stored.id
            )
        return stored.id

    async def dispatch(
        self,
        trigger_kind: TriggerKind | str,
        event_context: Mapping[str, Any],
        dedupe_key: str | None = None,
    ) -> list[UUID]:
        """Fan an event out to every enabled graph listening for its kind.

        Args:
            trigger_kind: Kind of the event.
            event_context: Data of the event.
            dedupe_key: Upstream identifier of the event; deduplication is per graph.

        Returns:
            Ids of the instances created (or found, on redelivery).
        """
        kind = TriggerKind(trigger_kind)
        started: list[UUID] = []
        for plan in self.registry.list_latest():
            if not plan.enabled or plan.trigger.trigger_kind != kind:
                continue
            instance_id = await self.emit(kind, plan.graph_id, event_context, dedupe_key)
            if instance_id is not None:
                started.append(instance_id)
        return started
