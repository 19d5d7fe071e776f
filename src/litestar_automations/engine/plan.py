"""Compiled execution plans.

An :class:`ExecutionPlan` is the immutable, validated form of an
:class:`~litestar_automations.core.graph.AutomationGraph`. Successors are
resolved, condition branches are keyed by outcome, delays are normalized to
durations and action parameters are validated. Plans are produced only by
:func:`~litestar_automations.engine.compiler.compile_graph`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar_automations.core.types import NodeKind
from litestar_automations.exceptions import PlanContractError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import timedelta

    from litestar_automations.core.params import ActionParams
    from litestar_automations.core.predicates import Predicate
    from litestar_automations.core.triggers import TriggerFilters
    from litestar_automations.core.types import ActionKind, TriggerKind

__all__ = ["ExecutionPlan", "PlanNode"]


@dataclass(frozen=True)
class PlanNode:
    """A resolved node of an execution plan.

    Only the attributes relevant to ``kind`` are set.

    Attributes:
        id: Node identifier.
        kind: Node variant.
        label: Display label.
        next: Sole successor of a trigger, action or delay node.
        on_true: Successor of a condition whose predicate holds.
        on_false: Successor of a condition whose predicate does not hold.
        trigger_kind: Event kind of a trigger node.
        filters: Event filters of a trigger node.
        predicate: Predicate of a condition node.
        action_kind: Action of an action node.
        params: Validated parameters of an action node.
        delay: Normalized wait of a delay node.
    """

    id: str
    kind: NodeKind
    label: str = ""
    next: str | None = None
    on_true: str | None = None
    on_false: str | None = None
    trigger_kind: TriggerKind | None = None
    filters: TriggerFilters | None = None
    predicate: Predicate | None = None
    action_kind: ActionKind | None = None
    params: ActionParams | None = None
    delay: timedelta | None = None

    @property
    def successors(self) -> tuple[str, ...]:
        if self.kind == NodeKind.CONDITION:
            return tuple(target for target in (self.on_true, self.on_false) if target is not None)
        return (self.next,) if self.next is not None else ()


@dataclass(frozen=True)
class ExecutionPlan:
    """Immutable executable form of a validated graph.

    Attributes:
        graph_id: Identifier of the source graph.
        graph_version: Authored version of the source graph.
        plan_version: Content-addressed identifier,
            ``"<graph_id>@<version>:<digest>"``. Compiling the same saved
            graph twice yields the same value.
        name: Display name of the graph.
        enabled: Whether the graph accepts new events.
        trigger_id: Id of the entry node.
        nodes: Read-only mapping of node id to plan node.
        order: Node ids in topological order from the trigger.
        source: Canonical authored form of the graph the plan was compiled from.
    """

    graph_id: str
    graph_version: str
    plan_version: str
    name: str
    enabled: bool
    trigger_id: str
    nodes: Mapping[str, PlanNode]
    order: tuple[str, ...]
    source: Mapping[str, Any] = field(repr=False, compare=False)

    @property
    def trigger(self) -> PlanNode:
        return self.nodes[self.trigger_id]

    def node(self, node_id: str | None) -> PlanNode:
        """Look up a node an instance refers to.

        Args:
            node_id: The node id stored on the instance.

        Returns:
            The plan node.

        Raises:
            PlanContractError: If the plan has no such node. This indicates a
                bug or a corrupted store and is never recovered from.
        """
        if node_id is None or node_id not in self.nodes:
            raise PlanContractError(self.plan_version, node_id)
        return self.nodes[node_id]

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes
