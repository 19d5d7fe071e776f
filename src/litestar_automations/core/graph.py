"""Authored automation graphs.

This module provides the data structures users author in the graph editor:
typed nodes, directed edges, and the graph that holds them. An
:class:`AutomationGraph` may be invalid while it is being edited; it is never
executed directly but compiled into an
:class:`~litestar_automations.engine.plan.ExecutionPlan` first.

Graphs are exchanged as JSON in the editor's shape::

    {
        "id": "welcome-flow",
        "name": "Welcome",
        "version": 3,
        "enabled": true,
        "nodes": [
            {"id": "t", "type": "trigger", "data": {"trigger_type": "manual"}},
            {"id": "c", "type": "condition", "data": {"condition_field": "has_tag", "condition_value": "vip"}},
            {"id": "a", "type": "action", "data": {"action_type": "send_whatsapp", "template": "welcome"}},
            {"id": "d", "type": "delay", "data": {"delay_type": "days", "delay_value": 1}}
        ],
        "edges": [
            {"source": "t", "target": "c"},
            {"source": "c", "target": "a", "sourceHandle": "true"},
            {"source": "c", "target": "d", "sourceHandle": "false"}
        ]
    }
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, TypeAlias

from litestar_automations.core.predicates import Predicate, parse_predicate
from litestar_automations.core.triggers import TriggerFilters
from litestar_automations.core.types import ActionKind, BranchLabel, DelayUnit, NodeKind, TriggerKind
from litestar_automations.exceptions import CompileError, CompileIssue

__all__ = [
    "ActionNode",
    "AutomationGraph",
    "ConditionNode",
    "DelayNode",
    "Edge",
    "Node",
    "TriggerNode",
]

# Keys the editor stores in node data that are not action parameters.
_PRESENTATION_KEYS = frozenset({"action_type", "actionType", "nodeType", "label", "kind", "description"})

_TRIGGER_ALIASES = {"stage_change": TriggerKind.LEAD_STAGE_CHANGED}


@dataclass(frozen=True)
class TriggerNode:
    """Entry point of a graph.

    Attributes:
        id: Node identifier, unique within the graph.
        kind: The event kind that starts the automation.
        filters: Constraints on the events the trigger accepts.
        label: Display label.
    """

    node_kind: ClassVar[NodeKind] = NodeKind.TRIGGER

    id: str
    kind: TriggerKind
    filters: TriggerFilters = field(default_factory=TriggerFilters)
    label: str = ""

    def data(self) -> dict[str, Any]:
        return {"trigger_type": str(self.kind), **self.filters.to_dict()}


@dataclass(frozen=True)
class ConditionNode:
    """Binary branch evaluated against the event context.

    Attributes:
        id: Node identifier, unique within the graph.
        predicate: The predicate deciding between the ``true`` and ``false`` edges.
        label: Display label.
    """

    node_kind: ClassVar[NodeKind] = NodeKind.CONDITION

    id: str
    predicate: Predicate
    label: str = ""

    def data(self) -> dict[str, Any]:
        return {"predicate": self.predicate.to_dict()}


@dataclass(frozen=True)
class ActionNode:
    """Side-effecting step delegated to the action invoker.

    Attributes:
        id: Node identifier, unique within the graph.
        kind: The action to perform.
        params: Raw parameters; validated against the kind's schema at compile time.
        label: Display label.
    """

    node_kind: ClassVar[NodeKind] = NodeKind.ACTION

    id: str
    kind: ActionKind
    params: dict[str, Any] = field(default_factory=dict)
    label: str = ""

    def data(self) -> dict[str, Any]:
        return {"action_type": str(self.kind), "params": dict(self.params)}


@dataclass(frozen=True)
class DelayNode:
    """Timed suspension of the instance.

    Attributes:
        id: Node identifier, unique within the graph.
        amount: Number of units to wait.
        unit: Unit of ``amount``; ``None`` falls back to the engine's default unit.
        label: Display label.
    """

    node_kind: ClassVar[NodeKind] = NodeKind.DELAY

    id: str
    amount: int
    unit: DelayUnit | None = None
    label: str = ""

    def data(self) -> dict[str, Any]:
        data: dict[str, Any] = {"amount": self.amount}
        if self.unit is not None:
            data["unit"] = str(self.unit)
        return data


Node: TypeAlias = TriggerNode | ConditionNode | ActionNode | DelayNode
"""Union of the four node variants."""


@dataclass(frozen=True)
class Edge:
    """Directed connection between two nodes.

    Attributes:
        source: Id of the node the edge leaves.
        target: Id of the node the edge enters.
        branch: ``TRUE``/``FALSE`` for edges leaving a condition, otherwise ``None``.

    Example:
        >>> Edge("check-vip", "send-welcome", BranchLabel.TRUE)
        Edge(source='check-vip', target='send-welcome', branch=<BranchLabel.TRUE: 'true'>)
    """

    source: str
    target: str
    branch: BranchLabel | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"source": self.source, "target": self.target}
        if self.branch is not None:
            data["branch"] = str(self.branch)
        return data


@dataclass
class AutomationGraph:
    """An authored automation: nodes, edges and metadata.

    Attributes:
        graph_id: Stable identifier of the automation.
        name: Display name.
        version: Authored version. Each save of the graph bumps it.
        nodes: The graph's nodes, in authoring order.
        edges: The graph's edges.
        enabled: Disabled graphs ignore incoming events.
        description: Free-form description.
    """

    graph_id: str
    name: str
    version: str
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    enabled: bool = True
    description: str = ""

    @property
    def trigger(self) -> TriggerNode | None:
        """The first trigger node, if any."""
        return next((node for node in self.nodes if isinstance(node, TriggerNode)), None)

    def get_node(self, node_id: str) -> Node | None:
        return next((node for node in self.nodes if node.id == node_id), None)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the canonical authored JSON shape.

        The output of ``to_dict`` parses back to an equal graph with
        :meth:`from_dict`, and is what plan versions are hashed from.
        """
        return {
            "id": self.graph_id,
            "name": self.name,
            "version": self.version,
            "enabled": self.enabled,
            "description": self.description,
            "nodes": [
                {"id": node.id, "type": str(node.node_kind), "label": node.label, "data": node.data()}
                for node in self.nodes
            ],
            "edges": [edge.to_dict() for edge in self.edges],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AutomationGraph:
        """Parse a graph from its authored JSON shape.

        Every node and edge is parsed even after a failure so that all
        problems are reported together.

        Args:
            data: The authored graph.

        Returns:
            The parsed graph.

        Raises:
            CompileError: If nodes or edges cannot be parsed.
        """
        graph_id = str(data.get("id") or data.get("graph_id") or "")
        issues: list[CompileIssue] = []
        if not graph_id:
            issues.append(CompileIssue("missing_graph_id", "Graph has no id"))

        nodes: list[Node] = []
        for position, raw in enumerate(data.get("nodes") or []):
            node_id = str(raw.get("id") or "")
            if not node_id:
                issues.append(CompileIssue("missing_node_id", f"Node #{position} has no id"))
                continue
            try:
                nodes.append(_parse_node(node_id, raw))
            except (KeyError, TypeError, ValueError) as e:
                issues.append(CompileIssue("invalid_node", f"Node '{node_id}': {e}", node_id=node_id))

        edges: list[Edge] = []
        for raw in data.get("edges") or []:
            source = str(raw.get("source") or raw.get("source_node_id") or "")
            target = str(raw.get("target") or raw.get("target_node_id") or "")
            if not source or not target:
                issues.append(CompileIssue("invalid_edge", f"Edge {raw!r} lacks a source or target"))
                continue
            try:
                edges.append(Edge(source, target, _parse_branch(raw)))
            except ValueError as e:
                issues.append(CompileIssue("invalid_branch_label", str(e), edge=(source, target)))

        enabled = data.get("enabled", data.get("is_active"))
        if enabled is None:
            enabled = True
        elif not isinstance(enabled, bool):
            issues.append(CompileIssue("invalid_enabled", f"enabled must be true or false, got {enabled!r}"))

        if issues:
            raise CompileError(graph_id or "<unnamed>", issues)

        return cls(
            graph_id=graph_id,
            name=str(data.get("name") or graph_id),
            version=str(data.get("version") or "1"),
            nodes=nodes,
            edges=edges,
            enabled=enabled,
            description=str(data.get("description") or ""),
        )


def _parse_node(node_id: str, raw: Mapping[str, Any]) -> Node:
    node_type = raw.get("type") or raw.get("node_type")
    data: Mapping[str, Any] = raw.get("data") or raw.get("config") or {}
    label = str(raw.get("label") or data.get("label") or "")

    if node_type == NodeKind.TRIGGER:
        kind_value = data.get("trigger_type") or data.get("kind") or TriggerKind.MANUAL
        kind = _TRIGGER_ALIASES.get(kind_value) or TriggerKind(kind_value)
        return TriggerNode(node_id, kind, TriggerFilters.from_dict(data), label)

    if node_type == NodeKind.CONDITION:
        return ConditionNode(node_id, parse_predicate(data), label)

    if node_type == NodeKind.ACTION:
        kind = ActionKind(data.get("action_type") or data.get("actionType") or raw.get("action_type") or data["kind"])
        if isinstance(data.get("params"), Mapping):
            params = dict(data["params"])
        else:
            params = {key: value for key, value in data.items() if key not in _PRESENTATION_KEYS}
        return ActionNode(node_id, kind, params, label)

    if node_type == NodeKind.DELAY:
        return _parse_delay(node_id, data, label)

    msg = f"unknown node type {node_type!r}"
    raise ValueError(msg)


def _parse_delay(node_id: str, data: Mapping[str, Any], label: str) -> DelayNode:
    if "amount" in data or "delay_value" in data:
        amount = int(data.get("amount", data.get("delay_value")) or 0)
        unit_value = data.get("unit") or data.get("delay_type")
        return DelayNode(node_id, amount, DelayUnit(unit_value) if unit_value else None, label)

    # Older editor versions stored separate minute/hour/day fields.
    minutes = int(data.get("delay_minutes") or data.get("minutes") or 0)
    hours = int(data.get("delay_hours") or data.get("hours") or 0)
    days = int(data.get("delay_days") or data.get("days") or 0)
    return DelayNode(node_id, minutes + hours * 60 + days * 24 * 60, DelayUnit.MINUTES, label)


def _parse_branch(raw: Mapping[str, Any]) -> BranchLabel | None:
    label = raw.get("branch") or raw.get("condition_branch") or raw.get("sourceHandle") or raw.get("source_handle")
    if label in (None, "", "default"):
        return None
    try:
        return BranchLabel(str(label).lower())
    except ValueError:
        msg = f"Edge {raw.get('source')} -> {raw.get('target')} has unknown branch label {label!r}"
        raise ValueError(msg) from None
