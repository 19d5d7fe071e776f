"""Graph visualization utilities for automations.

This module provides utilities for generating visual representations of
execution plans, primarily using MermaidJS format.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from litestar_automations.core.types import AuditOutcome, NodeKind

if TYPE_CHECKING:
    from collections.abc import Iterable

    from litestar_automations.core.models import AuditEntry
    from litestar_automations.engine.plan import ExecutionPlan, PlanNode

__all__ = [
    "generate_mermaid_graph",
    "generate_mermaid_graph_with_state",
    "node_states_from_audit",
    "parse_plan_to_dict",
]

_SHAPES: dict[NodeKind, tuple[str, str]] = {
    NodeKind.TRIGGER: ("([", "])"),
    NodeKind.CONDITION: ("{", "}"),
    NodeKind.ACTION: ("[", "]"),
    NodeKind.DELAY: ("[[", "]]"),
}

_COMPLETED_OUTCOMES = frozenset(
    {
        AuditOutcome.TRIGGERED,
        AuditOutcome.CONDITION_TRUE,
        AuditOutcome.CONDITION_FALSE,
        AuditOutcome.ACTION_SUCCEEDED,
        AuditOutcome.DELAYED,
    }
)
_FAILED_OUTCOMES = frozenset({AuditOutcome.ACTION_FAILED, AuditOutcome.FAILED})

_UNSAFE_ID = re.compile(r"[^A-Za-z0-9_]")


def _mermaid_id(node_id: str) -> str:
    return _UNSAFE_ID.sub("_", node_id)


def _node_label(node: PlanNode) -> str:
    if node.label:
        text = node.label
    elif node.kind == NodeKind.TRIGGER:
        text = f"When {node.trigger_kind}"
    elif node.kind == NodeKind.CONDITION:
        text = node.predicate.describe() if node.predicate is not None else node.id
    elif node.kind == NodeKind.ACTION:
        text = str(node.action_kind).replace("_", " ").title()
    else:
        text = f"Wait {node.delay}"
    # Quotes break mermaid syntax
    return text.replace('"', "").replace("'", "")


def generate_mermaid_graph(plan: ExecutionPlan) -> str:
    """Generate a MermaidJS graph representation of an execution plan.

    Node shapes follow the node kind: stadium for the trigger, rhombus for
    conditions, rectangle for actions and subroutine for delays. Condition
    edges are labelled with their branch.

    Args:
        plan: The plan to visualize.

    Returns:
        A MermaidJS flowchart definition as a string.

    Example:
        >>> print(generate_mermaid_graph(plan))
        graph TD
            start(["When message_received"])
            vip{"tags contains vip"}
            welcome["Send Whatsapp"]
            start --> vip
            vip -->|true| welcome
    """
    lines = ["graph TD"]

    for node_id in plan.order:
        node = plan.nodes[node_id]
        start, end = _SHAPES[node.kind]
        lines.append(f'    {_mermaid_id(node_id)}{start}"{_node_label(node)}"{end}')

    for node_id in plan.order:
        node = plan.nodes[node_id]
        source = _mermaid_id(node_id)
        if node.kind == NodeKind.CONDITION:
            for branch, target in (("true", node.on_true), ("false", node.on_false)):
                if target is not None:
                    lines.append(f"    {source} -->|{branch}| {_mermaid_id(target)}")
        elif node.next is not None:
            lines.append(f"    {source} --> {_mermaid_id(node.next)}")

    return "\n".join(lines)


def generate_mermaid_graph_with_state(
    plan: ExecutionPlan,
    current_node: str | None = None,
    completed_nodes: Iterable[str] | None = None,
    failed_nodes: Iterable[str] | None = None,
) -> str:
    """Generate a MermaidJS graph with execution state highlighting.

    Args:
        plan: The plan to visualize.
        current_node: Id of the node the instance waits at.
        completed_nodes: Ids of the nodes the instance passed.
        failed_nodes: Ids of the nodes the instance failed at.

    Returns:
        A MermaidJS flowchart definition with state styling.
    """
    lines = [generate_mermaid_graph(plan)]

    for node_id in completed_nodes or ():
        lines.append(f"    style {_mermaid_id(node_id)} fill:#90EE90,stroke:#006400,stroke-width:2px")

    for node_id in failed_nodes or ():
        lines.append(f"    style {_mermaid_id(node_id)} fill:#FFB6C1,stroke:#8B0000,stroke-width:2px")

    if current_node:
        lines.append(f"    style {_mermaid_id(current_node)} fill:#FFD700,stroke:#FFA500,stroke-width:3px")

    return "\n".join(lines)


def node_states_from_audit(entries: Iterable[AuditEntry]) -> tuple[list[str], list[str]]:
    """Split the nodes of an audit trail into completed and failed ones.

    A node that failed and later succeeded on retry counts as completed.

    Returns:
        Tuple of (completed node ids, failed node ids), in first-visit order.
    """
    states: dict[str, bool] = {}
    for entry in entries:
        if entry.node_id is None:
            continue
        if entry.outcome in _COMPLETED_OUTCOMES:
            states[entry.node_id] = True
        elif entry.outcome in _FAILED_OUTCOMES:
            states[entry.node_id] = False
    completed = [node_id for node_id, ok in states.items() if ok]
    failed = [node_id for node_id, ok in states.items() if not ok]
    return completed, failed


def parse_plan_to_dict(plan: ExecutionPlan) -> dict[str, Any]:
    """Parse an execution plan into a dictionary representation.

    Args:
        plan: The plan to parse.

    Returns:
        A dictionary containing nodes and edges lists.

    Example:
        >>> graph_dict = parse_plan_to_dict(plan)
        >>> graph_dict["nodes"][0]
        {'id': 'start', 'label': 'When message_received', 'type': 'trigger', 'is_initial': True, 'is_terminal': False}
    """
    nodes = [
        {
            "id": node_id,
            "label": _node_label(plan.nodes[node_id]),
            "type": str(plan.nodes[node_id].kind),
            "is_initial": node_id == plan.trigger_id,
            "is_terminal": not plan.nodes[node_id].successors,
        }
        for node_id in plan.order
    ]

    edges: list[dict[str, Any]] = []
    for node_id in plan.order:
        node = plan.nodes[node_id]
        if node.kind == NodeKind.CONDITION:
            edges.extend(
                {"source": node_id, "target": target, "branch": branch}
                for branch, target in (("true", node.on_true), ("false", node.on_false))
                if target is not None
            )
        elif node.next is not None:
            edges.append({"source": node_id, "target": node.next})

    return {"nodes": nodes, "edges": edges}
