"""Graph compiler.

This module validates an authored :class:`AutomationGraph` and turns it into
an immutable :class:`ExecutionPlan`. Validation is exhaustive: every defect
is collected before a :class:`CompileError` is raised, and no plan is ever
produced for an invalid graph.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections import defaultdict
from datetime import timedelta
from types import MappingProxyType
from typing import TYPE_CHECKING

from litestar_automations.config import EngineConfig
from litestar_automations.core.graph import ActionNode, ConditionNode, DelayNode, TriggerNode
from litestar_automations.core.params import validate_params
from litestar_automations.core.types import BranchLabel, NodeKind
from litestar_automations.engine.plan import ExecutionPlan, PlanNode
from litestar_automations.exceptions import CompileError, CompileIssue

if TYPE_CHECKING:
    from litestar_automations.core.graph import AutomationGraph, Edge, Node
    from litestar_automations.core.params import ActionParams

__all__ = ["compile_graph", "plan_version_for"]

logger = logging.getLogger(__name__)

# DFS colours
_WHITE, _GREY, _BLACK = 0, 1, 2


def plan_version_for(graph: AutomationGraph, config: EngineConfig | None = None) -> str:
    """Derive the content-addressed plan version of a graph.

    The digest covers the canonical JSON of the graph and the default delay
    unit, so two compiles of the same saved graph are interchangeable.

    Example:
        >>> plan_version_for(graph)
        'welcome-flow@3:5f1c0e9a2b7d4c11'
    """
    config = config or EngineConfig()
    canonical = json.dumps(
        {"graph": graph.to_dict(), "default_delay_unit": str(config.default_delay_unit)},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]
    return f"{graph.graph_id}@{graph.version}:{digest}"


def compile_graph(graph: AutomationGraph, config: EngineConfig | None = None) -> ExecutionPlan:
    """Validate a graph and compile it into an execution plan.

    Args:
        graph: The authored graph.
        config: Engine configuration; supplies the default delay unit.

    Returns:
        The immutable execution plan.

    Raises:
        CompileError: Carrying every structural defect found.

    Example:
        >>> plan = compile_graph(AutomationGraph.from_dict(data))
        >>> plan.trigger.next
        'check-vip'
    """
    config = config or EngineConfig()
    issues: list[CompileIssue] = []

    nodes: dict[str, Node] = {}
    for node in graph.nodes:
        if node.id in nodes:
            msg = f"Node id '{node.id}' is used more than once"
            issues.append(CompileIssue("duplicate_node_id", msg, node.id))
            continue
        nodes[node.id] = node

    triggers = [node for node in nodes.values() if isinstance(node, TriggerNode)]
    if not triggers:
        issues.append(CompileIssue("missing_trigger", "Graph has no trigger node"))
    for extra in triggers[1:]:
        issues.append(CompileIssue("multiple_triggers", f"Graph has more than one trigger: '{extra.id}'", extra.id))
    trigger = triggers[0] if triggers else None

    outgoing: dict[str, list[Edge]] = defaultdict(list)
    for edge in graph.edges:
        pair = (edge.source, edge.target)
        dangling = [end for end in pair if end not in nodes]
        if dangling:
            for end in dangling:
                msg = f"Edge {edge.source} -> {edge.target} references unknown node '{end}'"
                issues.append(CompileIssue("unknown_node", msg, edge=pair))
            continue
        source = nodes[edge.source]
        if isinstance(nodes[edge.target], TriggerNode):
            msg = f"Trigger '{edge.target}' cannot have incoming edges"
            issues.append(CompileIssue("trigger_has_incoming", msg, edge.target, pair))
        if isinstance(source, ConditionNode):
            if edge.branch is None:
                msg = f"Edge {edge.source} -> {edge.target} needs a true/false label"
                issues.append(CompileIssue("missing_branch_label", msg, edge.source, pair))
                continue
        elif edge.branch is not None:
            issues.append(
                CompileIssue(
                    "unexpected_branch_label",
                    f"Edge {edge.source} -> {edge.target} is labeled but '{edge.source}' is not a condition",
                    edge.source,
                    pair,
                )
            )
        outgoing[edge.source].append(edge)

    for node in nodes.values():
        issues.extend(_check_successors(node, outgoing[node.id]))
        issues.extend(_check_payload(node))

    if trigger is not None:
        reachable = _reachable_from(trigger.id, outgoing)
        for node in nodes.values():
            if node.id not in reachable and not isinstance(node, TriggerNode):
                issues.append(CompileIssue("unreachable", f"Node '{node.id}' is unreachable from the trigger", node.id))

    issues.extend(_find_cycles(list(nodes), outgoing))

    if issues or trigger is None:
        logger.debug("Graph %s failed to compile with %d issue(s)", graph.graph_id, len(issues))
        raise CompileError(graph.graph_id, issues)

    plan_nodes = {node.id: _plan_node(node, outgoing[node.id], config) for node in nodes.values()}
    plan = ExecutionPlan(
        graph_id=graph.graph_id,
        graph_version=graph.version,
        plan_version=plan_version_for(graph, config),
        name=graph.name,
        enabled=graph.enabled,
        trigger_id=trigger.id,
        nodes=MappingProxyType(plan_nodes),
        order=_topological_order(trigger.id, plan_nodes),
        source=MappingProxyType(graph.to_dict()),
    )
    logger.debug("Compiled graph %s into plan %s", graph.graph_id, plan.plan_version)
    return plan


def _check_successors(node: Node, edges: list[Edge]) -> list[CompileIssue]:
    issues: list[CompileIssue] = []
    if isinstance(node, ConditionNode):
        for label in BranchLabel:
            count = sum(1 for edge in edges if edge.branch == label)
            if count == 0:
                msg = f"Condition '{node.id}' has no '{label}' edge"
                issues.append(CompileIssue(f"missing_{label}_branch", msg, node.id))
            elif count > 1:
                msg = f"Condition '{node.id}' has {count} '{label}' edges"
                issues.append(CompileIssue(f"duplicate_{label}_branch", msg, node.id))
        return issues

    if len(edges) > 1:
        issues.append(
            CompileIssue(
                "too_many_successors",
                f"{node.node_kind.capitalize()} '{node.id}' has {len(edges)} outgoing edges, at most one is allowed",
                node.id,
            )
        )
    if isinstance(node, DelayNode) and not edges:
        msg = f"Delay '{node.id}' must have exactly one outgoing edge"
        issues.append(CompileIssue("delay_without_successor", msg, node.id))
    return issues


def _check_payload(node: Node) -> list[CompileIssue]:
    if isinstance(node, ActionNode):
        try:
            validate_params(node.kind, node.params)
        except ValueError as e:
            return [CompileIssue("invalid_params", f"Action '{node.id}': {e}", node.id)]
    if isinstance(node, DelayNode) and node.amount < 0:
        return [CompileIssue("negative_delay", f"Delay '{node.id}' has a negative amount ({node.amount})", node.id)]
    return []


def _reachable_from(start: str, outgoing: dict[str, list[Edge]]) -> set[str]:
    reachable: set[str] = set()
    to_visit = [start]
    while to_visit:
        current = to_visit.pop()
        if current in reachable:
            continue
        reachable.add(current)
        to_visit.extend(edge.target for edge in outgoing.get(current, []) if edge.target not in reachable)
    return reachable


def _find_cycles(node_ids: list[str], outgoing: dict[str, list[Edge]]) -> list[CompileIssue]:
    """Report one issue per back-edge found by an iterative colouring DFS."""
    colour = dict.fromkeys(node_ids, _WHITE)
    issues: list[CompileIssue] = []

    for root in node_ids:
        if colour[root] != _WHITE:
            continue
        colour[root] = _GREY
        stack = [(root, iter(outgoing.get(root, [])))]
        while stack:
            current, edges = stack[-1]
            edge = next(edges, None)
            if edge is None:
                colour[current] = _BLACK
                stack.pop()
                continue
            state = colour.get(edge.target, _BLACK)
            if state == _GREY:
                issues.append(
                    CompileIssue(
                        "cycle",
                        f"Edge {edge.source} -> {edge.target} closes a loop; looping definitions are rejected",
                        edge.source,
                        (edge.source, edge.target),
                    )
                )
            elif state == _WHITE:
                colour[edge.target] = _GREY
                stack.append((edge.target, iter(outgoing.get(edge.target, []))))
    return issues


def _plan_node(node: Node, edges: list[Edge], config: EngineConfig) -> PlanNode:
    successor = edges[0].target if edges else None

    if isinstance(node, TriggerNode):
        return PlanNode(
            node.id, NodeKind.TRIGGER, node.label, next=successor, trigger_kind=node.kind, filters=node.filters
        )

    if isinstance(node, ConditionNode):
        branches = {edge.branch: edge.target for edge in edges}
        return PlanNode(
            node.id,
            NodeKind.CONDITION,
            node.label,
            on_true=branches[BranchLabel.TRUE],
            on_false=branches[BranchLabel.FALSE],
            predicate=node.predicate,
        )

    if isinstance(node, ActionNode):
        params: ActionParams = validate_params(node.kind, node.params)
        return PlanNode(node.id, NodeKind.ACTION, node.label, next=successor, action_kind=node.kind, params=params)

    unit = node.unit or config.default_delay_unit
    return PlanNode(
        node.id, NodeKind.DELAY, node.label, next=successor, delay=timedelta(seconds=node.amount * unit.seconds)
    )


def _topological_order(trigger_id: str, nodes: dict[str, PlanNode]) -> tuple[str, ...]:
    visited: set[str] = set()
    postorder: list[str] = []
    stack = [(trigger_id, iter(nodes[trigger_id].successors))]
    visited.add(trigger_id)
    while stack:
        current, successors = stack[-1]
        target = next(successors, None)
        if target is None:
            postorder.append(current)
            stack.pop()
        elif target not in visited:
            visited.add(target)
            stack.append((target, iter(nodes[target].successors)))
    return tuple(reversed(postorder))
