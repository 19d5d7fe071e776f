"""Plan registry for managing compiled automation graphs.

This module provides a registry for storing and retrieving execution plans
with support for versioning. Every saved graph version stays resolvable, so
in-flight instances keep running against the plan they were created with
while new events bind to the latest one.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from litestar_automations.config import EngineConfig
from litestar_automations.engine.compiler import compile_graph
from litestar_automations.exceptions import GraphNotFoundError, PlanNotFoundError

if TYPE_CHECKING:
    from litestar_automations.core.graph import AutomationGraph
    from litestar_automations.engine.plan import ExecutionPlan

__all__ = ["PlanRegistry"]

logger = logging.getLogger(__name__)


class PlanRegistry:
    """Registry for storing and retrieving execution plans.

    The registry maintains a mapping of graph ids to plan versions and their
    plans, plus a pointer to the latest plan of each graph.

    Attributes:
        config: Engine configuration used when compiling graphs.
        _plans: Nested dict mapping graph id -> plan version -> ExecutionPlan.
        _latest: Map of graph ids to their latest plan version.
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        """Initialize an empty plan registry.

        Args:
            config: Engine configuration used when compiling graphs.
        """
        self.config = config or EngineConfig()
        self._plans: dict[str, dict[str, ExecutionPlan]] = {}
        self._latest: dict[str, str] = {}

    def register(self, graph: AutomationGraph) -> ExecutionPlan:
        """Compile a graph and make its plan the latest for the graph id.

        Registering an unchanged graph again returns the existing plan.

        Args:
            graph: The authored graph.

        Returns:
            The compiled plan.

        Raises:
            CompileError: If the graph is invalid. The registry is left unchanged.

        Example:
            >>> registry = PlanRegistry()
            >>> plan = registry.register(AutomationGraph.from_dict(data))
        """
        plan = compile_graph(graph, self.config)
        return self.add_plan(plan)

    def add_plan(self, plan: ExecutionPlan, *, latest: bool = True) -> ExecutionPlan:
        """Store an already compiled plan.

        Args:
            plan: The plan to store.
            latest: Whether new events should bind to this plan.

        Returns:
            The stored plan. If a plan with the same version already exists,
            that one is kept and returned.
        """
        versions = self._plans.setdefault(plan.graph_id, {})
        stored = versions.setdefault(plan.plan_version, plan)
        if latest:
            previous = self._latest.get(plan.graph_id)
            self._latest[plan.graph_id] = plan.plan_version
            if previous != plan.plan_version:
                logger.info("Registered plan %s (previous: %s)", plan.plan_version, previous)
        return stored

    def get_plan(self, graph_id: str, plan_version: str | None = None) -> ExecutionPlan:
        """Retrieve a plan by graph id and optional plan version.

        Args:
            graph_id: The graph id.
            plan_version: The plan version. If None, returns the latest plan.

        Returns:
            The requested plan.

        Raises:
            GraphNotFoundError: If no plan is registered for the graph.
            PlanNotFoundError: If the requested version is not registered.

        Example:
            >>> plan = registry.get_plan("welcome-flow")
            >>> bound = registry.get_plan(instance.graph_id, instance.plan_version)
        """
        versions = self._plans.get(graph_id)
        if not versions:
            raise GraphNotFoundError(graph_id)
        if plan_version is None:
            if graph_id not in self._latest:
                raise GraphNotFoundError(graph_id)
            plan_version = self._latest[graph_id]
        if plan_version not in versions:
            raise PlanNotFoundError(graph_id, plan_version)
        return versions[plan_version]

    def latest(self, graph_id: str) -> ExecutionPlan:
        return self.get_plan(graph_id)

    def list_latest(self) -> list[ExecutionPlan]:
        """List the latest plan of every registered graph."""
        return [self._plans[graph_id][version] for graph_id, version in self._latest.items()]

    def get_versions(self, graph_id: str) -> list[str]:
        """Get all plan versions for a graph, in registration order.

        Raises:
            GraphNotFoundError: If the graph is not registered.
        """
        if graph_id not in self._plans:
            raise GraphNotFoundError(graph_id)
        return list(self._plans[graph_id])

    def has_graph(self, graph_id: str) -> bool:
        return graph_id in self._latest

    def unregister(self, graph_id: str) -> None:
        """Remove a graph and all of its plan versions.

        Instances still bound to one of the removed plans can no longer run.
        """
        self._plans.pop(graph_id, None)
        self._latest.pop(graph_id, None)
