"""Exception hierarchy for litestar-automations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

__all__ = (
    "ActionError",
    "AutomationsError",
    "CompileError",
    "CompileIssue",
    "ConfigurationError",
    "GraphNotFoundError",
    "InstanceNotFoundError",
    "InstanceTerminalError",
    "PermanentActionError",
    "PlanContractError",
    "PlanNotFoundError",
    "StoreConflictError",
)


class AutomationsError(Exception):
    """Base exception for all litestar-automations errors.

    All exceptions raised by litestar-automations inherit from this class, so
    callers can catch every automation-related error with a single except clause.
    """


@dataclass(frozen=True)
class CompileIssue:
    """A single structural defect found while compiling a graph.

    Attributes:
        code: Stable machine-readable identifier of the violated invariant.
        message: Human-readable description.
        node_id: The offending node, if the issue is attached to one.
        edge: The offending edge as ``(source, target)``, if any.
    """

    code: str
    message: str
    node_id: str | None = None
    edge: tuple[str, str] | None = None

    def __str__(self) -> str:
        return self.message


class CompileError(AutomationsError):
    """Raised when an authored graph cannot be compiled into a plan.

    The error carries every issue found, not only the first one, so an editor
    can surface all of them at once. It is never retried.

    Attributes:
        graph_id: Identifier of the graph that failed to compile.
        issues: Every structural defect found.
    """

    def __init__(self, graph_id: str, issues: list[CompileIssue]) -> None:
        """Initialize the exception with the compile issues.

        Args:
            graph_id: Identifier of the graph that failed to compile.
            issues: The structural defects found.
        """
        self.graph_id = graph_id
        self.issues = issues
        super().__init__(f"Graph '{graph_id}' failed to compile: {'; '.join(str(i) for i in issues)}")

    @property
    def codes(self) -> list[str]:
        """Codes of all issues, in discovery order."""
        return [issue.code for issue in self.issues]


class GraphNotFoundError(AutomationsError):
    """Raised when no plan is registered for a graph id.

    Attributes:
        graph_id: The graph that was not found.
    """

    def __init__(self, graph_id: str) -> None:
        """Initialize the exception.

        Args:
            graph_id: The graph that was not found.
        """
        self.graph_id = graph_id
        super().__init__(f"Automation graph '{graph_id}' not found")


class PlanNotFoundError(AutomationsError):
    """Raised when a specific plan version is not registered.

    Attributes:
        graph_id: The graph the plan belongs to.
        plan_version: The requested plan version.
    """

    def __init__(self, graph_id: str, plan_version: str) -> None:
        """Initialize the exception.

        Args:
            graph_id: The graph the plan belongs to.
            plan_version: The requested plan version.
        """
        self.graph_id = graph_id
        self.plan_version = plan_version
        super().__init__(f"Plan '{plan_version}' not found for graph '{graph_id}'")


class InstanceNotFoundError(AutomationsError):
    """Raised when a workflow instance is not found in the instance store.

    Attributes:
        instance_id: The ID of the workflow instance that was not found.
    """

    def __init__(self, instance_id: str | UUID) -> None:
        """Initialize the exception with instance details.

        Args:
            instance_id: The ID of the workflow instance that was not found.
        """
        self.instance_id = instance_id
        super().__init__(f"Workflow instance '{instance_id}' not found")


class InstanceTerminalError(AutomationsError):
    """Raised when trying to change an instance that reached a terminal status.

    Attributes:
        instance_id: The ID of the workflow instance.
        status: The terminal status of the instance.
    """

    def __init__(self, instance_id: str | UUID, status: str) -> None:
        """Initialize the exception with instance state details.

        Args:
            instance_id: The ID of the workflow instance.
            status: The terminal status of the instance.
        """
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Workflow instance '{instance_id}' is already {status}")


class StoreConflictError(AutomationsError):
    """Raised when an optimistic concurrency check fails on save.

    The step that produced the rejected state must be discarded and the
    instance reloaded; a conflicting write is never silently overwritten.

    Attributes:
        instance_id: The ID of the instance.
        expected_version: The version the caller based its write on.
        actual_version: The version found in the store, if known.
    """

    def __init__(
        self,
        instance_id: str | UUID,
        expected_version: int,
        actual_version: int | None = None,
    ) -> None:
        """Initialize the exception with version details.

        Args:
            instance_id: The ID of the instance.
            expected_version: The version the caller based its write on.
            actual_version: The version found in the store, if known.
        """
        self.instance_id = instance_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        msg = f"Conflicting write on instance '{instance_id}': expected version {expected_version}"
        if actual_version is not None:
            msg += f", found {actual_version}"
        super().__init__(msg)


class PlanContractError(AutomationsError):
    """Raised when an instance references a node absent from its bound plan.

    This can only happen through a bug or a corrupted store, because compiled
    plans are validated. It is never reduced to an instance status.

    Attributes:
        plan_version: The bound plan version.
        node_id: The node id that could not be resolved.
    """

    def __init__(self, plan_version: str, node_id: str | None) -> None:
        """Initialize the exception.

        Args:
            plan_version: The bound plan version.
            node_id: The node id that could not be resolved.
        """
        self.plan_version = plan_version
        self.node_id = node_id
        super().__init__(f"Node '{node_id}' is not part of plan '{plan_version}'")


class ConfigurationError(AutomationsError):
    """Raised when engine configuration options are invalid."""


class ActionError(AutomationsError):
    """Raised by action handlers to report a failed side effect.

    A plain ``ActionError`` (or any other exception) is treated as transient
    and retried with backoff.
    """


class PermanentActionError(ActionError):
    """Raised by action handlers when retrying cannot help (e.g. invalid recipient)."""
