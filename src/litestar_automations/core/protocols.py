"""Core protocols for litestar-automations.

This module defines the Protocol-based interfaces of the engine's external
collaborators: the instance store, the audit recorder and the action invoker.
Using Protocol allows duck typing while maintaining type safety, so any
backend that offers these methods can be plugged in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime
    from uuid import UUID

    from litestar_automations.core.models import AuditEntry, WorkflowInstance
    from litestar_automations.core.types import ActionKind, InstanceStatus


__all__ = [
    "ActionFailure",
    "ActionInvoker",
    "ActionResult",
    "ActionSuccess",
    "AuditReader",
    "AuditRecorder",
    "InstanceStore",
]


@dataclass(frozen=True)
class ActionSuccess:
    """Result of an action that performed its side effect.

    Attributes:
        result: Optional data returned by the handler, kept in the audit trail.
    """

    result: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ActionFailure:
    """Result of an action that did not perform its side effect.

    Attributes:
        reason: Why the action failed.
        permanent: True when retrying cannot help (e.g. an invalid recipient).
    """

    reason: str
    permanent: bool = False


ActionResult = ActionSuccess | ActionFailure


@runtime_checkable
class InstanceStore(Protocol):
    """Durable persistence of workflow instances with atomic conditional updates.

    Every mutation is a single-row compare-and-swap keyed by instance id.
    Each successful write increments ``version``.

    Example:
        >>> store = InMemoryInstanceStore()
        >>> instance, created = await store.create(instance)
        >>> saved = await store.save(instance.evolve(current_node_id="next"), instance.version)
    """

    async def create(self, instance: WorkflowInstance) -> tuple[WorkflowInstance, bool]:
        """Insert a new instance, or return the existing one for its dedupe key.

        Args:
            instance: The instance to insert.

        Returns:
            The stored instance and whether it was created by this call.
        """
        ...

    async def load(self, instance_id: UUID) -> WorkflowInstance:
        """Load an instance.

        Raises:
            InstanceNotFoundError: If no instance has this id.
        """
        ...

    async def save(self, instance: WorkflowInstance, expected_version: int) -> WorkflowInstance:
        """Persist a new state if the stored version still equals ``expected_version``.

        Args:
            instance: The new state.
            expected_version: The version the new state was derived from.

        Returns:
            The stored state, carrying the incremented version.

        Raises:
            StoreConflictError: If another writer saved in between.
            InstanceNotFoundError: If the instance does not exist.
        """
        ...

    async def claim(
        self,
        instance_id: UUID,
        from_status: InstanceStatus,
        to_status: InstanceStatus,
        owner: str | None = None,
    ) -> WorkflowInstance | None:
        """Atomically move an unowned instance from one status to another.

        Exactly one of several concurrent callers succeeds; the others get
        ``None``.

        Args:
            instance_id: The instance to claim.
            from_status: The status the instance must currently have.
            to_status: The status to set.
            owner: Worker id recorded as the new owner.

        Returns:
            The claimed instance, or ``None`` if the instance was not in
            ``from_status`` or was already owned.
        """
        ...

    async def list_due(self, now: datetime, limit: int) -> list[WorkflowInstance]:
        """List unowned instances ready to run at ``now``, earliest first."""
        ...

    async def list_stale(self, before: datetime, limit: int) -> list[WorkflowInstance]:
        """List owned ``RUNNING`` instances not updated since ``before``."""
        ...

    async def list_for_graph(
        self,
        graph_id: str,
        status: InstanceStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[WorkflowInstance], int]:
        """List the instances of a graph, newest first.

        Returns:
            Tuple of (instances, total_count).
        """
        ...


@runtime_checkable
class AuditRecorder(Protocol):
    """Append-only sink for audit entries."""

    async def append(self, entry: AuditEntry) -> None:
        """Append one entry. Entries are never mutated or deleted."""
        ...


@runtime_checkable
class AuditReader(Protocol):
    """Read access to an instance's audit trail."""

    async def list_for_instance(self, instance_id: UUID) -> list[AuditEntry]:
        """Return the entries of an instance in the order they were appended."""
        ...


@runtime_checkable
class ActionInvoker(Protocol):
    """Performs the side effect of an action node.

    Implementations must tolerate being called more than once for the same
    node visit unless the action kind is idempotent-unsafe; the engine
    guarantees at-least-once delivery with a bounded number of attempts.
    """

    async def invoke(
        self,
        kind: ActionKind,
        params: dict[str, Any],
        event_context: Mapping[str, Any],
    ) -> ActionResult:
        """Perform the action.

        Args:
            kind: The action kind.
            params: Validated parameters with templates already rendered.
            event_context: Data of the triggering event.

        Returns:
            ``ActionSuccess`` or ``ActionFailure``. Raised exceptions are
            treated as transient failures.
        """
        ...
