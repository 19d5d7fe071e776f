"""In-memory instance store and audit recorder.

These implementations keep state in process memory. They are suitable for
development, testing and single-process deployments where losing in-flight
instances on restart is acceptable. Every compare-and-swap runs without an
``await`` in between the check and the write, which makes it atomic with
respect to other coroutines on the same event loop.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from litestar_automations.core.types import InstanceStatus
from litestar_automations.exceptions import InstanceNotFoundError, StoreConflictError

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from litestar_automations.core.models import AuditEntry, WorkflowInstance

__all__ = ["InMemoryAuditRecorder", "InMemoryInstanceStore"]

_DUE_STATUSES = (InstanceStatus.RUNNING, InstanceStatus.WAITING_DELAY)
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class InMemoryInstanceStore:
    """Dict-backed :class:`~litestar_automations.core.protocols.InstanceStore`.

    Instances are copied on the way in and on the way out so callers never
    share state with the store.

    Attributes:
        _instances: Map of instance ids to stored instances.
        _dedupe: Map of ``(graph_id, dedupe_key)`` to instance ids.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._instances: dict[UUID, WorkflowInstance] = {}
        self._dedupe: dict[tuple[str, str], UUID] = {}

    async def create(self, instance: WorkflowInstance) -> tuple[WorkflowInstance, bool]:
        if instance.dedupe_key is not None:
            existing_id = self._dedupe.get((instance.graph_id, instance.dedupe_key))
            if existing_id is not None:
                return copy.deepcopy(self._instances[existing_id]), False
            self._dedupe[(instance.graph_id, instance.dedupe_key)] = instance.id
        self._instances[instance.id] = copy.deepcopy(instance)
        return copy.deepcopy(instance), True

    async def load(self, instance_id: UUID) -> WorkflowInstance:
        try:
            return copy.deepcopy(self._instances[instance_id])
        except KeyError:
            raise InstanceNotFoundError(instance_id) from None

    async def save(self, instance: WorkflowInstance, expected_version: int) -> WorkflowInstance:
        current = self._instances.get(instance.id)
        if current is None:
            raise InstanceNotFoundError(instance.id)
        if current.version != expected_version:
            raise StoreConflictError(instance.id, expected_version, current.version)
        stored = instance.evolve(version=expected_version + 1, updated_at=self._clock())
        self._instances[instance.id] = copy.deepcopy(stored)
        return stored

    async def claim(
        self,
        instance_id: UUID,
        from_status: InstanceStatus,
        to_status: InstanceStatus,
        owner: str | None = None,
    ) -> WorkflowInstance | None:
        current = self._instances.get(instance_id)
        if current is None or current.status != from_status or current.owner is not None:
            return None
        claimed = current.evolve(
            status=to_status,
            owner=owner,
            version=current.version + 1,
            updated_at=self._clock(),
        )
        self._instances[instance_id] = claimed
        return copy.deepcopy(claimed)

    async def list_due(self, now: datetime, limit: int) -> list[WorkflowInstance]:
        due = [
            instance
            for instance in self._instances.values()
            if instance.status in _DUE_STATUSES
            and instance.owner is None
            and (instance.resume_at is None or instance.resume_at <= now)
        ]
        due.sort(key=lambda i: (i.resume_at or _EPOCH, i.created_at))
        return [copy.deepcopy(instance) for instance in due[:limit]]

    async def list_stale(self, before: datetime, limit: int) -> list[WorkflowInstance]:
        stale = [
            instance
            for instance in self._instances.values()
            if instance.status == InstanceStatus.RUNNING and instance.owner is not None and instance.updated_at < before
        ]
        stale.sort(key=lambda i: i.updated_at)
        return [copy.deepcopy(instance) for instance in stale[:limit]]

    async def list_for_graph(
        self,
        graph_id: str,
        status: InstanceStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[WorkflowInstance], int]:
        matching = [
            instance
            for instance in self._instances.values()
            if instance.graph_id == graph_id and (status is None or instance.status == status)
        ]
        matching.sort(key=lambda i: i.created_at, reverse=True)
        return [copy.deepcopy(instance) for instance in matching[offset : offset + limit]], len(matching)

    def __len__(self) -> int:
        return len(self._instances)


class InMemoryAuditRecorder:
    """List-backed audit recorder and reader."""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    async def list_for_instance(self, instance_id: UUID) -> list[AuditEntry]:
        return [entry for entry in self.entries if entry.instance_id == instance_id]
