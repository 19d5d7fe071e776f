"""Durable scheduling of instance wake-ups.

The scheduler never sleeps on behalf of an instance. Delays and retry
backoffs are persisted as ``WAITING_DELAY`` plus ``resume_at`` and workers
poll for instances that became due. Claiming is a compare-and-swap in the
instance store, so concurrent pollers never run the same instance twice.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from litestar_automations.config import EngineConfig
from litestar_automations.core.types import InstanceStatus
from litestar_automations.exceptions import InstanceTerminalError, StoreConflictError

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from litestar_automations.core.models import WorkflowInstance
    from litestar_automations.core.protocols import InstanceStore

__all__ = ["Scheduler"]

logger = logging.getLogger(__name__)


class Scheduler:
    """Arranges for instances to be resumed now or at a future time.

    Attributes:
        store: The instance store holding the schedule.
        config: Engine configuration (batch size, stale-claim grace).
    """

    def __init__(
        self,
        store: InstanceStore,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: The instance store holding the schedule.
            config: Engine configuration.
            clock: Returns the current time; defaults to the UTC wall clock.
        """
        self.store = store
        self.config = config or EngineConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._clock()

    async def schedule_at(self, instance: WorkflowInstance, resume_at: datetime) -> WorkflowInstance:
        """Suspend an instance until ``resume_at``.

        The instance is persisted as ``WAITING_DELAY`` and its claim is
        released, so no worker holds it while it waits.

        Args:
            instance: The state to persist; its ``version`` is the expected version.
            resume_at: Earliest time the instance may be claimed again.

        Returns:
            The stored instance.

        Raises:
            StoreConflictError: If the instance changed since it was loaded.
        """
        waiting = instance.evolve(status=InstanceStatus.WAITING_DELAY, resume_at=resume_at, owner=None)
        stored = await self.store.save(waiting, instance.version)
        logger.debug("Instance %s scheduled at %s", instance.id, resume_at.isoformat())
        return stored

    async def schedule_now(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Put an instance in the ready set: ``RUNNING``, unowned, due immediately.

        Raises:
            StoreConflictError: If the instance changed since it was loaded.
        """
        ready = instance.evolve(status=InstanceStatus.RUNNING, resume_at=None, owner=None)
        return await self.store.save(ready, instance.version)

    async def poll_ready(
        self,
        now: datetime | None = None,
        worker_id: str = "worker",
        limit: int | None = None,
    ) -> list[UUID]:
        """Claim instances that are due.

        Safe to call concurrently: each due instance is claimed by exactly
        one caller; the others skip it. An instance is never returned before
        its ``resume_at``.

        Args:
            now: Reference time; defaults to the clock.
            worker_id: Owner recorded on claimed instances.
            limit: Maximum number of instances to claim.

        Returns:
            Ids of the instances claimed by this call. They are now
            ``RUNNING`` and owned by ``worker_id``.

        Example:
            >>> for instance_id in await scheduler.poll_ready(worker_id="worker-1"):
            ...     await engine.run_instance(instance_id, "worker-1")
        """
        now = now or self.now()
        due = await self.store.list_due(now, limit or self.config.poll_batch_size)
        claimed: list[UUID] = []
        for instance in due:
            if instance.resume_at is not None and instance.resume_at > now:
                continue
            if await self.store.claim(instance.id, instance.status, InstanceStatus.RUNNING, owner=worker_id):
                claimed.append(instance.id)
            else:
                logger.debug("Instance %s was claimed by another worker", instance.id)
        return claimed

    async def cancel(self, instance_id: UUID, reason: str | None = None) -> tuple[WorkflowInstance, InstanceStatus]:
        """Cancel a running or waiting instance.

        The transition is a compare-and-swap on the current version and is
        retried if another writer got in between. An instance whose action is
        in flight is cancelled too; the worker detects the cancellation when
        it tries to save the action's outcome.

        Args:
            instance_id: The instance to cancel.
            reason: Optional explanation stored as the instance error.

        Returns:
            The cancelled instance and the status it had before.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
            InstanceTerminalError: If the instance already reached a terminal status.
        """
        while True:
            current = await self.store.load(instance_id)
            if current.is_terminal:
                raise InstanceTerminalError(instance_id, current.status)
            cancelled = current.evolve(
                status=InstanceStatus.CANCELLED,
                resume_at=None,
                owner=None,
                error=reason,
                completed_at=self.now(),
            )
            try:
                stored = await self.store.save(cancelled, current.version)
            except StoreConflictError:
                logger.debug("Concurrent write while cancelling %s, retrying", instance_id)
                continue
            logger.info("Instance %s cancelled (was %s)", instance_id, current.status)
            return stored, current.status

    async def requeue_stale(self, now: datetime | None = None, grace: timedelta | None = None) -> list[UUID]:
        """Release claims held by workers that stopped making progress.

        An owned ``RUNNING`` instance not saved for longer than ``grace`` is
        presumed abandoned by a dead worker. Its claim is released so another
        worker can pick it up; a recorded action intent is then resolved by
        the engine's recovery.

        An instance whose action is in flight (``dispatching`` is set) may
        belong to a live worker waiting on a slow invoker, so it is only
        released once ``config.invoker_timeout_seconds`` have also passed
        since the intent was saved.

        Args:
            now: Reference time; defaults to the clock.
            grace: Allowed silence; defaults to ``config.stale_claim_seconds``.

        Returns:
            Ids of the released instances.
        """
        now = now or self.now()
        grace = grace if grace is not None else self.config.stale_claim_grace
        in_flight_before = now - max(grace, self.config.invoker_timeout)
        released: list[UUID] = []
        for instance in await self.store.list_stale(now - grace, self.config.poll_batch_size):
            if instance.dispatching is not None and instance.updated_at >= in_flight_before:
                logger.debug("Instance %s has action %s in flight, keeping claim", instance.id, instance.dispatching)
                continue
            try:
                await self.schedule_now(instance)
            except StoreConflictError:
                continue
            logger.warning("Released stale claim of worker %s on instance %s", instance.owner, instance.id)
            released.append(instance.id)
        return released
