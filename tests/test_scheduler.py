"""Tests for the Scheduler and the in-memory instance store."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from litestar_automations.core.models import WorkflowInstance
from litestar_automations.core.types import InstanceStatus
from litestar_automations.engine.scheduler import Scheduler
from litestar_automations.exceptions import InstanceNotFoundError, InstanceTerminalError, StoreConflictError

if TYPE_CHECKING:
    from litestar_automations.engine.memory import InMemoryInstanceStore


def _instance(**kwargs) -> WorkflowInstance:
    kwargs.setdefault("graph_id", "welcome-flow")
    kwargs.setdefault("plan_version", "welcome-flow@1:0000000000000000")
    kwargs.setdefault("current_node_id", "start")
    return WorkflowInstance(**kwargs)


@pytest.fixture
def scheduler(store: InMemoryInstanceStore, engine_config, clock) -> Scheduler:
    """Create a scheduler over the in-memory store."""
    return Scheduler(store, engine_config, clock)


# =============================================================================
# Instance Store
# =============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
class TestInMemoryInstanceStore:
    """Tests for the in-memory compare-and-swap store."""

    async def test_create_and_load(self, store: InMemoryInstanceStore) -> None:
        """Test a created instance can be loaded back."""
        instance, created = await store.create(_instance(event_context={"lead_id": "l1"}))

        assert created is True
        loaded = await store.load(instance.id)
        assert loaded == instance
        assert loaded is not instance

    async def test_create_is_idempotent_per_dedupe_key(self, store: InMemoryInstanceStore) -> None:
        """Test redelivering an event returns the first instance."""
        first, created_first = await store.create(_instance(dedupe_key="msg-1"))
        second, created_second = await store.create(_instance(dedupe_key="msg-1"))
        other_graph, created_other = await store.create(_instance(graph_id="other", dedupe_key="msg-1"))

        assert created_first is True
        assert created_second is False
        assert second.id == first.id
        assert created_other is True
        assert other_graph.id != first.id
        assert len(store) == 2

    async def test_load_missing(self, store: InMemoryInstanceStore) -> None:
        """Test loading an unknown id raises InstanceNotFoundError."""
        with pytest.raises(InstanceNotFoundError):
            await store.load(uuid4())

    async def test_save_bumps_version(self, store: InMemoryInstanceStore, clock) -> None:
        """Test a save increments the version and stamps updated_at."""
        instance, _ = await store.create(_instance())
        clock.advance(timedelta(seconds=5))

        saved = await store.save(instance.evolve(current_node_id="next"), instance.version)

        assert saved.version == instance.version + 1
        assert saved.updated_at == clock()
        assert (await store.load(instance.id)).current_node_id == "next"

    async def test_save_rejects_stale_version(self, store: InMemoryInstanceStore) -> None:
        """Test a write based on an old version is rejected, not merged."""
        instance, _ = await store.create(_instance())
        await store.save(instance.evolve(current_node_id="a"), instance.version)

        with pytest.raises(StoreConflictError) as exc_info:
            await store.save(instance.evolve(current_node_id="b"), instance.version)

        assert exc_info.value.actual_version == instance.version + 1
        assert (await store.load(instance.id)).current_node_id == "a"

    async def test_save_missing(self, store: InMemoryInstanceStore) -> None:
        """Test saving an unknown instance raises InstanceNotFoundError."""
        with pytest.raises(InstanceNotFoundError):
            await store.save(_instance(), 0)

    async def test_concurrent_claims_have_one_winner(self, store: InMemoryInstanceStore) -> None:
        """Test exactly one of many concurrent claims succeeds."""
        instance, _ = await store.create(_instance())

        results = await asyncio.gather(
            *(
                store.claim(instance.id, InstanceStatus.RUNNING, InstanceStatus.RUNNING, owner=f"worker-{n}")
                for n in range(5)
            )
        )

        winners = [result for result in results if result is not None]
        assert len(winners) == 1
        assert (await store.load(instance.id)).owner == winners[0].owner

    async def test_claim_requires_status(self, store: InMemoryInstanceStore) -> None:
        """Test a claim from the wrong status fails."""
        instance, _ = await store.create(_instance())
        assert await store.claim(instance.id, InstanceStatus.WAITING_DELAY, InstanceStatus.RUNNING, "w") is None
        assert await store.claim(uuid4(), InstanceStatus.RUNNING, InstanceStatus.RUNNING, "w") is None

    async def test_list_for_graph(self, store: InMemoryInstanceStore, clock) -> None:
        """Test a graph's instances are listed newest first with filter and paging."""
        older, _ = await store.create(_instance(created_at=clock()))
        newer, _ = await store.create(
            _instance(created_at=clock() + timedelta(seconds=1), status=InstanceStatus.CANCELLED)
        )
        await store.create(_instance(graph_id="other-flow", created_at=clock()))

        every, total = await store.list_for_graph("welcome-flow")
        cancelled, _ = await store.list_for_graph("welcome-flow", status=InstanceStatus.CANCELLED)
        page, page_total = await store.list_for_graph("welcome-flow", limit=1, offset=1)

        assert [i.id for i in every] == [newer.id, older.id]
        assert total == 2
        assert [i.id for i in cancelled] == [newer.id]
        assert [i.id for i in page] == [older.id]
        assert page_total == 2


# =============================================================================
# Scheduler
# =============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
class TestScheduler:
    """Tests for Scheduler."""

    async def test_schedule_at_not_due_early(
        self, scheduler: Scheduler, store: InMemoryInstanceStore, clock
    ) -> None:
        """Test an instance is never returned before its resume time."""
        instance, _ = await store.create(_instance())
        resume_at = clock() + timedelta(hours=1)

        waiting = await scheduler.schedule_at(instance, resume_at)

        assert waiting.status is InstanceStatus.WAITING_DELAY
        assert waiting.resume_at == resume_at
        assert await scheduler.poll_ready(clock(), "worker-1") == []
        assert await scheduler.poll_ready(resume_at - timedelta(seconds=1), "worker-1") == []
        assert await scheduler.poll_ready(resume_at, "worker-1") == [instance.id]

        claimed = await store.load(instance.id)
        assert claimed.status is InstanceStatus.RUNNING
        assert claimed.owner == "worker-1"

    async def test_schedule_now(self, scheduler: Scheduler, store: InMemoryInstanceStore, clock) -> None:
        """Test schedule_now puts an instance back in the ready set."""
        instance, _ = await store.create(_instance())
        waiting = await scheduler.schedule_at(instance, clock() + timedelta(days=1))

        ready = await scheduler.schedule_now(waiting)

        assert ready.status is InstanceStatus.RUNNING
        assert ready.resume_at is None
        assert await scheduler.poll_ready(clock(), "worker-1") == [instance.id]

    async def test_due_order_and_limit(self, scheduler: Scheduler, store: InMemoryInstanceStore, clock) -> None:
        """Test the earliest resume time is claimed first, up to the limit."""
        late, _ = await store.create(_instance())
        early, _ = await store.create(_instance())
        await scheduler.schedule_at(late, clock() + timedelta(minutes=10))
        await scheduler.schedule_at(early, clock() + timedelta(minutes=5))

        claimed = await scheduler.poll_ready(clock() + timedelta(hours=1), "worker-1", limit=1)

        assert claimed == [early.id]

    async def test_concurrent_pollers(self, scheduler: Scheduler, store: InMemoryInstanceStore, clock) -> None:
        """Test concurrent polls never claim the same instance twice."""
        ids = {(await store.create(_instance()))[0].id for _ in range(10)}

        first, second = await asyncio.gather(
            scheduler.poll_ready(clock(), "worker-1"),
            scheduler.poll_ready(clock(), "worker-2"),
        )

        assert set(first).isdisjoint(second)
        assert set(first) | set(second) == ids

    async def test_cancel(self, scheduler: Scheduler, store: InMemoryInstanceStore, clock) -> None:
        """Test cancelling returns the cancelled instance and the previous status."""
        instance, _ = await store.create(_instance())
        await scheduler.schedule_at(instance, clock() + timedelta(days=1))

        cancelled, previous = await scheduler.cancel(instance.id, "duplicate lead")

        assert previous is InstanceStatus.WAITING_DELAY
        assert cancelled.status is InstanceStatus.CANCELLED
        assert cancelled.error == "duplicate lead"
        assert cancelled.completed_at == clock()
        assert await scheduler.poll_ready(clock() + timedelta(days=2), "worker-1") == []

    async def test_cancel_owned_instance(self, scheduler: Scheduler, store: InMemoryInstanceStore) -> None:
        """Test an instance held by a worker can be cancelled."""
        instance, _ = await store.create(_instance())
        await scheduler.poll_ready(worker_id="worker-1")

        cancelled, previous = await scheduler.cancel(instance.id)

        assert previous is InstanceStatus.RUNNING
        assert cancelled.owner is None

    async def test_cancel_terminal(self, scheduler: Scheduler, store: InMemoryInstanceStore) -> None:
        """Test cancelling twice raises InstanceTerminalError."""
        instance, _ = await store.create(_instance())
        await scheduler.cancel(instance.id)

        with pytest.raises(InstanceTerminalError):
            await scheduler.cancel(instance.id)

    async def test_cancel_missing(self, scheduler: Scheduler) -> None:
        """Test cancelling an unknown id raises InstanceNotFoundError."""
        with pytest.raises(InstanceNotFoundError):
            await scheduler.cancel(uuid4())

    async def test_requeue_stale(self, scheduler: Scheduler, store: InMemoryInstanceStore, clock) -> None:
        """Test claims older than the grace period are released."""
        stale, _ = await store.create(_instance())
        await scheduler.poll_ready(worker_id="dead-worker")
        clock.advance(timedelta(minutes=10))
        fresh, _ = await store.create(_instance())
        await scheduler.poll_ready(worker_id="live-worker")

        released = await scheduler.requeue_stale(grace=timedelta(minutes=5))

        assert released == [stale.id]
        assert (await store.load(stale.id)).owner is None
        assert (await store.load(fresh.id)).owner == "live-worker"
        assert await scheduler.poll_ready(worker_id="live-worker") == [stale.id]

    async def test_requeue_keeps_in_flight_actions(
        self,
        scheduler: Scheduler,
        store: InMemoryInstanceStore,
        clock,
    ) -> None:
        """Test an instance with an action in flight is released only after the invoker timeout."""
        instance, _ = await store.create(_instance())
        await scheduler.poll_ready(worker_id="worker-1")
        claimed = await store.load(instance.id)
        await store.save(claimed.evolve(dispatching="send-welcome"), claimed.version)

        clock.advance(timedelta(minutes=10))
        assert await scheduler.requeue_stale() == []
        assert (await store.load(instance.id)).owner == "worker-1"

        clock.advance(timedelta(minutes=6))
        assert await scheduler.requeue_stale() == [instance.id]
        released = await store.load(instance.id)
        assert released.owner is None
        assert released.dispatching == "send-welcome"
