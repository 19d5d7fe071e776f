"""Tests for AutomationWorker."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from litestar_automations.core.graph import AutomationGraph
from litestar_automations.core.models import WorkflowInstance
from litestar_automations.core.types import InstanceStatus
from litestar_automations.engine.worker import AutomationWorker

if TYPE_CHECKING:
    from litestar_automations.engine.executor import AutomationEngine
    from litestar_automations.engine.intake import EventIntake
    from litestar_automations.engine.memory import InMemoryInstanceStore


@pytest.mark.unit
@pytest.mark.asyncio
class TestAutomationWorker:
    """Tests for the poll-and-run loop."""

    async def test_worker_id_generated(self, engine: AutomationEngine) -> None:
        """Test a worker id is generated when omitted."""
        worker = AutomationWorker(engine)
        assert worker.worker_id.startswith("worker-")
        assert worker.is_running is False

    async def test_run_once(
        self,
        welcome_plan,
        engine: AutomationEngine,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        clock,
    ) -> None:
        """Test run_once claims and runs due instances."""
        vip = await intake.emit("message_received", "welcome-flow", {"tags": ["vip"]})
        regular = await intake.emit("message_received", "welcome-flow", {"tags": []})
        worker = AutomationWorker(engine, worker_id="worker-1")

        assert await worker.run_once() == 2
        assert (await store.load(vip)).status is InstanceStatus.SUCCEEDED
        assert (await store.load(regular)).status is InstanceStatus.WAITING_DELAY

        assert await worker.run_once() == 0
        assert await worker.run_once(clock() + timedelta(days=1)) == 1
        assert (await store.load(regular)).status is InstanceStatus.SUCCEEDED

    async def test_run_once_isolates_failures(
        self,
        registry,
        make_linear_graph_data,
        engine: AutomationEngine,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        clock,
    ) -> None:
        """Test an instance that cannot run does not strand the others claimed with it."""
        registry.register(AutomationGraph.from_dict(make_linear_graph_data()))
        broken, _ = await store.create(
            WorkflowInstance(
                graph_id="linear-flow",
                plan_version="linear-flow@0:gone",
                current_node_id="start",
                created_at=clock() - timedelta(minutes=1),
            )
        )
        healthy = await intake.emit("manual", "linear-flow", {})
        worker = AutomationWorker(engine, worker_id="worker-1")

        assert await worker.run_once() == 2

        assert (await store.load(healthy)).status is InstanceStatus.SUCCEEDED
        failed = await store.load(broken.id)
        assert failed.status is InstanceStatus.FAILED
        assert failed.owner is None
        assert failed.error.startswith("PlanNotFoundError")
        assert await worker.run_once() == 0

    async def test_sweep_releases_stale_claims(
        self,
        welcome_plan,
        engine: AutomationEngine,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        clock,
    ) -> None:
        """Test sweep hands abandoned instances back to the ready set."""
        instance_id = await intake.emit("message_received", "welcome-flow", {"tags": ["vip"]})
        await engine.scheduler.poll_ready(worker_id="dead-worker")
        worker = AutomationWorker(engine, worker_id="worker-2")

        assert await worker.sweep() == []
        clock.advance(timedelta(minutes=6))
        assert await worker.sweep() == [instance_id]

        assert await worker.run_once() == 1
        assert (await store.load(instance_id)).status is InstanceStatus.SUCCEEDED

    async def test_start_and_stop(
        self,
        welcome_plan,
        engine: AutomationEngine,
        intake: EventIntake,
        store: InMemoryInstanceStore,
    ) -> None:
        """Test the background loop runs instances until stopped."""
        instance_id = await intake.emit("message_received", "welcome-flow", {"tags": ["vip"]})
        worker = AutomationWorker(engine, worker_id="worker-1", poll_interval=0.01)

        worker.start()
        assert worker.is_running is True
        for _ in range(100):
            if (await store.load(instance_id)).status is InstanceStatus.SUCCEEDED:
                break
            await asyncio.sleep(0.01)
        await worker.stop()

        assert worker.is_running is False
        assert (await store.load(instance_id)).status is InstanceStatus.SUCCEEDED

    async def test_stop_without_start(self, engine: AutomationEngine) -> None:
        """Test stopping an idle worker is a no-op."""
        worker = AutomationWorker(engine)
        await worker.stop()
        assert worker.is_running is False
