"""Tests for AutomationEngine.

These tests drive instances through the in-memory store with a controllable
clock, so delays and retry backoffs are crossed by advancing time.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

import pytest

from litestar_automations.core.graph import AutomationGraph
from litestar_automations.core.models import WorkflowInstance
from litestar_automations.core.protocols import ActionFailure, ActionSuccess
from litestar_automations.core.types import AuditOutcome, InstanceStatus
from litestar_automations.engine.executor import OUTCOME_UNKNOWN, AutomationEngine
from litestar_automations.exceptions import (
    InstanceTerminalError,
    PermanentActionError,
    PlanContractError,
    PlanNotFoundError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from litestar_automations.engine.intake import EventIntake
    from litestar_automations.engine.memory import InMemoryAuditRecorder, InMemoryInstanceStore
    from litestar_automations.engine.registry import PlanRegistry


def _outcomes(recorder: InMemoryAuditRecorder, instance_id: Any) -> list[AuditOutcome]:
    return [entry.outcome for entry in recorder.entries if entry.instance_id == instance_id]


class SlowInvoker:
    """Invoker whose first call lets other workers act before it returns."""

    def __init__(self, during_first_call: Callable[[], Awaitable[None]]) -> None:
        self.calls: list[str] = []
        self._during_first_call = during_first_call

    async def invoke(self, kind: Any, params: dict[str, Any], event_context: Any) -> ActionSuccess:
        self.calls.append(str(kind))
        if len(self.calls) == 1:
            await self._during_first_call()
        return ActionSuccess({"sent": True})


def _scenario_graph_data() -> dict[str, Any]:
    return {
        "id": "vip-welcome",
        "name": "VIP welcome",
        "version": "1",
        "nodes": [
            {"id": "trigger", "type": "trigger", "data": {"trigger_type": "manual"}},
            {"id": "is-vip", "type": "condition", "data": {"condition_field": "tag", "condition_value": "vip"}},
            {"id": "welcome", "type": "action", "data": {"action_type": "send_whatsapp", "template": "welcome"}},
            {"id": "wait", "type": "delay", "data": {"delay_type": "days", "delay_value": 1}},
            {"id": "followup", "type": "action", "data": {"action_type": "send_whatsapp", "template": "followup"}},
        ],
        "edges": [
            {"source": "trigger", "target": "is-vip"},
            {"source": "is-vip", "target": "welcome", "sourceHandle": "true"},
            {"source": "is-vip", "target": "wait", "sourceHandle": "false"},
            {"source": "wait", "target": "followup"},
        ],
    }


# =============================================================================
# Happy Paths
# =============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
class TestEngineExecution:
    """Tests for running instances to completion."""

    async def test_vip_branch_sends_welcome(
        self,
        welcome_plan,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        recorder: InMemoryAuditRecorder,
        invoker,
        drain,
        clock,
    ) -> None:
        """Test the true branch runs the WhatsApp action and finishes."""
        instance_id = await intake.emit(
            "message_received", "welcome-flow", {"tags": ["vip"], "lead": {"name": "Ana"}}
        )

        assert await drain() == 1

        instance = await store.load(instance_id)
        assert instance.status is InstanceStatus.SUCCEEDED
        assert instance.completed_at == clock()
        assert instance.owner is None
        assert instance.dispatching is None
        assert instance.attempts == {"send-welcome": 1}
        assert invoker.calls == [
            ("send_whatsapp", {"message": "Hi Ana!"}, {"tags": ["vip"], "lead": {"name": "Ana"}}),
        ]
        assert _outcomes(recorder, instance_id) == [
            AuditOutcome.TRIGGERED,
            AuditOutcome.CONDITION_TRUE,
            AuditOutcome.ACTION_DISPATCHED,
            AuditOutcome.ACTION_SUCCEEDED,
        ]
        last = recorder.entries[-1]
        assert last.detail["terminal"] is True
        assert last.detail["result"] == {"ok": True}

    async def test_false_branch_waits_for_delay(
        self,
        welcome_plan,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        recorder: InMemoryAuditRecorder,
        invoker,
        drain,
        clock,
    ) -> None:
        """Test the delay suspends the instance until its resume time."""
        instance_id = await intake.emit("message_received", "welcome-flow", {"tags": []})
        start = clock()

        await drain()

        instance = await store.load(instance_id)
        assert instance.status is InstanceStatus.WAITING_DELAY
        assert instance.resume_at == start + timedelta(days=1)
        assert instance.current_node_id == "tag-follow-up"
        assert instance.owner is None
        assert invoker.calls == []

        delayed = recorder.entries[-1]
        assert delayed.outcome is AuditOutcome.DELAYED
        assert delayed.detail["seconds"] == 86400
        assert delayed.detail["next"] == "tag-follow-up"

        clock.advance(timedelta(hours=23, minutes=59))
        assert await drain() == 0

        clock.advance(timedelta(minutes=1))
        assert await drain() == 1

        instance = await store.load(instance_id)
        assert instance.status is InstanceStatus.SUCCEEDED
        assert invoker.kinds() == ["add_tag"]
        assert invoker.calls[0][1] == {"tag_id": "follow-up"}

    async def test_unresolved_condition_takes_false_branch(
        self,
        welcome_plan,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        recorder: InMemoryAuditRecorder,
        drain,
    ) -> None:
        """Test an event without tags is routed to the false branch and audited."""
        instance_id = await intake.emit("message_received", "welcome-flow", {"lead_id": "l1"})

        await drain()

        condition = next(entry for entry in recorder.entries if entry.node_id == "check-vip")
        assert condition.outcome is AuditOutcome.CONDITION_FALSE
        assert condition.detail["branch"] == "false"
        assert condition.detail["reason"] == "PredicateUnresolved"
        assert condition.detail["cause"] == "missing_field"
        assert (await store.load(instance_id)).status is InstanceStatus.WAITING_DELAY

    async def test_one_audit_entry_per_step(
        self,
        welcome_plan,
        intake: EventIntake,
        engine: AutomationEngine,
        store: InMemoryInstanceStore,
    ) -> None:
        """Test step computes the next state without touching the store."""
        instance_id = await intake.emit("message_received", "welcome-flow", {"tags": ["vip"]})
        instance = await store.load(instance_id)

        result = await engine.step(instance)

        assert result.audit.outcome is AuditOutcome.TRIGGERED
        assert result.audit.detail == {"trigger": "message_received", "next": "check-vip"}
        assert result.instance.current_node_id == "check-vip"
        assert result.wake_at is None
        assert (await store.load(instance_id)).version == instance.version
        assert instance.current_node_id == "start"

    async def test_instances_stay_on_their_plan(
        self,
        registry: PlanRegistry,
        make_welcome_graph_data,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        drain,
        clock,
    ) -> None:
        """Test a waiting instance resumes on its bound plan after a new save."""
        v1 = registry.register(AutomationGraph.from_dict(make_welcome_graph_data()))
        waiting_id = await intake.emit("message_received", "welcome-flow", {"tags": []})
        await drain()

        v2 = registry.register(AutomationGraph.from_dict(make_welcome_graph_data(version="2")))
        fresh_id = await intake.emit("message_received", "welcome-flow", {"tags": ["vip"]})
        clock.advance(timedelta(days=1))
        await drain()

        waiting = await store.load(waiting_id)
        fresh = await store.load(fresh_id)
        assert waiting.plan_version == v1.plan_version
        assert waiting.status is InstanceStatus.SUCCEEDED
        assert fresh.plan_version == v2.plan_version
        assert fresh.status is InstanceStatus.SUCCEEDED


# =============================================================================
# Failures and Retries
# =============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
class TestEngineRetries:
    """Tests for action failures, retries and backoff."""

    async def test_transient_failures_exhaust_attempts(
        self,
        registry: PlanRegistry,
        make_linear_graph_data,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        recorder: InMemoryAuditRecorder,
        invoker,
        drain,
        clock,
    ) -> None:
        """Test three failed attempts with doubling backoff fail the instance."""
        registry.register(AutomationGraph.from_dict(make_linear_graph_data()))
        invoker.queue("add_tag", *(ActionFailure("crm timeout") for _ in range(3)))
        instance_id = await intake.emit("manual", "linear-flow", {"lead_id": "l1"})
        start = clock()

        await drain()
        instance = await store.load(instance_id)
        assert instance.status is InstanceStatus.WAITING_DELAY
        assert instance.resume_at == start + timedelta(seconds=30)
        assert instance.current_node_id == "action-1"
        assert instance.dispatching is None

        clock.advance(timedelta(seconds=29))
        assert await drain() == 0
        clock.advance(timedelta(seconds=1))
        await drain()
        instance = await store.load(instance_id)
        assert instance.resume_at == clock() + timedelta(seconds=60)

        clock.advance(timedelta(seconds=60))
        await drain()

        instance = await store.load(instance_id)
        assert instance.status is InstanceStatus.FAILED
        assert instance.error == "crm timeout"
        assert instance.attempts == {"action-1": 3}
        assert len(invoker.calls) == 3

        failures = [entry for entry in recorder.entries if entry.outcome is AuditOutcome.ACTION_FAILED]
        assert [entry.detail["attempt"] for entry in failures] == [1, 2, 3]
        assert failures[0].detail["retry_scheduled"] is True
        assert failures[-1].detail["final"] is True

        clock.advance(timedelta(seconds=3600))
        assert await drain() == 0
        assert len(invoker.calls) == 3

    async def test_retry_then_success(
        self,
        registry: PlanRegistry,
        make_linear_graph_data,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        invoker,
        drain,
        clock,
    ) -> None:
        """Test a transient failure followed by a success completes the instance."""
        registry.register(AutomationGraph.from_dict(make_linear_graph_data()))
        invoker.queue("add_tag", RuntimeError("connection reset"))
        instance_id = await intake.emit("manual", "linear-flow", {})

        await drain()
        clock.advance(timedelta(seconds=30))
        await drain()

        instance = await store.load(instance_id)
        assert instance.status is InstanceStatus.SUCCEEDED
        assert instance.attempts == {"action-1": 2}
        assert len(invoker.calls) == 2

    async def test_exception_reason(
        self,
        registry: PlanRegistry,
        make_linear_graph_data,
        intake: EventIntake,
        recorder: InMemoryAuditRecorder,
        invoker,
        drain,
    ) -> None:
        """Test a raised exception is recorded as a transient failure."""
        registry.register(AutomationGraph.from_dict(make_linear_graph_data()))
        invoker.queue("add_tag", RuntimeError("boom"))
        await intake.emit("manual", "linear-flow", {})

        await drain()

        failed = recorder.entries[-1]
        assert failed.outcome is AuditOutcome.ACTION_FAILED
        assert failed.detail["reason"] == "RuntimeError: boom"
        assert failed.detail["permanent"] is False

    @pytest.mark.parametrize(
        "outcome",
        [ActionFailure("invalid phone number", permanent=True), PermanentActionError("invalid phone number")],
    )
    async def test_permanent_failure(
        self,
        registry: PlanRegistry,
        make_linear_graph_data,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        invoker,
        drain,
        outcome: Any,
    ) -> None:
        """Test a permanent failure fails the instance without retrying."""
        registry.register(AutomationGraph.from_dict(make_linear_graph_data()))
        invoker.queue("add_tag", outcome)
        instance_id = await intake.emit("manual", "linear-flow", {})

        await drain()

        instance = await store.load(instance_id)
        assert instance.status is InstanceStatus.FAILED
        assert instance.error == "invalid phone number"
        assert instance.resume_at is None
        assert len(invoker.calls) == 1

    async def test_next_action_runs_after_success(
        self,
        registry: PlanRegistry,
        make_linear_graph_data,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        invoker,
        drain,
    ) -> None:
        """Test chained actions run in order with rendered params."""
        registry.register(
            AutomationGraph.from_dict(
                make_linear_graph_data(
                    actions=(
                        ("move_stage", {"target_stage_id": "qualified"}),
                        ("create_task", {"task_title": "Call {{lead.name}}", "due_days": 1}),
                    )
                )
            )
        )
        instance_id = await intake.emit("manual", "linear-flow", {"lead": {"name": "Ana"}})

        await drain()

        assert (await store.load(instance_id)).status is InstanceStatus.SUCCEEDED
        assert invoker.kinds() == ["move_stage", "create_task"]
        assert invoker.calls[1][1] == {"task_title": "Call Ana", "task_type": "task", "due_days": 1}


# =============================================================================
# Recovery
# =============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
class TestEngineRecovery:
    """Tests for resolving action intents left behind by a crashed worker."""

    async def _crash_before_invoke(
        self,
        engine: AutomationEngine,
        store: InMemoryInstanceStore,
        instance_id: Any,
    ) -> WorkflowInstance:
        claimed = await engine.scheduler.poll_ready(worker_id="worker-1")
        assert claimed == [instance_id]
        instance = await store.load(instance_id)
        for _ in range(2):
            result = await engine.step(instance)
            instance = await store.save(result.instance, instance.version)
        return instance

    async def test_safe_action_is_invoked_again(
        self,
        registry: PlanRegistry,
        make_linear_graph_data,
        engine: AutomationEngine,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        recorder: InMemoryAuditRecorder,
        invoker,
        clock,
    ) -> None:
        """Test an interrupted idempotent-safe action is re-invoked."""
        registry.register(AutomationGraph.from_dict(make_linear_graph_data()))
        instance_id = await intake.emit("manual", "linear-flow", {})
        crashed = await self._crash_before_invoke(engine, store, instance_id)
        assert crashed.dispatching == "action-1"
        assert crashed.owner == "worker-1"

        released = await engine.scheduler.requeue_stale(clock() + timedelta(minutes=20))
        assert released == [instance_id]

        assert await engine.scheduler.poll_ready(worker_id="worker-2") == [instance_id]
        instance = await engine.run_instance(instance_id, "worker-2")

        assert instance.status is InstanceStatus.SUCCEEDED
        assert len(invoker.calls) == 1
        assert AuditOutcome.RECOVERED in _outcomes(recorder, instance_id)

    async def test_unsafe_action_fails_with_unknown_outcome(
        self,
        registry: PlanRegistry,
        make_linear_graph_data,
        engine: AutomationEngine,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        recorder: InMemoryAuditRecorder,
        invoker,
        clock,
    ) -> None:
        """Test an interrupted message send is never repeated."""
        registry.register(
            AutomationGraph.from_dict(make_linear_graph_data(actions=(("send_whatsapp", {"message": "hi"}),)))
        )
        instance_id = await intake.emit("manual", "linear-flow", {})
        await self._crash_before_invoke(engine, store, instance_id)

        await engine.scheduler.requeue_stale(clock() + timedelta(minutes=20))
        await engine.scheduler.poll_ready(worker_id="worker-2")
        instance = await engine.run_instance(instance_id, "worker-2")

        assert instance.status is InstanceStatus.FAILED
        assert instance.error.startswith(OUTCOME_UNKNOWN)
        assert instance.dispatching is None
        assert invoker.calls == []
        final = recorder.entries[-1]
        assert final.outcome is AuditOutcome.FAILED
        assert final.detail["reason"] == OUTCOME_UNKNOWN

    async def test_nothing_to_recover(
        self,
        welcome_plan,
        engine: AutomationEngine,
        intake: EventIntake,
        store: InMemoryInstanceStore,
    ) -> None:
        """Test recover returns None without a pending intent."""
        instance_id = await intake.emit("message_received", "welcome-flow", {})
        assert await engine.recover(await store.load(instance_id)) is None


# =============================================================================
# Slow Actions
# =============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
class TestEngineSlowActions:
    """Tests for actions that outlast the stale-claim grace period."""

    async def test_live_claim_survives_sweep(
        self,
        registry: PlanRegistry,
        make_linear_graph_data,
        engine: AutomationEngine,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        recorder: InMemoryAuditRecorder,
        clock,
    ) -> None:
        """Test a sweep during a slow action neither releases nor fails the instance."""
        registry.register(
            AutomationGraph.from_dict(make_linear_graph_data(actions=(("send_whatsapp", {"message": "hi"}),)))
        )
        instance_id = await intake.emit("manual", "linear-flow", {})
        released: list[Any] = []

        async def other_workers_act() -> None:
            clock.advance(timedelta(seconds=301))
            released.extend(await engine.scheduler.requeue_stale())
            for other_id in await engine.scheduler.poll_ready(worker_id="worker-2"):
                await engine.run_instance(other_id, "worker-2")

        engine.invoker = invoker = SlowInvoker(other_workers_act)
        assert await engine.scheduler.poll_ready(worker_id="worker-1") == [instance_id]
        instance = await engine.run_instance(instance_id, "worker-1")

        assert released == []
        assert instance.status is InstanceStatus.SUCCEEDED
        assert invoker.calls == ["send_whatsapp"]
        assert _outcomes(recorder, instance_id) == [
            AuditOutcome.TRIGGERED,
            AuditOutcome.ACTION_DISPATCHED,
            AuditOutcome.ACTION_SUCCEEDED,
        ]

    async def test_discarded_outcome_is_audited(
        self,
        registry: PlanRegistry,
        make_linear_graph_data,
        engine: AutomationEngine,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        recorder: InMemoryAuditRecorder,
        clock,
    ) -> None:
        """Test an action that outlasts the invoker timeout still leaves its outcome in the trail."""
        registry.register(
            AutomationGraph.from_dict(make_linear_graph_data(actions=(("send_whatsapp", {"message": "hi"}),)))
        )
        instance_id = await intake.emit("manual", "linear-flow", {})

        async def other_workers_act() -> None:
            clock.advance(timedelta(seconds=engine.config.invoker_timeout_seconds + 1))
            assert await engine.scheduler.requeue_stale() == [instance_id]
            assert await engine.scheduler.poll_ready(worker_id="worker-2") == [instance_id]
            await engine.run_instance(instance_id, "worker-2")

        engine.invoker = invoker = SlowInvoker(other_workers_act)
        await engine.scheduler.poll_ready(worker_id="worker-1")
        instance = await engine.run_instance(instance_id, "worker-1")

        assert instance.status is InstanceStatus.FAILED
        assert instance.error.startswith(OUTCOME_UNKNOWN)
        assert invoker.calls == ["send_whatsapp"]
        final = recorder.entries[-1]
        assert final.outcome is AuditOutcome.ACTION_SUCCEEDED
        assert final.node_id == "action-1"
        assert final.detail["discarded"] is True
        assert final.detail["stored_status"] == "failed"
        assert final.detail["result"] == {"sent": True}


# =============================================================================
# Welcome Scenario
# =============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
class TestWelcomeScenario:
    """Tests for a manual VIP check with a same-day welcome or a next-day follow-up."""

    async def test_vip_gets_welcome(
        self,
        registry: PlanRegistry,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        invoker,
        drain,
    ) -> None:
        """Test the VIP path sends the welcome template once and succeeds."""
        registry.register(AutomationGraph.from_dict(_scenario_graph_data()))
        instance_id = await intake.emit("manual", "vip-welcome", {"tag": "vip"})

        await drain()

        assert (await store.load(instance_id)).status is InstanceStatus.SUCCEEDED
        assert [(str(kind), params["template"]) for kind, params, _ in invoker.calls] == [
            ("send_whatsapp", "welcome")
        ]

    async def test_regular_lead_gets_followup_next_day(
        self,
        registry: PlanRegistry,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        invoker,
        drain,
        clock,
    ) -> None:
        """Test the other path waits one day and then sends the follow-up template once."""
        registry.register(AutomationGraph.from_dict(_scenario_graph_data()))
        instance_id = await intake.emit("manual", "vip-welcome", {"tag": "regular"})
        start = clock()

        await drain()
        instance = await store.load(instance_id)
        assert instance.status is InstanceStatus.WAITING_DELAY
        assert instance.resume_at == start + timedelta(days=1)
        assert instance.current_node_id == "followup"
        assert invoker.calls == []

        clock.advance(timedelta(days=1))
        await drain()

        assert (await store.load(instance_id)).status is InstanceStatus.SUCCEEDED
        assert [(str(kind), params["template"]) for kind, params, _ in invoker.calls] == [
            ("send_whatsapp", "followup")
        ]


# =============================================================================
# Cancellation and Conflicts
# =============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
class TestEngineCancellation:
    """Tests for cancelling instances."""

    async def test_cancel_waiting_instance(
        self,
        welcome_plan,
        engine: AutomationEngine,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        recorder: InMemoryAuditRecorder,
        invoker,
        drain,
        clock,
    ) -> None:
        """Test a cancelled instance never resumes."""
        instance_id = await intake.emit("message_received", "welcome-flow", {"tags": []})
        await drain()

        cancelled = await engine.cancel(instance_id, reason="lead replied")

        assert cancelled.status is InstanceStatus.CANCELLED
        assert cancelled.error == "lead replied"
        assert cancelled.resume_at is None
        entry = recorder.entries[-1]
        assert entry.outcome is AuditOutcome.CANCELLED
        assert entry.detail == {"previous_status": "waiting_delay", "reason": "lead replied"}

        clock.advance(timedelta(days=2))
        assert await drain() == 0
        assert invoker.calls == []
        assert (await store.load(instance_id)).status is InstanceStatus.CANCELLED

    async def test_cancel_terminal_instance(
        self,
        welcome_plan,
        engine: AutomationEngine,
        intake: EventIntake,
        drain,
    ) -> None:
        """Test a finished instance cannot be cancelled."""
        instance_id = await intake.emit("message_received", "welcome-flow", {"tags": ["vip"]})
        await drain()

        with pytest.raises(InstanceTerminalError) as exc_info:
            await engine.cancel(instance_id)
        assert exc_info.value.status == InstanceStatus.SUCCEEDED

    async def test_cancel_during_action_is_audited_post_hoc(
        self,
        registry: PlanRegistry,
        make_linear_graph_data,
        intake: EventIntake,
        store: InMemoryInstanceStore,
        recorder: InMemoryAuditRecorder,
        clock,
    ) -> None:
        """Test an action outcome saved after a cancellation is discarded and audited."""
        registry.register(AutomationGraph.from_dict(make_linear_graph_data()))
        instance_id = await intake.emit("manual", "linear-flow", {})

        class CancellingInvoker:
            engine: AutomationEngine

            async def invoke(self, kind: Any, params: Any, event_context: Any) -> ActionSuccess:
                await self.engine.cancel(instance_id, reason="operator stop")
                return ActionSuccess()

        invoker = CancellingInvoker()
        engine = AutomationEngine(registry, store, recorder, invoker, clock=clock)
        invoker.engine = engine

        await engine.scheduler.poll_ready(worker_id="worker-1")
        instance = await engine.run_instance(instance_id, "worker-1")

        assert instance.status is InstanceStatus.CANCELLED
        post_hoc = recorder.entries[-1]
        assert post_hoc.outcome is AuditOutcome.CANCELLED_POST_HOC
        assert post_hoc.node_id == "action-1"
        assert post_hoc.detail["discarded"] == "action_succeeded"
        assert AuditOutcome.CANCELLED in _outcomes(recorder, instance_id)


# =============================================================================
# Contract Violations and Robustness
# =============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
class TestEngineRobustness:
    """Tests for invariants the engine enforces."""

    async def test_step_on_terminal_instance(self, welcome_plan, engine: AutomationEngine) -> None:
        """Test stepping a finished instance raises InstanceTerminalError."""
        instance = WorkflowInstance(
            graph_id="welcome-flow",
            plan_version=welcome_plan.plan_version,
            current_node_id="start",
            status=InstanceStatus.SUCCEEDED,
        )
        with pytest.raises(InstanceTerminalError):
            await engine.step(instance)

    async def test_cursor_outside_plan(
        self,
        welcome_plan,
        engine: AutomationEngine,
        store: InMemoryInstanceStore,
    ) -> None:
        """Test a cursor not in the bound plan raises PlanContractError and fails the instance."""
        instance, _ = await store.create(
            WorkflowInstance(graph_id="welcome-flow", plan_version=welcome_plan.plan_version, current_node_id="ghost")
        )
        await engine.scheduler.poll_ready(worker_id="worker-1")

        with pytest.raises(PlanContractError):
            await engine.run_instance(instance.id, "worker-1")

        failed = await store.load(instance.id)
        assert failed.status is InstanceStatus.FAILED
        assert failed.owner is None
        assert failed.error.startswith("PlanContractError")
        assert await engine.scheduler.poll_ready(worker_id="worker-1") == []

    async def test_missing_plan_version_fails_instance(
        self,
        registry: PlanRegistry,
        make_linear_graph_data,
        engine: AutomationEngine,
        store: InMemoryInstanceStore,
        recorder: InMemoryAuditRecorder,
        clock,
    ) -> None:
        """Test an instance bound to an unregistered plan version is failed and audited."""
        registry.register(AutomationGraph.from_dict(make_linear_graph_data()))
        instance, _ = await store.create(
            WorkflowInstance(graph_id="linear-flow", plan_version="linear-flow@0:gone", current_node_id="start")
        )
        await engine.scheduler.poll_ready(worker_id="worker-1")

        with pytest.raises(PlanNotFoundError):
            await engine.run_instance(instance.id, "worker-1")

        failed = await store.load(instance.id)
        assert failed.status is InstanceStatus.FAILED
        assert failed.completed_at == clock()
        assert failed.error.startswith("PlanNotFoundError")
        entry = recorder.entries[-1]
        assert entry.outcome is AuditOutcome.FAILED
        assert entry.detail == {"reason": "PlanNotFoundError"}

    async def test_run_requires_claim(
        self,
        welcome_plan,
        engine: AutomationEngine,
        intake: EventIntake,
        recorder: InMemoryAuditRecorder,
    ) -> None:
        """Test an instance not claimed by the worker is left alone."""
        instance_id = await intake.emit("message_received", "welcome-flow", {"tags": ["vip"]})

        instance = await engine.run_instance(instance_id, "worker-1")

        assert instance.current_node_id == "start"
        assert recorder.entries == []

    async def test_audit_failure_does_not_abort(
        self,
        welcome_plan,
        registry: PlanRegistry,
        store: InMemoryInstanceStore,
        intake: EventIntake,
        invoker,
        clock,
    ) -> None:
        """Test an unavailable audit sink does not stop execution."""

        class BrokenRecorder:
            async def append(self, entry: Any) -> None:
                msg = "audit database unavailable"
                raise ConnectionError(msg)

        engine = AutomationEngine(registry, store, BrokenRecorder(), invoker, clock=clock)
        instance_id = await intake.emit("message_received", "welcome-flow", {"tags": ["vip"]})

        await engine.scheduler.poll_ready(worker_id="worker-1")
        instance = await engine.run_instance(instance_id, "worker-1")

        assert instance.status is InstanceStatus.SUCCEEDED
        assert len(invoker.calls) == 1
