"""Shared test fixtures for litestar-automations test suite."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import pytest

from litestar_automations.core.protocols import ActionSuccess

if TYPE_CHECKING:
    from collections.abc import Mapping

    from litestar_automations.config import EngineConfig
    from litestar_automations.core.protocols import ActionResult
    from litestar_automations.core.types import ActionKind
    from litestar_automations.engine.executor import AutomationEngine
    from litestar_automations.engine.intake import EventIntake
    from litestar_automations.engine.memory import InMemoryAuditRecorder, InMemoryInstanceStore
    from litestar_automations.engine.registry import PlanRegistry


START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock shared by the store, scheduler and engine."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> datetime:
        self.current += delta
        return self.current


class RecordingInvoker:
    """Action invoker that records calls and replays queued outcomes.

    Queued items may be ``ActionResult`` instances or exceptions to raise.
    Kinds without queued outcomes succeed.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[ActionKind, dict[str, Any], dict[str, Any]]] = []
        self._queued: dict[str, list[ActionResult | Exception]] = {}

    def queue(self, kind: ActionKind | str, *outcomes: ActionResult | Exception) -> None:
        self._queued.setdefault(str(kind), []).extend(outcomes)

    def kinds(self) -> list[str]:
        return [str(kind) for kind, _, _ in self.calls]

    async def invoke(
        self,
        kind: ActionKind,
        params: dict[str, Any],
        event_context: Mapping[str, Any],
    ) -> ActionResult:
        self.calls.append((kind, params, dict(event_context)))
        queued = self._queued.get(str(kind))
        if queued:
            outcome = queued.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return ActionSuccess({"ok": True})


# =============================================================================
# Graph Fixtures
# =============================================================================


def _welcome_graph_data(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": "welcome-flow",
        "name": "Welcome",
        "version": "1",
        "enabled": True,
        "nodes": [
            {"id": "start", "type": "trigger", "data": {"trigger_type": "message_received"}},
            {"id": "check-vip", "type": "condition", "data": {"condition_field": "has_tag", "condition_value": "vip"}},
            {
                "id": "send-welcome",
                "type": "action",
                "data": {"action_type": "send_whatsapp", "message": "Hi {{lead.name}}!"},
            },
            {"id": "wait-day", "type": "delay", "data": {"delay_type": "days", "delay_value": 1}},
            {"id": "tag-follow-up", "type": "action", "data": {"action_type": "add_tag", "tag_id": "follow-up"}},
        ],
        "edges": [
            {"source": "start", "target": "check-vip"},
            {"source": "check-vip", "target": "send-welcome", "sourceHandle": "true"},
            {"source": "check-vip", "target": "wait-day", "sourceHandle": "false"},
            {"source": "wait-day", "target": "tag-follow-up"},
        ],
    }
    data.update(overrides)
    return data


def _linear_graph_data(
    graph_id: str = "linear-flow",
    trigger_type: str = "manual",
    actions: tuple[tuple[str, dict[str, Any]], ...] = (("add_tag", {"tag_id": "lead"}),),
    **overrides: Any,
) -> dict[str, Any]:
    nodes: list[dict[str, Any]] = [{"id": "start", "type": "trigger", "data": {"trigger_type": trigger_type}}]
    edges: list[dict[str, Any]] = []
    previous = "start"
    for position, (action_type, params) in enumerate(actions, start=1):
        node_id = f"action-{position}"
        nodes.append({"id": node_id, "type": "action", "data": {"action_type": action_type, **params}})
        edges.append({"source": previous, "target": node_id})
        previous = node_id
    data: dict[str, Any] = {"id": graph_id, "name": graph_id, "version": "1", "nodes": nodes, "edges": edges}
    data.update(overrides)
    return data


@pytest.fixture
def welcome_graph_data() -> dict[str, Any]:
    """Authored JSON of the welcome automation.

    ``message_received`` trigger, ``vip`` tag check, WhatsApp welcome on the
    true branch and a one day wait followed by a tag on the false branch.
    """
    return _welcome_graph_data()


@pytest.fixture
def make_welcome_graph_data() -> Callable[..., dict[str, Any]]:
    """Factory for variants of the welcome automation's JSON."""
    return _welcome_graph_data


@pytest.fixture
def make_linear_graph_data() -> Callable[..., dict[str, Any]]:
    """Factory for a trigger followed by a chain of actions."""
    return _linear_graph_data


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at a fixed UTC instant."""
    return FakeClock()


@pytest.fixture
def engine_config() -> EngineConfig:
    """Default engine configuration."""
    from litestar_automations.config import EngineConfig

    return EngineConfig()


@pytest.fixture
def registry(engine_config: EngineConfig) -> PlanRegistry:
    """Create an empty plan registry."""
    from litestar_automations.engine.registry import PlanRegistry

    return PlanRegistry(engine_config)


@pytest.fixture
def store(clock: FakeClock) -> InMemoryInstanceStore:
    """Create an in-memory instance store driven by the fake clock."""
    from litestar_automations.engine.memory import InMemoryInstanceStore

    return InMemoryInstanceStore(clock)


@pytest.fixture
def recorder() -> InMemoryAuditRecorder:
    """Create an in-memory audit recorder."""
    from litestar_automations.engine.memory import InMemoryAuditRecorder

    return InMemoryAuditRecorder()


@pytest.fixture
def invoker() -> RecordingInvoker:
    """Create an invoker recording every action call."""
    return RecordingInvoker()


@pytest.fixture
def engine(
    registry: PlanRegistry,
    store: InMemoryInstanceStore,
    recorder: InMemoryAuditRecorder,
    invoker: RecordingInvoker,
    clock: FakeClock,
) -> AutomationEngine:
    """Create an engine over the in-memory store."""
    from litestar_automations.engine.executor import AutomationEngine

    return AutomationEngine(registry, store, recorder, invoker, clock=clock)


@pytest.fixture
def intake(registry: PlanRegistry, store: InMemoryInstanceStore, clock: FakeClock) -> EventIntake:
    """Create an event intake writing to the in-memory store."""
    from litestar_automations.engine.intake import EventIntake

    return EventIntake(registry, store, clock)


@pytest.fixture
def welcome_plan(registry: PlanRegistry, welcome_graph_data: dict[str, Any]):
    """Register the welcome automation and return its plan."""
    from litestar_automations.core.graph import AutomationGraph

    return registry.register(AutomationGraph.from_dict(welcome_graph_data))


@pytest.fixture
def drain(engine: AutomationEngine, clock: FakeClock) -> Callable[..., Any]:
    """Return a coroutine function running every due instance until nothing is due."""

    async def _drain(worker_id: str = "worker-1") -> int:
        processed = 0
        while True:
            claimed = await engine.scheduler.poll_ready(clock(), worker_id)
            if not claimed:
                return processed
            for instance_id in claimed:
                await engine.run_instance(instance_id, worker_id)
            processed += len(claimed)

    return _drain


# Pytest configuration
def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers.

    Args:
        config: Pytest config object
    """
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
