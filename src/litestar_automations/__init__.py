"""Litestar Automations - CRM automation workflows for Litestar.

This package compiles user-authored automation graphs (trigger, condition,
action and delay nodes) into immutable execution plans and runs one durable,
resumable instance per triggering event.

Key Features:
    - Graph validation with every structural defect reported at once
    - Branching on event data, delays from seconds to days
    - Bounded retries with exponential backoff and crash recovery
    - Append-only audit trail of every node visit
    - In-memory and SQLAlchemy instance stores
    - Litestar plugin with dependency injection and a REST API

Example:
    >>> from litestar_automations import AutomationGraph, PlanRegistry
    >>>
    >>> registry = PlanRegistry()
    >>> plan = registry.register(AutomationGraph.from_dict(graph_json))
    >>> instance_id = await intake.emit("message_received", plan.graph_id, {"message": "hi"})
"""

from __future__ import annotations

from litestar_automations.__metadata__ import __project__, __version__
from litestar_automations.config import EngineConfig
from litestar_automations.core.graph import AutomationGraph
from litestar_automations.core.types import ActionKind, AuditOutcome, InstanceStatus, TriggerKind
from litestar_automations.engine import (
    ActionRouter,
    AutomationEngine,
    AutomationWorker,
    EventIntake,
    ExecutionPlan,
    PlanRegistry,
    Scheduler,
    compile_graph,
)
from litestar_automations.exceptions import (
    ActionError,
    AutomationsError,
    CompileError,
    CompileIssue,
    ConfigurationError,
    GraphNotFoundError,
    InstanceNotFoundError,
    InstanceTerminalError,
    PermanentActionError,
    PlanContractError,
    PlanNotFoundError,
    StoreConflictError,
)
from litestar_automations.plugin import AutomationPlugin, AutomationPluginConfig

__all__ = (
    "ActionError",
    "ActionKind",
    "ActionRouter",
    "AuditOutcome",
    "AutomationEngine",
    "AutomationGraph",
    "AutomationPlugin",
    "AutomationPluginConfig",
    "AutomationWorker",
    "AutomationsError",
    "CompileError",
    "CompileIssue",
    "ConfigurationError",
    "EngineConfig",
    "EventIntake",
    "ExecutionPlan",
    "GraphNotFoundError",
    "InstanceNotFoundError",
    "InstanceStatus",
    "InstanceTerminalError",
    "PermanentActionError",
    "PlanContractError",
    "PlanNotFoundError",
    "PlanRegistry",
    "Scheduler",
    "StoreConflictError",
    "TriggerKind",
    "__project__",
    "__version__",
    "compile_graph",
)
