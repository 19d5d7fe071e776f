"""Automation execution engine.

This module provides the compiler, plan registry, scheduler, execution
engine, event intake, action router and worker, plus in-memory
implementations of the instance store and audit recorder.
"""

from __future__ import annotations

from litestar_automations.engine.compiler import compile_graph, plan_version_for
from litestar_automations.engine.executor import AutomationEngine, StepResult
from litestar_automations.engine.intake import EventIntake
from litestar_automations.engine.memory import InMemoryAuditRecorder, InMemoryInstanceStore
from litestar_automations.engine.plan import ExecutionPlan, PlanNode
from litestar_automations.engine.registry import PlanRegistry
from litestar_automations.engine.router import ActionHandler, ActionRouter
from litestar_automations.engine.scheduler import Scheduler
from litestar_automations.engine.worker import AutomationWorker

__all__ = [
    "ActionHandler",
    "ActionRouter",
    "AutomationEngine",
    "AutomationWorker",
    "EventIntake",
    "ExecutionPlan",
    "InMemoryAuditRecorder",
    "InMemoryInstanceStore",
    "PlanNode",
    "PlanRegistry",
    "Scheduler",
    "StepResult",
    "compile_graph",
    "plan_version_for",
]
