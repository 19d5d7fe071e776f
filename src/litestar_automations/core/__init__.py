"""Core domain module for litestar-automations.

This module exports the fundamental building blocks for automation graphs,
including types, graph nodes, predicates, action parameters, runtime models
and collaborator protocols.
"""

from __future__ import annotations

from litestar_automations.core.context import MISSING, resolve_path
from litestar_automations.core.graph import (
    ActionNode,
    AutomationGraph,
    ConditionNode,
    DelayNode,
    Edge,
    Node,
    TriggerNode,
)
from litestar_automations.core.models import AuditEntry, WorkflowInstance
from litestar_automations.core.params import (
    ACTION_PARAM_MODELS,
    IDEMPOTENT_UNSAFE_KINDS,
    ActionParams,
    is_idempotent_safe,
    validate_params,
)
from litestar_automations.core.predicates import (
    ConstantPredicate,
    FieldPredicate,
    Predicate,
    PredicateResult,
    TagPredicate,
    parse_predicate,
)
from litestar_automations.core.protocols import (
    ActionFailure,
    ActionInvoker,
    ActionResult,
    ActionSuccess,
    AuditReader,
    AuditRecorder,
    InstanceStore,
)
from litestar_automations.core.templating import render_params, render_template
from litestar_automations.core.triggers import TriggerFilters
from litestar_automations.core.types import (
    ActionKind,
    AuditOutcome,
    BranchLabel,
    DelayUnit,
    EventContext,
    InstanceStatus,
    NodeKind,
    PredicateOperator,
    TriggerKind,
)

__all__ = [
    "ACTION_PARAM_MODELS",
    "IDEMPOTENT_UNSAFE_KINDS",
    "MISSING",
    "ActionFailure",
    "ActionInvoker",
    "ActionKind",
    "ActionNode",
    "ActionParams",
    "ActionResult",
    "ActionSuccess",
    "AuditEntry",
    "AuditOutcome",
    "AuditReader",
    "AuditRecorder",
    "AutomationGraph",
    "BranchLabel",
    "ConditionNode",
    "ConstantPredicate",
    "DelayNode",
    "DelayUnit",
    "Edge",
    "EventContext",
    "FieldPredicate",
    "InstanceStatus",
    "InstanceStore",
    "Node",
    "NodeKind",
    "Predicate",
    "PredicateOperator",
    "PredicateResult",
    "TagPredicate",
    "TriggerFilters",
    "TriggerKind",
    "TriggerNode",
    "WorkflowInstance",
    "is_idempotent_safe",
    "parse_predicate",
    "render_params",
    "render_template",
    "resolve_path",
    "validate_params",
]
