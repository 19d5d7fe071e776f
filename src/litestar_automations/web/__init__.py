"""Web layer for litestar-automations.

This module provides REST API controllers for saving automation graphs,
reporting events and inspecting workflow instances. The REST API is
automatically enabled when using AutomationPlugin with enable_api=True (the
default).

Example:
    Basic usage with AutomationPlugin (API enabled by default)::

        from litestar import Litestar
        from litestar_automations import AutomationPlugin, AutomationPluginConfig

        app = Litestar(
            plugins=[
                AutomationPlugin(
                    config=AutomationPluginConfig(
                        enable_api=True,  # Default
                        api_path_prefix="/automations",
                    )
                ),
            ],
        )

    With authentication guards::

        config = AutomationPluginConfig(
            api_path_prefix="/api/v1/automations",
            api_guards=[require_auth_guard],
        )
"""

from __future__ import annotations

from litestar_automations.web.controllers import (
    AutomationEventController,
    AutomationGraphController,
    WorkflowInstanceController,
)
from litestar_automations.web.dto import (
    AuditEntryDTO,
    AutomationGraphDetailDTO,
    AutomationGraphDTO,
    DispatchEventDTO,
    EmitEventDTO,
    EventResultDTO,
    GraphDTO,
    WorkflowInstanceDetailDTO,
    WorkflowInstanceDTO,
)
from litestar_automations.web.exceptions import (
    compile_error_handler,
    conflict_handler,
    exception_handlers,
    not_found_handler,
)
from litestar_automations.web.graph import (
    generate_mermaid_graph,
    generate_mermaid_graph_with_state,
    node_states_from_audit,
    parse_plan_to_dict,
)

__all__ = [
    "AuditEntryDTO",
    "AutomationEventController",
    "AutomationGraphController",
    "AutomationGraphDTO",
    "AutomationGraphDetailDTO",
    "DispatchEventDTO",
    "EmitEventDTO",
    "EventResultDTO",
    "GraphDTO",
    "WorkflowInstanceController",
    "WorkflowInstanceDTO",
    "WorkflowInstanceDetailDTO",
    "compile_error_handler",
    "conflict_handler",
    "exception_handlers",
    "generate_mermaid_graph",
    "generate_mermaid_graph_with_state",
    "node_states_from_audit",
    "not_found_handler",
    "parse_plan_to_dict",
]
