"""Litestar plugin for automation integration.

This module provides the AutomationPlugin for seamless integration of
litestar-automations with Litestar applications.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar.di import Provide
from litestar.plugins import InitPluginProtocol

from litestar_automations.core.graph import AutomationGraph
from litestar_automations.db.store import SQLAlchemyGraphStore  # noqa: TC001 - needed for DI
from litestar_automations.engine.executor import AutomationEngine
from litestar_automations.engine.intake import EventIntake
from litestar_automations.engine.memory import InMemoryAuditRecorder, InMemoryInstanceStore
from litestar_automations.engine.registry import PlanRegistry
from litestar_automations.engine.router import ActionRouter
from litestar_automations.engine.worker import AutomationWorker

if TYPE_CHECKING:
    from litestar import Litestar
    from litestar.config.app import AppConfig

    from litestar_automations.config import EngineConfig
    from litestar_automations.core.protocols import ActionInvoker, AuditRecorder, InstanceStore

__all__ = ["AutomationPlugin", "AutomationPluginConfig"]


@dataclass
class AutomationPluginConfig:
    """Configuration for the AutomationPlugin.

    Attributes:
        engine_config: Engine options. Defaults to the registry's configuration.
        registry: Optional pre-configured PlanRegistry.
        store: Instance store. Defaults to an in-memory store.
        recorder: Audit recorder. Defaults to an in-memory recorder.
        invoker: Action invoker. Defaults to an empty ActionRouter, to which
            handlers can be added through :attr:`AutomationPlugin.router`.
        graph_store: Optional graph store. Saved graphs are persisted to it
            and its stored plans are loaded into the registry on startup.
        auto_register_graphs: Graphs (or their authored JSON) to register
            when the app is initialized.
        run_worker: Whether to run an AutomationWorker while the app is up.
        worker_id: Identifier of the worker; generated if omitted.
        poll_interval: Seconds the worker waits when nothing is due.
        sweep_interval: Seconds between two stale-claim sweeps.
        dependency_key_registry: DI key of the PlanRegistry.
        dependency_key_engine: DI key of the AutomationEngine.
        dependency_key_intake: DI key of the EventIntake.
        dependency_key_graph_store: DI key of the graph store.
        enable_api: Whether to enable the REST API endpoints. Defaults to True.
        api_path_prefix: URL path prefix for all automation API endpoints.
        api_guards: List of Litestar guards to apply to all automation API endpoints.
        api_tags: OpenAPI tags to apply to automation API endpoints.
        include_api_in_schema: Whether to include API endpoints in OpenAPI schema.
    """

    engine_config: EngineConfig | None = None
    registry: PlanRegistry | None = None
    store: InstanceStore | None = None
    recorder: AuditRecorder | None = None
    invoker: ActionInvoker | None = None
    graph_store: SQLAlchemyGraphStore | None = None
    auto_register_graphs: list[AutomationGraph | Mapping[str, Any]] = field(default_factory=list)
    run_worker: bool = False
    worker_id: str | None = None
    poll_interval: float = 1.0
    sweep_interval: float = 60.0
    dependency_key_registry: str = "automation_registry"
    dependency_key_engine: str = "automation_engine"
    dependency_key_intake: str = "automation_intake"
    dependency_key_graph_store: str = "automation_graph_store"
    enable_api: bool = True
    api_path_prefix: str = "/automations"
    api_guards: list[Any] = field(default_factory=list)
    api_tags: list[str] = field(default_factory=lambda: ["Automations"])
    include_api_in_schema: bool = True


class AutomationPlugin(InitPluginProtocol):
    """Litestar plugin for CRM automations.

    This plugin wires the plan registry, engine, event intake and optional
    worker together, provides them through dependency injection and
    registers the REST API.

    Example:
        Basic usage with an action handler::

            from litestar import Litestar
            from litestar_automations import ActionKind, AutomationPlugin, AutomationPluginConfig

            plugin = AutomationPlugin(AutomationPluginConfig(run_worker=True))


            @plugin.router.handler(ActionKind.SEND_WHATSAPP)
            async def send_whatsapp(params, event_context):
                await whatsapp.send(event_context["conversation_id"], params["message"])


            app = Litestar(plugins=[plugin])

        Reporting events from a route handler::

            from litestar import post
            from litestar_automations import EventIntake


            @post("/webhooks/messages")
            async def on_message(data: dict, automation_intake: EventIntake) -> None:
                await automation_intake.dispatch("message_received", data, dedupe_key=data["message_id"])
    """

    __slots__ = ("_config", "_engine", "_intake", "_registry", "_router", "_worker")

    def __init__(self, config: AutomationPluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or AutomationPluginConfig()
        self._router = self._config.invoker if isinstance(self._config.invoker, ActionRouter) else ActionRouter()
        self._registry: PlanRegistry | None = None
        self._engine: AutomationEngine | None = None
        self._intake: EventIntake | None = None
        self._worker: AutomationWorker | None = None

    @property
    def config(self) -> AutomationPluginConfig:
        return self._config

    @property
    def router(self) -> ActionRouter:
        """Action router used as the invoker unless another invoker is configured."""
        return self._router

    @property
    def registry(self) -> PlanRegistry:
        """Get the plan registry.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._registry is None:
            msg = "AutomationPlugin has not been initialized. Access registry after app startup."
            raise RuntimeError(msg)
        return self._registry

    @property
    def engine(self) -> AutomationEngine:
        """Get the automation engine.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._engine is None:
            msg = "AutomationPlugin has not been initialized. Access engine after app startup."
            raise RuntimeError(msg)
        return self._engine

    @property
    def intake(self) -> EventIntake:
        """Get the event intake.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._intake is None:
            msg = "AutomationPlugin has not been initialized. Access intake after app startup."
            raise RuntimeError(msg)
        return self._intake

    @property
    def worker(self) -> AutomationWorker | None:
        return self._worker

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Initialize the plugin when the Litestar app starts.

        This method:
        1. Creates or uses the provided PlanRegistry, store and recorder
        2. Creates the AutomationEngine and EventIntake
        3. Registers any auto_register_graphs
        4. Adds dependency providers to the app config
        5. Optionally registers REST API controllers if enable_api=True
        6. Adds startup/shutdown hooks loading stored graphs and running the worker

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.
        """
        config = self._config

        # Initialize registry
        self._registry = config.registry if config.registry is not None else PlanRegistry(config.engine_config)
        store = config.store if config.store is not None else InMemoryInstanceStore()
        recorder = config.recorder if config.recorder is not None else InMemoryAuditRecorder()

        # Initialize engine and intake
        self._engine = AutomationEngine(
            registry=self._registry,
            store=store,
            recorder=recorder,
            invoker=config.invoker if config.invoker is not None else self._router,
            config=config.engine_config,
        )
        self._intake = EventIntake(self._registry, store)

        # Auto-register graphs
        for graph in config.auto_register_graphs:
            self._registry.register(graph if isinstance(graph, AutomationGraph) else AutomationGraph.from_dict(graph))

        if config.run_worker:
            self._worker = AutomationWorker(
                self._engine,
                worker_id=config.worker_id,
                poll_interval=config.poll_interval,
                sweep_interval=config.sweep_interval,
            )

        # Create dependency providers
        def provide_registry() -> PlanRegistry:
            return self._registry  # type: ignore[return-value]

        def provide_engine() -> AutomationEngine:
            return self._engine  # type: ignore[return-value]

        def provide_intake() -> EventIntake:
            return self._intake  # type: ignore[return-value]

        def provide_graph_store() -> SQLAlchemyGraphStore | None:
            return config.graph_store

        # Add dependencies to app config
        app_config.dependencies[config.dependency_key_registry] = Provide(provide_registry, sync_to_thread=False)
        app_config.dependencies[config.dependency_key_engine] = Provide(provide_engine, sync_to_thread=False)
        app_config.dependencies[config.dependency_key_intake] = Provide(provide_intake, sync_to_thread=False)
        app_config.dependencies[config.dependency_key_graph_store] = Provide(
            provide_graph_store,
            sync_to_thread=False,
        )

        # Register REST API controllers if enabled
        if config.enable_api:
            from litestar import Router

            from litestar_automations.web.controllers import (
                AutomationEventController,
                AutomationGraphController,
                WorkflowInstanceController,
            )
            from litestar_automations.web.exceptions import exception_handlers

            automation_router = Router(
                path=config.api_path_prefix,
                route_handlers=[AutomationGraphController, AutomationEventController, WorkflowInstanceController],
                guards=config.api_guards,
                tags=config.api_tags,
                include_in_schema=config.include_api_in_schema,
            )
            app_config.route_handlers.append(automation_router)

            for exc_type, handler in exception_handlers.items():
                app_config.exception_handlers.setdefault(exc_type, handler)

        app_config.on_startup.append(self._on_startup)
        app_config.on_shutdown.append(self._on_shutdown)

        return app_config

    async def _on_startup(self, _app: Litestar) -> None:
        if self._config.graph_store is not None:
            await self._config.graph_store.load_into(self.registry)
        if self._worker is not None:
            self._worker.start()

    async def _on_shutdown(self, _app: Litestar) -> None:
        if self._worker is not None:
            await self._worker.stop()
