"""SQLAlchemy-backed instance store, audit recorder and graph store.

Every state change of an instance is a single-row conditional ``UPDATE``
(``WHERE version = :expected`` for saves, ``WHERE status = :from AND owner
IS NULL`` for claims), so any number of workers in any number of processes
can share one database.

Each operation runs in its own session obtained from the session maker and
commits before returning.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from litestar_automations.core.graph import AutomationGraph
from litestar_automations.core.models import AuditEntry, WorkflowInstance
from litestar_automations.db.models import AuditEntryModel, AutomationGraphModel, WorkflowInstanceModel
from litestar_automations.db.repositories import (
    AuditEntryRepository,
    AutomationGraphRepository,
    WorkflowInstanceRepository,
)
from litestar_automations.engine.compiler import compile_graph
from litestar_automations.exceptions import InstanceNotFoundError, StoreConflictError

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from litestar_automations.core.types import InstanceStatus
    from litestar_automations.engine.plan import ExecutionPlan
    from litestar_automations.engine.registry import PlanRegistry

__all__ = [
    "SQLAlchemyAuditRecorder",
    "SQLAlchemyGraphStore",
    "SQLAlchemyInstanceStore",
    "instance_from_model",
]

logger = logging.getLogger(__name__)

# Columns rewritten by a save; identity and creation data never change.
_MUTABLE_COLUMNS = (
    "current_node_id",
    "event_context",
    "status",
    "resume_at",
    "attempts",
    "dispatching",
    "owner",
    "error",
    "completed_at",
)


def instance_from_model(model: WorkflowInstanceModel) -> WorkflowInstance:
    """Convert a database row to a :class:`WorkflowInstance`."""
    return WorkflowInstance(
        id=model.id,
        graph_id=model.graph_id,
        plan_version=model.plan_version,
        current_node_id=model.current_node_id,
        event_context=dict(model.event_context or {}),
        status=model.status,
        resume_at=model.resume_at,
        attempts=dict(model.attempts or {}),
        dispatching=model.dispatching,
        owner=model.owner,
        version=model.version,
        dedupe_key=model.dedupe_key,
        error=model.error,
        created_at=model.created_at,
        updated_at=model.updated_at,
        completed_at=model.completed_at,
    )


def _instance_to_model(instance: WorkflowInstance) -> WorkflowInstanceModel:
    return WorkflowInstanceModel(
        id=instance.id,
        graph_id=instance.graph_id,
        plan_version=instance.plan_version,
        current_node_id=instance.current_node_id,
        event_context=dict(instance.event_context),
        status=instance.status,
        resume_at=instance.resume_at,
        attempts=dict(instance.attempts),
        dispatching=instance.dispatching,
        owner=instance.owner,
        version=instance.version,
        dedupe_key=instance.dedupe_key,
        error=instance.error,
        created_at=instance.created_at,
        updated_at=instance.updated_at,
        completed_at=instance.completed_at,
    )


def _entry_from_model(model: AuditEntryModel) -> AuditEntry:
    return AuditEntry(
        instance_id=model.instance_id,
        node_id=model.node_id,
        outcome=model.outcome,
        detail=dict(model.detail or {}),
        timestamp=model.timestamp,
    )


class SQLAlchemyInstanceStore:
    """:class:`~litestar_automations.core.protocols.InstanceStore` over SQLAlchemy.

    Attributes:
        session_maker: Factory for the sessions each operation runs in.

    Example:
        >>> session_maker = async_sessionmaker(engine, expire_on_commit=False)
        >>> store = SQLAlchemyInstanceStore(session_maker)
        >>> instance, created = await store.create(instance)
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_maker = session_maker
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def create(self, instance: WorkflowInstance) -> tuple[WorkflowInstance, bool]:
        async with self.session_maker() as session:
            repo = WorkflowInstanceRepository(session=session)
            if instance.dedupe_key is not None:
                existing = await repo.get_by_dedupe_key(instance.graph_id, instance.dedupe_key)
                if existing is not None:
                    return instance_from_model(existing), False

            session.add(_instance_to_model(instance))
            try:
                await session.commit()
            except IntegrityError:
                # A concurrent delivery of the same event won the insert.
                await session.rollback()
                if instance.dedupe_key is None:
                    raise
                existing = await repo.get_by_dedupe_key(instance.graph_id, instance.dedupe_key)
                if existing is None:
                    raise
                logger.debug("Lost dedupe race for %s/%s", instance.graph_id, instance.dedupe_key)
                return instance_from_model(existing), False
        return instance.evolve(), True

    async def load(self, instance_id: UUID) -> WorkflowInstance:
        async with self.session_maker() as session:
            model = await session.get(WorkflowInstanceModel, instance_id)
            if model is None:
                raise InstanceNotFoundError(instance_id)
            return instance_from_model(model)

    async def save(self, instance: WorkflowInstance, expected_version: int) -> WorkflowInstance:
        now = self._clock()
        values: dict[str, Any] = {column: getattr(instance, column) for column in _MUTABLE_COLUMNS}
        values["event_context"] = dict(instance.event_context)
        values["attempts"] = dict(instance.attempts)
        values["version"] = expected_version + 1
        values["updated_at"] = now

        stmt = (
            update(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.id == instance.id,
                WorkflowInstanceModel.version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                actual = await session.scalar(
                    select(WorkflowInstanceModel.version).where(WorkflowInstanceModel.id == instance.id)
                )
                await session.rollback()
                if actual is None:
                    raise InstanceNotFoundError(instance.id)
                raise StoreConflictError(instance.id, expected_version, actual)
            await session.commit()
        return instance.evolve(version=expected_version + 1, updated_at=now)

    async def claim(
        self,
        instance_id: UUID,
        from_status: InstanceStatus,
        to_status: InstanceStatus,
        owner: str | None = None,
    ) -> WorkflowInstance | None:
        stmt = (
            update(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.id == instance_id,
                WorkflowInstanceModel.status == from_status,
                WorkflowInstanceModel.owner.is_(None),
            )
            .values(
                status=to_status,
                owner=owner,
                version=WorkflowInstanceModel.version + 1,
                updated_at=self._clock(),
            )
            .execution_options(synchronize_session=False)
        )
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                await session.rollback()
                return None
            model = await session.scalar(
                select(WorkflowInstanceModel)
                .where(WorkflowInstanceModel.id == instance_id)
                .execution_options(populate_existing=True)
            )
            claimed = instance_from_model(model)
            await session.commit()
        return claimed

    async def list_due(self, now: datetime, limit: int) -> list[WorkflowInstance]:
        async with self.session_maker() as session:
            repo = WorkflowInstanceRepository(session=session)
            return [instance_from_model(model) for model in await repo.find_due(now, limit)]

    async def list_stale(self, before: datetime, limit: int) -> list[WorkflowInstance]:
        async with self.session_maker() as session:
            repo = WorkflowInstanceRepository(session=session)
            return [instance_from_model(model) for model in await repo.find_stale(before, limit)]

    async def list_for_graph(
        self,
        graph_id: str,
        status: InstanceStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[WorkflowInstance], int]:
        async with self.session_maker() as session:
            repo = WorkflowInstanceRepository(session=session)
            models, total = await repo.find_by_graph(graph_id, status=status, limit=limit, offset=offset)
            return [instance_from_model(model) for model in models], total


class SQLAlchemyAuditRecorder:
    """Audit recorder and reader over the ``automation_audit_entries`` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def append(self, entry: AuditEntry) -> None:
        async with self.session_maker() as session:
            session.add(
                AuditEntryModel(
                    instance_id=entry.instance_id,
                    node_id=entry.node_id,
                    outcome=entry.outcome,
                    detail=dict(entry.detail),
                    timestamp=entry.timestamp,
                )
            )
            await session.commit()

    async def list_for_instance(self, instance_id: UUID) -> list[AuditEntry]:
        async with self.session_maker() as session:
            repo = AuditEntryRepository(session=session)
            return [_entry_from_model(model) for model in await repo.find_by_instance(instance_id)]


class SQLAlchemyGraphStore:
    """Persists authored graphs so plans survive restarts.

    In-flight instances stay bound to the plan version they were created
    with, so every saved version is kept and reloaded into the registry on
    startup.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def save(self, graph: AutomationGraph, plan: ExecutionPlan) -> AutomationGraphModel:
        """Store a compiled graph version and mark it as the latest.

        Saving a version that is already stored only moves the latest
        marker back to it.

        Args:
            graph: The authored graph.
            plan: Its compiled plan.

        Returns:
            The stored row.
        """
        async with self.session_maker() as session:
            repo = AutomationGraphRepository(session=session)
            await session.execute(
                update(AutomationGraphModel)
                .where(
                    AutomationGraphModel.graph_id == graph.graph_id,
                    AutomationGraphModel.plan_version != plan.plan_version,
                )
                .values(is_latest=False)
                .execution_options(synchronize_session=False)
            )
            model = await repo.get_by_plan_version(plan.plan_version)
            if model is None:
                model = AutomationGraphModel(
                    graph_id=graph.graph_id,
                    version=graph.version,
                    plan_version=plan.plan_version,
                    name=graph.name,
                    description=graph.description,
                    enabled=graph.enabled,
                    is_latest=True,
                    definition_json=graph.to_dict(),
                )
                session.add(model)
            else:
                model.is_latest = True
            await session.commit()
            await session.refresh(model)
            return model

    async def get_latest(self, graph_id: str) -> AutomationGraph | None:
        async with self.session_maker() as session:
            model = await AutomationGraphRepository(session=session).get_latest(graph_id)
            return None if model is None else AutomationGraph.from_dict(model.definition_json)

    async def list_latest(self) -> list[AutomationGraph]:
        async with self.session_maker() as session:
            models = await AutomationGraphRepository(session=session).list_latest()
            return [AutomationGraph.from_dict(model.definition_json) for model in models]

    async def delete(self, graph_id: str) -> int:
        """Delete every stored version of a graph.

        Returns:
            Number of versions deleted.
        """
        async with self.session_maker() as session:
            models = await AutomationGraphRepository(session=session).list_versions(graph_id)
            for model in models:
                await session.delete(model)
            await session.commit()
        if models:
            logger.info("Deleted %d stored version(s) of graph %s", len(models), graph_id)
        return len(models)

    async def load_into(self, registry: PlanRegistry) -> int:
        """Compile every stored version into a registry.

        Args:
            registry: The registry to fill.

        Returns:
            Number of plans loaded.
        """
        async with self.session_maker() as session:
            models = await AutomationGraphRepository(session=session).list_all()
            rows = [(model.definition_json, model.plan_version, model.is_latest) for model in models]

        for definition, stored_version, is_latest in rows:
            plan = compile_graph(AutomationGraph.from_dict(definition), registry.config)
            if plan.plan_version != stored_version:
                logger.warning(
                    "Stored plan %s recompiled as %s; instances bound to it cannot resume",
                    stored_version,
                    plan.plan_version,
                )
            registry.add_plan(plan, latest=is_latest)
        logger.info("Loaded %d stored plan(s)", len(rows))
        return len(rows)
