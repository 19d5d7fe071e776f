"""Repository implementations for automation persistence.

This module provides async repositories for queries on the automation
models using advanced-alchemy's repository pattern.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from advanced_alchemy.filters import LimitOffset, OrderBy
from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import and_, or_, select

from litestar_automations.core.types import InstanceStatus
from litestar_automations.db.models import AuditEntryModel, AutomationGraphModel, WorkflowInstanceModel

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

__all__ = [
    "AuditEntryRepository",
    "AutomationGraphRepository",
    "WorkflowInstanceRepository",
]

_DUE_STATUSES = (InstanceStatus.RUNNING, InstanceStatus.WAITING_DELAY)


class AutomationGraphRepository(SQLAlchemyAsyncRepository[AutomationGraphModel]):
    """Repository for saved automation graph versions."""

    model_type = AutomationGraphModel

    async def get_latest(self, graph_id: str) -> AutomationGraphModel | None:
        """Get the version new events bind to.

        Args:
            graph_id: The graph id.

        Returns:
            The latest saved version, or None if the graph was never saved.
        """
        stmt = select(AutomationGraphModel).where(
            and_(
                AutomationGraphModel.graph_id == graph_id,
                AutomationGraphModel.is_latest == True,  # noqa: E712
            )
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_by_plan_version(self, plan_version: str) -> AutomationGraphModel | None:
        stmt = select(AutomationGraphModel).where(AutomationGraphModel.plan_version == plan_version)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_versions(self, graph_id: str) -> Sequence[AutomationGraphModel]:
        """Get every saved version of a graph, oldest first."""
        stmt = (
            select(AutomationGraphModel)
            .where(AutomationGraphModel.graph_id == graph_id)
            .order_by(AutomationGraphModel.created_at.asc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_latest(self) -> Sequence[AutomationGraphModel]:
        """Get the latest version of every saved graph."""
        stmt = (
            select(AutomationGraphModel)
            .where(AutomationGraphModel.is_latest == True)  # noqa: E712
            .order_by(AutomationGraphModel.graph_id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_all(self) -> Sequence[AutomationGraphModel]:
        """Get every saved version of every graph, oldest first."""
        stmt = select(AutomationGraphModel).order_by(AutomationGraphModel.created_at.asc())
        result = await self.session.execute(stmt)
        return result.scalars().all()


class WorkflowInstanceRepository(SQLAlchemyAsyncRepository[WorkflowInstanceModel]):
    """Repository for workflow instance queries.

    Mutations of instance state go through
    :class:`~litestar_automations.db.store.SQLAlchemyInstanceStore`, which
    performs them as conditional updates.
    """

    model_type = WorkflowInstanceModel

    async def get_by_dedupe_key(self, graph_id: str, dedupe_key: str) -> WorkflowInstanceModel | None:
        stmt = select(WorkflowInstanceModel).where(
            and_(
                WorkflowInstanceModel.graph_id == graph_id,
                WorkflowInstanceModel.dedupe_key == dedupe_key,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_due(self, now: datetime, limit: int) -> Sequence[WorkflowInstanceModel]:
        """Find unowned instances ready to run at ``now``.

        Args:
            now: Reference time.
            limit: Maximum number of rows.

        Returns:
            Due instances, immediately runnable ones first, then by resume time.
        """
        stmt = (
            select(WorkflowInstanceModel)
            .where(
                and_(
                    WorkflowInstanceModel.status.in_(_DUE_STATUSES),
                    WorkflowInstanceModel.owner.is_(None),
                    or_(
                        WorkflowInstanceModel.resume_at.is_(None),
                        WorkflowInstanceModel.resume_at <= now,
                    ),
                )
            )
            .order_by(
                WorkflowInstanceModel.resume_at.asc().nullsfirst(),
                WorkflowInstanceModel.created_at.asc(),
            )
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_stale(self, before: datetime, limit: int) -> Sequence[WorkflowInstanceModel]:
        """Find claimed instances whose owner stopped saving before ``before``."""
        stmt = (
            select(WorkflowInstanceModel)
            .where(
                and_(
                    WorkflowInstanceModel.status == InstanceStatus.RUNNING,
                    WorkflowInstanceModel.owner.is_not(None),
                    WorkflowInstanceModel.updated_at < before,
                )
            )
            .order_by(WorkflowInstanceModel.updated_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_by_graph(
        self,
        graph_id: str,
        status: InstanceStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[Sequence[WorkflowInstanceModel], int]:
        """Find instances of a graph, newest first.

        Args:
            graph_id: The graph id.
            status: Optional status filter.
            limit: Maximum number of results.
            offset: Number of results to skip.

        Returns:
            Tuple of (instances, total_count).
        """
        filters: list = [WorkflowInstanceModel.graph_id == graph_id]
        if status:
            filters.append(WorkflowInstanceModel.status == status)

        return await self.list_and_count(
            *filters,
            LimitOffset(limit=limit, offset=offset),
            OrderBy(field_name="created_at", sort_order="desc"),
        )


class AuditEntryRepository(SQLAlchemyAsyncRepository[AuditEntryModel]):
    """Repository for the append-only audit trail."""

    model_type = AuditEntryModel

    async def find_by_instance(self, instance_id: UUID) -> Sequence[AuditEntryModel]:
        """Get the entries of an instance in append order."""
        stmt = (
            select(AuditEntryModel).where(AuditEntryModel.instance_id == instance_id).order_by(AuditEntryModel.id.asc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()
