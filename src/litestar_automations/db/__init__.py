"""Database persistence layer for litestar-automations.

This module provides SQLAlchemy models, repositories and the SQLAlchemy
implementations of the instance store and audit recorder, so instances
survive restarts and can be shared by workers in several processes.
"""

from __future__ import annotations

from litestar_automations.db.models import AuditEntryModel, AutomationGraphModel, WorkflowInstanceModel
from litestar_automations.db.repositories import (
    AuditEntryRepository,
    AutomationGraphRepository,
    WorkflowInstanceRepository,
)
from litestar_automations.db.store import (
    SQLAlchemyAuditRecorder,
    SQLAlchemyGraphStore,
    SQLAlchemyInstanceStore,
    instance_from_model,
)

__all__ = [
    "AuditEntryModel",
    "AuditEntryRepository",
    "AutomationGraphModel",
    "AutomationGraphRepository",
    "SQLAlchemyAuditRecorder",
    "SQLAlchemyGraphStore",
    "SQLAlchemyInstanceStore",
    "WorkflowInstanceModel",
    "WorkflowInstanceRepository",
    "instance_from_model",
]
