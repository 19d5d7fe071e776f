"""Concrete data models for litestar-automations.

This module provides the dataclasses for runtime state: the workflow
instance advanced by the engine and the audit entries it appends.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from litestar_automations.core.types import AuditOutcome, InstanceStatus

__all__ = ["AuditEntry", "WorkflowInstance"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WorkflowInstance:
    """State of one execution of a plan, bound to one triggering event.

    Instances are persisted between steps and never held in memory across a
    suspension. The engine produces new states with :meth:`evolve` and leaves
    the loaded copy untouched, so a rejected save can be discarded cleanly.

    Attributes:
        id: Unique identifier for this instance.
        graph_id: Identifier of the automation graph.
        plan_version: Version of the plan the instance is bound to.
        current_node_id: Cursor: the node the next step visits.
        event_context: Data of the triggering event.
        status: Current execution status.
        resume_at: Earliest time the instance may be claimed again.
        attempts: Number of invocations per action node id.
        dispatching: Id of the action node whose invocation intent was
            persisted but whose outcome has not been recorded yet.
        owner: Worker currently holding the claim.
        version: Optimistic concurrency counter, bumped on every save.
        dedupe_key: Upstream event key used to make creation idempotent.
        error: Final error message when the instance failed.
        created_at: Timestamp when the instance was created.
        updated_at: Timestamp of the last save.
        completed_at: Timestamp when the instance reached a terminal status.
    """

    graph_id: str
    plan_version: str
    current_node_id: str
    event_context: dict[str, Any] = field(default_factory=dict)
    status: InstanceStatus = InstanceStatus.RUNNING
    resume_at: datetime | None = None
    attempts: dict[str, int] = field(default_factory=dict)
    dispatching: str | None = None
    owner: str | None = None
    version: int = 0
    dedupe_key: str | None = None
    error: str | None = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def evolve(self, **changes: Any) -> WorkflowInstance:
        """Return a copy with the given fields changed.

        ``attempts`` and ``event_context`` are copied so the two states never
        share mutable data.
        """
        changes.setdefault("attempts", dict(self.attempts))
        changes.setdefault("event_context", dict(self.event_context))
        return replace(self, **changes)

    def attempts_for(self, node_id: str) -> int:
        return self.attempts.get(node_id, 0)


@dataclass(frozen=True)
class AuditEntry:
    """Append-only record of one node visit.

    Attributes:
        instance_id: The instance the entry belongs to.
        node_id: The visited node, or ``None`` for instance-level events such
            as cancellation.
        outcome: What happened at the node.
        detail: Structured information (branch taken, error, retry time).
        timestamp: When the visit happened.
    """

    instance_id: UUID
    node_id: str | None
    outcome: AuditOutcome
    detail: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)
