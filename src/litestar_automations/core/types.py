"""Core type definitions for litestar-automations.

This module defines the closed enumerations and type aliases used throughout
the automation engine. Open-ended strings only appear at the authoring
boundary; everything past the compiler works with these enums.
"""

from __future__ import annotations

import sys
from enum import Enum
from typing import Any, TypeAlias

# StrEnum backport for Python < 3.11
if sys.version_info >= (3, 11):
    from enum import StrEnum
else:

    class StrEnum(str, Enum):
        """String enumeration compatibility for Python < 3.11."""

        def __str__(self) -> str:
            return str(self.value)


__all__ = [
    "ActionKind",
    "AuditOutcome",
    "BranchLabel",
    "EventContext",
    "DelayUnit",
    "InstanceStatus",
    "NodeKind",
    "PredicateOperator",
    "TriggerKind",
]


class NodeKind(StrEnum):
    """Classification of graph nodes.

    Attributes:
        TRIGGER: Entry point of the graph, fired by an external event.
        CONDITION: Binary branch evaluated against the event context.
        ACTION: Side-effecting step delegated to the action invoker.
        DELAY: Timed suspension of the instance.
    """

    TRIGGER = "trigger"
    CONDITION = "condition"
    ACTION = "action"
    DELAY = "delay"


class TriggerKind(StrEnum):
    """Kinds of events that can start an automation."""

    MANUAL = "manual"
    MESSAGE_RECEIVED = "message_received"
    LEAD_CREATED = "lead_created"
    LEAD_STAGE_CHANGED = "lead_stage_changed"
    TAG_ADDED = "tag_added"
    TAG_REMOVED = "tag_removed"
    SCHEDULED = "scheduled"
    INACTIVITY = "inactivity"


class ActionKind(StrEnum):
    """Closed set of side effects an action node can request."""

    SEND_WHATSAPP = "send_whatsapp"
    SEND_EMAIL = "send_email"
    MOVE_STAGE = "move_stage"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    ASSIGN_USER = "assign_user"
    CREATE_TASK = "create_task"
    SEND_NOTIFICATION = "send_notification"
    WEBHOOK = "webhook"


class DelayUnit(StrEnum):
    """Time units accepted by delay nodes."""

    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"

    @property
    def seconds(self) -> int:
        """Number of seconds in one unit."""
        return _UNIT_SECONDS[self]


_UNIT_SECONDS = {
    DelayUnit.MINUTES: 60,
    DelayUnit.HOURS: 60 * 60,
    DelayUnit.DAYS: 24 * 60 * 60,
}


class BranchLabel(StrEnum):
    """Labels of the two edges leaving a condition node."""

    TRUE = "true"
    FALSE = "false"

    @classmethod
    def from_outcome(cls, outcome: bool) -> BranchLabel:
        """Map a predicate outcome to its branch label."""
        return cls.TRUE if outcome else cls.FALSE


class PredicateOperator(StrEnum):
    """Comparison operators for field predicates."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class InstanceStatus(StrEnum):
    """Overall status of a workflow instance.

    Attributes:
        RUNNING: Ready to step, or being stepped by the worker that owns the claim.
        WAITING_DELAY: Suspended until ``resume_at`` (delay node or retry backoff).
        SUCCEEDED: Left a node with no successor.
        FAILED: Exhausted retries, hit a permanent failure, or lost an unsafe action.
        CANCELLED: Cancelled by an external request.
    """

    RUNNING = "running"
    WAITING_DELAY = "waiting_delay"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether no further step will ever run for this status."""
        return self in (InstanceStatus.SUCCEEDED, InstanceStatus.FAILED, InstanceStatus.CANCELLED)


class AuditOutcome(StrEnum):
    """Outcome recorded by an audit entry."""

    TRIGGERED = "triggered"
    CONDITION_TRUE = "condition_true"
    CONDITION_FALSE = "condition_false"
    ACTION_DISPATCHED = "action_dispatched"
    ACTION_SUCCEEDED = "action_succeeded"
    ACTION_FAILED = "action_failed"
    DELAYED = "delayed"
    RECOVERED = "recovered"
    CANCELLED = "cancelled"
    CANCELLED_POST_HOC = "cancelled_post_hoc"
    FAILED = "failed"


# Type aliases for instance data
EventContext: TypeAlias = dict[str, Any]
"""Type alias for the triggering event's data dictionary."""
