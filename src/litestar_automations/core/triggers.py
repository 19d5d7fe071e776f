"""Trigger filters.

A trigger node may narrow the events it reacts to: a specific WhatsApp
session or keyword for inbound messages, a specific stage transition, or a
specific tag. Filters that are not set always match.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from litestar_automations.core.types import TriggerKind

__all__ = ["TriggerFilters"]


@dataclass(frozen=True)
class TriggerFilters:
    """Optional constraints a trigger applies to incoming events.

    Only the filters relevant to the trigger kind are checked, so a filter
    left behind after the author switched the trigger kind has no effect.

    Attributes:
        session_id: ``message_received`` only: the session the message arrived on.
        keyword: ``message_received`` only: case-insensitive substring of ``message``.
        from_stage_id: ``lead_stage_changed`` only: required ``old_stage_id``.
        to_stage_id: ``lead_stage_changed`` only: required ``new_stage_id``.
        tag_id: ``tag_added``/``tag_removed`` only: required ``tag_id``.
        schedule_time: ``scheduled`` only. Informational for the trigger source.
        inactivity_days: ``inactivity`` only. Informational for the trigger source.
    """

    session_id: str | None = None
    keyword: str | None = None
    from_stage_id: str | None = None
    to_stage_id: str | None = None
    tag_id: str | None = None
    schedule_time: str | None = None
    inactivity_days: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TriggerFilters:
        """Pick the filter keys out of a trigger node's authored data.

        Empty strings count as unset, the way the editor stores cleared inputs.
        """
        values: dict[str, Any] = {}
        for name in ("session_id", "keyword", "from_stage_id", "to_stage_id", "tag_id", "schedule_time"):
            value = data.get(name)
            if value not in (None, ""):
                values[name] = str(value)
        days = data.get("inactivity_days")
        if days not in (None, ""):
            values["inactivity_days"] = int(days)
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}

    def matches(self, kind: TriggerKind, event_context: Mapping[str, Any]) -> bool:
        """Check whether an event passes the filters for a trigger kind.

        Args:
            kind: The trigger kind of the node owning the filters.
            event_context: The event data.

        Returns:
            True when every relevant filter is unset or satisfied.

        Example:
            >>> filters = TriggerFilters(keyword="price")
            >>> filters.matches(TriggerKind.MESSAGE_RECEIVED, {"message": "What is the PRICE?"})
            True
        """
        if kind == TriggerKind.MESSAGE_RECEIVED:
            if self.session_id and self.session_id != event_context.get("session_id"):
                return False
            if self.keyword:
                message = str(event_context.get("message") or "").lower()
                if self.keyword.lower() not in message:
                    return False
            return True

        if kind == TriggerKind.LEAD_STAGE_CHANGED:
            if self.from_stage_id and self.from_stage_id != event_context.get("old_stage_id"):
                return False
            return not (self.to_stage_id and self.to_stage_id != event_context.get("new_stage_id"))

        if kind in (TriggerKind.TAG_ADDED, TriggerKind.TAG_REMOVED):
            return not (self.tag_id and self.tag_id != event_context.get("tag_id"))

        return True
