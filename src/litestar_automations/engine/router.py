"""Action routing.

The :class:`ActionRouter` is an :class:`~litestar_automations.core.protocols.ActionInvoker`
that dispatches each action kind to an application-provided handler, so the
integrations behind actions (WhatsApp provider, email, CRM updates, HTTP
webhooks) stay outside the engine.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Mapping
from typing import Any, TypeAlias

from litestar_automations.core.protocols import ActionFailure, ActionResult, ActionSuccess
from litestar_automations.core.types import ActionKind

__all__ = ["ActionHandler", "ActionRouter"]

logger = logging.getLogger(__name__)

ActionHandler: TypeAlias = Callable[[dict[str, Any], Mapping[str, Any]], Any]
"""Handler signature: ``(params, event_context) -> result``; may be sync or async."""


class ActionRouter:
    """Dispatches action kinds to registered handlers.

    A handler receives the rendered parameters and the event context. It may
    return ``None`` or a dict (success), an ``ActionSuccess`` or
    ``ActionFailure``, or raise. ``PermanentActionError`` fails the instance
    at once; any other exception is retried.

    Kinds without a handler fail permanently.

    Example:
        >>> router = ActionRouter()
        >>> @router.handler(ActionKind.ADD_TAG)
        ... async def add_tag(params, event_context):
        ...     await crm.add_tag(event_context["lead_id"], params["tag_id"])
    """

    def __init__(self, handlers: Mapping[ActionKind | str, ActionHandler] | None = None) -> None:
        self._handlers: dict[ActionKind, ActionHandler] = {}
        for kind, handler in (handlers or {}).items():
            self.register(kind, handler)

    def register(self, kind: ActionKind | str, handler: ActionHandler) -> None:
        """Register the handler of an action kind, replacing any previous one."""
        self._handlers[ActionKind(kind)] = handler

    def handler(self, kind: ActionKind | str) -> Callable[[ActionHandler], ActionHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(func: ActionHandler) -> ActionHandler:
            self.register(kind, func)
            return func

        return decorator

    def has_handler(self, kind: ActionKind | str) -> bool:
        return ActionKind(kind) in self._handlers

    async def invoke(
        self,
        kind: ActionKind,
        params: dict[str, Any],
        event_context: Mapping[str, Any],
    ) -> ActionResult:
        handler = self._handlers.get(ActionKind(kind))
        if handler is None:
            logger.error("No handler registered for action kind %s", kind)
            return ActionFailure(f"No handler registered for action '{kind}'", permanent=True)

        outcome = handler(params, event_context)
        if inspect.isawaitable(outcome):
            outcome = await outcome

        if isinstance(outcome, (ActionSuccess, ActionFailure)):
            return outcome
        if outcome is None:
            return ActionSuccess()
        if isinstance(outcome, Mapping):
            return ActionSuccess(dict(outcome))
        return ActionSuccess({"result": outcome})
