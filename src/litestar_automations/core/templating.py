"""Variable substitution for action parameters.

String parameters may reference the event context with ``{{path}}``
placeholders, e.g. ``"Hi {{lead.name}}"``. ``{{date}}`` and ``{{time}}``
expand to the current date (``dd/mm/yyyy``) and time (``HH:MM:SS``) unless the
event context defines those keys itself. Placeholders that do not resolve
render as an empty string.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from litestar_automations.core.context import MISSING, resolve_path

__all__ = ["render_params", "render_template"]

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.-]+)\s*\}\}")


def render_template(template: str, context: Mapping[str, Any], now: datetime | None = None) -> str:
    """Substitute ``{{path}}`` placeholders in a string.

    Args:
        template: The string to render.
        context: The event context.
        now: Timestamp used for ``{{date}}`` and ``{{time}}``.

    Returns:
        The rendered string.

    Example:
        >>> render_template("Hi {{lead.name}}!", {"lead": {"name": "Ana"}})
        'Hi Ana!'
        >>> render_template("Hi {{lead.nickname}}!", {})
        'Hi !'
    """
    moment = now or datetime.now(timezone.utc)
    builtins = {"date": moment.strftime("%d/%m/%Y"), "time": moment.strftime("%H:%M:%S")}

    def substitute(match: re.Match[str]) -> str:
        path = match.group(1)
        value = resolve_path(context, path)
        if value is MISSING:
            value = builtins.get(path, "")
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(substitute, template)


def render_params(params: Any, context: Mapping[str, Any], now: datetime | None = None) -> Any:
    """Render every string inside a parameter payload.

    Dicts and lists are walked recursively; other values are returned as-is.
    """
    if isinstance(params, str):
        return render_template(params, context, now)
    if isinstance(params, Mapping):
        return {key: render_params(value, context, now) for key, value in params.items()}
    if isinstance(params, list):
        return [render_params(item, context, now) for item in params]
    return params
