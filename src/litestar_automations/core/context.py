"""Event context lookups.

Conditions and parameter templates address values in the triggering event's
data with dotted paths such as ``lead.stage_id`` or ``tags``. This module
resolves those paths without raising.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Final

__all__ = ["MISSING", "resolve_path"]


class _Missing:
    """Sentinel type for values absent from the event context."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Final = _Missing()
"""Returned by :func:`resolve_path` when a path does not resolve."""


def resolve_path(context: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path against the event context.

    Mapping keys are looked up by name and sequences by integer index, so
    ``lead.phones.0`` reaches the first phone of the lead.

    Args:
        context: The event context.
        path: Dotted path to resolve.

    Returns:
        The resolved value, or :data:`MISSING` if any segment is absent.

    Example:
        >>> resolve_path({"lead": {"name": "Ana"}}, "lead.name")
        'Ana'
        >>> resolve_path({}, "lead.name")
        MISSING
    """
    current: Any = context
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            try:
                current = current[int(segment)]
            except (ValueError, IndexError):
                return MISSING
        else:
            return MISSING
    return current
