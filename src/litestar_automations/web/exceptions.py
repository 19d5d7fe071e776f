"""Exception handling for automation web endpoints.

This module maps the library's exceptions to HTTP responses:
compile errors to 422, missing graphs, plans and instances to 404, and
concurrent or terminal-state conflicts to 409.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from litestar import Response
from litestar.status_codes import HTTP_404_NOT_FOUND, HTTP_409_CONFLICT, HTTP_422_UNPROCESSABLE_ENTITY

from litestar_automations.exceptions import (
    CompileError,
    GraphNotFoundError,
    InstanceNotFoundError,
    InstanceTerminalError,
    PlanNotFoundError,
    StoreConflictError,
)

if TYPE_CHECKING:  # pragma: no cover
    from litestar import Request

    from litestar_automations.exceptions import AutomationsError

__all__ = [
    "compile_error_handler",
    "conflict_handler",
    "exception_handlers",
    "not_found_handler",
]


def compile_error_handler(_request: Request, exc: CompileError) -> Response:
    """Exception handler for CompileError.

    Returns a 422 response listing every issue, so an editor can show all of
    them at once.

    Args:
        _request: The Litestar request object.
        exc: The CompileError exception.

    Returns:
        Response with the graph id and its compile issues.
    """
    return Response(
        content={
            "error": "compile_error",
            "graph_id": exc.graph_id,
            "message": str(exc),
            "issues": [asdict(issue) for issue in exc.issues],
        },
        status_code=HTTP_422_UNPROCESSABLE_ENTITY,
        media_type="application/json",
    )


def not_found_handler(_request: Request, exc: AutomationsError) -> Response:
    """Exception handler for missing graphs, plans and instances."""
    return Response(
        content={"error": "not_found", "message": str(exc)},
        status_code=HTTP_404_NOT_FOUND,
        media_type="application/json",
    )


def conflict_handler(_request: Request, exc: AutomationsError) -> Response:
    """Exception handler for store conflicts and operations on finished instances."""
    content: dict[str, Any] = {"error": "conflict", "message": str(exc)}
    if isinstance(exc, InstanceTerminalError):
        content["status"] = str(exc.status)
    return Response(
        content=content,
        status_code=HTTP_409_CONFLICT,
        media_type="application/json",
    )


exception_handlers: dict[type[Exception], Any] = {
    CompileError: compile_error_handler,
    GraphNotFoundError: not_found_handler,
    PlanNotFoundError: not_found_handler,
    InstanceNotFoundError: not_found_handler,
    StoreConflictError: conflict_handler,
    InstanceTerminalError: conflict_handler,
}
"""Handlers registered by :class:`~litestar_automations.plugin.AutomationPlugin`."""
