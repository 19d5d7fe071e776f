"""Condition predicates.

Predicates form a small closed set. Evaluation is pure and total: it never
raises and always yields ``True`` or ``False``. When a predicate cannot be
resolved (for example it compares a field the event does not carry) the
result is ``False`` and ``resolved`` is cleared so the engine can audit it as
``PredicateUnresolved``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from litestar_automations.core.context import MISSING, resolve_path
from litestar_automations.core.types import PredicateOperator

__all__ = [
    "ConstantPredicate",
    "FieldPredicate",
    "Predicate",
    "PredicateResult",
    "TagPredicate",
    "parse_predicate",
]

UNRESOLVED = "PredicateUnresolved"


@dataclass(frozen=True)
class PredicateResult:
    """Outcome of evaluating a predicate.

    Attributes:
        matched: The boolean outcome used to pick the branch.
        resolved: False when the outcome defaulted to ``False`` because the
            predicate could not be evaluated.
        detail: Free-form information for the audit trail.
    """

    matched: bool
    resolved: bool = True
    detail: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def unresolved(cls, reason: str, **detail: Any) -> PredicateResult:
        return cls(matched=False, resolved=False, detail={"reason": UNRESOLVED, "cause": reason, **detail})


def _is_empty(value: Any) -> bool:
    if value is MISSING or value is None:
        return True
    if isinstance(value, (str, bytes, Mapping, Sequence, set, frozenset)):
        return len(value) == 0
    return False


def _equals(actual: Any, expected: Any) -> bool:
    if actual == expected:
        return True
    # Authored values arrive as strings from the editor.
    if isinstance(expected, str) and isinstance(actual, (int, float, bool)):
        return str(actual).lower() == expected.lower() if isinstance(actual, bool) else str(actual) == expected
    return False


@dataclass(frozen=True)
class FieldPredicate:
    """Compare a value of the event context.

    Attributes:
        field: Dotted path into the event context.
        operator: The comparison to apply.
        value: Operand for ``equals``, ``not_equals`` and ``contains``.

    Example:
        >>> FieldPredicate("lead.stage_id", PredicateOperator.EQUALS, "won").evaluate(
        ...     {"lead": {"stage_id": "won"}}
        ... ).matched
        True
    """

    field: str
    operator: PredicateOperator
    value: Any = None

    def evaluate(self, context: Mapping[str, Any]) -> PredicateResult:
        actual = resolve_path(context, self.field)
        detail = {"field": self.field, "operator": str(self.operator)}

        if self.operator == PredicateOperator.IS_EMPTY:
            return PredicateResult(_is_empty(actual), detail=detail)
        if self.operator == PredicateOperator.IS_NOT_EMPTY:
            return PredicateResult(not _is_empty(actual), detail=detail)

        if actual is MISSING:
            return PredicateResult.unresolved("missing_field", **detail)

        if self.operator == PredicateOperator.EQUALS:
            return PredicateResult(_equals(actual, self.value), detail=detail)
        if self.operator == PredicateOperator.NOT_EQUALS:
            return PredicateResult(not _equals(actual, self.value), detail=detail)

        # CONTAINS
        if isinstance(actual, str):
            return PredicateResult(str(self.value).lower() in actual.lower(), detail=detail)
        if isinstance(actual, (Sequence, set, frozenset)) and not isinstance(actual, bytes):
            return PredicateResult(any(_equals(item, self.value) for item in actual), detail=detail)
        if isinstance(actual, Mapping):
            return PredicateResult(self.value in actual, detail=detail)
        return PredicateResult.unresolved("not_a_container", **detail)

    def describe(self) -> str:
        if self.operator in (PredicateOperator.IS_EMPTY, PredicateOperator.IS_NOT_EMPTY):
            return f"{self.field} {self.operator}"
        return f"{self.field} {self.operator} {self.value}"

    def to_dict(self) -> dict[str, Any]:
        return {"type": "field", "field": self.field, "operator": str(self.operator), "value": self.value}


@dataclass(frozen=True)
class TagPredicate:
    """True when the event context carries the given tag.

    Tags are read from ``tags`` and may be plain strings or objects with an
    ``id`` or ``name`` key.
    """

    tag: str

    def evaluate(self, context: Mapping[str, Any]) -> PredicateResult:
        tags = resolve_path(context, "tags")
        detail = {"tag": self.tag}
        if tags is MISSING or tags is None:
            return PredicateResult.unresolved("missing_field", field="tags", **detail)
        if isinstance(tags, str) or not isinstance(tags, (Sequence, set, frozenset)):
            return PredicateResult.unresolved("not_a_container", field="tags", **detail)

        for item in tags:
            if isinstance(item, Mapping):
                if self.tag in (item.get("id"), item.get("name")):
                    return PredicateResult(True, detail=detail)
            elif item == self.tag:
                return PredicateResult(True, detail=detail)
        return PredicateResult(False, detail=detail)

    def describe(self) -> str:
        return f"tag == {self.tag}"

    def to_dict(self) -> dict[str, Any]:
        return {"type": "has_tag", "tag": self.tag}


@dataclass(frozen=True)
class ConstantPredicate:
    """Always evaluates to the same outcome."""

    value: bool

    def evaluate(self, context: Mapping[str, Any]) -> PredicateResult:
        return PredicateResult(self.value)

    def describe(self) -> str:
        return "always true" if self.value else "always false"

    def to_dict(self) -> dict[str, Any]:
        return {"type": "always_true" if self.value else "always_false"}


Predicate: TypeAlias = FieldPredicate | TagPredicate | ConstantPredicate
"""Union of every supported predicate."""

_PRESENCE_SHORTHANDS = {
    "has_lead": "lead_id",
    "has_conversation": "conversation_id",
}


def parse_predicate(data: Mapping[str, Any]) -> Predicate:
    """Build a predicate from authored condition data.

    Accepts the explicit form (``{"type": "field", "field": ..., "operator": ...,
    "value": ...}``), the editor's form (``condition_field``,
    ``condition_operator``, ``condition_value``), and the shorthands
    ``has_tag``, ``has_lead``, ``has_conversation``, ``always_true`` and
    ``always_false``.

    Args:
        data: The condition node's authored data.

    Returns:
        The parsed predicate.

    Raises:
        ValueError: If the data does not describe a supported predicate.
    """
    if "predicate" in data and isinstance(data["predicate"], Mapping):
        data = data["predicate"]

    predicate_type = data.get("type") or data.get("condition_type")

    if predicate_type is None and "condition_field" in data:
        field_name = data["condition_field"]
        operator = data.get("condition_operator") or PredicateOperator.EQUALS
        value = data.get("condition_value")
        if field_name == "has_tag":
            if not value:
                msg = "has_tag condition requires a tag value"
                raise ValueError(msg)
            return TagPredicate(str(value))
        return _field_predicate(field_name, operator, value)

    if predicate_type == "field":
        return _field_predicate(data.get("field"), data.get("operator") or PredicateOperator.EQUALS, data.get("value"))
    if predicate_type == "has_tag":
        tag = data.get("tag") or data.get("value")
        if not tag:
            msg = "has_tag condition requires a tag value"
            raise ValueError(msg)
        return TagPredicate(str(tag))
    if predicate_type in _PRESENCE_SHORTHANDS:
        return FieldPredicate(_PRESENCE_SHORTHANDS[predicate_type], PredicateOperator.IS_NOT_EMPTY)
    if predicate_type in ("always_true", "always_false"):
        return ConstantPredicate(predicate_type == "always_true")

    msg = f"Unsupported condition type: {predicate_type!r}"
    raise ValueError(msg)


def _field_predicate(field_name: Any, operator: Any, value: Any) -> FieldPredicate:
    if not isinstance(field_name, str) or not field_name:
        msg = "Field condition requires a field path"
        raise ValueError(msg)
    try:
        op = PredicateOperator(operator)
    except ValueError as e:
        msg = f"Unsupported condition operator: {operator!r}"
        raise ValueError(msg) from e
    return FieldPredicate(field_name, op, value)
