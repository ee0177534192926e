"""Trigger condition variants.

A webhook's trigger conditions are stored as a list of tagged objects, each
naming a field path in the event payload, an operator and an operand:

    {"field": "amount", "op": ">", "value": 100}
    {"field": "customer.tier", "op": "equals", "value": "gold"}
    {"field": "tags", "op": "contains", "value": "urgent"}
    {"field": "email", "op": "exists"}

The ``op`` tag selects the variant, so unknown operators or missing operands
fail validation when the webhook is loaded instead of silently never matching.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

# Field path that addresses the event's classification tag instead of its data
CATEGORY_FIELD = "$category"


class _Missing:
    """Sentinel for a field path that does not resolve."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def resolve_field(document: Any, path: str) -> Any:
    """Resolve a dotted path against a JSON-like document.

    Mapping keys are matched by name and list items by integer index
    ("items.0.sku"). Returns MISSING when any segment does not resolve.
    """
    current = document
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def _same(left: Any, right: Any) -> bool:
    # JSON booleans never equal JSON numbers, unlike Python's True == 1
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return bool(left == right)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


class ConditionBase(BaseModel):
    """Common shape of every condition variant."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    field: str = Field(min_length=1, description="Dotted path into the event payload")

    @abstractmethod
    def test(self, value: Any) -> bool:
        """Return True if the resolved field value satisfies the condition."""
        ...


class EqualsCondition(ConditionBase):
    """Field equals the operand."""

    op: Literal["==", "equals", "eq"]
    value: Any

    def test(self, value: Any) -> bool:
        return value is not MISSING and _same(value, self.value)


class NotEqualsCondition(ConditionBase):
    """Field is present and differs from the operand."""

    op: Literal["!=", "not_equals", "ne"]
    value: Any

    def test(self, value: Any) -> bool:
        return value is not MISSING and not _same(value, self.value)


class ContainsCondition(ConditionBase):
    """Substring of a string, member of a list, or key of an object."""

    op: Literal["contains", "in"]
    value: Any

    def test(self, value: Any) -> bool:
        if isinstance(value, str):
            return isinstance(self.value, str) and self.value in value
        if isinstance(value, list):
            return any(_same(item, self.value) for item in value)
        if isinstance(value, Mapping):
            return isinstance(self.value, str) and self.value in value
        return False


class CompareCondition(ConditionBase):
    """Numeric comparison. Numeric strings in the payload are accepted."""

    op: Literal[">", ">=", "<", "<=", "gt", "gte", "lt", "lte"]
    value: int | float

    def test(self, value: Any) -> bool:
        number = _as_number(value)
        if number is None:
            return False
        operand = float(self.value)
        if self.op in (">", "gt"):
            return number > operand
        if self.op in (">=", "gte"):
            return number >= operand
        if self.op in ("<", "lt"):
            return number < operand
        return number <= operand


class ExistsCondition(ConditionBase):
    """Field is present and not null."""

    op: Literal["exists", "present"]

    def test(self, value: Any) -> bool:
        return value is not MISSING and value is not None


Condition = Annotated[
    EqualsCondition | NotEqualsCondition | ContainsCondition | CompareCondition | ExistsCondition,
    Field(discriminator="op"),
]

condition_list_adapter: TypeAdapter[list[Condition]] = TypeAdapter(list[Condition])


def parse_conditions(raw: Any) -> list[Condition]:
    """Parse stored trigger conditions.

    Accepts a list of condition objects, a ``{"conditions": [...]}`` wrapper,
    or an empty value. Raises pydantic.ValidationError for malformed entries.
    """
    if raw is None:
        return []
    if isinstance(raw, Mapping):
        if not raw:
            return []
        if set(raw) != {"conditions"}:
            raise ValueError("trigger conditions must be a list or {'conditions': [...]}")
        raw = raw["conditions"] or []
    return condition_list_adapter.validate_python(raw)


__all__ = [
    "CATEGORY_FIELD",
    "CompareCondition",
    "Condition",
    "ConditionBase",
    "ContainsCondition",
    "EqualsCondition",
    "ExistsCondition",
    "MISSING",
    "NotEqualsCondition",
    "parse_conditions",
    "resolve_field",
]
