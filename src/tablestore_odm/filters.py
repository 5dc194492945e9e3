from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .converter import to_wire
from .errors import ConditionBuildError

if TYPE_CHECKING:
    from .model import Schema

logger = logging.getLogger(__name__)

MaxAdvisedConditions = 10


class Comparator(Enum):
    EQUAL = "EQUAL"
    NOT_EQUAL = "NOT_EQUAL"
    GREATER_THAN = "GREATER_THAN"
    GREATER_EQUAL = "GREATER_EQUAL"
    LESS_THAN = "LESS_THAN"
    LESS_EQUAL = "LESS_EQUAL"


class LogicalOperator(Enum):
    AND = "AND"
    OR = "OR"
    NOT = "NOT"


@dataclass(frozen=True)
class ColumnCondition:
    column: str
    comparator: Comparator
    value: Any
    pass_if_missing: bool = True
    latest_version_only: bool = True


@dataclass(frozen=True)
class CompositeCondition:
    operator: LogicalOperator
    children: tuple[FilterNode, ...]

    def __post_init__(self) -> None:
        if not self.children:
            raise ConditionBuildError(f"{self.operator.value} requires at least one condition")
        if self.operator is LogicalOperator.NOT and len(self.children) != 1:
            raise ConditionBuildError(f"NOT requires exactly one condition (got {len(self.children)})")


type FilterNode = ColumnCondition | CompositeCondition


def count_conditions(node: FilterNode) -> int:
    if isinstance(node, ColumnCondition):
        return 1
    return sum(count_conditions(child) for child in node.children)


class FilterFactory:
    def __init__(self, schema: Schema) -> None:
        self._schema = schema

    def eq(self, field: str, value: Any, *, pass_if_missing: bool = True, latest_version_only: bool = True) -> ColumnCondition:
        return self._leaf(field, Comparator.EQUAL, value, pass_if_missing, latest_version_only)

    def ne(self, field: str, value: Any, *, pass_if_missing: bool = True, latest_version_only: bool = True) -> ColumnCondition:
        return self._leaf(field, Comparator.NOT_EQUAL, value, pass_if_missing, latest_version_only)

    def gt(self, field: str, value: Any, *, pass_if_missing: bool = True, latest_version_only: bool = True) -> ColumnCondition:
        return self._leaf(field, Comparator.GREATER_THAN, value, pass_if_missing, latest_version_only)

    def gte(self, field: str, value: Any, *, pass_if_missing: bool = True, latest_version_only: bool = True) -> ColumnCondition:
        return self._leaf(field, Comparator.GREATER_EQUAL, value, pass_if_missing, latest_version_only)

    def lt(self, field: str, value: Any, *, pass_if_missing: bool = True, latest_version_only: bool = True) -> ColumnCondition:
        return self._leaf(field, Comparator.LESS_THAN, value, pass_if_missing, latest_version_only)

    def lte(self, field: str, value: Any, *, pass_if_missing: bool = True, latest_version_only: bool = True) -> ColumnCondition:
        return self._leaf(field, Comparator.LESS_EQUAL, value, pass_if_missing, latest_version_only)

    def and_(self, *conditions: FilterNode) -> CompositeCondition:
        return CompositeCondition(LogicalOperator.AND, _check_children(conditions))

    def or_(self, *conditions: FilterNode) -> CompositeCondition:
        return CompositeCondition(LogicalOperator.OR, _check_children(conditions))

    def not_(self, *conditions: FilterNode) -> CompositeCondition:
        return CompositeCondition(LogicalOperator.NOT, _check_children(conditions))

    def _leaf(
        self,
        field: str,
        comparator: Comparator,
        value: Any,
        pass_if_missing: bool,
        latest_version_only: bool,
    ) -> ColumnCondition:
        decl = self._schema.field_declaration(field)
        if decl is None:
            raise ConditionBuildError(f"unknown field: {field}")
        if value is None:
            raise ConditionBuildError(f"{comparator.value} on {field} requires a value")

        wire = to_wire(value, decl)
        if wire is None:
            raise ConditionBuildError(f"cannot encode value for {field}: {value!r}")
        return ColumnCondition(
            column=decl.column_name,
            comparator=comparator,
            value=wire,
            pass_if_missing=pass_if_missing,
            latest_version_only=latest_version_only,
        )


def _check_children(conditions: Sequence[Any]) -> tuple[FilterNode, ...]:
    for cond in conditions:
        if not isinstance(cond, (ColumnCondition, CompositeCondition)):
            raise ConditionBuildError(f"invalid filter condition: {cond!r}")
    return tuple(conditions)


def build_filter(schema: Schema, build: Callable[[FilterFactory], FilterNode]) -> FilterNode:
    try:
        node = build(FilterFactory(schema))
    except ConditionBuildError:
        raise
    except Exception as err:
        raise ConditionBuildError(f"filter construction failed: {err}") from err

    if not isinstance(node, (ColumnCondition, CompositeCondition)):
        raise ConditionBuildError("filter callback must return a condition")

    total = count_conditions(node)
    if total > MaxAdvisedConditions:
        logger.warning(
            "filter has %d conditions; more than %d may exceed the store request limits",
            total,
            MaxAdvisedConditions,
        )
    return node
