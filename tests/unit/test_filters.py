from __future__ import annotations

import logging
from datetime import UTC, datetime

import pytest

from tablestore_odm import (
    ColumnCondition,
    Comparator,
    CompositeCondition,
    ConditionBuildError,
    FieldDeclaration,
    FieldType,
    FilterFactory,
    LogicalOperator,
    Schema,
    build_filter,
    count_conditions,
)


def _schema() -> Schema:
    return Schema(
        [
            FieldDeclaration("id", FieldType.STRING),
            FieldDeclaration("age", FieldType.INTEGER),
            FieldDeclaration("score", FieldType.FLOAT),
            FieldDeclaration("status", FieldType.STRING, column="st"),
            FieldDeclaration("seen_at", FieldType.TIMESTAMP),
        ],
        ["id"],
    )


@pytest.mark.parametrize(
    ("method", "comparator"),
    [
        ("eq", Comparator.EQUAL),
        ("ne", Comparator.NOT_EQUAL),
        ("gt", Comparator.GREATER_THAN),
        ("gte", Comparator.GREATER_EQUAL),
        ("lt", Comparator.LESS_THAN),
        ("lte", Comparator.LESS_EQUAL),
    ],
)
def test_comparison_leaves_use_the_column_name_and_wire_value(method: str, comparator: Comparator) -> None:
    cond = getattr(FilterFactory(_schema()), method)("status", "active")
    assert cond == ColumnCondition(column="st", comparator=comparator, value="active")
    assert cond.pass_if_missing is True
    assert cond.latest_version_only is True


def test_leaf_values_are_encoded_with_the_field_declaration() -> None:
    f = FilterFactory(_schema())

    age = f.gt("age", 18.0)
    assert age.value == 18
    assert isinstance(age.value, int)

    seen = f.gte("seen_at", datetime(1970, 1, 1, 0, 0, 1, tzinfo=UTC))
    assert seen.value == 1000


def test_leaf_options_are_carried() -> None:
    cond = FilterFactory(_schema()).eq("age", 3, pass_if_missing=False, latest_version_only=False)
    assert cond.pass_if_missing is False
    assert cond.latest_version_only is False


def test_leaf_rejects_unknown_field_and_missing_value() -> None:
    f = FilterFactory(_schema())
    with pytest.raises(ConditionBuildError, match="unknown field: nope"):
        f.eq("nope", 1)
    with pytest.raises(ConditionBuildError, match="requires a value"):
        f.eq("age", None)
    with pytest.raises(ConditionBuildError, match="cannot encode value"):
        f.eq("age", "many")


def test_composites_nest_and_count_leaves() -> None:
    f = FilterFactory(_schema())
    node = f.and_(
        f.gt("age", 18),
        f.or_(f.eq("status", "active"), f.not_(f.eq("status", "banned"))),
    )

    assert isinstance(node, CompositeCondition)
    assert node.operator is LogicalOperator.AND
    assert node.children[1].operator is LogicalOperator.OR  # type: ignore[union-attr]
    assert count_conditions(node) == 3


def test_not_requires_exactly_one_child() -> None:
    f = FilterFactory(_schema())
    with pytest.raises(ConditionBuildError, match="exactly one"):
        f.not_(f.eq("age", 1), f.eq("age", 2))
    with pytest.raises(ConditionBuildError, match="at least one"):
        f.and_()


def test_composites_reject_non_conditions() -> None:
    with pytest.raises(ConditionBuildError, match="invalid filter condition"):
        FilterFactory(_schema()).or_("age > 1")  # type: ignore[arg-type]


def test_build_filter_wraps_callback_errors() -> None:
    def explode(f: FilterFactory) -> ColumnCondition:
        raise KeyError("boom")

    with pytest.raises(ConditionBuildError, match="filter construction failed"):
        build_filter(_schema(), explode)


def test_build_filter_requires_a_condition() -> None:
    with pytest.raises(ConditionBuildError, match="must return a condition"):
        build_filter(_schema(), lambda f: None)  # type: ignore[arg-type,return-value]


def test_build_filter_warns_on_many_conditions(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="tablestore_odm.filters")

    node = build_filter(_schema(), lambda f: f.and_(*(f.eq("age", i) for i in range(11))))

    assert count_conditions(node) == 11
    assert "11 conditions" in caplog.text


def test_build_filter_small_filters_do_not_warn(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="tablestore_odm.filters")
    build_filter(_schema(), lambda f: f.and_(*(f.eq("age", i) for i in range(10))))
    assert caplog.text == ""
