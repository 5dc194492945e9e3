from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from tablestore_odm import INF_MAX, INF_MIN, FieldDeclaration, FieldType, from_wire, to_wire
from tablestore_odm.converter import INT64_MAX, INT64_MIN


def _decl(field_type: FieldType, **kwargs: object) -> FieldDeclaration:
    return FieldDeclaration(name="f", type=field_type, **kwargs)  # type: ignore[arg-type]


def test_absent_values_are_omitted_in_both_directions() -> None:
    for field_type in FieldType:
        assert to_wire(None, _decl(field_type)) is None
        assert from_wire(None, _decl(field_type)) is None


def test_undeclared_and_raw_values_pass_through() -> None:
    value = {"a": [1, 2]}
    assert to_wire(value, None) is value
    assert to_wire(value, _decl(FieldType.RAW)) is value
    assert from_wire("x", None) == "x"


@pytest.mark.parametrize(
    ("field_type", "value"),
    [
        (FieldType.STRING, "hello"),
        (FieldType.STRING, ""),
        (FieldType.BOOLEAN, True),
        (FieldType.BOOLEAN, False),
        (FieldType.INTEGER, 0),
        (FieldType.INTEGER, -42),
        (FieldType.INTEGER, 2**53 + 1),
        (FieldType.BIG_INTEGER, INT64_MAX),
        (FieldType.BIG_INTEGER, INT64_MIN),
        (FieldType.FLOAT, 3.25),
        (FieldType.FLOAT, -0.5),
        (FieldType.BINARY, b"\x00\x01\xff"),
    ],
)
def test_lossless_types_round_trip(field_type: FieldType, value: object) -> None:
    decl = _decl(field_type)
    assert from_wire(to_wire(value, decl), decl) == value


def test_integer_marker_comes_from_the_declaration() -> None:
    assert _decl(FieldType.INTEGER).is_integer
    assert _decl(FieldType.BIG_INTEGER).is_integer
    assert _decl(FieldType.TIMESTAMP).is_integer
    assert not _decl(FieldType.FLOAT).is_integer

    assert to_wire(5.0, _decl(FieldType.INTEGER)) == 5
    assert isinstance(to_wire(5.0, _decl(FieldType.INTEGER)), int)
    assert isinstance(to_wire(5, _decl(FieldType.FLOAT)), float)


def test_integer_encoding_saturates_to_int64() -> None:
    decl = _decl(FieldType.BIG_INTEGER)
    assert to_wire(2**70, decl) == INT64_MAX
    assert to_wire(-(2**70), decl) == INT64_MIN


def test_integer_conversion_failure_yields_absent() -> None:
    decl = _decl(FieldType.INTEGER)
    assert to_wire("not-a-number", decl) is None
    assert to_wire("12", decl) == 12
    assert to_wire("12.9", decl) == 12


def test_float_conversion_failure_yields_nan() -> None:
    out = to_wire("nope", _decl(FieldType.FLOAT))
    assert isinstance(out, float)
    assert math.isnan(out)


def test_timestamp_encodes_epoch_millis() -> None:
    decl = _decl(FieldType.TIMESTAMP)
    dt = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=UTC)

    wire = to_wire(dt, decl)
    assert wire == 1704164645678
    assert from_wire(wire, decl) == dt


def test_timestamp_naive_datetime_is_utc_and_offsets_are_honoured() -> None:
    decl = _decl(FieldType.TIMESTAMP)
    naive = datetime(2024, 1, 1, 0, 0, 0)
    shifted = datetime(2024, 1, 1, 8, 0, 0, tzinfo=timezone(timedelta(hours=8)))

    assert to_wire(naive, decl) == to_wire(shifted, decl)
    assert to_wire(date(1970, 1, 2), decl) == 86_400_000
    assert to_wire(1500, decl) == 1500
    assert to_wire("1970-01-01T00:00:01+00:00", decl) == 1000


def test_structured_values_use_canonical_json() -> None:
    decl = _decl(FieldType.STRUCTURED)
    assert to_wire({"b": 1, "a": [1, 2]}, decl) == '{"a":[1,2],"b":1}'


def test_structured_values_round_trip_nested_structures() -> None:
    decl = _decl(FieldType.STRUCTURED)
    value: object = "leaf"
    for depth in range(5):
        value = {"level": depth, "children": [value, {"n": depth * 1.5, "ok": depth % 2 == 0}]}

    assert from_wire(to_wire(value, decl), decl) == value


def test_structured_decode_failure_returns_raw_value() -> None:
    decl = _decl(FieldType.STRUCTURED)
    assert from_wire("{not json", decl) == "{not json"
    assert from_wire(7, decl) == 7


def test_structured_values_json_cannot_encode_yield_absent() -> None:
    decl = _decl(FieldType.STRUCTURED)
    looped: list[object] = []
    looped.append(looped)

    assert to_wire({"price": Decimal("1.5")}, decl) is None
    assert to_wire([object()], decl) is None
    assert to_wire(looped, decl) is None


def test_structured_sequence_container_is_rebuilt() -> None:
    as_tuple = _decl(FieldType.STRUCTURED, nested=tuple)
    as_set = _decl(FieldType.STRUCTURED, nested=frozenset)

    assert from_wire(to_wire(("a", 1), as_tuple), as_tuple) == ("a", 1)
    assert from_wire(to_wire(frozenset({"x", "y"}), as_set), as_set) == frozenset({"x", "y"})
    assert from_wire(to_wire(("a", 1), _decl(FieldType.STRUCTURED)), _decl(FieldType.STRUCTURED)) == ["a", 1]
    assert from_wire('[["unhashable"]]', as_set) == [["unhashable"]]



@dataclass(frozen=True)
class Address:
    city: str
    zip: str = ""


def test_structured_nested_dataclass_is_rebuilt() -> None:
    decl = _decl(FieldType.STRUCTURED, nested=Address)
    wire = to_wire(Address(city="Hangzhou", zip="310000"), decl)

    assert wire == '{"city":"Hangzhou","zip":"310000"}'
    assert from_wire(wire, decl) == Address(city="Hangzhou", zip="310000")


def test_sentinels_pass_through_and_decode_to_labels() -> None:
    decl = _decl(FieldType.INTEGER)
    assert to_wire(INF_MIN, decl) is INF_MIN
    assert to_wire(INF_MAX, decl) is INF_MAX
    assert from_wire(INF_MIN, decl) == "INF_MIN"
    assert from_wire(INF_MAX, None) == "INF_MAX"


def test_accepts_checks_declared_types() -> None:
    assert _decl(FieldType.STRING).accepts("x")
    assert not _decl(FieldType.STRING).accepts(1)
    assert _decl(FieldType.INTEGER).accepts(1)
    assert not _decl(FieldType.INTEGER).accepts(True)
    assert not _decl(FieldType.INTEGER).accepts("1")
    assert _decl(FieldType.FLOAT).accepts(1)
    assert _decl(FieldType.TIMESTAMP).accepts(datetime.now(UTC))
    assert _decl(FieldType.STRUCTURED).accepts([1])
    assert not _decl(FieldType.STRUCTURED).accepts("[1]")
    assert _decl(FieldType.RAW).accepts(object())
    assert not _decl(FieldType.STRING).accepts(None)
    assert _decl(FieldType.STRING, optional=True).accepts(None)
