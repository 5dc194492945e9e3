from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, fields, is_dataclass
from datetime import UTC, date, datetime, time, timedelta
from enum import Enum
from typing import Any

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class FieldType(Enum):
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    BINARY = "binary"
    BIG_INTEGER = "big_integer"
    STRUCTURED = "structured"
    RAW = "raw"


class Bound(Enum):
    INF_MIN = "INF_MIN"
    INF_MAX = "INF_MAX"

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        return self.value


INF_MIN = Bound.INF_MIN
INF_MAX = Bound.INF_MAX

_INTEGER_TYPES = frozenset({FieldType.INTEGER, FieldType.BIG_INTEGER, FieldType.TIMESTAMP})
_SEQUENCE_TYPES = (tuple, set, frozenset)


@dataclass(frozen=True)
class FieldDeclaration:
    name: str
    type: FieldType = FieldType.RAW
    column: str | None = None
    optional: bool = False
    omitempty: bool = True
    nested: type | None = None

    def __post_init__(self) -> None:
        if self.column is None:
            object.__setattr__(self, "column", self.name)

    @property
    def column_name(self) -> str:
        return self.column or self.name

    @property
    def is_integer(self) -> bool:
        return self.type in _INTEGER_TYPES

    def accepts(self, value: Any) -> bool:
        if value is None:
            return self.optional
        if isinstance(value, Bound):
            return True

        match self.type:
            case FieldType.STRING:
                return isinstance(value, str)
            case FieldType.BOOLEAN:
                return isinstance(value, bool)
            case FieldType.INTEGER | FieldType.BIG_INTEGER:
                return isinstance(value, int) and not isinstance(value, bool)
            case FieldType.FLOAT:
                return isinstance(value, (int, float)) and not isinstance(value, bool)
            case FieldType.TIMESTAMP:
                if isinstance(value, (datetime, date)):
                    return True
                return isinstance(value, (int, float)) and not isinstance(value, bool)
            case FieldType.BINARY:
                return isinstance(value, (bytes, bytearray, memoryview))
            case FieldType.STRUCTURED:
                if self.nested is not None and isinstance(value, self.nested):
                    return True
                return isinstance(value, (list, tuple, dict)) or (
                    is_dataclass(value) and not isinstance(value, type)
                )
            case _:
                return True


def to_wire(value: Any, declaration: FieldDeclaration | None) -> Any:
    if value is None:
        return None
    if isinstance(value, Bound):
        return value
    if declaration is None:
        return value

    match declaration.type:
        case FieldType.STRING | FieldType.BOOLEAN | FieldType.RAW:
            return value
        case FieldType.INTEGER | FieldType.BIG_INTEGER:
            return _to_int64(value)
        case FieldType.FLOAT:
            return _to_float(value)
        case FieldType.TIMESTAMP:
            return _to_epoch_millis(value)
        case FieldType.BINARY:
            return _to_bytes(value)
        case FieldType.STRUCTURED:
            return _to_json_text(value)
    return value


def from_wire(value: Any, declaration: FieldDeclaration | None) -> Any:
    if value is None:
        return None
    if isinstance(value, Bound):
        return str(value)
    if declaration is None:
        return value

    match declaration.type:
        case FieldType.INTEGER | FieldType.BIG_INTEGER:
            if isinstance(value, bool):
                return value
            if isinstance(value, (int, float)):
                return int(value)
            return value
        case FieldType.FLOAT:
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return float(value)
            return value
        case FieldType.TIMESTAMP:
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return _from_epoch_millis(int(value))
            return value
        case FieldType.BINARY:
            if isinstance(value, bytearray):
                return bytes(value)
            return value
        case FieldType.STRUCTURED:
            return _from_json_text(value, declaration.nested)
    return value


def _to_int64(value: Any) -> int | None:
    try:
        n = int(value)
    except (TypeError, ValueError, OverflowError):
        try:
            n = int(float(value))
        except (TypeError, ValueError, OverflowError):
            return None
    return max(INT64_MIN, min(INT64_MAX, n))


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _to_epoch_millis(value: Any) -> int | None:
    if isinstance(value, datetime):
        dt = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return (dt - _EPOCH) // timedelta(milliseconds=1)
    if isinstance(value, date):
        return _to_epoch_millis(datetime.combine(value, time(), tzinfo=UTC))
    if isinstance(value, str):
        try:
            return _to_epoch_millis(datetime.fromisoformat(value))
        except ValueError:
            return _to_int64(value)
    return _to_int64(value)


def _from_epoch_millis(millis: int) -> datetime | int:
    try:
        return _EPOCH + timedelta(milliseconds=millis)
    except OverflowError:
        return millis


def _to_bytes(value: Any) -> Any:
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    return value


def _to_json_text(value: Any) -> str | None:
    if is_dataclass(value) and not isinstance(value, type):
        value = asdict(value)
    try:
        return json.dumps(value, separators=(",", ":"), sort_keys=True, default=_json_default)
    except (TypeError, ValueError):
        return None


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    raise TypeError(f"not JSON serializable: {type(value).__name__}")


def _from_json_text(value: Any, nested: type | None) -> Any:
    if not isinstance(value, (str, bytes, bytearray)):
        return value
    try:
        decoded = json.loads(value)
    except ValueError:
        return value

    if nested is not None and nested in _SEQUENCE_TYPES and isinstance(decoded, list):
        try:
            return nested(decoded)
        except TypeError:
            return decoded
    if nested is not None and is_dataclass(nested) and isinstance(decoded, dict):
        names = {f.name for f in fields(nested)}
        try:
            return nested(**{k: v for k, v in decoded.items() if k in names})
        except TypeError:
            return decoded
    return decoded
