from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, cast

from .converter import INF_MAX, INF_MIN, Bound
from .errors import StoreError, ValidationError
from .filters import FilterFactory, FilterNode, build_filter
from .results import Result

if TYPE_CHECKING:
    from .client import StoreClient
    from .model import Schema, WireCell, WireKey

logger = logging.getLogger(__name__)

DefaultRangeLimit = 20

type ScanDirection = Literal["FORWARD", "BACKWARD"]


@dataclass(frozen=True)
class RangePage:
    rows: list[dict[str, Any]]
    next_start_key: list[WireCell] | None = None
    next_cursor: str | None = None


@dataclass(frozen=True)
class Cursor:
    start_key: list[WireCell]
    index: str | None = None
    direction: ScanDirection | None = None


def _cell_to_json(value: Any) -> dict[str, Any]:
    if isinstance(value, Bound):
        return {"INF": "MIN" if value is INF_MIN else "MAX"}
    if isinstance(value, str):
        return {"S": value}
    if isinstance(value, bool):
        return {"BOOL": value}
    if isinstance(value, int):
        return {"I": str(value)}
    if isinstance(value, float):
        return {"D": value}
    if isinstance(value, (bytes, bytearray)):
        return {"B": base64.b64encode(bytes(value)).decode("ascii")}
    raise ValueError(f"unsupported key cell type: {type(value).__name__}")


def _cell_from_json(enc: Any) -> Any:
    if not isinstance(enc, dict) or len(enc) != 1:
        raise ValueError("key cell must be a single-key map")
    (kind, value), *_ = enc.items()

    if kind == "S":
        if not isinstance(value, str):
            raise ValueError("S value must be a string")
        return value
    if kind == "BOOL":
        if not isinstance(value, bool):
            raise ValueError("BOOL value must be a boolean")
        return value
    if kind == "I":
        if not isinstance(value, str):
            raise ValueError("I value must be a decimal string")
        return int(value)
    if kind == "D":
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise ValueError("D value must be a number")
        return float(value)
    if kind == "B":
        if not isinstance(value, str):
            raise ValueError("B value must be a base64 string")
        return base64.b64decode(value)
    if kind == "INF":
        if value not in {"MIN", "MAX"}:
            raise ValueError("INF value must be MIN or MAX")
        return INF_MIN if value == "MIN" else INF_MAX
    raise ValueError(f"unsupported key cell type: {kind}")


def encode_cursor(
    start_key: Sequence[WireCell] | None,
    *,
    index: str | None = None,
    direction: ScanDirection | None = None,
) -> str:
    if not start_key:
        return ""

    payload: dict[str, Any] = {"startKey": [[str(column), _cell_to_json(value)] for column, value in start_key]}
    if index is not None:
        payload["index"] = index
    if direction is not None:
        payload["direction"] = direction

    data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64.urlsafe_b64encode(data).decode("ascii")


def decode_cursor(cursor: str) -> Cursor:
    raw = str(cursor or "").strip()
    if not raw:
        raise ValueError("cursor is empty")

    padding = "=" * (-len(raw) % 4)
    try:
        data = base64.urlsafe_b64decode(raw + padding).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as err:
        raise ValueError("cursor is not valid base64") from err
    parsed = json.loads(data)
    if not isinstance(parsed, dict):
        raise ValueError("cursor must decode to an object")

    start_key_raw = parsed.get("startKey")
    if not isinstance(start_key_raw, list) or not start_key_raw:
        raise ValueError("cursor startKey is invalid")

    start_key: list[WireCell] = []
    for entry in start_key_raw:
        if not isinstance(entry, list) or len(entry) != 2 or not isinstance(entry[0], str):
            raise ValueError("cursor startKey entry is invalid")
        start_key.append((entry[0], _cell_from_json(entry[1])))

    index = parsed.get("index")
    direction = parsed.get("direction")
    return Cursor(
        start_key=start_key,
        index=index if isinstance(index, str) else None,
        direction=cast(ScanDirection, direction) if direction in {"FORWARD", "BACKWARD"} else None,
    )


class RangeQueryBuilder:
    """Chained primary-key range query over a table or one of its secondary indexes.

    A builder is owned by one caller at a time; configuring it from several call
    sites concurrently is not supported.
    """

    def __init__(
        self,
        schema: Schema,
        client: StoreClient,
        table_name: str,
        index_name: str | None = None,
    ) -> None:
        if index_name is not None:
            schema.primary_key_fields_for(index_name)

        self._schema = schema
        self._client = client
        self._table_name = table_name
        self._index_name = index_name
        self._start: WireKey | None = None
        self._end: WireKey | None = None
        self._resume_key: list[WireCell] | None = None
        self._resume_direction: ScanDirection | None = None
        self._direction: ScanDirection = "FORWARD"
        self._limit = DefaultRangeLimit
        self._columns: list[str] | None = None
        self._filter: FilterNode | None = None

    def start_with(self, key: Mapping[str, Any]) -> RangeQueryBuilder:
        self._start = self._schema.to_wire_key(key, self._index_name)
        self._resume_key = None
        self._resume_direction = None
        return self

    def end_at(self, key: Mapping[str, Any]) -> RangeQueryBuilder:
        self._end = self._schema.to_wire_key(key, self._index_name)
        return self

    def direction(self, direction: str) -> RangeQueryBuilder:
        normalized = direction.upper()
        if normalized not in {"FORWARD", "BACKWARD"}:
            raise ValidationError(f"direction must be FORWARD or BACKWARD (got {direction!r})")
        self._direction = cast(ScanDirection, normalized)
        return self

    def limit(self, limit: int) -> RangeQueryBuilder:
        self._limit = limit if limit > 0 else DefaultRangeLimit
        return self

    def select(self, fields: Sequence[str]) -> RangeQueryBuilder:
        self._columns = _projection(self._schema, fields)
        return self

    def filter(self, build: Callable[[FilterFactory], FilterNode]) -> RangeQueryBuilder:
        self._filter = build_filter(self._schema, build)
        return self

    def resume(self, cursor: str) -> RangeQueryBuilder:
        try:
            decoded = decode_cursor(cursor)
        except ValueError as err:
            raise ValidationError(f"invalid cursor: {err}") from err

        if decoded.index != self._index_name:
            raise ValidationError("cursor index does not match this query")
        self._resume_key = decoded.start_key
        self._resume_direction = decoded.direction
        return self

    def build_request(self) -> dict[str, Any]:
        if self._resume_direction is not None and self._resume_direction != self._direction:
            raise ValidationError("cursor direction does not match this query")

        lower, upper = (INF_MIN, INF_MAX) if self._direction == "FORWARD" else (INF_MAX, INF_MIN)
        if self._resume_key is not None:
            start = list(self._resume_key)
        else:
            start = self._boundary(self._start, lower)
        end = self._boundary(self._end, upper)

        return {
            "table_name": self._index_name or self._table_name,
            "direction": self._direction,
            "inclusive_start_primary_key": start,
            "exclusive_end_primary_key": end,
            "limit": self._limit,
            "columns_to_get": list(self._columns) if self._columns is not None else None,
            "column_filter": self._filter,
        }

    def execute(self) -> Result[RangePage]:
        return self._run(self.build_request())

    def find_one(self) -> Result[dict[str, Any] | None]:
        req = self.build_request()
        req["limit"] = 1
        res = self._run(req)
        if res.error is not None:
            return Result.failure(res.error)
        page = cast(RangePage, res.value)
        return Result.success(page.rows[0] if page.rows else None)

    def _boundary(self, key: WireKey | None, sentinel: Bound) -> list[WireCell]:
        if key is None:
            key = self._schema.to_wire_key({}, self._index_name)
        return key.fill(sentinel)

    def _run(self, req: dict[str, Any]) -> Result[RangePage]:
        logger.debug("get_range on %s (%s, limit=%d)", req["table_name"], req["direction"], req["limit"])
        try:
            resp = self._client.get_range(**req)
        except StoreError as err:
            return Result.failure(err)

        rows: list[dict[str, Any]] = []
        for raw in resp.get("rows") or []:
            row = self._schema.from_wire_row(raw)
            if row is not None:
                rows.append(row)

        next_key = resp.get("next_start_primary_key") or None
        next_key = list(next_key) if next_key else None
        next_cursor = (
            encode_cursor(next_key, index=self._index_name, direction=self._direction) if next_key else None
        )
        return Result.success(RangePage(rows=rows, next_start_key=next_key, next_cursor=next_cursor))


def _projection(schema: Schema, fields: Sequence[str]) -> list[str]:
    if not fields:
        return [decl.column_name for decl in schema.fields.values()]
    return [decl.column_name for name in fields if (decl := schema.field_declaration(name)) is not None]
